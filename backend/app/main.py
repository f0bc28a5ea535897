import json
import logging
import random
import threading
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.core.config import is_prod, settings
from app.core.errors import HTTP_STATUS, DomainError, ErrorKind
from app.db.session import Database
from app.routers import attempts, auth, health, question_bank, quizzes
from app.services.attempt_expiry_jobs import enqueue_expiry_sweep, sweep_interval_seconds


def _parse_csv(value: str) -> list[str]:
    return [x.strip() for x in str(value or "").split(",") if x.strip()]


def create_app(database: Database | None = None, rng: random.Random | None = None) -> FastAPI:
    """Build the app. Served lazily with `uvicorn app.main:create_app --factory`."""
    logging.basicConfig(
        level=str(settings.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logger = logging.getLogger("equiz")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if database is None:
        database = Database.from_url(settings.database_url, echo=bool(settings.db_echo))
    if rng is None:
        rng = random.Random(settings.shuffle_seed)

    scheduler_timers: list[threading.Timer] = []

    def _start_expiry_scheduler() -> None:
        interval = sweep_interval_seconds()

        def _tick() -> None:
            try:
                enqueue_expiry_sweep()
            except Exception:
                logger.exception("attempt expiry sweep scheduling failed")
            finally:
                t = threading.Timer(interval, _tick)
                t.daemon = True
                scheduler_timers[:] = [t]
                t.start()

        t0 = threading.Timer(10, _tick)
        t0.daemon = True
        scheduler_timers.append(t0)
        t0.start()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if bool(settings.enable_inprocess_scheduler):
            _start_expiry_scheduler()
        yield
        for t in scheduler_timers:
            t.cancel()
        app.state.database.dispose()

    app = FastAPI(title="eQuiz API", version="1.0.0", lifespan=lifespan)
    app.state.database = database
    app.state.rng = rng

    allow_origins = _parse_csv(settings.cors_allow_origins)
    if "*" in allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not include '*' when allow_credentials=true")

    allow_methods_raw = str(settings.cors_allow_methods or "*").strip()
    allow_headers_raw = str(settings.cors_allow_headers or "*").strip()
    if is_prod():
        if allow_methods_raw == "*":
            allow_methods = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
        else:
            allow_methods = _parse_csv(allow_methods_raw)

        if allow_headers_raw == "*":
            allow_headers = ["authorization", "content-type", "x-request-id"]
        else:
            allow_headers = _parse_csv(allow_headers_raw)
    else:
        allow_methods = ["*"] if allow_methods_raw == "*" else _parse_csv(allow_methods_raw)
        allow_headers = ["*"] if allow_headers_raw == "*" else _parse_csv(allow_headers_raw)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        t0 = time.perf_counter()
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = rid
        status_code: int | None = None
        try:
            response = await call_next(request)
            status_code = int(getattr(response, "status_code", 0) or 0)
        except Exception:
            status_code = 500
            raise
        finally:
            path = request.url.path
            if not path.startswith("/health"):
                logger.info(
                    json.dumps(
                        {
                            "ts": datetime.utcnow().isoformat(),
                            "rid": rid,
                            "user_id": getattr(request.state, "user_id", None),
                            "method": request.method,
                            "path": path,
                            "status": status_code,
                            "duration_ms": int((time.perf_counter() - t0) * 1000),
                        },
                        ensure_ascii=False,
                    )
                )
        response.headers["X-Request-ID"] = rid

        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        if is_prod():
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        return response

    def _request_id(request: Request) -> str | None:
        rid = str(getattr(request.state, "request_id", "") or "").strip()
        return rid or None

    def _error(status_code: int, error_code: str, error_message: str, rid: str | None, headers=None) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={
                "ok": False,
                "error_code": error_code,
                "error_message": error_message,
                "request_id": rid,
            },
            headers=headers,
        )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        rid = _request_id(request)
        message = exc.message
        if exc.kind == ErrorKind.persistence:
            logger.error("persistence error rid=%s: %s (%r)", rid, message, exc.__cause__)
            if not is_prod() and exc.__cause__ is not None:
                message = f"{message}: {exc.__cause__}"
        return _error(exc.status_code, exc.kind.value, message, rid)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg") or "invalid request")
        return _error(HTTP_STATUS[ErrorKind.validation], ErrorKind.validation.value, message, _request_id(request))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        status = int(exc.status_code)
        error_code = {401: "unauthorized", 403: "forbidden", 404: "not_found", 429: "rate_limited"}.get(
            status, "http_error"
        )
        return _error(
            status,
            error_code,
            str(exc.detail or "request failed"),
            _request_id(request),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("unhandled exception rid=%s", rid)
        return _error(500, "internal_error", "internal server error", rid)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=allow_methods,
        allow_headers=allow_headers,
    )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(quizzes.router)
    app.include_router(attempts.router)
    app.include_router(question_bank.router)

    return app

