import enum

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    # Persist enum values ("in-progress") rather than member names.
    return [str(m.value) for m in enum_cls]
