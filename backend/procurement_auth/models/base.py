from enum import Enum
from typing import TypeVar

from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase

EnumT = TypeVar("EnumT", bound=Enum)


class Base(DeclarativeBase):
    pass


def enum_column_type(enum_cls: type[EnumT], length: int = 32) -> SAEnum:
    """Store an enum by its value in a plain VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
