import enum
from typing import Type

from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def status_type(enum_cls: Type[enum.Enum]) -> SAEnum:
    """Closed status column stored as its string value"""
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        length=20,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
