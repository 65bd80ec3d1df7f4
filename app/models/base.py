"""Base Models and Mixins"""

import uuid
from sqlalchemy import Column, DateTime, Boolean, Uuid, Enum

from app.database import Base
from app.utils.time import get_utc_now


def enum_column_type(enum_cls, name: str) -> Enum:
    """
    Enum column type that stores member values ("pending"), not names.

    The same type object works on PostgreSQL (native enum) and SQLite.
    """
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class BaseModel(Base):
    """
    Base model class with common fields for all models.

    Provides:
    - UUID primary key
    - created_at timestamp
    - updated_at timestamp
    """
    __abstract__ = True

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)


class StatusMixin:
    """
    Mixin for models with active/inactive status.

    Provides:
    - is_active boolean flag
    """
    is_active = Column(Boolean, default=True, nullable=False, index=True)
