"""User Model"""

from sqlalchemy import Column, String, Boolean

from app.models.base import BaseModel, enum_column_type
from app.models.enums import UserRole


class User(BaseModel):
    """
    Account of an admin, teacher (course owner) or student.
    Registration and login live outside this service; only identity,
    role and contact address are needed here.
    """
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)

    role = Column(enum_column_type(UserRole, "user_role"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
