# src/models/user.py

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, String, func
from src.db import Base


class UserRole(enum.Enum):
    ADMIN = "ADMIN"
    MERCHANT = "MERCHANT"
    USER = "USER"


class User(Base):
    """
    Минимальная модель пользователя: пайплайну уведомлений нужна роль
    и признак активности (поиск получателя-админа). Остальные поля профиля
    живут в CRUD-слое.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
