import enum

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column, BigInteger, Integer, String, Boolean, DateTime, ForeignKey, Enum, func
)

Base = declarative_base()


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SUB_ADMIN = "SUB_ADMIN"
    EMPLOYEE = "EMPLOYEE"
    STUDENT = "STUDENT"


class User(Base):
    __tablename__ = "users"
    user_id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)  # stored lower-case
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole, name="user_role_enum"), nullable=False, index=True)
    department = Column(String(120), nullable=True, index=True)  # NULL only for ADMIN
    college = Column(String(200), nullable=True)
    student_id = Column(String(50), unique=True, nullable=True)
    force_password_change = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    token_version = Column(Integer, nullable=False, default=0)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)  # 64-char SHA256 hex
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    user = relationship("User")


class ResetCooldown(Base):
    __tablename__ = "reset_cooldowns"
    email = Column(String(255), primary_key=True)
    window_started_at = Column(DateTime, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)


class AuthAudit(Base):
    __tablename__ = "auth_audit"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True)
    event = Column(String(50), nullable=False)  # LOGIN_SUCCESS, LOGIN_FAILED, LOGOUT, etc.
    details = Column(String(255))
    ip = Column(String(45))
    user_agent = Column(String(255))
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
