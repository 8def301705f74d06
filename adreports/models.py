from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class ServiceCredential(Base):
    """Per-user credentials for a directory service (ad | azure | o365).

    Secrets are stored Fernet-encrypted (see crypto.py).
    """

    __tablename__ = "service_credentials"
    __table_args__ = (UniqueConstraint("user_id", "service_type", "username", name="uq_service_credentials_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    service_type: Mapped[str] = mapped_column(String(16), nullable=False)  # ad|azure|o365

    username: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    password_enc: Mapped[str] = mapped_column(String(2048), default="", nullable=False)
    domain: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    tenant_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    client_id: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    client_secret_enc: Mapped[str] = mapped_column(String(2048), default="", nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
