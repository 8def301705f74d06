from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .crypto import encrypt_str
from .models import ServiceCredential


@contextmanager
def db_session(factory: sessionmaker) -> Iterator[Session]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_active_credential(db: Session, user_id: int, service_type: str) -> ServiceCredential | None:
    """Most recently updated active credential of the user for the service."""
    return db.scalar(
        select(ServiceCredential)
        .where(
            ServiceCredential.user_id == user_id,
            ServiceCredential.service_type == service_type,
            ServiceCredential.is_active.is_(True),
        )
        .order_by(ServiceCredential.updated_at.desc(), ServiceCredential.id.desc())
        .limit(1)
    )


def save_credential(
    db: Session,
    user_id: int,
    service_type: str,
    username: str,
    password: str = "",
    *,
    domain: str = "",
    tenant_id: str = "",
    client_id: str = "",
    client_secret: str = "",
    secret: Optional[str] = None,
) -> ServiceCredential:
    row = db.scalar(
        select(ServiceCredential).where(
            ServiceCredential.user_id == user_id,
            ServiceCredential.service_type == service_type,
            ServiceCredential.username == username,
        )
    )
    if row is None:
        row = ServiceCredential(user_id=user_id, service_type=service_type, username=username)
        db.add(row)

    row.password_enc = encrypt_str(password, secret)
    row.domain = domain or ""
    row.tenant_id = tenant_id or ""
    row.client_id = client_id or ""
    row.client_secret_enc = encrypt_str(client_secret, secret)
    row.is_active = True
    row.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(row)
    return row


def deactivate_credentials(db: Session, user_id: int, service_type: str) -> int:
    rows = db.scalars(
        select(ServiceCredential).where(
            ServiceCredential.user_id == user_id,
            ServiceCredential.service_type == service_type,
        )
    ).all()
    for r in rows:
        r.is_active = False
    db.commit()
    return len(rows)
