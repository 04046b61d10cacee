from __future__ import annotations

from decimal import Decimal

from fastapi.encoders import jsonable_encoder
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.models import AuditLog


def log_audit(
    db: Session,
    *,
    actor_id: int | None,
    action: str,
    ip: str | None,
    metadata: dict | None = None,
) -> None:
    # Decimals and dates in metadata are stored as JSON strings.
    db.add(
        AuditLog(
            actor_id=actor_id,
            action=action,
            ip=ip,
            meta=jsonable_encoder(metadata or {}, custom_encoder={Decimal: str}),
        )
    )


def list_audit_log(db: Session, *, action: str | None = None, limit: int = 200) -> list[AuditLog]:
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action)
    return db.execute(query.order_by(AuditLog.id.desc()).limit(limit)).scalars().all()
