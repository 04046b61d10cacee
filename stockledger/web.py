from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from stockledger.dependencies import get_client_ip
from stockledger.errors import LedgerError, NotFound, ValidationError
from stockledger.services.audit_service import log_audit
from stockledger.services.ledger_transaction import run_ledger_operation

T = TypeVar('T')


def to_http_exception(exc: LedgerError) -> HTTPException:
    if isinstance(exc, NotFound):
        status_code = 404
    elif isinstance(exc, ValidationError):
        status_code = 400
    else:
        status_code = 409
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def run_audited(
    db: Session,
    request: Request,
    *,
    actor_id: int,
    action: str,
    operation: Callable[[], T],
    metadata: Callable[[T], dict[str, Any]] | None = None,
) -> T:
    """Run a mutating service call and its audit row as one committed unit."""

    def unit() -> T:
        result = operation()
        log_audit(
            db,
            actor_id=actor_id,
            action=action,
            ip=get_client_ip(request),
            metadata=metadata(result) if metadata else None,
        )
        return result

    try:
        return run_ledger_operation(db, unit)
    except LedgerError as exc:
        raise to_http_exception(exc) from exc


def read_or_404(operation: Callable[[], T]) -> T:
    try:
        return operation()
    except LedgerError as exc:
        raise to_http_exception(exc) from exc
