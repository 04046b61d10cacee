from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockledger.config import settings
from stockledger.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar('T')


def run_ledger_operation(db: Session, operation: Callable[[], T], *, retries: int | None = None) -> T:
    """Run ``operation`` and commit it as one unit.

    Lock timeouts, deadlocks, serialization failures and stale row versions are
    retried ``retries`` times (``settings.concurrency_retries`` by default) on a
    fresh transaction before surfacing as ConcurrencyConflict. Every other error
    rolls back and propagates unchanged.
    """
    attempts_left = settings.concurrency_retries if retries is None else retries
    while True:
        try:
            result = operation()
            db.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.rollback()
            if attempts_left <= 0:
                logger.error('Ledger operation gave up after lock contention: %s', exc)
                raise ConcurrencyConflict('The stock record is being updated by another request; try again') from exc
            attempts_left -= 1
            logger.warning('Ledger operation hit lock contention, retrying: %s', exc)
        except Exception:
            db.rollback()
            raise
