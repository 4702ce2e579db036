"""
Transient storage retry.

Connection-level database failures (dropped connections, failover,
"server closed the connection unexpectedly") are retried a bounded number
of times with exponential backoff. Constraint violations and validation
failures are never retried: they are deterministic and a retry would only
repeat them.
"""
import functools
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS = (OperationalError, DisconnectionError)


def run_with_retry(
    operation: Callable[[], T],
    *,
    session: Optional[Session] = None,
    attempts: Optional[int] = None,
    backoff: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run operation, retrying transient storage errors.

    The session (if given) is rolled back between attempts so the next
    attempt starts from a clean transaction.
    """
    settings = get_settings()
    attempts = attempts if attempts is not None else settings.STORAGE_RETRY_ATTEMPTS
    backoff = backoff if backoff is not None else settings.STORAGE_RETRY_BACKOFF_SECONDS
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TRANSIENT_ERRORS as exc:
            if session is not None:
                session.rollback()
            if attempt == attempts:
                logger.error(
                    f"Storage operation failed after {attempts} attempts: {type(exc).__name__}",
                    exc_info=True,
                )
                raise TransientStorageError(attempts=attempts) from exc
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(f"Transient storage error (attempt {attempt}/{attempts}), retrying in {delay:.2f}s")
            sleep(delay)


def retry_on_transient(attempts: Optional[int] = None, backoff: Optional[float] = None):
    """
    Decorator form of run_with_retry.

    When the decorated callable is a method whose instance has a `session`
    attribute, that session is rolled back between attempts.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            session = getattr(args[0], "session", None) if args else None
            if not isinstance(session, Session):
                session = None
            return run_with_retry(
                lambda: func(*args, **kwargs),
                session=session,
                attempts=attempts,
                backoff=backoff,
            )

        return wrapper

    return decorator
