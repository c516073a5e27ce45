# storefront/services/guards.py
import functools

from redis.exceptions import RedisError
from requests import RequestException
from returns.result import Failure
from sqlalchemy.exc import SQLAlchemyError

from storefront.domain.errors import Conflict, StorageError
from storefront.services.lock_service import LockTimeout
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def storage_boundary(operation: str):
    """
    Turns infrastructure exceptions raised by a service method into a Failure.
    The session is rolled back, the raw error only goes to the log.
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except LockTimeout as e:
                self.db.rollback()
                return Failure(Conflict(
                    "The cart is busy, please retry",
                    {"operation": operation, "reason": "lock_timeout", "lock": e.key},
                ))
            except (SQLAlchemyError, RedisError, RequestException):
                logger.exception(f"{operation} failed on infrastructure")
                self.db.rollback()
                return Failure(StorageError(
                    "Temporary infrastructure failure, please retry",
                    {"operation": operation},
                ))

        return wrapper

    return decorator
