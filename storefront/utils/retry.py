# storefront/utils/retry.py
import requests
import redis
from tenacity import retry, retry_if_exception, retry_if_exception_type, stop_after_attempt, wait_exponential


def _transient_http(exc: BaseException) -> bool:
    # a 4xx from the catalog will not change on retry
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        return response is None or response.status_code >= 500
    return isinstance(exc, requests.RequestException)


def http_retry(attempts: int = 3):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception(_transient_http),
    )


def redis_retry(attempts: int = 3):
    return retry(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
