# shopcart/utils/retry.py
import redis
import requests
from tenacity import (
    Retrying,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from shopcart.domain.errors import CartVersionConflict


def _is_transient_http_error(exc: BaseException) -> bool:
    #4xx to odpowiedz serwisu a nie awaria, nie ponawiamy
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code >= 500
    return isinstance(exc, requests.RequestException)


def http_retry(max_attempts: int = 3):
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception(_is_transient_http_error),
    )


def redis_retry(max_attempts: int = 3):
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


def conflict_retry(max_attempts: int = 5) -> Retrying:
    """
    Petla retry dla optimistic lockingu.
    Po wyczerpaniu prob tenacity rzuca RetryError (reraise=False).
    """
    return Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=0.01, max=0.2),
        retry=retry_if_exception_type(CartVersionConflict),
    )
