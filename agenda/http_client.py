"""HTTP client utilities with read retries and connection pooling.

Purpose: Centralize HTTP configuration for the remote backends.

Pattern: requests.Session with a tenacity retry wrapper on GET only.
Mutating calls (POST/PUT/PATCH/DELETE) are sent exactly once: a retried write
could double-book, so retry policy for writes belongs to the caller.
"""
import logging

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from agenda import config

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.HTTPError
)


def create_http_session(
    max_retries: int = config.HTTP_MAX_RETRIES,
    timeout: float = config.HTTP_TIMEOUT_SECONDS
) -> requests.Session:
    """
    Create HTTP session with pooled connections and retried reads.

    Args:
        max_retries: Retry attempts for GET (default: 3, delays 1s, 2s, 4s)
        timeout: Request timeout in seconds applied to every method

    Returns:
        Configured requests.Session
    """
    session = requests.Session()

    adapter = HTTPAdapter(
        max_retries=0,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    original_get = session.get
    original_post = session.post
    original_put = session.put
    original_delete = session.delete

    @retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def get_with_retry(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        response = original_get(*args, **kwargs)
        response.raise_for_status()
        return response

    def post_once(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        return original_post(*args, **kwargs)

    def put_once(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        return original_put(*args, **kwargs)

    def delete_once(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        return original_delete(*args, **kwargs)

    session.get = get_with_retry
    session.post = post_once
    session.put = put_once
    session.delete = delete_once

    return session
