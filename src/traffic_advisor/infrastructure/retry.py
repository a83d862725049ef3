"""Retry with exponential backoff for collaborator calls (fleet directory, redis, database).

Only transient failures are retried; everything else propagates on the first attempt.
"""
from __future__ import annotations
import logging
import redis
import requests
from sqlalchemy.exc import OperationalError
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential
from traffic_advisor.config import get_settings
from traffic_advisor.errors import CollaboratorUnavailable
from traffic_advisor.infrastructure.metrics import COLLABORATOR_RETRIES

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    OperationalError,
    CollaboratorUnavailable,
)


def retrying(operation: str) -> Retrying:
    settings = get_settings()
    log_retry = before_sleep_log(logger, logging.WARNING)

    def _before_sleep(retry_state):
        COLLABORATOR_RETRIES.labels(operation=operation).inc()
        log_retry(retry_state)

    return Retrying(
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential(multiplier=0.1, max=settings.retry_max_delay_sec),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=_before_sleep,
        reraise=True,
    )
