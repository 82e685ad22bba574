"""Renewal error taxonomy and the bounded retry helper for DNS provider calls."""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenewalError(Exception):
    """Base class for every failure the orchestrator records on an operation."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(RenewalError):
    """Malformed connection configuration. Never retried."""


class DNSProviderError(RenewalError):
    """DNS provider API auth/availability failure. Retried with backoff."""


class PropagationTimeout(RenewalError):
    """Challenge record was not observed within the polling budget."""


class IssuerError(RenewalError):
    """ACME-side rejection. Never retried; the issuer's detail is kept verbatim."""

    def __init__(self, message: str, details: Optional[dict] = None,
                 rate_limited: bool = False):
        super().__init__(message, details)
        self.rate_limited = rate_limited


class DeploymentError(RenewalError):
    """Target-specific upload or restart failure."""


class CancelledError(RenewalError):
    """Operation stopped by request. Distinct from failure."""


class ConflictError(RenewalError):
    """A renewal is already active for the connection."""


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = 3,
    backoff: float = 2.0,
    retry_on: tuple = (DNSProviderError,),
    cancel_event: Optional[threading.Event] = None,
    description: str = "operation",
) -> T:
    """Call ``func`` until it succeeds or ``attempts`` are used up.

    Only exceptions in ``retry_on`` are retried; the delay doubles after each
    failure. When ``cancel_event`` is given the sleep is interruptible and a
    set event raises CancelledError instead of retrying.
    """
    attempts = max(1, attempts)
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as exc:
            if attempt >= attempts:
                logger.error("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                description, attempt, attempts, exc, delay,
            )
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise CancelledError("Operation cancelled") from exc
            else:
                time.sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
