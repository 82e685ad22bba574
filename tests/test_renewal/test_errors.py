"""Tests for the error taxonomy and retry helper."""

import threading
import unittest
from unittest.mock import MagicMock, patch

from renewal.errors import (
    CancelledError,
    DNSProviderError,
    IssuerError,
    RenewalError,
    ValidationError,
    retry_with_backoff,
)


class TestErrors(unittest.TestCase):

    def test_details_default_to_empty(self):
        err = ValidationError("bad")
        self.assertEqual(err.details, {})
        self.assertEqual(str(err), "bad")
        self.assertIsInstance(err, RenewalError)

    def test_issuer_rate_limited_flag(self):
        self.assertTrue(IssuerError("slow down", rate_limited=True).rate_limited)
        self.assertFalse(IssuerError("rejected").rate_limited)


class TestRetryWithBackoff(unittest.TestCase):

    @patch("renewal.errors.time.sleep")
    def test_retries_provider_errors(self, mock_sleep):
        func = MagicMock(side_effect=[DNSProviderError("503"), DNSProviderError("503"), "ok"])
        self.assertEqual(retry_with_backoff(func, attempts=3, backoff=1), "ok")
        self.assertEqual(func.call_count, 3)
        self.assertEqual([c.args[0] for c in mock_sleep.call_args_list], [1, 2])

    @patch("renewal.errors.time.sleep")
    def test_gives_up_after_attempts(self, mock_sleep):
        func = MagicMock(side_effect=DNSProviderError("down"))
        with self.assertRaises(DNSProviderError):
            retry_with_backoff(func, attempts=2, backoff=1)
        self.assertEqual(func.call_count, 2)

    def test_other_errors_not_retried(self):
        func = MagicMock(side_effect=IssuerError("rateLimited", rate_limited=True))
        with self.assertRaises(IssuerError):
            retry_with_backoff(func, attempts=5)
        self.assertEqual(func.call_count, 1)

    def test_cancel_event_interrupts_backoff(self):
        event = threading.Event()
        event.set()
        func = MagicMock(side_effect=DNSProviderError("down"))
        with self.assertRaises(CancelledError):
            retry_with_backoff(func, attempts=3, backoff=60, cancel_event=event)
        self.assertEqual(func.call_count, 1)


if __name__ == "__main__":
    unittest.main()
