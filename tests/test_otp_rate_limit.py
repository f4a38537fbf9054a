import os
import unittest
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.errors import RateLimitError
from onboarding.services.rate_limit import InMemoryRateLimiter, enforce_challenge_request_limit


class OtpRateLimitTests(unittest.TestCase):
    def setUp(self):
        self.limiter = InMemoryRateLimiter()

    def test_in_memory_limiter_counts_within_window(self):
        first = self.limiter.hit("k", limit=2, window_seconds=60)
        second = self.limiter.hit("k", limit=2, window_seconds=60)
        third = self.limiter.hit("k", limit=2, window_seconds=60)
        self.assertTrue(first.allowed)
        self.assertTrue(second.allowed)
        self.assertFalse(third.allowed)
        self.assertEqual(third.current_value, 3)
        self.assertGreater(third.retry_after_seconds, 0)

    def test_request_is_limited_by_phone_across_sessions(self):
        with (
            patch("onboarding.services.rate_limit.settings.OTP_RATE_LIMIT_WINDOW_SECONDS", 60),
            patch("onboarding.services.rate_limit.settings.OTP_REQUEST_RATE_LIMIT", 1),
        ):
            enforce_challenge_request_limit(session_key="device-a", phone_number="9876543210", limiter=self.limiter)
            with self.assertRaises(RateLimitError) as ctx:
                enforce_challenge_request_limit(
                    session_key="device-b",
                    phone_number="9876543210",
                    limiter=self.limiter,
                )
        self.assertEqual(ctx.exception.status_code, 429)
        self.assertGreaterEqual(ctx.exception.retry_after_seconds, 1)

    def test_request_is_limited_by_session_across_phones(self):
        with patch("onboarding.services.rate_limit.settings.OTP_REQUEST_RATE_LIMIT", 1):
            enforce_challenge_request_limit(session_key="device-a", phone_number="9876543210", limiter=self.limiter)
            with self.assertRaises(RateLimitError):
                enforce_challenge_request_limit(
                    session_key="device-a",
                    phone_number="9123456789",
                    limiter=self.limiter,
                )

    def test_distinct_sessions_and_phones_do_not_interfere(self):
        with patch("onboarding.services.rate_limit.settings.OTP_REQUEST_RATE_LIMIT", 1):
            enforce_challenge_request_limit(session_key="device-a", phone_number="9876543210", limiter=self.limiter)
            enforce_challenge_request_limit(session_key="device-b", phone_number="9123456789", limiter=self.limiter)


if __name__ == "__main__":
    unittest.main()
