import os
import unittest
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.config import settings
from onboarding.core.errors import ProviderError
from onboarding.services.code_vault import InMemoryCodeVault
from onboarding.services.sms_service import SmsDeliveryError
from onboarding.services.verification_provider import SmsOtpProvider, generate_code


class SmsOtpProviderTests(unittest.TestCase):
    def setUp(self):
        self.vault = InMemoryCodeVault()
        self.provider = SmsOtpProvider(self.vault, code_length=6, ttl_seconds=30, code_generator=lambda n: "482913")

    def test_generated_codes_have_requested_length(self):
        for _ in range(20):
            code = generate_code(6)
            self.assertEqual(len(code), 6)
            self.assertTrue(code.isdigit())

    def test_send_stores_only_a_hash_and_verifies_once(self):
        with patch.object(settings, "SMS_PROVIDER", "dummy"), patch.object(settings, "APP_ENV", "local"):
            dispatch = self.provider.send_otp("+919876543210")
        self.assertTrue(dispatch.accepted)
        stored = self.vault.get(dispatch.provider_challenge_id)
        self.assertIsNotNone(stored)
        self.assertNotIn("482913", stored)

        self.assertFalse(self.provider.verify_otp(dispatch.provider_challenge_id, "000000"))
        self.assertTrue(self.provider.verify_otp(dispatch.provider_challenge_id, "482913"))
        self.assertFalse(self.provider.verify_otp(dispatch.provider_challenge_id, "482913"))

    def test_unknown_provider_challenge_does_not_verify(self):
        self.assertFalse(self.provider.verify_otp("missing", "482913"))

    def test_delivery_failure_becomes_provider_error(self):
        with patch(
            "onboarding.services.verification_provider.send_otp_message",
            side_effect=SmsDeliveryError("gateway down"),
        ):
            with self.assertRaises(ProviderError) as ctx:
                self.provider.send_otp("+919876543210")
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(self.vault._data, {})

    def test_rejected_delivery_becomes_provider_error(self):
        with patch(
            "onboarding.services.verification_provider.send_otp_message",
            return_value={"provider": "smsaero", "status": "rejected"},
        ):
            with self.assertRaises(ProviderError):
                self.provider.send_otp("+919876543210")
        self.assertEqual(self.vault._data, {})


if __name__ == "__main__":
    unittest.main()
