import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.config import settings
from onboarding.main import app
from onboarding.services.sms_service import SmsDeliveryError, _build_otp_message, send_otp_message


class SmsServiceTests(unittest.TestCase):
    def setUp(self):
        self._settings_backup = {
            "APP_ENV": settings.APP_ENV,
            "SMS_PROVIDER": settings.SMS_PROVIDER,
            "SMSAERO_EMAIL": settings.SMSAERO_EMAIL,
            "SMSAERO_API_KEY": settings.SMSAERO_API_KEY,
            "OTP_SMS_TEMPLATE": settings.OTP_SMS_TEMPLATE,
        }

    def tearDown(self):
        for key, value in self._settings_backup.items():
            setattr(settings, key, value)

    def test_dummy_provider_mocks_send(self):
        settings.SMS_PROVIDER = "dummy"
        settings.APP_ENV = "local"
        payload = send_otp_message(phone="+919876543210", code="111111")
        self.assertEqual(payload.get("provider"), "mock_sms")
        self.assertEqual(payload.get("status"), "accepted")
        self.assertFalse(payload.get("sent"))

    def test_mock_provider_refused_in_production(self):
        settings.SMS_PROVIDER = "dummy"
        settings.APP_ENV = "production"
        with self.assertRaises(SmsDeliveryError):
            send_otp_message(phone="+919876543210", code="111111")

    def test_unknown_provider_raises(self):
        settings.SMS_PROVIDER = "unknown"
        with self.assertRaises(SmsDeliveryError):
            send_otp_message(phone="+919876543210", code="111111")

    def test_smsaero_sends_rendered_template(self):
        settings.SMS_PROVIDER = "smsaero"
        settings.OTP_SMS_TEMPLATE = "Code {code} for onboarding"
        with patch("onboarding.services.sms_service._send_sms_aero", return_value={"status": "accepted"}) as send_real:
            payload = send_otp_message(phone="+919876543210", code="222222")
        send_real.assert_called_once_with(phone="+919876543210", message="Code 222222 for onboarding")
        self.assertEqual(payload.get("status"), "accepted")

    def test_broken_template_falls_back_to_default(self):
        settings.OTP_SMS_TEMPLATE = "Code {missing}"
        self.assertEqual(_build_otp_message(code="333333"), "Your verification code: 333333")

    def test_smsaero_without_credentials_fails(self):
        settings.SMS_PROVIDER = "smsaero"
        settings.SMSAERO_EMAIL = ""
        settings.SMSAERO_API_KEY = ""
        with patch("onboarding.services.sms_service._module_available", return_value=True):
            with self.assertRaises(SmsDeliveryError):
                send_otp_message(phone="+919876543210", code="111111")


class SmsProviderHealthTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self._settings_backup = {
            "SMS_PROVIDER": settings.SMS_PROVIDER,
            "SMSAERO_EMAIL": settings.SMSAERO_EMAIL,
            "SMSAERO_API_KEY": settings.SMSAERO_API_KEY,
        }

    def tearDown(self):
        self.client.close()
        for key, value in self._settings_backup.items():
            setattr(settings, key, value)

    def test_sms_provider_health_dummy_mode(self):
        settings.SMS_PROVIDER = "dummy"
        response = self.client.get("/health/sms")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body.get("provider"), "dummy")
        self.assertEqual(body.get("status"), "ok")
        self.assertEqual(body.get("mode"), "mock")
        self.assertTrue(bool(body.get("can_send")))

    def test_sms_provider_health_smsaero_degraded_when_missing_credentials(self):
        settings.SMS_PROVIDER = "smsaero"
        settings.SMSAERO_EMAIL = ""
        settings.SMSAERO_API_KEY = ""
        with patch("onboarding.services.sms_service._module_available", return_value=True):
            response = self.client.get("/health/sms")
        body = response.json()
        self.assertEqual(body.get("status"), "degraded")
        self.assertFalse(bool(body.get("can_send")))
        checks = body.get("checks") or {}
        self.assertTrue(bool(checks.get("smsaero_installed")))
        self.assertFalse(bool(checks.get("email_configured")))

    def test_sms_provider_health_smsaero_ok_when_configured(self):
        settings.SMS_PROVIDER = "smsaero"
        settings.SMSAERO_EMAIL = "ops@example.com"
        settings.SMSAERO_API_KEY = "key"
        with patch("onboarding.services.sms_service._module_available", return_value=True):
            body = self.client.get("/health/sms").json()
        self.assertEqual(body.get("status"), "ok")
        self.assertEqual(body.get("issues"), [])

    def test_sms_provider_health_unknown_provider(self):
        settings.SMS_PROVIDER = "unknown-provider"
        body = self.client.get("/health/sms").json()
        self.assertEqual(body.get("status"), "error")
        self.assertFalse(bool(body.get("can_send")))


if __name__ == "__main__":
    unittest.main()
