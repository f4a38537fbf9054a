import base64
import os
import unittest
from unittest.mock import patch

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.config import settings
from onboarding.services.record_crypto import (
    RecordCryptoError,
    decrypt_document,
    decrypt_text,
    encrypt_document,
    encrypt_text,
    is_encrypted,
)


class RecordCryptoTests(unittest.TestCase):
    def test_text_is_sealed_with_fresh_nonce(self):
        first = encrypt_text("0xsecretwallet")
        second = encrypt_text("0xsecretwallet")
        self.assertTrue(is_encrypted(first))
        self.assertNotEqual(first, second)
        self.assertNotIn("0xsecretwallet", first)
        self.assertEqual(decrypt_text(first), "0xsecretwallet")
        self.assertEqual(encrypt_text(first), first)

    def test_plain_and_empty_values_pass_through(self):
        self.assertIsNone(encrypt_text(None))
        self.assertEqual(encrypt_text(""), "")
        self.assertEqual(decrypt_text('{"currentStep": "kyc"}'), '{"currentStep": "kyc"}')
        self.assertIsNone(decrypt_document(None))

    def test_tampered_token_is_rejected(self):
        token = encrypt_text("attack at dawn")
        blob = bytearray(base64.urlsafe_b64decode(token[len("recenc:v1:") :]))
        blob[20] ^= 0x01
        tampered = "recenc:v1:" + base64.urlsafe_b64encode(bytes(blob)).decode("ascii")
        with self.assertRaises(RecordCryptoError):
            decrypt_text(tampered)
        with self.assertRaises(RecordCryptoError):
            decrypt_text("recenc:v1:" + base64.urlsafe_b64encode(b"short").decode("ascii"))
        with self.assertRaises(RecordCryptoError):
            decrypt_text("recenc:v1:%%%")

    def test_other_secret_cannot_open_token(self):
        token = encrypt_text("kyc")
        with patch.object(settings, "DATA_ENCRYPTION_SECRET", "rotated-secret"):
            with self.assertRaises(RecordCryptoError):
                decrypt_text(token)
        with patch.object(settings, "DATA_ENCRYPTION_SECRET", "  "):
            with self.assertRaises(RecordCryptoError):
                encrypt_text("kyc")

    def test_documents_round_trip_as_json_objects(self):
        document = {"version": 1, "walletAddress": "0xabc", "kycData": {"email": "a@example.com"}}
        self.assertEqual(decrypt_document(encrypt_document(document)), document)
        with self.assertRaises(RecordCryptoError):
            decrypt_document(encrypt_text("[1, 2]"))


if __name__ == "__main__":
    unittest.main()
