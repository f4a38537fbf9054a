import os
import unittest
from datetime import datetime, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from onboarding.core.errors import IncompleteData, ValidationError
from onboarding.services.identity_record import IdentityRecord, mask_document_number


class IdentityRecordTests(unittest.TestCase):
    def test_validate_lists_missing_required_fields(self):
        result = IdentityRecord(extracted_data={"full_name": "  ", "date_of_birth": "1990-01-01"}).validate()
        self.assertFalse(result.ok)
        self.assertEqual(result.missing, ["full_name", "id_number"])

        ok = IdentityRecord(extracted_data={"full_name": "Asha", "id_number": "1234"}).validate()
        self.assertTrue(ok.ok)
        self.assertEqual(ok.missing, [])

    def test_require_complete_raises_incomplete_data(self):
        with self.assertRaises(IncompleteData) as ctx:
            IdentityRecord(extracted_data={"id_number": "123456789012"}).require_complete()
        self.assertEqual(ctx.exception.missing, ["full_name"])
        self.assertEqual(ctx.exception.status_code, 422)

    def test_capture_document_records_reference_and_merges_fields(self):
        record = IdentityRecord(extracted_data={"full_name": "Asha"})
        captured_at = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
        doc = record.capture_document(
            "Aadhaar",
            "s3://kyc/aadhaar-front.jpg",
            {"id_number": "123456789012", "full_name": ""},
            captured_at=captured_at,
        )
        self.assertEqual(doc.kind, "aadhaar")
        self.assertEqual(record.documents["aadhaar"].captured_at, captured_at)
        self.assertEqual(record.extracted_data, {"full_name": "Asha", "id_number": "123456789012"})

    def test_capture_document_rejects_unknown_kind_and_blank_reference(self):
        record = IdentityRecord()
        with self.assertRaises(ValidationError):
            record.capture_document("driving_licence_scan", "ref")
        with self.assertRaises(ValidationError):
            record.capture_document("pan", "  ")
        self.assertEqual(record.documents, {})

    def test_masking(self):
        self.assertEqual(mask_document_number("1234 5678 9012"), "XXXX XXXX 9012")
        self.assertEqual(mask_document_number("XXXX XXXX 9012"), "XXXX XXXX 9012")
        self.assertEqual(mask_document_number("12"), "12")
        self.assertIsNone(mask_document_number(None))

        record = IdentityRecord(extracted_data={"full_name": "Asha", "id_number": "123456789012"})
        masked = record.masked()
        self.assertEqual(masked.extracted_data["id_number"], "XXXX XXXX 9012")
        self.assertEqual(record.extracted_data["id_number"], "123456789012")

    def test_contact_validation(self):
        record = IdentityRecord(phone_number="+91 98765 43210", email=" asha@example.com ")
        record.validate_contact()
        self.assertEqual(record.phone_number, "9876543210")
        self.assertEqual(record.email, "asha@example.com")

        with self.assertRaises(ValidationError):
            IdentityRecord(email="not-an-email").validate_contact()
        with self.assertRaises(ValidationError):
            IdentityRecord(phone_number="12345").validate_contact()

    def test_document_round_trip_uses_camel_case_keys(self):
        record = IdentityRecord(email="a@example.com", extracted_data={"full_name": "A"}, verified=True)
        record.capture_document("selfie", "ref-1", captured_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        document = record.to_document()
        self.assertIn("extractedData", document)
        self.assertIn("verificationDate", document)

        restored = IdentityRecord.from_document(document)
        self.assertEqual(restored.documents["selfie"].reference, "ref-1")
        self.assertTrue(restored.verified)
        self.assertIsNone(IdentityRecord.from_document(None))


if __name__ == "__main__":
    unittest.main()
