from __future__ import annotations

from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from onboarding.services.record_crypto import decrypt_document, encrypt_document


class EncryptedJSONDocument(TypeDecorator):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return encrypt_document(value)

    def process_result_value(self, value, dialect):
        return decrypt_document(value)
