from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from onboarding.core.errors import KeyProvisioningError
from onboarding.models.provisioned_key import ProvisionedKey
from onboarding.services.identity_record import IdentityRecord
from onboarding.services.record_crypto import decrypt_text, encrypt_text

logger = logging.getLogger(__name__)


@dataclass
class KeyReceipt:
    key_id: str
    public_key: str


class KeyProvisioner(Protocol):
    def provision(self, session_key: str, record: IdentityRecord | None) -> KeyReceipt:
        ...


def derive_public_key(private_key_hex: str) -> str:
    # Hash commitment of the secret, the form the shielded-pool circuits consume.
    return hashlib.sha256(bytes.fromhex(private_key_hex)).hexdigest()


class LocalKeyProvisioner:
    """Generates privacy keys server-side and keeps the secret half encrypted.

    A session owns at most one key row; provisioning again replaces it.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def provision(self, session_key: str, record: IdentityRecord | None) -> KeyReceipt:
        if record is None or not record.validate().ok:
            raise KeyProvisioningError("Identity record is not complete; keys cannot be generated")
        private_key = secrets.token_hex(32)
        receipt = KeyReceipt(key_id=f"key_{uuid.uuid4().hex[:24]}", public_key=derive_public_key(private_key))
        try:
            with self._session_factory() as db:
                db.query(ProvisionedKey).filter(ProvisionedKey.session_key == session_key).delete(
                    synchronize_session=False
                )
                db.add(
                    ProvisionedKey(
                        session_key=session_key,
                        key_id=receipt.key_id,
                        public_key=receipt.public_key,
                        private_key_encrypted=encrypt_text(private_key),
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("key_provisioning_failed session=%s error=%s", session_key, exc)
            raise KeyProvisioningError("Failed to store generated keys") from exc
        logger.info("keys_provisioned session=%s key_id=%s", session_key, receipt.key_id)
        return receipt

    def private_key(self, session_key: str) -> str | None:
        with self._session_factory() as db:
            row = db.query(ProvisionedKey).filter(ProvisionedKey.session_key == session_key).first()
            if row is None:
                return None
            return decrypt_text(row.private_key_encrypted)
