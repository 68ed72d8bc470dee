"""Digital signing of finished validation results"""

import hashlib
import hmac
import os
from abc import ABC, abstractmethod
from typing import Optional
from bouwdepot_validator.models.validation import ValidationContext, DigitalSignature
from bouwdepot_validator.utils.errors import ConfigurationError, SigningFailure
from bouwdepot_validator.utils.logging import get_logger

logger = get_logger(__name__)

SIGNED_FIELDS = [
    "validation_id",
    "is_valid",
    "possible_tampering",
    "is_home_improvement",
    "is_bouwdepot_compliant",
    "confidence_score",
    "fraud_detection",
    "issues",
    "audit_report",
]


class SignatureService(ABC):
    """Certifies a validation result and checks certificates"""

    @abstractmethod
    def sign(self, context: ValidationContext) -> ValidationContext:
        """
        Attach a signature and freeze the context.

        Raises:
            SigningFailure: If the context could not be signed
        """
        pass

    @abstractmethod
    def verify(self, context: ValidationContext) -> bool:
        pass


class HmacSignatureService(SignatureService):
    """
    HMAC-SHA256 over the canonical JSON of the result.

    The secret comes from SIGNING_SECRET unless passed explicitly.
    """

    algorithm = "HMAC-SHA256"

    def __init__(self, secret: Optional[str] = None, signer_id: str = "bouwdepot-validator"):
        secret = secret or os.getenv("SIGNING_SECRET")
        if not secret:
            raise ConfigurationError("SIGNING_SECRET environment variable is not set")
        self._key = secret.encode("utf-8")
        self.signer_id = signer_id

    @staticmethod
    def content_hash(context: ValidationContext) -> str:
        return hashlib.sha256(context.content_payload().encode("utf-8")).hexdigest()

    def _mac(self, content_hash: str) -> str:
        return hmac.new(self._key, content_hash.encode("ascii"), hashlib.sha256).hexdigest()

    def sign(self, context: ValidationContext) -> ValidationContext:
        if context.is_frozen:
            raise SigningFailure(f"Validation {context.validation_id} is already signed")

        digest = self.content_hash(context)
        context.signature = DigitalSignature(
            algorithm=self.algorithm,
            signature_value=self._mac(digest),
            signed_fields=list(SIGNED_FIELDS),
            signer_id=self.signer_id,
            content_hash=digest
        )
        context.freeze()

        logger.info("Validation result signed", validation_id=context.validation_id, content_hash=digest)
        return context

    def verify(self, context: ValidationContext) -> bool:
        signature = context.signature
        if signature is None or signature.algorithm != self.algorithm:
            return False

        digest = self.content_hash(context)
        if not hmac.compare_digest(digest, signature.content_hash):
            logger.warning("Content hash mismatch", validation_id=context.validation_id)
            return False
        return hmac.compare_digest(self._mac(digest), signature.signature_value)
