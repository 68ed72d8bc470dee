"""Document extraction and tampering detection"""

import base64
import binascii
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Union
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError
from bouwdepot_validator.models.invoice import Invoice
from bouwdepot_validator.utils.errors import ValidationFailure, ExtractionWarning
from bouwdepot_validator.utils.logging import get_logger

logger = get_logger(__name__)


class SubmittedDocument(BaseModel):
    """Raw document submitted for validation"""

    file_name: str
    content: bytes
    content_type: str = "application/json"
    metadata: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SubmittedDocument":
        path = Path(path)
        try:
            content = path.read_bytes()
        except OSError as e:
            raise ValidationFailure(f"Cannot read document {path}: {e}")
        return cls(file_name=path.name, content=content)


class DocumentExtractor(ABC):
    """Turns a submitted document into structured invoice data"""

    @abstractmethod
    def extract(self, document: SubmittedDocument) -> Invoice:
        """
        Raises:
            ValidationFailure: If the document cannot be read at all
        """
        pass

    @abstractmethod
    def extract_page_images(self, document: SubmittedDocument) -> List[bytes]:
        """
        Raises:
            ExtractionWarning: If page images are present but unusable
        """
        pass


class TamperingDetector(ABC):
    """Checks a document for signs of modification"""

    @abstractmethod
    def detect_tampering(self, document: SubmittedDocument) -> bool:
        pass


class JsonDocumentExtractor(DocumentExtractor, TamperingDetector):
    """
    Reads documents that were already extracted upstream.

    Expected layout:
        {
            "metadata": {"CreationDate": "...", "ModDate": "...", "Author": "...", "Producer": "..."},
            "invoice": {... Invoice fields ...},
            "page_images": ["<base64 png>", ...]
        }
    """

    def _load(self, document: SubmittedDocument) -> Dict[str, Any]:
        try:
            payload = json.loads(document.content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationFailure(f"Unreadable document {document.file_name}: {e}")
        if not isinstance(payload, dict):
            raise ValidationFailure(f"Unreadable document {document.file_name}: expected a JSON object")
        return payload

    def extract(self, document: SubmittedDocument) -> Invoice:
        payload = self._load(document)
        data = dict(payload.get("invoice") or {})
        data.setdefault("file_name", document.file_name)
        data.setdefault("page_count", len(payload.get("page_images") or []))

        try:
            invoice = Invoice.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationFailure(f"Invalid invoice data in {document.file_name}: {e}")

        logger.info(
            "Invoice extracted",
            file_name=document.file_name,
            invoice_number=invoice.invoice_number,
            line_items=len(invoice.line_items)
        )
        return invoice

    def extract_page_images(self, document: SubmittedDocument) -> List[bytes]:
        payload = self._load(document)
        images = []
        for index, encoded in enumerate(payload.get("page_images") or []):
            try:
                images.append(base64.b64decode(encoded, validate=True))
            except (binascii.Error, TypeError) as e:
                raise ExtractionWarning(f"Page image {index + 1} of {document.file_name} could not be decoded: {e}")
        return images

    def detect_tampering(self, document: SubmittedDocument) -> bool:
        metadata = dict(self._load(document).get("metadata") or {})
        metadata.update(document.metadata)

        creation_date = metadata.get("CreationDate")
        mod_date = metadata.get("ModDate")
        if creation_date and mod_date and creation_date != mod_date:
            logger.warning("Possible tampering detected: creation and modification dates differ",
                           file_name=document.file_name)
            return True

        for key in ("Author", "Producer"):
            if ";" in (metadata.get(key) or ""):
                logger.warning(f"Possible tampering detected: multiple values for {key}",
                               file_name=document.file_name)
                return True

        return False
