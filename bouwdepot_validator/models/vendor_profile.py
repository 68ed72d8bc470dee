"""Vendor profile data model"""

import re
import uuid
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Set
from bouwdepot_validator.constants import AnomalyType, NEUTRAL_TRUST_SCORE
from .invoice import PaymentDetails

_LEGAL_SUFFIXES = re.compile(r"\b(BV|B\.V\.|V\.O\.F\.|VOF|N\.V\.|NV|B\.V|Inc\.|LLC|Ltd\.)\b", re.IGNORECASE)


def normalize_vendor_name(name: str) -> str:
    """
    Normalize a vendor name for identity matching.

    Drops legal entity suffixes, punctuation and repeated whitespace, then lowercases.
    """
    if not name:
        return ""
    normalized = _LEGAL_SUFFIXES.sub("", name)
    normalized = re.sub(r"[^\w\s]", "", normalized)
    return re.sub(r"\s+", " ", normalized).strip().lower()


class ServicePattern(BaseModel):
    """How often a vendor bills a given service"""

    service_name: str
    frequency: int = Field(1, ge=1)
    related_keywords: List[str] = Field(default_factory=list)
    first_seen: datetime = Field(default_factory=datetime.now)
    last_seen: datetime = Field(default_factory=datetime.now)


class PriceBucket(BaseModel):
    """Running unit-price statistics for one item category"""

    item_category: str
    min_price: float
    max_price: float
    average_price: float
    sample_size: int = Field(1, ge=1)


class AnomalyRecord(BaseModel):
    """Anomaly detected for a vendor"""

    anomaly_type: AnomalyType
    description: str
    detected_at: datetime = Field(default_factory=datetime.now)
    severity: float = Field(..., ge=0, le=1)
    resolved: bool = False


class TrustMetrics(BaseModel):
    """Blended trust scores, each in [0, 1]"""

    reliability_score: float = Field(NEUTRAL_TRUST_SCORE, ge=0, le=1)
    consistency_score: float = Field(NEUTRAL_TRUST_SCORE, ge=0, le=1)
    price_stability_score: float = Field(NEUTRAL_TRUST_SCORE, ge=0, le=1)
    document_quality_score: float = Field(NEUTRAL_TRUST_SCORE, ge=0, le=1)
    detected_anomalies: List[AnomalyRecord] = Field(default_factory=list)

    def unresolved_anomalies(self) -> List[AnomalyRecord]:
        return [a for a in self.detected_anomalies if not a.resolved]


class VendorProfile(BaseModel):
    """Behavioral profile of a vendor built from its invoices"""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    vendor_name: str = ""
    normalized_name: str = ""
    kvk_number: str = ""
    vat_number: str = ""
    known_addresses: Set[str] = Field(default_factory=set)
    payment_details: List[PaymentDetails] = Field(default_factory=list)
    business_categories: List[str] = Field(default_factory=list)
    specialty_services: List[str] = Field(default_factory=list)
    common_services: Dict[str, ServicePattern] = Field(default_factory=dict)
    price_ranges: Dict[str, PriceBucket] = Field(default_factory=dict)
    trust_metrics: TrustMetrics = Field(default_factory=TrustMetrics)
    invoice_count: int = Field(0, ge=0)
    first_seen: datetime = Field(default_factory=datetime.now)
    last_seen: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)

    @property
    def known_ibans(self) -> Set[str]:
        return {p.iban for p in self.payment_details if p.iban}

    class Config:
        json_schema_extra = {
            "example": {
                "vendor_name": "Loodgietersbedrijf De Vries",
                "normalized_name": "loodgietersbedrijf de vries",
                "kvk_number": "87654321",
                "vat_number": "NL987654321B01",
                "specialty_services": ["Leak repair", "Bathroom installation"],
                "price_ranges": {
                    "Bathroom installation": {
                        "item_category": "Bathroom installation",
                        "min_price": 2500.0,
                        "max_price": 7500.0,
                        "average_price": 4200.0,
                        "sample_size": 5
                    }
                },
                "invoice_count": 8
            }
        }


def tax_id_key(kvk_number: str, vat_number: str) -> str:
    """Index key for tax identifiers; KvK wins over VAT"""
    if kvk_number:
        return f"KVK:{kvk_number}"
    if vat_number:
        return f"VAT:{vat_number}"
    return ""
