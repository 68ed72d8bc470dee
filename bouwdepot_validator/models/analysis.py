"""Oracle verdict and vendor analysis data models"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional


class LineItemAnalysis(BaseModel):
    """Oracle interpretation of a single line item"""

    description: str
    category: str = ""
    is_home_improvement: bool = False
    confidence: int = Field(0, ge=0, le=100)
    notes: str = ""


class OracleVerdict(BaseModel):
    """Judgment returned by the decision oracle"""

    is_home_improvement: bool = Field(False, description="Purchase relates to home improvement")
    is_valid_invoice: bool = Field(False, description="Document is a genuine, complete invoice")
    confidence: int = Field(0, ge=0, le=100, description="Oracle confidence (0-100)")
    fraud_indicators: List[str] = Field(default_factory=list)
    reasoning: str = ""
    summary: str = ""
    categories: List[str] = Field(default_factory=list)
    line_item_analysis: List[LineItemAnalysis] = Field(default_factory=list)
    undetermined: bool = Field(False, description="Oracle failed and no judgment is available")

    @classmethod
    def undetermined_verdict(cls, reason: str) -> "OracleVerdict":
        return cls(confidence=0, reasoning=reason, undetermined=True)

    class Config:
        json_schema_extra = {
            "example": {
                "is_home_improvement": True,
                "is_valid_invoice": True,
                "confidence": 88,
                "fraud_indicators": [],
                "reasoning": "Bathroom installation is a permanent improvement to the dwelling",
                "categories": ["Bathroom Renovation"]
            }
        }


class VendorTrustAnalysis(BaseModel):
    """Trustworthiness summary of a vendor"""

    overall_trust_score: float = Field(0.5, ge=0, le=1)
    trust_scores: Dict[str, float] = Field(default_factory=dict)
    trust_factors: List[str] = Field(default_factory=list)
    concern_factors: List[str] = Field(default_factory=list)
    invoice_count: int = 0


class UnreasonablyPricedItem(BaseModel):
    description: str
    total_price: float
    unit_price: float
    expected_min_price: float
    expected_max_price: float
    deviation_percentage: float


class PriceAnalysis(BaseModel):
    """Price reasonableness of an invoice against vendor or industry history"""

    unreasonable_prices_detected: bool = False
    unreasonably_priced_items: List[UnreasonablyPricedItem] = Field(default_factory=list)
    max_price_deviation: float = 0.0
    average_price_deviation: float = 0.0
    compared_against: str = Field("vendor", description="vendor or industry")


class ServiceAnalysis(BaseModel):
    """How well invoice services match a vendor's known services"""

    service_pattern_score: float = Field(0.5, ge=0, le=1)
    common_services: List[str] = Field(default_factory=list)
    matching_services: List[str] = Field(default_factory=list)
    unusual_services: List[str] = Field(default_factory=list)
    unusual_services_detected: bool = False


class VendorInsights(BaseModel):
    """Reporting view of a vendor profile"""

    vendor_name: str = ""
    business_categories: List[str] = Field(default_factory=list)
    invoice_count: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    reliability_score: float = 0.5
    price_stability_score: float = 0.5
    document_quality_score: float = 0.5
    unusual_services_detected: bool = False
    unreasonable_prices_detected: bool = False
    total_anomaly_count: int = 0
    vendor_specialties: List[str] = Field(default_factory=list)
