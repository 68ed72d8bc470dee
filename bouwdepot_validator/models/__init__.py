"""Data models"""

from .invoice import Invoice, LineItem, PaymentDetails, VisualAnalysis
from .vendor_profile import (
    VendorProfile,
    ServicePattern,
    PriceBucket,
    TrustMetrics,
    AnomalyRecord,
    normalize_vendor_name,
)
from .analysis import (
    OracleVerdict,
    LineItemAnalysis,
    VendorTrustAnalysis,
    PriceAnalysis,
    UnreasonablyPricedItem,
    ServiceAnalysis,
    VendorInsights,
)
from .validation import (
    ValidationContext,
    ValidationIssue,
    ConfidenceFactor,
    FraudDetection,
    FraudIndicator,
    AuditReport,
    ProcessingStep,
    RuleApplication,
    PurchaseAnalysis,
    BouwdepotValidation,
    LineItemRuleValidation,
    DigitalSignature,
)

__all__ = [
    "Invoice",
    "LineItem",
    "PaymentDetails",
    "VisualAnalysis",
    "VendorProfile",
    "ServicePattern",
    "PriceBucket",
    "TrustMetrics",
    "AnomalyRecord",
    "normalize_vendor_name",
    "OracleVerdict",
    "LineItemAnalysis",
    "VendorTrustAnalysis",
    "PriceAnalysis",
    "UnreasonablyPricedItem",
    "ServiceAnalysis",
    "VendorInsights",
    "ValidationContext",
    "ValidationIssue",
    "ConfidenceFactor",
    "FraudDetection",
    "FraudIndicator",
    "AuditReport",
    "ProcessingStep",
    "RuleApplication",
    "PurchaseAnalysis",
    "BouwdepotValidation",
    "LineItemRuleValidation",
    "DigitalSignature",
]
