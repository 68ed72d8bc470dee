"""Constants and enums for the invoice validator"""

from enum import Enum


class IssueSeverity(str, Enum):
    """Validation issue severity levels"""
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"

    @property
    def rank(self) -> int:
        return {IssueSeverity.ERROR: 0, IssueSeverity.WARNING: 1, IssueSeverity.INFO: 2}[self]


class FraudRiskLevel(str, Enum):
    """Fraud risk level derived from the 0-100 risk score"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @classmethod
    def from_score(cls, score: int) -> "FraudRiskLevel":
        if score < 25:
            return cls.LOW
        if score < 50:
            return cls.MEDIUM
        if score < 75:
            return cls.HIGH
        return cls.CRITICAL


class FraudIndicatorCategory(str, Enum):
    """Fraud indicator categories"""
    DOCUMENT_MANIPULATION = "DocumentManipulation"
    CONTENT_INCONSISTENCY = "ContentInconsistency"
    ANOMALOUS_PRICING = "AnomalousPricing"
    VENDOR_ISSUE = "VendorIssue"
    HISTORICAL_PATTERN = "HistoricalPattern"
    DIGITAL_ARTIFACT = "DigitalArtifact"
    CONTEXTUAL_MISMATCH = "ContextualMismatch"
    BEHAVIORAL_FLAG = "BehavioralFlag"


class AnomalyType(str, Enum):
    """Vendor anomaly taxonomy"""
    MISSING_REGISTRATION = "MissingRegistration"
    MISSING_ADDRESS = "MissingAddress"
    ROUND_NUMBERS = "RoundNumbers"
    NEW_BANK_ACCOUNT = "NewBankAccount"
    ACCOUNT_NAME_MISMATCH = "AccountNameMismatch"
    SUSPICIOUSLY_LOW_PRICE = "SuspiciouslyLowPrice"
    SUSPICIOUSLY_HIGH_PRICE = "SuspiciouslyHighPrice"
    UNUSUAL_SERVICES = "UnusualServices"
    NO_SPECIALTY_SERVICES = "NoSpecialtyServices"
    PRICE_INCREASE = "PriceIncrease"
    VALIDATION_WARNING = "ValidationWarning"
    VALIDATION_ERROR = "ValidationError"


class ProcessingStepStatus(str, Enum):
    """Pipeline stage outcome recorded in the audit report"""
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    WARNING = "Warning"
    ERROR = "Error"
    SKIPPED = "Skipped"


class ValidationStatus(str, Enum):
    """Outcome label used for metrics and persisted results"""
    VALID = "valid"
    INVALID = "invalid"
    TAMPERED = "tampered"
    CANCELLED = "cancelled"


# Trust engine defaults
NEUTRAL_TRUST_SCORE = 0.5
MAX_HISTORICAL_WEIGHT = 0.8
HISTORY_SATURATION_INVOICES = 10

# Price reasonableness tolerances
VENDOR_PRICE_TOLERANCE = 0.3
INDUSTRY_PRICE_TOLERANCE = 0.5

# Anomaly detection thresholds
ANOMALY_LOW_PRICE_FACTOR = 0.6
ANOMALY_HIGH_PRICE_FACTOR = 1.4
ANOMALY_PRICE_MIN_DEVIATION = 0.2
ANOMALY_PRICE_MIN_SAMPLES = 2
ROUND_NUMBER_MIN_ITEMS = 3
ROUND_NUMBER_MIN_PRICE = 50
FRAUD_INDICATOR_SEVERITY_THRESHOLD = 0.5
ANOMALY_FRAUD_POINTS = 5
MAX_FRAUD_SCORE = 100

# Overall trust score weights
TRUST_WEIGHTS = {
    'reliability': 0.4,
    'consistency': 0.2,
    'price_stability': 0.2,
    'document_quality': 0.2,
}

# Oracle / signing call limits
DEFAULT_CALL_TIMEOUT_SECONDS = 60
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1
DEFAULT_RETRY_MAX_DELAY = 8

DEFAULT_APPROVAL_THRESHOLD = 70
