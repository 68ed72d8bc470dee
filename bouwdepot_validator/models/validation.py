"""Validation context data model"""

import uuid
from pydantic import BaseModel, Field, PrivateAttr
from datetime import datetime
from typing import Any, List, Optional
from bouwdepot_validator.constants import (
    IssueSeverity,
    FraudRiskLevel,
    FraudIndicatorCategory,
    ProcessingStepStatus,
    ValidationStatus,
)
from bouwdepot_validator.utils.errors import ContextFrozenError
from .invoice import Invoice
from .vendor_profile import AnomalyRecord
from .analysis import LineItemAnalysis, VendorInsights


class ValidationIssue(BaseModel):
    """Issue raised while validating an invoice"""

    severity: IssueSeverity
    message: str

    @property
    def key(self):
        return (self.severity, self.message)


class ConfidenceFactor(BaseModel):
    """Factor that moved the confidence score"""

    factor_name: str
    impact: int = Field(0, ge=-20, le=20, description="Impact on the confidence score")
    explanation: str = ""

    @property
    def key(self):
        return (self.factor_name, self.impact, self.explanation)


class FraudIndicator(BaseModel):
    """Single fraud signal with its evidence"""

    indicator_name: str
    description: str = ""
    severity: float = Field(0.0, ge=0, le=1)
    category: FraudIndicatorCategory
    evidence: str = ""
    affected_elements: List[str] = Field(default_factory=list)


class FraudDetection(BaseModel):
    """Fraud block of a validation result"""

    fraud_risk_score: int = Field(0, ge=0, le=100)
    risk_level: FraudRiskLevel = FraudRiskLevel.LOW
    detected_indicators: List[FraudIndicator] = Field(default_factory=list)
    recommended_action: str = ""
    requires_manual_review: bool = False

    def is_empty(self) -> bool:
        return (
            self.fraud_risk_score == 0
            and not self.detected_indicators
            and not self.recommended_action
            and not self.requires_manual_review
        )


class RuleApplication(BaseModel):
    """Record of one rule evaluated against the invoice"""

    rule_id: str
    rule_name: str = ""
    rule_description: str = ""
    was_satisfied: bool = False
    evidence_reference: str = ""


class ProcessingStep(BaseModel):
    """Timestamped pipeline step in the audit trail"""

    step_name: str
    description: str = ""
    status: ProcessingStepStatus = ProcessingStepStatus.IN_PROGRESS
    timestamp: datetime = Field(default_factory=datetime.now)
    duration_ms: Optional[float] = None


class AuditReport(BaseModel):
    """Audit trail of a validation run"""

    audit_identifier: str = Field(default_factory=lambda: str(uuid.uuid4()))
    executive_summary: str = ""
    rule_applications: List[RuleApplication] = Field(default_factory=list)
    processing_steps: List[ProcessingStep] = Field(default_factory=list)
    approval_factors: List[str] = Field(default_factory=list)
    concern_factors: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.executive_summary
            or self.rule_applications
            or self.processing_steps
            or self.approval_factors
            or self.concern_factors
        )


class PurchaseAnalysis(BaseModel):
    """What was purchased and for which purpose"""

    summary: str = ""
    primary_purpose: str = ""
    categories: List[str] = Field(default_factory=list)
    line_item_details: List[LineItemAnalysis] = Field(default_factory=list)
    home_improvement_percentage: float = 0.0

    def is_empty(self) -> bool:
        return not (self.summary or self.primary_purpose or self.categories or self.line_item_details)


class LineItemRuleValidation(BaseModel):
    """Bouwdepot rule outcome for one line item"""

    description: str
    is_permanently_attached: bool = False
    improves_home_quality: bool = False
    violated_rules: List[str] = Field(default_factory=list)
    validation_notes: str = ""


class BouwdepotValidation(BaseModel):
    """Outcome of the deterministic Bouwdepot rules"""

    quality_improvement_rule: bool = False
    permanent_attachment_rule: bool = False
    general_validation_notes: str = ""
    line_item_validations: List[LineItemRuleValidation] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.quality_improvement_rule
            or self.permanent_attachment_rule
            or self.general_validation_notes
            or self.line_item_validations
        )


class DigitalSignature(BaseModel):
    """Signature certifying a finished validation result"""

    algorithm: str
    signature_value: str
    signed_fields: List[str] = Field(default_factory=list)
    signer_id: str = ""
    signed_at: datetime = Field(default_factory=datetime.now)
    content_hash: str = ""


class ValidationContext(BaseModel):
    """
    Per-invoice validation result.

    Issues are kept in insertion order and deduplicated on (severity, message).
    Adding an Error issue invalidates the result. Once signed, the context is
    frozen and every mutation raises ContextFrozenError.
    """

    validation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    validated_at: datetime = Field(default_factory=datetime.now)
    is_valid: bool = True
    possible_tampering: bool = False
    is_home_improvement: bool = False
    is_bouwdepot_compliant: bool = False
    confidence_score: int = Field(0, ge=0, le=100)
    meets_approval_threshold: bool = False
    extracted_invoice: Optional[Invoice] = None
    vendor_profile_id: Optional[str] = None
    fraud_detection: FraudDetection = Field(default_factory=FraudDetection)
    issues: List[ValidationIssue] = Field(default_factory=list)
    confidence_factors: List[ConfidenceFactor] = Field(default_factory=list)
    audit_report: AuditReport = Field(default_factory=AuditReport)
    purchase_analysis: PurchaseAnalysis = Field(default_factory=PurchaseAnalysis)
    bouwdepot_validation: BouwdepotValidation = Field(default_factory=BouwdepotValidation)
    vendor_insights: Optional[VendorInsights] = None
    detected_anomalies: List[AnomalyRecord] = Field(default_factory=list)
    oracle_reasoning: str = ""
    signature: Optional[DigitalSignature] = None

    _frozen: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name != '_frozen' and self.is_frozen:
            raise ContextFrozenError(f"Cannot set '{name}' on signed validation {self.validation_id}")
        super().__setattr__(name, value)

    @property
    def is_frozen(self) -> bool:
        private = getattr(self, '__pydantic_private__', None) or {}
        return private.get('_frozen', False)

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self.is_frozen:
            raise ContextFrozenError(f"Validation {self.validation_id} is signed and cannot be modified")

    def add_issue(self, severity: IssueSeverity, message: str) -> bool:
        """
        Add an issue unless the same (severity, message) pair is already present.

        Returns:
            True if the issue was added
        """
        self._check_mutable()
        issue = ValidationIssue(severity=severity, message=message)
        if any(existing.key == issue.key for existing in self.issues):
            return False
        self.issues.append(issue)
        if severity == IssueSeverity.ERROR:
            self.is_valid = False
        return True

    def add_confidence_factor(self, factor: ConfidenceFactor) -> bool:
        self._check_mutable()
        if any(existing.key == factor.key for existing in self.confidence_factors):
            return False
        self.confidence_factors.append(factor)
        return True

    def add_processing_step(self, step_name: str, description: str,
                            status: ProcessingStepStatus, duration_ms: Optional[float] = None) -> ProcessingStep:
        self._check_mutable()
        step = ProcessingStep(
            step_name=step_name,
            description=description,
            status=status,
            duration_ms=duration_ms
        )
        self.audit_report.processing_steps.append(step)
        return step

    def add_fraud_indicator(self, indicator: FraudIndicator) -> None:
        self._check_mutable()
        self.fraud_detection.detected_indicators.append(indicator)

    def has_errors(self) -> bool:
        return any(issue.severity == IssueSeverity.ERROR for issue in self.issues)

    def ranked_issues(self) -> List[ValidationIssue]:
        """Issues ordered errors first, then warnings, then info; stable within a severity"""
        return sorted(self.issues, key=lambda issue: issue.severity.rank)

    def outcome(self) -> ValidationStatus:
        if self.possible_tampering:
            return ValidationStatus.TAMPERED
        return ValidationStatus.VALID if self.is_valid else ValidationStatus.INVALID

    def content_payload(self) -> str:
        """Canonical JSON of everything the signature covers"""
        return self.model_dump_json(exclude={'signature'})

    class Config:
        json_schema_extra = {
            "example": {
                "validation_id": "3f1c9a52-0d8e-4a1b-9a3e-2c51f0e7b6d4",
                "is_valid": True,
                "is_home_improvement": True,
                "confidence_score": 86,
                "fraud_detection": {"fraud_risk_score": 5, "risk_level": "Low", "detected_indicators": []},
                "issues": [
                    {"severity": "Warning", "message": "Invoice date could not be extracted"}
                ]
            }
        }
