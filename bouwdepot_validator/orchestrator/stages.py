"""Pipeline stages for invoice validation"""

import threading
from abc import ABC, abstractmethod
from typing import List, Optional
from bouwdepot_validator.constants import IssueSeverity, FraudIndicatorCategory, FraudRiskLevel, ProcessingStepStatus
from bouwdepot_validator.models.invoice import Invoice
from bouwdepot_validator.models.analysis import OracleVerdict
from bouwdepot_validator.models.vendor_profile import VendorProfile, AnomalyRecord
from bouwdepot_validator.models.validation import ValidationContext, ConfidenceFactor, FraudIndicator
from bouwdepot_validator.tools.extraction import SubmittedDocument, DocumentExtractor, TamperingDetector
from bouwdepot_validator.tools.oracle import DecisionOracle, DEFAULT_INSTRUCTIONS
from bouwdepot_validator.tools.rules import RuleValidator
from bouwdepot_validator.tools.signing import SignatureService
from bouwdepot_validator.vendors.trust_engine import VendorTrustEngine
from bouwdepot_validator.utils.config_loader import PipelineSettings
from bouwdepot_validator.utils.errors import ExtractionWarning, LLMError, OracleUnavailable, SigningFailure
from bouwdepot_validator.utils.logging import get_logger
from bouwdepot_validator.utils.metrics import oracle_unavailable, anomalies_detected, signing_failures
from .merger import merge_results, seed_partial
from .retry_handler import retry_with_exponential_backoff

logger = get_logger(__name__)

TAMPERING_MESSAGE = "PDF tampering detected. This file may have been modified."
ORACLE_UNAVAILABLE_MESSAGE = "Decision oracle unavailable; continuing with rule-based validation only."
SIGNING_FAILURE_MESSAGE = "Validation result could not be digitally signed; the result is not certified."
PROFILE_COMMIT_FAILURE_MESSAGE = "Vendor profile could not be updated with this invoice."

# Transient failures; any other exception is raised on the first attempt
ORACLE_RETRY_ON = (LLMError, OracleUnavailable, TimeoutError, ConnectionError)
SIGNING_RETRY_ON = (SigningFailure, TimeoutError, ConnectionError)

MISSING_FIELD_MESSAGES = {
    'invoice_number': "Invoice number could not be extracted",
    'invoice_date': "Invoice date could not be extracted",
    'total_amount': "Invoice total amount could not be extracted",
}

LINE_ITEM_FACTOR_STEP = 5
LINE_ITEM_FACTOR_CAP = 20


def line_item_factors(improving: int, other: int) -> List[ConfidenceFactor]:
    """Confidence factors for the oracle's per-line-item judgment: +/-5 per item, capped at 20"""
    factors = []
    if improving:
        factors.append(ConfidenceFactor(
            factor_name=f"Contains {improving} home improvement items",
            impact=min(improving * LINE_ITEM_FACTOR_STEP, LINE_ITEM_FACTOR_CAP),
            explanation="Line items contain terms commonly associated with home improvement"
        ))
    if other:
        factors.append(ConfidenceFactor(
            factor_name=f"Contains {other} non-home improvement items",
            impact=-min(other * LINE_ITEM_FACTOR_STEP, LINE_ITEM_FACTOR_CAP),
            explanation="Line items contain terms not typically associated with permanent home improvements"
        ))
    return factors


class PipelineRun:
    """Mutable state shared by the stages of one validation run"""

    def __init__(self, context: ValidationContext, document: SubmittedDocument,
                 settings: PipelineSettings, cancel_event: Optional[threading.Event] = None):
        self.context = context
        self.document = document
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self.log = logger.bind(validation_id=context.validation_id, file_name=document.file_name)

        self.invoice: Optional[Invoice] = None
        self.page_images: List[bytes] = []

        # Vendor profile as resolved, and a frozen copy taken before any mutation
        self.profile: Optional[VendorProfile] = None
        self.profile_created = False
        self.snapshot: Optional[VendorProfile] = None

        # Buffered mutation, committed before signing unless the run crashed or was cancelled
        self.pending_profile: Optional[VendorProfile] = None
        self.profile_update_context: Optional[ValidationContext] = None
        self.anomalies: List[AnomalyRecord] = []

        self.oracle_undetermined = False
        self.halted = False
        self.crashed = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class Stage(ABC):
    """
    One step of the validation pipeline.

    Terminal stages still run after an earlier stage crashed, so an invalid
    result is still certified.
    """

    name = "Stage"
    description = ""
    terminal = False

    @abstractmethod
    def execute(self, run: PipelineRun) -> None:
        pass

    def can_skip(self, run: PipelineRun) -> bool:
        return False


class TamperingCheckStage(Stage):
    name = "TamperingCheck"
    description = "Check document metadata for signs of modification"

    def __init__(self, detector: TamperingDetector):
        self.detector = detector

    def execute(self, run: PipelineRun) -> None:
        if not self.detector.detect_tampering(run.document):
            return

        run.log.warning("Tampering detected")
        run.context.is_valid = False
        run.context.possible_tampering = True
        run.context.add_issue(IssueSeverity.ERROR, TAMPERING_MESSAGE)
        run.halted = True


class ExtractionStage(Stage):
    name = "Extraction"
    description = "Extract structured invoice data"

    def __init__(self, extractor: DocumentExtractor):
        self.extractor = extractor

    def execute(self, run: PipelineRun) -> None:
        invoice = self.extractor.extract(run.document)
        run.invoice = invoice
        run.context.extracted_invoice = invoice

        missing = invoice.missing_critical_fields()
        if missing:
            logger.warning(f"Failed to extract critical invoice fields from {invoice.file_name}: {missing}")
        for field in missing:
            run.context.add_issue(IssueSeverity.WARNING, MISSING_FIELD_MESSAGES[field])

        if run.settings.use_multimodal_analysis:
            try:
                run.page_images = self.extractor.extract_page_images(run.document)
            except ExtractionWarning as e:
                run.context.add_issue(IssueSeverity.WARNING, str(e))
                run.page_images = []


class VendorLookupStage(Stage):
    name = "VendorLookup"
    description = "Resolve or create the vendor profile"

    def __init__(self, engine: VendorTrustEngine):
        self.engine = engine

    def can_skip(self, run: PipelineRun) -> bool:
        return not run.settings.enable_vendor_profiling or run.invoice is None

    def execute(self, run: PipelineRun) -> None:
        profile, created = self.engine.get_or_create_profile(run.invoice)
        run.profile = profile
        run.profile_created = created
        run.snapshot = profile.model_copy(deep=True)
        run.context.vendor_profile_id = profile.id

        run.log.info(
            "Vendor profile resolved",
            vendor_name=profile.vendor_name,
            vendor_id=profile.id,
            created=created,
            invoice_count=profile.invoice_count
        )


class JudgmentStage(Stage):
    name = "Judgment"
    description = "Submit the invoice to the decision oracle"

    def __init__(self, oracle: DecisionOracle, instructions: str = DEFAULT_INSTRUCTIONS):
        self.oracle = oracle
        self.instructions = instructions

    def can_skip(self, run: PipelineRun) -> bool:
        return run.invoice is None

    def execute(self, run: PipelineRun) -> None:
        settings = run.settings
        retry = settings.oracle_retry
        try:
            verdict = retry_with_exponential_backoff(
                self.oracle.submit,
                retry.max_retries,
                retry.base_delay,
                retry.max_delay,
                run.invoice,
                self.instructions,
                run.page_images or None,
                timeout=settings.oracle_timeout_seconds,
                retry_on=ORACLE_RETRY_ON,
                error_cls=OracleUnavailable,
                cancel_event=run.cancel_event
            )
        except OracleUnavailable as e:
            run.log.warning(f"Decision oracle unavailable: {e}")
            oracle_unavailable.inc()
            verdict = OracleVerdict.undetermined_verdict(str(e))

        if run.cancelled:
            run.log.info("Discarding oracle verdict of cancelled run")
            return

        partial = self.partial_from_verdict(verdict, run.context, settings.approval_threshold)
        run.oracle_undetermined = verdict.undetermined
        merge_results(run.context, partial)

        report = run.context.audit_report
        if not report.executive_summary:
            report.executive_summary = partial.audit_report.executive_summary

    @staticmethod
    def partial_from_verdict(verdict: OracleVerdict, context: ValidationContext,
                             approval_threshold: int) -> ValidationContext:
        """Translate an oracle verdict into a partial validation result"""
        partial = seed_partial(context)

        if verdict.undetermined:
            partial.is_home_improvement = False
            partial.confidence_score = 0
            partial.meets_approval_threshold = False
            partial.oracle_reasoning = verdict.reasoning
            partial.add_issue(IssueSeverity.WARNING, ORACLE_UNAVAILABLE_MESSAGE)
            return partial

        partial.is_valid = verdict.is_valid_invoice
        partial.is_home_improvement = verdict.is_home_improvement
        partial.confidence_score = verdict.confidence
        partial.meets_approval_threshold = (
            verdict.is_valid_invoice
            and verdict.is_home_improvement
            and verdict.confidence >= approval_threshold
        )
        partial.oracle_reasoning = verdict.reasoning

        analysis = partial.purchase_analysis
        analysis.summary = verdict.summary
        analysis.categories = list(verdict.categories)
        analysis.primary_purpose = verdict.categories[0] if verdict.categories else ""
        analysis.line_item_details = [item.model_copy() for item in verdict.line_item_analysis]
        if verdict.line_item_analysis:
            improving = sum(1 for item in verdict.line_item_analysis if item.is_home_improvement)
            analysis.home_improvement_percentage = round(100.0 * improving / len(verdict.line_item_analysis), 1)
            for factor in line_item_factors(improving, len(verdict.line_item_analysis) - improving):
                partial.add_confidence_factor(factor)
        partial.audit_report.executive_summary = verdict.summary or verdict.reasoning

        for text in verdict.fraud_indicators:
            partial.add_fraud_indicator(FraudIndicator(
                indicator_name="OracleFraudIndicator",
                description=text,
                severity=0.5,
                category=FraudIndicatorCategory.CONTENT_INCONSISTENCY,
                evidence="Reported by the decision oracle"
            ))
            partial.add_issue(IssueSeverity.WARNING, f"Possible fraud indicator: {text}")

        if verdict.is_valid_invoice and verdict.is_home_improvement:
            partial.add_issue(IssueSeverity.INFO,
                              f"Valid home improvement invoice with {verdict.confidence}% confidence")
        elif verdict.is_valid_invoice:
            partial.add_issue(IssueSeverity.WARNING, "Valid invoice but does not appear to be for home improvements")
        else:
            partial.add_issue(IssueSeverity.ERROR, "Document does not appear to be a valid invoice")

        return partial


class RuleValidationStage(Stage):
    name = "RuleValidation"
    description = "Apply the deterministic Bouwdepot rules"

    def __init__(self, validator: RuleValidator):
        self.validator = validator

    def can_skip(self, run: PipelineRun) -> bool:
        context = run.context
        if run.invoice is None or not context.is_valid:
            return True
        return not (context.is_home_improvement or run.oracle_undetermined)

    def execute(self, run: PipelineRun) -> None:
        partial = self.validator.validate(run.invoice, seed_partial(run.context))
        merge_results(run.context, partial)

        # The audit report already holds processing steps, so rule outcomes are appended
        applied = run.context.audit_report.rule_applications
        for rule in partial.audit_report.rule_applications:
            if rule not in applied:
                applied.append(rule.model_copy())


class ProfileUpdateStage(Stage):
    name = "ProfileUpdate"
    description = "Fold the invoice into a buffered copy of the vendor profile"

    def __init__(self, engine: VendorTrustEngine):
        self.engine = engine

    def can_skip(self, run: PipelineRun) -> bool:
        return not run.settings.enable_vendor_profiling or run.profile is None

    def execute(self, run: PipelineRun) -> None:
        run.profile_update_context = run.context.model_copy(deep=True)
        run.pending_profile = self.engine.apply_invoice(run.profile, run.invoice, run.profile_update_context)
        logger.debug(f"Buffered profile update for {run.pending_profile.vendor_name}")


class AnomalyDetectionStage(Stage):
    name = "AnomalyDetection"
    description = "Compare the invoice against the vendor's history"

    def __init__(self, engine: VendorTrustEngine):
        self.engine = engine

    def can_skip(self, run: PipelineRun) -> bool:
        settings = run.settings
        return not (settings.enable_vendor_profiling and settings.detect_fraud) or run.snapshot is None

    def execute(self, run: PipelineRun) -> None:
        context = run.context
        snapshot = run.snapshot

        anomalies = self.engine.detect_anomalies(run.invoice, snapshot)
        run.anomalies = anomalies
        for anomaly in anomalies:
            anomalies_detected.labels(anomaly_type=anomaly.anomaly_type.value).inc()
            context.detected_anomalies.append(anomaly)
            context.add_issue(IssueSeverity.WARNING, f"Vendor anomaly: {anomaly.description}")

        fraud = context.fraud_detection
        indicators = self.engine.fraud_indicators(anomalies)
        for indicator in indicators:
            context.add_fraud_indicator(indicator)
        fraud.fraud_risk_score = self.engine.apply_fraud_points(fraud.fraud_risk_score, len(indicators))
        fraud.risk_level = FraudRiskLevel.from_score(fraud.fraud_risk_score)
        if fraud.risk_level in (FraudRiskLevel.HIGH, FraudRiskLevel.CRITICAL):
            fraud.requires_manual_review = True
            fraud.recommended_action = "Manual review required before disbursement"

        price_analysis = self.engine.analyze_prices(run.invoice, snapshot)
        service_analysis = self.engine.analyze_services(run.invoice, snapshot)
        context.vendor_insights = self.engine.vendor_insights(snapshot, price_analysis, service_analysis)

        for item in price_analysis.unreasonably_priced_items:
            context.add_issue(
                IssueSeverity.WARNING,
                f"Unusual price for '{item.description}': {item.unit_price:.2f} is outside the expected "
                f"range {item.expected_min_price:.2f}-{item.expected_max_price:.2f}"
            )

        trust = self.engine.analyze_trust(snapshot)
        report = context.audit_report
        report.approval_factors.extend(f for f in trust.trust_factors if f not in report.approval_factors)
        report.concern_factors.extend(f for f in trust.concern_factors if f not in report.concern_factors)

        if anomalies:
            run.log.warning(
                "Vendor anomalies detected",
                vendor_name=snapshot.vendor_name,
                anomaly_count=len(anomalies),
                fraud_risk_score=fraud.fraud_risk_score
            )


class SigningStage(Stage):
    name = "Signing"
    description = "Sign and freeze the validation result"
    terminal = True

    def __init__(self, signer: SignatureService):
        self.signer = signer

    def can_skip(self, run: PipelineRun) -> bool:
        return not run.settings.signing_enabled

    def _sign_copy(self, context: ValidationContext) -> ValidationContext:
        # Each attempt signs its own copy; an abandoned attempt cannot freeze the live result
        candidate = context.model_copy(deep=True)
        candidate.add_processing_step(self.name, self.description, ProcessingStepStatus.SUCCESS)
        return self.signer.sign(candidate)

    def execute(self, run: PipelineRun) -> None:
        retry = run.settings.signing_retry
        try:
            run.context = retry_with_exponential_backoff(
                self._sign_copy,
                retry.max_retries,
                retry.base_delay,
                retry.max_delay,
                run.context,
                timeout=run.settings.signing_timeout_seconds,
                retry_on=SIGNING_RETRY_ON,
                error_cls=SigningFailure,
                cancel_event=run.cancel_event
            )
        except SigningFailure as e:
            run.log.error(f"Signing failed, returning unsigned result: {e}")
            signing_failures.inc()
            run.context.add_issue(IssueSeverity.WARNING, SIGNING_FAILURE_MESSAGE)
