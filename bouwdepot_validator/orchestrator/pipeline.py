"""Pipeline orchestrator - sequences the validation stages for one invoice"""

import threading
import time
from typing import List, Optional
from bouwdepot_validator.constants import IssueSeverity, ProcessingStepStatus, ValidationStatus
from bouwdepot_validator.models.validation import ValidationContext
from bouwdepot_validator.tools.extraction import SubmittedDocument, DocumentExtractor, TamperingDetector
from bouwdepot_validator.tools.oracle import DecisionOracle, DEFAULT_INSTRUCTIONS
from bouwdepot_validator.tools.rules import RuleValidator
from bouwdepot_validator.tools.signing import SignatureService
from bouwdepot_validator.vendors.trust_engine import VendorTrustEngine
from bouwdepot_validator.utils.config_loader import PipelineSettings
from bouwdepot_validator.utils.errors import (
    ConfigurationError,
    ValidationFailure,
    ExtractionWarning,
    AnomalyDetected,
    PipelineCancelled,
    StageExecutionError,
    StateManagerError,
)
from bouwdepot_validator.utils.metrics import (
    invoices_validated,
    stage_execution_time,
    stage_failures,
    vendor_profile_commits,
)
from .stages import (
    PROFILE_COMMIT_FAILURE_MESSAGE,
    PipelineRun,
    Stage,
    TamperingCheckStage,
    ExtractionStage,
    VendorLookupStage,
    JudgmentStage,
    RuleValidationStage,
    ProfileUpdateStage,
    AnomalyDetectionStage,
    SigningStage,
)
from .state_manager import ValidationResultStore

_STATUS_BY_SEVERITY = {
    IssueSeverity.ERROR: ProcessingStepStatus.ERROR,
    IssueSeverity.WARNING: ProcessingStepStatus.WARNING,
    IssueSeverity.INFO: ProcessingStepStatus.SUCCESS,
}


class PipelineOrchestrator:
    """
    Runs one invoice submission through the validation stages.

    Stage order: tampering check, extraction, vendor lookup, judgment, rule
    validation, profile update, anomaly detection, signing. Stage exceptions
    become Error issues on the result; only configuration errors escape.
    Vendor profile changes are buffered and committed just before signing,
    unless a stage crashed or the run was cancelled. The result then points
    at the profile that was actually stored.
    """

    def __init__(
        self,
        tampering_detector: Optional[TamperingDetector],
        extractor: Optional[DocumentExtractor],
        oracle: Optional[DecisionOracle],
        rule_validator: Optional[RuleValidator],
        trust_engine: Optional[VendorTrustEngine] = None,
        signer: Optional[SignatureService] = None,
        settings: Optional[PipelineSettings] = None,
        result_store: Optional[ValidationResultStore] = None,
        instructions: str = DEFAULT_INSTRUCTIONS
    ):
        self.settings = settings or PipelineSettings()

        required = {
            'tampering_detector': tampering_detector,
            'extractor': extractor,
            'oracle': oracle,
            'rule_validator': rule_validator,
        }
        if self.settings.enable_vendor_profiling:
            required['trust_engine'] = trust_engine
        if self.settings.signing_enabled:
            required['signer'] = signer

        missing = [name for name, collaborator in required.items() if collaborator is None]
        if missing:
            raise ConfigurationError(f"Pipeline is missing required collaborators: {missing}")

        self.trust_engine = trust_engine
        self.result_store = result_store
        self.stages: List[Stage] = [
            TamperingCheckStage(tampering_detector),
            ExtractionStage(extractor),
            VendorLookupStage(trust_engine),
            JudgmentStage(oracle, instructions),
            RuleValidationStage(rule_validator),
            ProfileUpdateStage(trust_engine),
            AnomalyDetectionStage(trust_engine),
            SigningStage(signer),
        ]

    def validate_document(self, document: SubmittedDocument,
                          cancel_event: Optional[threading.Event] = None) -> ValidationContext:
        """Validate a document with a fresh context"""
        return self.execute(ValidationContext(), document, cancel_event)

    def execute(self, context: ValidationContext, document: SubmittedDocument,
                cancel_event: Optional[threading.Event] = None) -> ValidationContext:
        """
        Execute all stages for one submission.

        Args:
            context: Fresh validation context
            document: Submitted document
            cancel_event: Set by the caller to cancel the run

        Returns:
            The final (signed, when signing succeeded) validation context
        """
        if context.is_frozen:
            raise ConfigurationError(f"Validation {context.validation_id} is already signed")

        run = PipelineRun(context, document, self.settings, cancel_event)
        start_time = time.time()
        run.log.info("Starting validation")

        for stage in self.stages:
            if run.cancelled:
                self._cancel(run, stage)
                break

            if run.crashed and not stage.terminal:
                run.context.add_processing_step(stage.name, "Not run after an earlier stage failed",
                                                ProcessingStepStatus.SKIPPED)
                continue

            if stage.terminal:
                self._commit_profile(run)

            if stage.can_skip(run):
                run.context.add_processing_step(stage.name, stage.description, ProcessingStepStatus.SKIPPED)
                continue

            self._run_stage(stage, run)

            if run.halted:
                run.log.warning(f"Pipeline halted after {stage.name}")
                break

        if run.cancelled and run.pending_profile is not None:
            vendor_profile_commits.labels(status='discarded').inc()

        result = run.context
        outcome = ValidationStatus.CANCELLED if run.cancelled else result.outcome()
        invoices_validated.labels(outcome=outcome.value).inc()

        if self.settings.persist_results and self.result_store is not None:
            try:
                self.result_store.save_validation_result(result.validation_id, result)
            except StateManagerError as e:
                run.log.error(f"Could not persist validation result: {e}")

        run.log.info(
            "Validation complete",
            outcome=outcome.value,
            is_valid=result.is_valid,
            issue_count=len(result.issues),
            signed=result.signature is not None,
            duration_seconds=round(time.time() - start_time, 3)
        )
        return result

    def _run_stage(self, stage: Stage, run: PipelineRun) -> None:
        issues_before = len(run.context.issues)
        start = time.time()
        status = None

        try:
            stage.execute(run)
        except PipelineCancelled as e:
            run.log.info(f"{stage.name} interrupted by cancellation: {e}")
            status = ProcessingStepStatus.SKIPPED
        except (ExtractionWarning, AnomalyDetected) as e:
            run.log.warning(f"{stage.name} raised a non-fatal warning: {e}")
            run.context.add_issue(IssueSeverity.WARNING, str(e))
        except ValidationFailure as e:
            run.log.error(f"{stage.name} rejected the document: {e}")
            run.context.add_issue(IssueSeverity.ERROR, str(e))
            run.halted = True
        except ConfigurationError:
            run.log.error(f"{stage.name} aborted on a configuration error", stage=stage.name)
            raise
        except Exception as e:
            error = StageExecutionError(stage.name, e)
            run.log.error(str(error), stage=stage.name, exc_info=True)
            stage_failures.labels(stage_name=stage.name).inc()
            run.context.add_issue(IssueSeverity.ERROR, str(error))
            run.crashed = True
            status = ProcessingStepStatus.ERROR

        duration = time.time() - start
        stage_execution_time.labels(stage_name=stage.name).observe(duration)

        if run.context.is_frozen:
            # Signing records its own step before freezing
            return

        if status is None:
            new_issues = run.context.issues[issues_before:]
            worst = min((issue.severity for issue in new_issues), key=lambda s: s.rank, default=IssueSeverity.INFO)
            status = _STATUS_BY_SEVERITY[worst]
        run.context.add_processing_step(stage.name, stage.description, status, duration_ms=duration * 1000)

    def _cancel(self, run: PipelineRun, stage: Stage) -> None:
        run.log.warning(f"Validation cancelled before {stage.name}")
        run.context.add_issue(IssueSeverity.WARNING, f"Validation was cancelled before the {stage.name} stage")

    def _commit_profile(self, run: PipelineRun) -> None:
        if run.pending_profile is None:
            return
        if run.crashed:
            vendor_profile_commits.labels(status='discarded').inc()
            run.log.info("Discarding buffered vendor profile update after stage failure")
            run.pending_profile = None
            return

        try:
            stored = self.trust_engine.commit_invoice(
                run.invoice,
                run.profile_update_context,
                anomalies=run.anomalies,
                fallback=run.profile if run.profile_created else None
            )
        except Exception as e:
            vendor_profile_commits.labels(status='failed').inc()
            run.log.error(f"Vendor profile commit failed: {e}", vendor_id=run.pending_profile.id, exc_info=True)
            run.context.add_issue(IssueSeverity.WARNING, PROFILE_COMMIT_FAILURE_MESSAGE)
            run.pending_profile = None
            return

        if stored.id != run.context.vendor_profile_id:
            run.log.info("Vendor was stored by a concurrent run", vendor_id=stored.id)
        run.context.vendor_profile_id = stored.id
        run.pending_profile = None
