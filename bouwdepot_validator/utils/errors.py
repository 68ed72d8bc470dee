"""Custom exceptions for the invoice validator"""


class ValidatorError(Exception):
    """Base exception for validator errors"""
    pass


class ValidationFailure(ValidatorError):
    """Fatal validation errors (tampering, unreadable document)"""
    pass


class ExtractionWarning(ValidatorError):
    """Non-fatal extraction problems (missing fields)"""
    pass


class OracleUnavailable(ValidatorError):
    """Decision oracle could not produce a verdict"""
    pass


class AnomalyDetected(ValidatorError):
    """Vendor anomaly that elevates risk without failing the run"""
    pass


class SigningFailure(ValidatorError):
    """Digital signature could not be applied or verified"""
    pass


class ConfigurationError(ValidatorError):
    """Configuration loading errors and missing collaborators"""
    pass


class StateManagerError(ValidatorError):
    """Validation result persistence errors"""
    pass


class LLMError(ValidatorError):
    """LLM API errors"""
    pass


class StageExecutionError(ValidatorError):
    """A pipeline stage raised an unhandled exception"""

    def __init__(self, stage_name: str, cause: Exception):
        self.stage_name = stage_name
        self.cause = cause
        super().__init__(f"{stage_name} failed: {cause}")


class ContextFrozenError(ValidatorError):
    """Attempt to modify a signed validation context"""
    pass


class PipelineCancelled(ValidatorError):
    """The pipeline run was cancelled by the caller"""
    pass
