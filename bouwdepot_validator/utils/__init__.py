"""Utility modules"""

from .config_loader import load_config, load_settings, PipelineSettings
from .errors import (
    ValidatorError,
    ValidationFailure,
    ExtractionWarning,
    OracleUnavailable,
    AnomalyDetected,
    SigningFailure,
    ConfigurationError,
    StateManagerError,
    LLMError,
    StageExecutionError,
    ContextFrozenError,
    PipelineCancelled
)

__all__ = [
    "load_config",
    "load_settings",
    "PipelineSettings",
    "ValidatorError",
    "ValidationFailure",
    "ExtractionWarning",
    "OracleUnavailable",
    "AnomalyDetected",
    "SigningFailure",
    "ConfigurationError",
    "StateManagerError",
    "LLMError",
    "StageExecutionError",
    "ContextFrozenError",
    "PipelineCancelled"
]
