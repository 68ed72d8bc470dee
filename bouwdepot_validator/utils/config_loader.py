"""Configuration file loader with validation"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from bouwdepot_validator.constants import (
    DEFAULT_APPROVAL_THRESHOLD,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_DELAY,
)
from .errors import ConfigurationError

# Package data, see [tool.setuptools.package-data]
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "validator.yaml"

REQUIRED_KEYS = ['version', 'pipeline', 'vendor_profiling', 'oracle', 'signing']


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load YAML configuration file with validation.
    Falls back to VALIDATOR_CONFIG, then the bundled bouwdepot_validator/config/validator.yaml.

    Args:
        config_path: Path to configuration file

    Returns:
        Dictionary with configuration

    Raises:
        ConfigurationError: If file doesn't exist or invalid YAML
    """
    config_path = config_path or os.getenv("VALIDATOR_CONFIG") or str(DEFAULT_CONFIG_PATH)

    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error loading configuration: {e}")

    missing_keys = [key for key in REQUIRED_KEYS if key not in config]
    if missing_keys:
        raise ConfigurationError(f"Missing required configuration keys: {missing_keys}")

    return config


class RetrySettings(BaseModel):
    """Bounded retry policy for external calls"""

    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=1, le=5)
    base_delay: float = Field(DEFAULT_RETRY_BASE_DELAY, ge=0)
    max_delay: float = Field(DEFAULT_RETRY_MAX_DELAY, ge=0)


class PipelineSettings(BaseModel):
    """Typed view over the pipeline-relevant configuration"""

    enable_vendor_profiling: bool = True
    use_multimodal_analysis: bool = True
    detect_fraud: bool = True
    approval_threshold: int = Field(DEFAULT_APPROVAL_THRESHOLD, ge=0, le=100)
    language_code: str = "nl-NL"
    oracle_model: Optional[str] = None
    oracle_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    oracle_retry: RetrySettings = Field(default_factory=RetrySettings)
    signing_enabled: bool = True
    signing_timeout_seconds: float = 10
    signer_id: str = "bouwdepot-validator"
    signing_retry: RetrySettings = Field(default_factory=RetrySettings)
    match_strategy: str = "substring"
    token_set_threshold: float = Field(0.85, ge=0, le=1)
    persist_results: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineSettings":
        """Build settings from a loaded configuration dictionary"""
        pipeline = config.get('pipeline', {}) or {}
        profiling = config.get('vendor_profiling', {}) or {}
        oracle = config.get('oracle', {}) or {}
        signing = config.get('signing', {}) or {}

        return cls(
            enable_vendor_profiling=profiling.get('enabled', True),
            use_multimodal_analysis=pipeline.get('use_multimodal_analysis', True),
            detect_fraud=pipeline.get('detect_fraud', True),
            approval_threshold=pipeline.get('approval_threshold', DEFAULT_APPROVAL_THRESHOLD),
            language_code=pipeline.get('language_code', "nl-NL"),
            persist_results=pipeline.get('persist_results', True),
            oracle_model=oracle.get('model'),
            oracle_timeout_seconds=oracle.get('timeout_seconds', DEFAULT_CALL_TIMEOUT_SECONDS),
            oracle_retry=RetrySettings(**(oracle.get('retry') or {})),
            signing_enabled=signing.get('enabled', True),
            signing_timeout_seconds=signing.get('timeout_seconds', 10),
            signer_id=signing.get('signer_id', "bouwdepot-validator"),
            signing_retry=RetrySettings(**(signing.get('retry') or {})),
            match_strategy=profiling.get('match_strategy', "substring"),
            token_set_threshold=profiling.get('token_set_threshold', 0.85),
        )


def load_settings(config_path: Optional[str] = None) -> PipelineSettings:
    """Load configuration and return typed pipeline settings"""
    return PipelineSettings.from_config(load_config(config_path))
