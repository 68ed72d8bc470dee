"""Validation pipeline orchestration"""

from .merger import merge_results
from .pipeline import PipelineOrchestrator
from .stages import PipelineRun, Stage
from .state_manager import ValidationResultStore

__all__ = [
    "merge_results",
    "PipelineOrchestrator",
    "PipelineRun",
    "Stage",
    "ValidationResultStore",
]
