"""External collaborators: extraction, oracle, rules and signing"""

from .extraction import SubmittedDocument, DocumentExtractor, TamperingDetector, JsonDocumentExtractor
from .oracle import DecisionOracle, LLMDecisionOracle
from .rules import RuleValidator, BouwdepotRuleValidator
from .signing import SignatureService, HmacSignatureService

__all__ = [
    "SubmittedDocument",
    "DocumentExtractor",
    "TamperingDetector",
    "JsonDocumentExtractor",
    "DecisionOracle",
    "LLMDecisionOracle",
    "RuleValidator",
    "BouwdepotRuleValidator",
    "SignatureService",
    "HmacSignatureService",
]
