"""Decision oracle: external judgment on home-improvement eligibility"""

import json
from abc import ABC, abstractmethod
from typing import List, Optional
from pydantic import ValidationError as PydanticValidationError
from bouwdepot_validator.constants import DEFAULT_CALL_TIMEOUT_SECONDS
from bouwdepot_validator.models.invoice import Invoice
from bouwdepot_validator.models.analysis import OracleVerdict
from bouwdepot_validator.utils.errors import OracleUnavailable
from bouwdepot_validator.utils.logging import get_logger
from .llm_client import call_llm

logger = get_logger(__name__)

DEFAULT_INSTRUCTIONS = (
    "Decide whether this invoice is a genuine invoice for home improvement work that "
    "qualifies for a Dutch construction fund (bouwdepot). Items must be permanently "
    "attached to the house and improve its quality or value."
)


class DecisionOracle(ABC):
    """Black-box classifier for invoice eligibility"""

    @abstractmethod
    def submit(self, invoice: Invoice, instructions: str,
               page_images: Optional[List[bytes]] = None) -> OracleVerdict:
        """
        Judge an invoice.

        Raises:
            OracleUnavailable: If no verdict could be produced
        """
        pass


def _strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("\n", 1)[-1]  # drop ```json or ``` line
        raw = raw.rsplit("```", 1)[0]  # drop trailing ```
    return raw.strip()


def parse_verdict(response: str) -> OracleVerdict:
    """
    Parse the oracle's JSON answer.

    Raises:
        OracleUnavailable: If the response is not a valid verdict
    """
    try:
        data = json.loads(_strip_code_fences(response))
        return OracleVerdict.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise OracleUnavailable(f"Unparseable oracle response: {e}")


class LLMDecisionOracle(DecisionOracle):
    """Oracle backed by an OpenAI-compatible chat model"""

    def __init__(self, model: Optional[str] = None, timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
                 language_code: str = "nl-NL"):
        self.model = model
        self.timeout = timeout
        self.language_code = language_code

    def build_prompt(self, invoice: Invoice, instructions: str) -> str:
        invoice_json = invoice.model_dump_json(exclude={'raw_text', 'page_images'}, indent=2)
        return f"""
{instructions or DEFAULT_INSTRUCTIONS}

The invoice is written in {self.language_code}. Extracted invoice data:
{invoice_json}

Respond with ONLY a JSON object (no markdown, no explanation):
{{
  "is_home_improvement": true or false,
  "is_valid_invoice": true or false,
  "confidence": 0 to 100,
  "fraud_indicators": ["short description", ...],
  "reasoning": "brief explanation",
  "summary": "what was purchased",
  "categories": ["project category", ...],
  "line_item_analysis": [
    {{"description": "...", "category": "...", "is_home_improvement": true, "confidence": 0 to 100, "notes": "..."}}
  ]
}}
"""

    def submit(self, invoice: Invoice, instructions: str,
               page_images: Optional[List[bytes]] = None) -> OracleVerdict:
        prompt = self.build_prompt(invoice, instructions)
        response = call_llm(
            prompt,
            model=self.model,
            operation="oracle_judgment",
            images=page_images,
            timeout=self.timeout
        )
        verdict = parse_verdict(response)
        logger.info(
            "Oracle verdict received",
            is_home_improvement=verdict.is_home_improvement,
            is_valid_invoice=verdict.is_valid_invoice,
            confidence=verdict.confidence
        )
        return verdict
