"""Deterministic Bouwdepot rule validation"""

from abc import ABC, abstractmethod
from bouwdepot_validator.constants import IssueSeverity
from bouwdepot_validator.models.invoice import Invoice
from bouwdepot_validator.models.analysis import LineItemAnalysis
from bouwdepot_validator.models.validation import (
    ValidationContext,
    LineItemRuleValidation,
    RuleApplication,
)
from bouwdepot_validator.utils.logging import get_logger

logger = get_logger(__name__)

PERMANENT_ATTACHMENT_KEYWORDS = [
    # Installation terms
    "installatie", "installation", "bevestiging", "montage", "mounting", "securing",
    "vastmaken", "inbouw", "built-in", "integrated", "verankering", "anchoring",
    # Construction and building terms
    "inbouwen", "afwerking", "finishing", "constructie", "construction", "renovatie",
    "renovation", "verbouwing", "remodeling", "opbouw", "vaste", "fixed", "permanente",
    "permanent", "bouwen", "build", "aanbouw", "extension", "opbouwen",
    # Mounting/fixing terms
    "vastschroeven", "screwed in", "verlijmen", "glued", "gemonteerd", "mounted",
    "verwerkt in", "ingebouwd", "vastgezet", "secured",
    # Home parts
    "muur", "wall", "vloer", "floor", "plafond", "ceiling", "dak", "roof",
    "fundering", "foundation", "gevel", "facade", "structureel", "structural",
    "structuur", "structure",
]

QUALITY_IMPROVEMENT_KEYWORDS = [
    "verbetering", "improvement", "upgrade", "renovatie", "renovation",
    "modernisering", "modernization", "verduurzaming", "sustainability",
    "energie", "energy", "isolatie", "insulation", "kwaliteit", "quality",
    "waarde", "value", "installatie", "installation", "verbouwing", "construction",
]

PERMANENT_CATEGORY_HINTS = ["fixed", "installed", "built-in", "structural"]
IMPROVEMENT_CATEGORY_HINTS = ["improvement", "renovation", "upgrade"]


def _contains_any(text: str, keywords) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in keywords)


def is_permanently_attached(description: str, analysis: LineItemAnalysis = None) -> bool:
    if analysis is not None and _contains_any(analysis.category, PERMANENT_CATEGORY_HINTS):
        return True
    return _contains_any(description, PERMANENT_ATTACHMENT_KEYWORDS)


def improves_home_quality(description: str, analysis: LineItemAnalysis = None) -> bool:
    if analysis is not None:
        notes = analysis.notes.lower()
        if "value" in notes and ("increase" in notes or "improve" in notes):
            return True
        if analysis.is_home_improvement:
            return True
        if _contains_any(analysis.category, IMPROVEMENT_CATEGORY_HINTS):
            return True
    return _contains_any(description, QUALITY_IMPROVEMENT_KEYWORDS)


class RuleValidator(ABC):
    """Deterministic rule service"""

    @abstractmethod
    def validate(self, invoice: Invoice, partial: ValidationContext) -> ValidationContext:
        pass


class BouwdepotRuleValidator(RuleValidator):
    """
    Permanent-attachment and quality-improvement rules.

    An invoice complies when at least one line item is both permanently
    attached to the house and improves its quality or value. Oracle line item
    analysis is used when available, otherwise the raw descriptions.
    """

    def validate(self, invoice: Invoice, partial: ValidationContext) -> ValidationContext:
        partial.is_bouwdepot_compliant = False
        result = partial.bouwdepot_validation

        if not invoice.line_items:
            logger.warning(f"No line items available for Bouwdepot validation: {invoice.file_name}")
            partial.add_issue(IssueSeverity.WARNING,
                              "Cannot validate against Bouwdepot rules - no line items available.")
            result.general_validation_notes = "Unable to validate - insufficient line item details available."
            return partial

        analyses = {a.description: a for a in partial.purchase_analysis.line_item_details}

        for item in invoice.line_items:
            analysis = analyses.get(item.description)
            validation = LineItemRuleValidation(description=item.description)
            notes = []

            validation.is_permanently_attached = is_permanently_attached(item.description, analysis)
            if not validation.is_permanently_attached:
                validation.violated_rules.append("PermanentAttachment")
                notes.append("Item does not appear to be permanently attached to the house.")

            validation.improves_home_quality = improves_home_quality(item.description, analysis)
            if not validation.improves_home_quality:
                validation.violated_rules.append("QualityImprovement")
                notes.append("Item does not appear to improve home quality or value.")

            validation.validation_notes = " ".join(notes)
            result.line_item_validations.append(validation)

        result.permanent_attachment_rule = any(v.is_permanently_attached for v in result.line_item_validations)
        result.quality_improvement_rule = any(v.improves_home_quality for v in result.line_item_validations)
        partial.is_bouwdepot_compliant = any(
            v.is_permanently_attached and v.improves_home_quality for v in result.line_item_validations
        )

        partial.audit_report.rule_applications.extend([
            RuleApplication(
                rule_id="BD-PERMANENT-ATTACHMENT",
                rule_name="Permanent attachment",
                rule_description="Purchased items must be permanently attached to the house",
                was_satisfied=result.permanent_attachment_rule
            ),
            RuleApplication(
                rule_id="BD-QUALITY-IMPROVEMENT",
                rule_name="Quality improvement",
                rule_description="Purchased items must improve the quality or value of the house",
                was_satisfied=result.quality_improvement_rule
            ),
        ])

        if not result.permanent_attachment_rule:
            partial.add_issue(IssueSeverity.ERROR,
                              "No items appear to be permanently attached to the house as required by Bouwdepot rules.")
        if not result.quality_improvement_rule:
            partial.add_issue(IssueSeverity.ERROR,
                              "No items appear to improve home quality or value as required by Bouwdepot rules.")

        if partial.is_bouwdepot_compliant:
            logger.info(f"Invoice is compliant with Bouwdepot rules: {invoice.file_name}")
            partial.add_issue(IssueSeverity.INFO, "Invoice contains items that meet the Bouwdepot requirements.")
            result.general_validation_notes = (
                "This invoice contains items that meet the Bouwdepot requirements for home improvements."
            )
        else:
            logger.warning(f"Invoice is not compliant with Bouwdepot rules: {invoice.file_name}")
            partial.add_issue(IssueSeverity.ERROR,
                              "Invoice does not meet the Bouwdepot requirements for home improvements.")
            result.general_validation_notes = (
                "This invoice does not contain items that meet all required Bouwdepot criteria."
            )

        return partial
