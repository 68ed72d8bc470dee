"""Tests for the validation context and result merging"""

import pytest
from bouwdepot_validator.constants import (
    IssueSeverity,
    FraudIndicatorCategory,
    ProcessingStepStatus,
    ValidationStatus,
)
from bouwdepot_validator.models.validation import (
    ValidationContext,
    ConfidenceFactor,
    FraudIndicator,
    RuleApplication,
)
from bouwdepot_validator.orchestrator.merger import merge_results, seed_partial
from bouwdepot_validator.utils.errors import ContextFrozenError


def partial_with(*issues, **fields):
    partial = ValidationContext(**fields)
    for severity, message in issues:
        partial.add_issue(severity, message)
    return partial


# Issues

def test_add_issue_deduplicates_on_severity_and_message():
    context = ValidationContext()

    assert context.add_issue(IssueSeverity.WARNING, "Invoice date could not be extracted")
    assert not context.add_issue(IssueSeverity.WARNING, "Invoice date could not be extracted")
    assert context.add_issue(IssueSeverity.ERROR, "Invoice date could not be extracted")

    assert len(context.issues) == 2


def test_error_issue_invalidates():
    context = ValidationContext()
    assert context.is_valid

    context.add_issue(IssueSeverity.WARNING, "something odd")
    assert context.is_valid

    context.add_issue(IssueSeverity.ERROR, "something wrong")
    assert not context.is_valid
    assert context.outcome() == ValidationStatus.INVALID


def test_ranked_issues_errors_first_and_stable():
    context = partial_with(
        (IssueSeverity.INFO, "i1"),
        (IssueSeverity.WARNING, "w1"),
        (IssueSeverity.ERROR, "e1"),
        (IssueSeverity.WARNING, "w2"),
        (IssueSeverity.ERROR, "e2"),
    )

    assert [i.message for i in context.ranked_issues()] == ["e1", "e2", "w1", "w2", "i1"]
    # Insertion order itself is untouched
    assert context.issues[0].message == "i1"


def test_outcome_tampered_wins():
    context = ValidationContext(possible_tampering=True, is_valid=False)
    assert context.outcome() == ValidationStatus.TAMPERED


# Freezing

def test_frozen_context_rejects_mutation():
    context = ValidationContext()
    context.add_issue(IssueSeverity.INFO, "before signing")
    context.freeze()

    assert context.is_frozen
    with pytest.raises(ContextFrozenError):
        context.add_issue(IssueSeverity.ERROR, "after signing")
    with pytest.raises(ContextFrozenError):
        context.is_valid = False
    with pytest.raises(ContextFrozenError):
        context.add_processing_step("Late", "", ProcessingStepStatus.SUCCESS)

    assert context.is_valid
    assert len(context.issues) == 1


def test_copy_of_unfrozen_context_is_mutable():
    context = ValidationContext()
    copy = context.model_copy(deep=True)

    copy.freeze()

    assert not context.is_frozen
    context.add_issue(IssueSeverity.INFO, "still mutable")


# Merging

def test_merge_into_empty_equals_source():
    source = partial_with(
        (IssueSeverity.WARNING, "Possible fraud indicator: altered total"),
        (IssueSeverity.INFO, "Valid home improvement invoice with 88% confidence"),
        is_home_improvement=True,
        confidence_score=88,
        meets_approval_threshold=True,
        oracle_reasoning="bathroom renovation",
    )
    source.purchase_analysis.summary = "Bathroom renovation"
    source.add_fraud_indicator(FraudIndicator(
        indicator_name="OracleFraudIndicator",
        severity=0.5,
        category=FraudIndicatorCategory.CONTENT_INCONSISTENCY
    ))

    target = merge_results(ValidationContext(validation_id=source.validation_id,
                                             validated_at=source.validated_at), source)

    assert target.model_dump(exclude={'audit_report'}) == source.model_dump(exclude={'audit_report'})


def test_merge_keeps_local_issues_and_skips_duplicates():
    target = partial_with(
        (IssueSeverity.WARNING, "Invoice date could not be extracted"),
    )
    source = partial_with(
        (IssueSeverity.WARNING, "Invoice date could not be extracted"),
        (IssueSeverity.INFO, "Valid home improvement invoice with 80% confidence"),
    )

    merge_results(target, source)

    assert [i.message for i in target.issues] == [
        "Invoice date could not be extracted",
        "Valid home improvement invoice with 80% confidence",
    ]


def test_merge_overwrites_scalars():
    target = ValidationContext(is_home_improvement=False, confidence_score=10)
    source = ValidationContext(is_home_improvement=True, confidence_score=90, meets_approval_threshold=True)

    merge_results(target, source)

    assert target.is_home_improvement
    assert target.confidence_score == 90
    assert target.meets_approval_threshold


def test_merge_error_keeps_result_invalid():
    """A source claiming validity cannot clear a locally raised error"""
    target = partial_with((IssueSeverity.ERROR, "RuleValidation failed: boom"))
    source = ValidationContext(is_valid=True)

    merge_results(target, source)

    assert not target.is_valid


def test_merge_source_error_invalidates():
    target = ValidationContext()
    source = partial_with((IssueSeverity.ERROR, "Document does not appear to be a valid invoice"))
    source.is_valid = True

    merge_results(target, source)

    assert not target.is_valid


def test_merge_object_blocks_first_writer_wins():
    target = ValidationContext()
    target.purchase_analysis.summary = "first"
    source = ValidationContext()
    source.purchase_analysis.summary = "second"
    source.bouwdepot_validation.general_validation_notes = "rules ran"

    merge_results(target, source)

    assert target.purchase_analysis.summary == "first"
    assert target.bouwdepot_validation.general_validation_notes == "rules ran"

    # Copied, not aliased
    source.bouwdepot_validation.general_validation_notes = "changed"
    assert target.bouwdepot_validation.general_validation_notes == "rules ran"


def test_merge_tampering_is_sticky():
    target = ValidationContext(possible_tampering=True)
    merge_results(target, ValidationContext())
    assert target.possible_tampering


def test_merge_confidence_factors_deduplicated():
    factor = ConfidenceFactor(factor_name="Vendor history", impact=5, explanation="known vendor")
    target = ValidationContext()
    target.add_confidence_factor(factor)
    source = ValidationContext()
    source.add_confidence_factor(factor)
    source.add_confidence_factor(ConfidenceFactor(factor_name="Round prices", impact=-5))

    merge_results(target, source)

    assert [f.factor_name for f in target.confidence_factors] == ["Vendor history", "Round prices"]


def test_merge_into_frozen_target_raises():
    target = ValidationContext()
    target.freeze()

    with pytest.raises(ContextFrozenError):
        merge_results(target, ValidationContext(confidence_score=50))


# Partials

def test_seed_partial_carries_verdict_and_analysis_only():
    context = partial_with(
        (IssueSeverity.WARNING, "w"),
        is_home_improvement=True,
        confidence_score=77,
    )
    context.purchase_analysis.categories = ["Bathroom"]
    context.audit_report.rule_applications.append(RuleApplication(rule_id="X"))

    partial = seed_partial(context)

    assert partial.validation_id == context.validation_id
    assert partial.is_home_improvement
    assert partial.confidence_score == 77
    assert partial.purchase_analysis.categories == ["Bathroom"]
    assert partial.issues == []
    assert partial.audit_report.is_empty()

    partial.purchase_analysis.categories.append("Kitchen")
    assert context.purchase_analysis.categories == ["Bathroom"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
