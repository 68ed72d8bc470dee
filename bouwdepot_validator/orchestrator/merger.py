"""Merging of partially populated validation results"""

from bouwdepot_validator.models.validation import ValidationContext

# Verdict scalars: the later (source) result is authoritative
SCALAR_FIELDS = (
    'is_valid',
    'is_home_improvement',
    'is_bouwdepot_compliant',
    'confidence_score',
    'meets_approval_threshold',
)

# Structured blocks: the first non-empty writer wins
OBJECT_FIELDS = ('fraud_detection', 'audit_report', 'purchase_analysis', 'bouwdepot_validation')

# Optional values copied only while the target has none
OPTIONAL_FIELDS = ('extracted_invoice', 'vendor_profile_id', 'vendor_insights')


def merge_results(target: ValidationContext, source: ValidationContext) -> ValidationContext:
    """
    Fold source into target without losing locally raised information.

    Scalars are overwritten by source. Issues and confidence factors are
    appended, skipping duplicates. Object blocks are copied from source only
    while the target's block is still empty. An Error issue anywhere keeps the
    merged result invalid.

    Args:
        target: Result being built up (mutated in place)
        source: Partial result to fold in

    Returns:
        target
    """
    for field in SCALAR_FIELDS:
        setattr(target, field, getattr(source, field))

    if source.possible_tampering:
        target.possible_tampering = True
    if source.oracle_reasoning:
        target.oracle_reasoning = source.oracle_reasoning

    for issue in source.issues:
        target.add_issue(issue.severity, issue.message)

    for factor in source.confidence_factors:
        target.add_confidence_factor(factor.model_copy())

    for field in OBJECT_FIELDS:
        source_block = getattr(source, field)
        if getattr(target, field).is_empty() and not source_block.is_empty():
            setattr(target, field, source_block.model_copy(deep=True))

    for field in OPTIONAL_FIELDS:
        value = getattr(source, field)
        if getattr(target, field) is None and value is not None:
            setattr(target, field, value.model_copy(deep=True) if hasattr(value, 'model_copy') else value)

    for anomaly in source.detected_anomalies:
        if anomaly not in target.detected_anomalies:
            target.detected_anomalies.append(anomaly.model_copy())

    if target.has_errors():
        target.is_valid = False

    return target


def seed_partial(context: ValidationContext) -> ValidationContext:
    """
    Fresh partial result carrying the current verdict scalars and purchase
    analysis, for collaborators that refine rather than replace the verdict.
    """
    partial = ValidationContext(validation_id=context.validation_id)
    for field in SCALAR_FIELDS:
        setattr(partial, field, getattr(context, field))
    partial.purchase_analysis = context.purchase_analysis.model_copy(deep=True)
    return partial
