"""Prometheus metrics definitions"""

from prometheus_client import Counter, Histogram


# Pipeline health metrics
invoices_validated = Counter(
    'invoices_validated_total',
    'Invoices run through the validation pipeline',
    labelnames=['outcome']  # valid, invalid, tampered, cancelled
)

stage_execution_time = Histogram(
    'pipeline_stage_execution_seconds',
    'Execution time per pipeline stage',
    labelnames=['stage_name'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 30, 60]
)

stage_failures = Counter(
    'pipeline_stage_failures_total',
    'Unhandled exceptions caught at the orchestrator boundary',
    labelnames=['stage_name']
)

# Oracle cost & usage tracking
llm_tokens_counter = Counter(
    'llm_tokens_used_total',
    'Total LLM tokens consumed',
    labelnames=['model_name', 'operation']
)

llm_cost_counter = Counter(
    'llm_cost_dollars_total',
    'Total LLM cost in USD',
    labelnames=['model_name']
)

llm_api_latency = Histogram(
    'llm_api_latency_seconds',
    'Latency of LLM API calls',
    labelnames=['model_name'],
    buckets=[0.5, 1, 2, 5, 10, 30]
)

oracle_unavailable = Counter(
    'oracle_unavailable_total',
    'Oracle calls that degraded to an undetermined verdict'
)

# Vendor metrics
vendor_profiles_created = Counter(
    'vendor_profiles_created_total',
    'New vendor profiles created on first invoice'
)

vendor_profile_commits = Counter(
    'vendor_profile_commits_total',
    'Buffered vendor profile mutations committed to the store',
    labelnames=['status']  # committed, discarded, failed
)

anomalies_detected = Counter(
    'vendor_anomalies_detected_total',
    'Vendor anomalies detected',
    labelnames=['anomaly_type']
)

# Signing metrics
signing_failures = Counter(
    'signing_failures_total',
    'Validation results returned unsigned'
)

# State store metrics
result_saves = Counter(
    'validation_result_saves_total',
    'Number of validation result saves',
    labelnames=['status']  # success, failure
)
