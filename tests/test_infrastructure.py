"""Unit tests for core infrastructure components."""

import json
import logging
import time
import threading
from pathlib import Path
import pytest
import redis
from unittest.mock import Mock
from bouwdepot_validator.constants import IssueSeverity
from bouwdepot_validator.models.validation import ValidationContext
from bouwdepot_validator.utils.errors import (
    ConfigurationError,
    OracleUnavailable,
    PipelineCancelled,
    StateManagerError,
    LLMError,
    ValidationFailure,
    ExtractionWarning,
    SigningFailure,
)


def write_yaml(tmp_path, text):
    path = tmp_path / "validator.yaml"
    path.write_text(text)
    return str(path)


MINIMAL_CONFIG = """
version: "1.0"
pipeline:
  approval_threshold: 80
  use_multimodal_analysis: false
vendor_profiling:
  enabled: true
  match_strategy: token_set
oracle:
  timeout_seconds: 20
  retry:
    max_retries: 4
signing:
  enabled: false
"""


# Configuration

def test_load_config_and_settings(tmp_path):
    """Test typed settings built from a YAML file."""
    from bouwdepot_validator.utils.config_loader import load_config, load_settings

    path = write_yaml(tmp_path, MINIMAL_CONFIG)

    config = load_config(path)
    assert config['pipeline']['approval_threshold'] == 80

    settings = load_settings(path)
    assert settings.approval_threshold == 80
    assert not settings.use_multimodal_analysis
    assert settings.match_strategy == "token_set"
    assert settings.oracle_timeout_seconds == 20
    assert settings.oracle_retry.max_retries == 4
    assert settings.oracle_retry.base_delay == 1
    assert not settings.signing_enabled
    # Unspecified values fall back to defaults
    assert settings.detect_fraud
    assert settings.language_code == "nl-NL"


def test_bundled_config_loads(monkeypatch):
    import bouwdepot_validator
    from bouwdepot_validator.utils.config_loader import DEFAULT_CONFIG_PATH, load_settings

    monkeypatch.delenv("VALIDATOR_CONFIG", raising=False)
    settings = load_settings()

    assert settings.approval_threshold == 70
    assert settings.oracle_model == "anthropic/claude-haiku-4.5"
    assert settings.signing_retry.max_retries == 2
    # Lives inside the package so it is installed with it
    assert Path(bouwdepot_validator.__file__).resolve().parent in DEFAULT_CONFIG_PATH.parents


def test_config_missing_keys(tmp_path):
    from bouwdepot_validator.utils.config_loader import load_config

    path = write_yaml(tmp_path, "version: '1.0'\npipeline: {}\n")

    with pytest.raises(ConfigurationError, match="Missing required configuration keys"):
        load_config(path)


def test_config_missing_file_and_bad_yaml(tmp_path):
    from bouwdepot_validator.utils.config_loader import load_config

    with pytest.raises(ConfigurationError, match="not found"):
        load_config(str(tmp_path / "absent.yaml"))

    with pytest.raises(ConfigurationError, match="Invalid YAML"):
        load_config(write_yaml(tmp_path, "pipeline: [unclosed"))


# Logging

def test_structured_logger_emits_json(caplog):
    from bouwdepot_validator.utils.logging import get_logger

    logger = get_logger("tests.structured")
    with caplog.at_level(logging.INFO, logger="tests.structured"):
        logger.info("Vendor profile committed", vendor_id="v-1", invoice_count=9)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["message"] == "Vendor profile committed"
    assert payload["vendor_id"] == "v-1"
    assert payload["level"] == "INFO"


def test_bound_logger_stamps_run_fields(caplog):
    from bouwdepot_validator.utils.logging import get_logger

    logger = get_logger("tests.bound")
    run_logger = logger.bind(validation_id="val-1", file_name="factuur.pdf")
    with caplog.at_level(logging.INFO, logger="tests.bound"):
        run_logger.warning("Tampering detected", stage="TamperingCheck")
        logger.info("Unbound")

    bound, unbound = [json.loads(r.getMessage()) for r in caplog.records[-2:]]
    assert bound["validation_id"] == "val-1"
    assert bound["file_name"] == "factuur.pdf"
    assert bound["stage"] == "TamperingCheck"
    assert "validation_id" not in unbound


# Retry handler

def test_retry_succeeds_after_transient_failure():
    from bouwdepot_validator.orchestrator.retry_handler import retry_with_exponential_backoff

    func = Mock(side_effect=[ValueError("flaky"), "ok"])

    assert retry_with_exponential_backoff(func, 3, 0, 0) == "ok"
    assert func.call_count == 2


def test_retry_exhaustion_raises_error_cls():
    from bouwdepot_validator.orchestrator.retry_handler import retry_with_exponential_backoff

    func = Mock(side_effect=ValueError("down"))

    with pytest.raises(OracleUnavailable, match="Failed after 3 attempts"):
        retry_with_exponential_backoff(func, 3, 0, 0, error_cls=OracleUnavailable)
    assert func.call_count == 3


def test_retry_only_on_listed_errors():
    from bouwdepot_validator.orchestrator.retry_handler import retry_with_exponential_backoff

    func = Mock(side_effect=KeyError("bug"))

    with pytest.raises(KeyError):
        retry_with_exponential_backoff(func, 3, 0, 0, retry_on=(ValueError,))
    assert func.call_count == 1


def test_retry_attempt_timeout():
    from bouwdepot_validator.orchestrator.retry_handler import retry_with_exponential_backoff

    def slow():
        time.sleep(0.5)
        return "late"

    with pytest.raises(SigningFailure):
        retry_with_exponential_backoff(slow, 1, 0, 0, timeout=0.05, error_cls=SigningFailure)


def test_retry_stops_when_cancelled():
    from bouwdepot_validator.orchestrator.retry_handler import retry_with_exponential_backoff

    cancel_event = threading.Event()
    cancel_event.set()
    func = Mock(return_value="never")

    with pytest.raises(PipelineCancelled):
        retry_with_exponential_backoff(func, 3, 0, 0, cancel_event=cancel_event)
    func.assert_not_called()


# Result store

def signed_looking_context():
    context = ValidationContext(confidence_score=81, is_home_improvement=True)
    context.add_issue(IssueSeverity.INFO, "Valid home improvement invoice with 81% confidence")
    return context


def test_result_store_memory_round_trip():
    from bouwdepot_validator.orchestrator.state_manager import ValidationResultStore

    store = ValidationResultStore(backend="memory")
    context = signed_looking_context()

    store.save_validation_result(context.validation_id, context)
    restored = store.get_validation_result(context.validation_id)

    assert restored.validation_id == context.validation_id
    assert restored.confidence_score == 81
    assert restored.issues == context.issues
    assert store.get_validation_result("unknown") is None
    assert store.check_health()


def test_result_store_redis_backend():
    from bouwdepot_validator.orchestrator.state_manager import ValidationResultStore, RESULT_TTL_SECONDS

    client = Mock()
    store = ValidationResultStore(backend="redis", redis_client=client)
    context = signed_looking_context()

    store.save_validation_result(context.validation_id, context)

    key, ttl, value = client.setex.call_args[0]
    assert key == f"validation:{context.validation_id}:result"
    assert ttl == RESULT_TTL_SECONDS

    client.get.return_value = value
    assert store.get_validation_result(context.validation_id).confidence_score == 81


def test_result_store_redis_failure():
    from bouwdepot_validator.orchestrator.state_manager import ValidationResultStore

    client = Mock()
    client.setex.side_effect = redis.ConnectionError("connection refused")
    client.get.side_effect = redis.ConnectionError("connection refused")
    client.ping.side_effect = redis.ConnectionError("connection refused")
    store = ValidationResultStore(backend="redis", redis_client=client)
    context = signed_looking_context()

    with pytest.raises(StateManagerError):
        store.save_validation_result(context.validation_id, context)
    assert store.get_validation_result(context.validation_id) is None
    assert not store.check_health()


# LLM client

def test_llm_cost_calculation():
    """Test LLM cost calculation."""
    from bouwdepot_validator.tools.llm_client import calculate_cost

    assert calculate_cost(1_000_000, "openai/gpt-4o-mini") == pytest.approx(0.15)
    assert calculate_cost(1_000_000, "anthropic/claude-haiku-4.5") == pytest.approx(0.80)
    assert calculate_cost(1000, "unknown/model") == pytest.approx(0.00015)


def test_llm_client_without_api_key(monkeypatch):
    """Test LLM client behavior when API key is missing."""
    from bouwdepot_validator.tools import llm_client

    monkeypatch.setattr(llm_client, "_client", None)
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        llm_client.call_llm("Test prompt")


def fake_completion(content, tokens=1200):
    return Mock(
        usage=Mock(total_tokens=tokens),
        choices=[Mock(message=Mock(content=content))]
    )


def test_llm_call_sends_images(monkeypatch):
    from bouwdepot_validator.tools import llm_client

    client = Mock()
    client.chat.completions.create.return_value = fake_completion('{"ok": true}')
    monkeypatch.setattr(llm_client, "_client", client)

    result = llm_client.call_llm("Judge this", model="openai/gpt-4o-mini", images=[b"\x89PNG"])

    assert result == '{"ok": true}'
    messages = client.chat.completions.create.call_args.kwargs["messages"]
    content = messages[-1]["content"]
    assert content[0] == {"type": "text", "text": "Judge this"}
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


def test_llm_call_errors(monkeypatch):
    from openai import OpenAIError
    from bouwdepot_validator.tools import llm_client

    client = Mock()
    monkeypatch.setattr(llm_client, "_client", client)

    client.chat.completions.create.side_effect = OpenAIError("rate limited")
    with pytest.raises(LLMError):
        llm_client.call_llm("Judge this")

    client.chat.completions.create.side_effect = None
    client.chat.completions.create.return_value = fake_completion("")
    with pytest.raises(LLMError, match="empty response"):
        llm_client.call_llm("Judge this")


# Decision oracle

VERDICT_JSON = json.dumps({
    "is_home_improvement": True,
    "is_valid_invoice": True,
    "confidence": 84,
    "fraud_indicators": [],
    "reasoning": "Kitchen cabinets are built in",
    "categories": ["Kitchen Renovation"],
    "line_item_analysis": [
        {"description": "Kitchen cabinets", "category": "Built-in", "is_home_improvement": True, "confidence": 80}
    ]
})


def test_parse_verdict_strips_code_fences():
    from bouwdepot_validator.tools.oracle import parse_verdict

    verdict = parse_verdict(f"```json\n{VERDICT_JSON}\n```")

    assert verdict.confidence == 84
    assert verdict.line_item_analysis[0].category == "Built-in"
    assert not verdict.undetermined


@pytest.mark.parametrize("response", [
    "I think this is fine",
    '{"confidence": 150}',
    "[]",
])
def test_parse_verdict_rejects_bad_responses(response):
    from bouwdepot_validator.tools.oracle import parse_verdict

    with pytest.raises(OracleUnavailable):
        parse_verdict(response)


def test_llm_oracle_submit(monkeypatch):
    from bouwdepot_validator.models.invoice import Invoice
    from bouwdepot_validator.tools import oracle as oracle_module

    captured = {}

    def fake_call_llm(prompt, **kwargs):
        captured['prompt'] = prompt
        captured.update(kwargs)
        return VERDICT_JSON

    monkeypatch.setattr(oracle_module, "call_llm", fake_call_llm)
    oracle = oracle_module.LLMDecisionOracle(model="openai/gpt-4o-mini", timeout=12)
    invoice = Invoice(invoice_number="2025-077", vendor_name="Keukenstudio Noord")

    verdict = oracle.submit(invoice, "Judge for bouwdepot", [b"page"])

    assert verdict.is_home_improvement
    assert "2025-077" in captured['prompt']
    assert "nl-NL" in captured['prompt']
    assert captured['model'] == "openai/gpt-4o-mini"
    assert captured['timeout'] == 12
    assert captured['images'] == [b"page"]


# Extraction

def extracted_document(payload, file_name="factuur.json", metadata=None):
    from bouwdepot_validator.tools.extraction import SubmittedDocument

    return SubmittedDocument(
        file_name=file_name,
        content=json.dumps(payload).encode("utf-8"),
        metadata=metadata or {}
    )


def test_json_extractor_reads_invoice():
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor

    document = extracted_document({
        "invoice": {
            "invoice_number": "F-88",
            "invoice_date": "2025-04-01",
            "total_amount": 1210.0,
            "line_items": [{"description": "Dakgoot vervangen", "total_price": 1000.0}]
        },
        "page_images": ["iVBORw0KGgo="]
    })

    invoice = JsonDocumentExtractor().extract(document)

    assert invoice.file_name == "factuur.json"
    assert invoice.page_count == 1
    assert invoice.invoice_date.year == 2025
    assert invoice.missing_critical_fields() == []


def test_json_extractor_missing_fields_are_not_fatal():
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor

    invoice = JsonDocumentExtractor().extract(extracted_document({"invoice": {}}))

    assert invoice.missing_critical_fields() == ['invoice_number', 'invoice_date', 'total_amount']


def test_json_extractor_rejects_unreadable_documents():
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor, SubmittedDocument

    extractor = JsonDocumentExtractor()

    with pytest.raises(ValidationFailure):
        extractor.extract(SubmittedDocument(file_name="scan.pdf", content=b"%PDF-1.4"))
    with pytest.raises(ValidationFailure):
        extractor.extract(extracted_document(["not", "an", "object"]))
    with pytest.raises(ValidationFailure):
        extractor.extract(extracted_document({"invoice": {"total_amount": "twelve"}}))


def test_json_extractor_page_images():
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor

    extractor = JsonDocumentExtractor()

    assert extractor.extract_page_images(extracted_document({"page_images": ["aGVsbG8="]})) == [b"hello"]
    with pytest.raises(ExtractionWarning, match="Page image 2"):
        extractor.extract_page_images(extracted_document({"page_images": ["aGVsbG8=", "%%%"]}))


@pytest.mark.parametrize("metadata,tampered", [
    ({"CreationDate": "D:2025", "ModDate": "D:2025"}, False),
    ({"CreationDate": "D:2025", "ModDate": "D:2026"}, True),
    ({"CreationDate": "D:2025"}, False),
    ({"Author": "Jan; Piet"}, True),
    ({"Producer": "Word; PDFedit"}, True),
    ({}, False),
])
def test_tampering_detection(metadata, tampered):
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor

    document = extracted_document({"metadata": metadata, "invoice": {}})
    assert JsonDocumentExtractor().detect_tampering(document) is tampered


def test_tampering_detection_prefers_document_metadata():
    from bouwdepot_validator.tools.extraction import JsonDocumentExtractor

    document = extracted_document(
        {"metadata": {"CreationDate": "D:2025", "ModDate": "D:2025"}, "invoice": {}},
        metadata={"ModDate": "D:2026"}
    )
    assert JsonDocumentExtractor().detect_tampering(document)


def test_submitted_document_from_path(tmp_path):
    from bouwdepot_validator.tools.extraction import SubmittedDocument

    path = tmp_path / "factuur.json"
    path.write_text('{"invoice": {}}')

    document = SubmittedDocument.from_path(path)
    assert document.file_name == "factuur.json"
    assert document.content == b'{"invoice": {}}'

    with pytest.raises(ValidationFailure):
        SubmittedDocument.from_path(tmp_path / "missing.json")


# Signing

def test_hmac_sign_and_verify():
    from bouwdepot_validator.tools.signing import HmacSignatureService, SIGNED_FIELDS

    signer = HmacSignatureService(secret="s3cret", signer_id="test-signer")
    context = signed_looking_context()

    signed = signer.sign(context)

    assert signed is context
    assert context.is_frozen
    assert context.signature.algorithm == "HMAC-SHA256"
    assert context.signature.signer_id == "test-signer"
    assert context.signature.signed_fields == SIGNED_FIELDS
    assert signer.verify(context)

    with pytest.raises(SigningFailure):
        signer.sign(context)


def test_verify_rejects_unsigned_and_modified():
    from bouwdepot_validator.tools.signing import HmacSignatureService

    signer = HmacSignatureService(secret="s3cret")
    context = signed_looking_context()
    assert not signer.verify(context)

    signer.sign(context)
    modified = ValidationContext.model_validate(context.model_dump())
    modified.confidence_score = 99
    assert not signer.verify(modified)


def test_signer_requires_secret(monkeypatch):
    from bouwdepot_validator.tools.signing import HmacSignatureService

    monkeypatch.delenv("SIGNING_SECRET", raising=False)
    with pytest.raises(ConfigurationError):
        HmacSignatureService()

    monkeypatch.setenv("SIGNING_SECRET", "from-env")
    assert HmacSignatureService().signer_id == "bouwdepot-validator"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
