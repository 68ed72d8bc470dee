"""Tests for the command-line entry point"""

import json
import pytest
from bouwdepot_validator import main as cli
from bouwdepot_validator.tools import llm_client
from bouwdepot_validator.tools import oracle as oracle_module
from bouwdepot_validator.utils.config_loader import PipelineSettings

CONFIG = """
version: "1.0"
pipeline:
  persist_results: false
vendor_profiling:
  enabled: true
oracle:
  timeout_seconds: 5
  retry:
    max_retries: 1
    base_delay: 0
signing:
  enabled: true
  signer_id: test-signer
"""

VERDICT = {
    "is_home_improvement": True,
    "is_valid_invoice": True,
    "confidence": 91,
    "reasoning": "New bathroom",
    "categories": ["Bathroom Renovation"],
}


def write_inputs(tmp_path):
    config_path = tmp_path / "validator.yaml"
    config_path.write_text(CONFIG)

    document_path = tmp_path / "factuur-2025-014.json"
    document_path.write_text(json.dumps({
        "metadata": {"CreationDate": "D:20250203101500", "ModDate": "D:20250203101500"},
        "invoice": {
            "invoice_number": "2025-014",
            "invoice_date": "2025-02-03",
            "total_amount": 5490.38,
            "vendor_name": "Loodgietersbedrijf De Vries",
            "vendor_address": "Waterstraat 45, 2345 BC Rotterdam",
            "vendor_kvk_number": "87654321",
            "line_items": [{"description": "Bathroom installation", "total_price": 4537.50}]
        }
    }))
    return str(config_path), str(document_path)


@pytest.fixture
def approving_oracle(monkeypatch):
    monkeypatch.setattr(oracle_module, "call_llm", lambda prompt, **kwargs: json.dumps(VERDICT))
    monkeypatch.setenv("SIGNING_SECRET", "test-secret")


def test_main_validates_document(tmp_path, capsys, approving_oracle):
    config_path, document_path = write_inputs(tmp_path)

    exit_code = cli.main([document_path, "--config", config_path, "--seed-sample-vendors"])

    assert exit_code == 0
    result = json.loads(capsys.readouterr().out)
    assert result["is_valid"]
    assert result["confidence_score"] >= 70
    assert result["signature"]["signer_id"] == "test-signer"


def test_main_reports_invalid_invoice(tmp_path, capsys, monkeypatch, approving_oracle):
    config_path, document_path = write_inputs(tmp_path)
    rejected = dict(VERDICT, is_valid_invoice=False)
    monkeypatch.setattr(oracle_module, "call_llm", lambda prompt, **kwargs: json.dumps(rejected))

    assert cli.main([document_path, "--config", config_path]) == 1
    assert not json.loads(capsys.readouterr().out)["is_valid"]


def test_main_startup_errors(tmp_path, monkeypatch, approving_oracle):
    config_path, document_path = write_inputs(tmp_path)

    assert cli.main([str(tmp_path / "missing.json"), "--config", config_path]) == 2
    assert cli.main([document_path, "--config", str(tmp_path / "missing.yaml")]) == 2

    monkeypatch.delenv("SIGNING_SECRET")
    assert cli.main([document_path, "--config", config_path]) == 2


def test_main_stops_when_api_key_is_missing(tmp_path, capsys, monkeypatch):
    config_path, document_path = write_inputs(tmp_path)
    monkeypatch.setenv("SIGNING_SECRET", "test-secret")
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    monkeypatch.setattr(llm_client, "_client", None)

    assert cli.main([document_path, "--config", config_path]) == 2
    assert capsys.readouterr().out == ""


def test_build_pipeline_wiring():
    settings = PipelineSettings(signing_enabled=False, persist_results=False, match_strategy="token_set")

    pipeline = cli.build_pipeline(settings, seed_sample_vendors=True)

    assert [stage.name for stage in pipeline.stages][-1] == "Signing"
    assert len(pipeline.stages) == 8
    assert pipeline.trust_engine.store.count() == 3
    assert pipeline.trust_engine.match_strategy.name == "token_set"
    assert pipeline.result_store is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
