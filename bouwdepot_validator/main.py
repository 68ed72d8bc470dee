"""Main entry point: validate one pre-extracted invoice document"""

import argparse
import sys
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables FIRST, before any other imports
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

from bouwdepot_validator.orchestrator.pipeline import PipelineOrchestrator
from bouwdepot_validator.orchestrator.state_manager import get_result_store
from bouwdepot_validator.tools.extraction import JsonDocumentExtractor, SubmittedDocument
from bouwdepot_validator.tools.oracle import LLMDecisionOracle
from bouwdepot_validator.tools.rules import BouwdepotRuleValidator
from bouwdepot_validator.tools.signing import HmacSignatureService
from bouwdepot_validator.vendors.matching import get_match_strategy
from bouwdepot_validator.vendors.store import InMemoryVendorProfileStore
from bouwdepot_validator.vendors.trust_engine import VendorTrustEngine
from bouwdepot_validator.utils.config_loader import PipelineSettings, load_settings
from bouwdepot_validator.utils.errors import ConfigurationError, ValidatorError
from bouwdepot_validator.utils.logging import get_logger

logger = get_logger(__name__)


def build_pipeline(settings: PipelineSettings, seed_sample_vendors: bool = False) -> PipelineOrchestrator:
    """Wire the reference collaborators into a pipeline"""
    strategy = get_match_strategy(settings.match_strategy, settings.token_set_threshold)
    store = InMemoryVendorProfileStore(match_strategy=strategy, seed_sample_data=seed_sample_vendors)
    extractor = JsonDocumentExtractor()

    return PipelineOrchestrator(
        tampering_detector=extractor,
        extractor=extractor,
        oracle=LLMDecisionOracle(
            model=settings.oracle_model,
            timeout=settings.oracle_timeout_seconds,
            language_code=settings.language_code
        ),
        rule_validator=BouwdepotRuleValidator(),
        trust_engine=VendorTrustEngine(store, match_strategy=strategy),
        signer=HmacSignatureService(signer_id=settings.signer_id) if settings.signing_enabled else None,
        settings=settings,
        result_store=get_result_store() if settings.persist_results else None
    )


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Validate an invoice for Bouwdepot disbursement")

    parser.add_argument(
        'document',
        help="Path to a pre-extracted invoice document (JSON)"
    )

    parser.add_argument(
        '--config',
        help="Path to configuration file (default: VALIDATOR_CONFIG, else the bundled validator.yaml)"
    )

    parser.add_argument(
        '--seed-sample-vendors',
        action='store_true',
        help="Start with the bundled sample vendor profiles"
    )

    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        pipeline = build_pipeline(settings, seed_sample_vendors=args.seed_sample_vendors)
        document = SubmittedDocument.from_path(args.document)
    except ValidatorError as e:
        logger.error(f"Startup failed: {e}")
        return 2

    logger.info("=" * 60)
    logger.info(f"Validating {document.file_name}")
    logger.info("=" * 60)

    try:
        result = pipeline.validate_document(document)
    except ConfigurationError as e:
        logger.error(f"Validation aborted: {e}")
        return 2

    print(result.model_dump_json(indent=2))

    logger.info("=" * 60)
    logger.info(f"Outcome: {result.outcome().value}")
    for issue in result.ranked_issues():
        logger.info(f"[{issue.severity.value}] {issue.message}")
    logger.info("=" * 60)

    return 0 if result.is_valid else 1


if __name__ == "__main__":
    sys.exit(main())
