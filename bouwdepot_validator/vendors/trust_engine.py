"""Vendor trust engine: profile resolution, statistics upkeep and anomaly detection"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple
from bouwdepot_validator.constants import (
    AnomalyType,
    FraudIndicatorCategory,
    IssueSeverity,
    NEUTRAL_TRUST_SCORE,
    TRUST_WEIGHTS,
    VENDOR_PRICE_TOLERANCE,
    INDUSTRY_PRICE_TOLERANCE,
    ANOMALY_LOW_PRICE_FACTOR,
    ANOMALY_HIGH_PRICE_FACTOR,
    ANOMALY_PRICE_MIN_DEVIATION,
    ANOMALY_PRICE_MIN_SAMPLES,
    ROUND_NUMBER_MIN_ITEMS,
    ROUND_NUMBER_MIN_PRICE,
    FRAUD_INDICATOR_SEVERITY_THRESHOLD,
    ANOMALY_FRAUD_POINTS,
    MAX_FRAUD_SCORE,
)
from bouwdepot_validator.models.invoice import Invoice
from bouwdepot_validator.models.vendor_profile import (
    VendorProfile,
    AnomalyRecord,
    PriceBucket,
    normalize_vendor_name,
)
from bouwdepot_validator.models.analysis import (
    VendorTrustAnalysis,
    PriceAnalysis,
    UnreasonablyPricedItem,
    ServiceAnalysis,
    VendorInsights,
)
from bouwdepot_validator.models.validation import ValidationContext, FraudIndicator
from bouwdepot_validator.utils.logging import get_logger
from bouwdepot_validator.utils.metrics import vendor_profiles_created, vendor_profile_commits
from . import statistics
from .matching import MatchStrategy, SubstringMatchStrategy, lookup
from .store import VendorProfileStore

logger = get_logger(__name__)

NEW_VENDOR_FACTOR = "New vendor with limited history"

# Shared by every run that finds no stored profile, so a vendor is created once
NEW_VENDOR_LOCK = "NEW-VENDOR"


def is_new_vendor(profile: VendorProfile) -> bool:
    return profile.invoice_count <= 1


class VendorTrustEngine:
    """Maintains vendor profiles and scores invoices against them"""

    def __init__(self, store: VendorProfileStore, match_strategy: Optional[MatchStrategy] = None):
        self.store = store
        self.match_strategy = match_strategy or SubstringMatchStrategy()

    def resolve_profile(self, invoice: Invoice) -> Optional[VendorProfile]:
        """
        Find the stored profile for an invoice's vendor.

        Precedence: tax id (KvK, then VAT), normalized-name exact match,
        normalized-name fuzzy match. First hit wins.
        """
        if invoice.has_tax_id:
            profile = self.store.get_by_tax_id(invoice.vendor_kvk_number, invoice.vendor_btw_number)
            if profile is not None:
                logger.debug(f"Resolved vendor by tax id: {profile.vendor_name}")
                return profile

        if invoice.vendor_name:
            profile = self.store.get_by_name(invoice.vendor_name)
            if profile is not None:
                logger.debug(f"Resolved vendor by name: {profile.vendor_name}")
                return profile

        return None

    def new_profile(self, invoice: Invoice) -> VendorProfile:
        """Neutral profile for a vendor seen for the first time"""
        now = datetime.now()
        profile = VendorProfile(
            vendor_name=invoice.vendor_name,
            normalized_name=normalize_vendor_name(invoice.vendor_name),
            kvk_number=invoice.vendor_kvk_number,
            vat_number=invoice.vendor_btw_number,
            first_seen=now,
            last_seen=now,
            last_updated=now
        )
        if invoice.vendor_address:
            profile.known_addresses.add(invoice.vendor_address)
        return profile

    def get_or_create_profile(self, invoice: Invoice) -> Tuple[VendorProfile, bool]:
        """
        Resolve the vendor profile, creating a neutral one if none matches.
        New profiles are not stored until committed.

        Returns:
            (profile, created)
        """
        profile = self.resolve_profile(invoice)
        if profile is not None:
            return profile, False

        logger.info(f"Creating new vendor profile for {invoice.vendor_name or '<unnamed vendor>'}")
        return self.new_profile(invoice), True

    def apply_invoice(self, profile: VendorProfile, invoice: Invoice,
                      context: Optional[ValidationContext] = None) -> VendorProfile:
        """
        Fold an invoice into a copy of the profile.

        Updates counts, addresses, payment accounts, service patterns, price
        buckets, business categories and blended trust scores.

        Args:
            profile: Profile before this invoice
            invoice: Extracted invoice
            context: Validation result so far (confidence, categories, issues)

        Returns:
            Updated profile copy; the input is left untouched
        """
        updated = profile.model_copy(deep=True)
        now = datetime.now()

        updated.invoice_count += 1
        updated.last_seen = now
        updated.last_updated = now

        if invoice.vendor_address:
            updated.known_addresses.add(invoice.vendor_address)

        payment = invoice.payment_details
        if payment is not None and payment.iban and payment.iban not in updated.known_ibans:
            logger.info(f"Adding payment account {payment.masked_iban} for vendor {updated.vendor_name}")
            updated.payment_details.append(payment.model_copy())

        updated.common_services = statistics.update_service_patterns(updated.common_services, invoice.line_items, now)
        updated.price_ranges = statistics.update_price_ranges(
            updated.price_ranges, invoice.line_items, self.match_strategy
        )

        if context is not None:
            for category in context.purchase_analysis.categories:
                if category and category not in updated.business_categories:
                    updated.business_categories.append(category)

        self._update_trust_metrics(updated, invoice, context)
        return updated

    def _update_trust_metrics(self, profile: VendorProfile, invoice: Invoice,
                              context: Optional[ValidationContext]) -> None:
        metrics = profile.trust_metrics
        count = profile.invoice_count

        if context is not None and context.confidence_score > 0:
            metrics.reliability_score = statistics.blend(
                metrics.reliability_score, context.confidence_score / 100.0, count
            )

        stability = statistics.price_stability_observation(profile.price_ranges)
        if stability is not None:
            metrics.price_stability_score = statistics.blend(metrics.price_stability_score, stability, count)

        quality = statistics.document_quality_observation(invoice.visual_analysis)
        if quality is not None:
            metrics.document_quality_score = statistics.blend(metrics.document_quality_score, quality, count)

        if context is None:
            return

        for issue in context.issues:
            if issue.severity == IssueSeverity.ERROR:
                anomaly_type, severity = AnomalyType.VALIDATION_ERROR, 0.8
            elif issue.severity == IssueSeverity.WARNING:
                anomaly_type, severity = AnomalyType.VALIDATION_WARNING, 0.4
            else:
                continue
            metrics.detected_anomalies.append(AnomalyRecord(
                anomaly_type=anomaly_type,
                description=issue.message,
                severity=severity
            ))

    @contextmanager
    def locked_profile(self, invoice: Invoice) -> Iterator[Optional[VendorProfile]]:
        """
        Resolve the invoice's vendor and hold its lock while the caller works.

        Stored vendors are locked by profile id, so invoices that reach one
        vendor through different identifiers (KvK, VAT, name) share a lock.
        Unresolved vendors share NEW_VENDOR_LOCK. Resolution is repeated under
        the lock and the lock is re-taken when the answer changed meanwhile.

        Yields:
            The stored profile, or None when the vendor is new
        """
        while True:
            candidate = self.resolve_profile(invoice)
            key = f"ID:{candidate.id}" if candidate is not None else NEW_VENDOR_LOCK
            with self.store.lock(key):
                current = self.resolve_profile(invoice)
                if (current.id if current else None) == (candidate.id if candidate else None):
                    yield current
                    return
            logger.debug(f"Vendor resolution for {invoice.vendor_name} changed while waiting, retrying")

    def commit_invoice(self, invoice: Invoice, context: ValidationContext,
                       anomalies: Optional[List[AnomalyRecord]] = None,
                       fallback: Optional[VendorProfile] = None) -> VendorProfile:
        """
        Apply an invoice to the freshest stored profile and persist it.

        Runs under the resolved vendor's lock so concurrent runs for the same
        vendor serialize instead of overwriting each other.

        Args:
            invoice: Extracted invoice
            context: Validation result of the run
            anomalies: Anomalies detected for this invoice, appended to the history
            fallback: Profile to start from when the store has none (new vendor)

        Returns:
            The stored profile; its id can differ from the fallback's when a
            concurrent run stored the vendor first
        """
        with self.locked_profile(invoice) as current:
            created = current is None
            if created:
                current = fallback.model_copy(deep=True) if fallback is not None else self.new_profile(invoice)

            updated = self.apply_invoice(current, invoice, context)
            if anomalies:
                updated.trust_metrics.detected_anomalies.extend(a.model_copy() for a in anomalies)
            self.store.upsert(updated)

        if created:
            vendor_profiles_created.inc()
        vendor_profile_commits.labels(status='committed').inc()
        logger.info(
            "Vendor profile committed",
            vendor_name=updated.vendor_name,
            vendor_id=updated.id,
            invoice_count=updated.invoice_count
        )
        return updated

    def analyze_trust(self, profile: VendorProfile) -> VendorTrustAnalysis:
        result = VendorTrustAnalysis(invoice_count=profile.invoice_count)

        if is_new_vendor(profile):
            result.overall_trust_score = NEUTRAL_TRUST_SCORE
            result.trust_scores = {name: NEUTRAL_TRUST_SCORE for name in TRUST_WEIGHTS}
            result.trust_factors.append(NEW_VENDOR_FACTOR)
            return result

        metrics = profile.trust_metrics
        result.trust_scores = {
            'reliability': metrics.reliability_score,
            'consistency': metrics.consistency_score,
            'price_stability': metrics.price_stability_score,
            'document_quality': metrics.document_quality_score,
        }
        result.overall_trust_score = sum(
            result.trust_scores[name] * weight for name, weight in TRUST_WEIGHTS.items()
        )

        if metrics.reliability_score >= 0.8:
            result.trust_factors.append("High reliability score based on historical invoices")
        if metrics.price_stability_score >= 0.8:
            result.trust_factors.append("Consistent pricing across historical invoices")
        if metrics.document_quality_score >= 0.8:
            result.trust_factors.append("High quality invoice documentation")
        if profile.invoice_count > 10:
            result.trust_factors.append(f"Established vendor with {profile.invoice_count} previous invoices")

        if metrics.reliability_score < 0.4:
            result.concern_factors.append("Low reliability score based on historical invoices")
        if metrics.price_stability_score < 0.4:
            result.concern_factors.append("Inconsistent pricing across historical invoices")

        unresolved = metrics.unresolved_anomalies()
        if unresolved:
            result.concern_factors.append(
                f"{len(unresolved)} unresolved anomalies detected in previous invoices"
            )
            for anomaly in sorted(unresolved, key=lambda a: a.severity, reverse=True)[:2]:
                result.concern_factors.append(f"Unresolved anomaly: {anomaly.description}")

        logger.info(
            "Vendor trust analysis complete",
            vendor_name=profile.vendor_name,
            overall_score=round(result.overall_trust_score, 3),
            trust_factors=len(result.trust_factors),
            concern_factors=len(result.concern_factors)
        )
        return result

    def analyze_prices(self, invoice: Invoice, profile: VendorProfile) -> PriceAnalysis:
        """
        Check line item unit prices against the vendor's buckets.

        Vendors without history are compared against the industry-wide
        buckets with a wider tolerance.
        """
        if is_new_vendor(profile) or not profile.price_ranges:
            buckets = self.store.aggregate_industry_price_ranges()
            tolerance = INDUSTRY_PRICE_TOLERANCE
            result = PriceAnalysis(compared_against="industry")
        else:
            buckets = profile.price_ranges
            tolerance = VENDOR_PRICE_TOLERANCE
            result = PriceAnalysis(compared_against="vendor")

        total_deviation = 0.0
        for item in invoice.line_items:
            if not item.description:
                continue

            bucket = lookup(buckets, item.description, self.match_strategy)
            if bucket is None:
                continue

            unit_price = item.effective_unit_price
            deviation = statistics.band_deviation(unit_price, bucket, tolerance)
            if deviation is None:
                continue

            result.unreasonably_priced_items.append(UnreasonablyPricedItem(
                description=item.description,
                total_price=item.total_price,
                unit_price=unit_price,
                expected_min_price=bucket.min_price,
                expected_max_price=bucket.max_price,
                deviation_percentage=deviation
            ))
            result.max_price_deviation = max(result.max_price_deviation, deviation)
            total_deviation += deviation

        if result.unreasonably_priced_items:
            result.average_price_deviation = total_deviation / len(result.unreasonably_priced_items)
        result.unreasonable_prices_detected = bool(result.unreasonably_priced_items)
        return result

    def analyze_services(self, invoice: Invoice, profile: VendorProfile) -> ServiceAnalysis:
        result = ServiceAnalysis()

        if is_new_vendor(profile) or not profile.common_services:
            common = []
            for category in profile.business_categories:
                for service in self.store.common_services_in_category(category):
                    if service.service_name not in common:
                        common.append(service.service_name)
            result.common_services = common
            if common:
                self._match_services(invoice, common, result)
            return result

        result.common_services = [
            s.service_name
            for s in sorted(profile.common_services.values(), key=lambda s: s.frequency, reverse=True)
        ]
        self._match_services(invoice, result.common_services, result)
        return result

    def _match_services(self, invoice: Invoice, services: List[str], result: ServiceAnalysis) -> None:
        for item in invoice.line_items:
            if not item.description:
                continue
            if self.match_strategy.find(item.description, services) is not None:
                result.matching_services.append(item.description)
            else:
                result.unusual_services.append(item.description)

        result.unusual_services_detected = bool(result.unusual_services)
        if invoice.line_items:
            result.service_pattern_score = len(result.matching_services) / len(invoice.line_items)

    def vendor_insights(self, profile: VendorProfile, price_analysis: Optional[PriceAnalysis] = None,
                        service_analysis: Optional[ServiceAnalysis] = None) -> VendorInsights:
        metrics = profile.trust_metrics
        return VendorInsights(
            vendor_name=profile.vendor_name,
            business_categories=list(profile.business_categories),
            invoice_count=profile.invoice_count,
            first_seen=profile.first_seen,
            last_seen=profile.last_seen,
            reliability_score=metrics.reliability_score,
            price_stability_score=metrics.price_stability_score,
            document_quality_score=metrics.document_quality_score,
            unusual_services_detected=bool(service_analysis and service_analysis.unusual_services_detected),
            unreasonable_prices_detected=bool(price_analysis and price_analysis.unreasonable_prices_detected),
            total_anomaly_count=len(metrics.detected_anomalies),
            vendor_specialties=list(profile.specialty_services)
        )

    def get_vendor_insights(self, vendor_id: str) -> Optional[VendorInsights]:
        profile = self.store.get(vendor_id)
        return self.vendor_insights(profile) if profile else None

    def detect_anomalies(self, invoice: Invoice, profile: VendorProfile) -> List[AnomalyRecord]:
        """
        Compare an invoice against a vendor profile.

        Vendors with at most one invoice only get the history-independent
        checks (registration, address, round numbers).
        """
        anomalies: List[AnomalyRecord] = []

        if not is_new_vendor(profile):
            anomalies.extend(self._payment_anomalies(invoice, profile))
            anomalies.extend(self._price_anomalies(invoice, profile))
            anomalies.extend(self._service_anomalies(invoice, profile))

        anomalies.extend(self._basic_anomalies(invoice))

        logger.info(
            "Vendor anomaly detection complete",
            vendor_name=profile.vendor_name,
            anomaly_count=len(anomalies)
        )
        return anomalies

    def _basic_anomalies(self, invoice: Invoice) -> List[AnomalyRecord]:
        anomalies = []

        if not invoice.vendor_kvk_number and not invoice.vendor_btw_number:
            anomalies.append(AnomalyRecord(
                anomaly_type=AnomalyType.MISSING_REGISTRATION,
                description="Vendor is missing both KvK and VAT registration numbers",
                severity=0.6
            ))

        if not invoice.vendor_address:
            anomalies.append(AnomalyRecord(
                anomaly_type=AnomalyType.MISSING_ADDRESS,
                description="Vendor address is missing from the invoice",
                severity=0.3
            ))

        round_items = [
            item for item in invoice.line_items
            if item.total_price % 10 == 0 and item.total_price > ROUND_NUMBER_MIN_PRICE
        ]
        if len(round_items) >= ROUND_NUMBER_MIN_ITEMS or (
                invoice.line_items and len(round_items) == len(invoice.line_items)):
            anomalies.append(AnomalyRecord(
                anomaly_type=AnomalyType.ROUND_NUMBERS,
                description=f"Invoice contains {len(round_items)} line items with suspiciously round prices",
                severity=0.4
            ))

        return anomalies

    def _payment_anomalies(self, invoice: Invoice, profile: VendorProfile) -> List[AnomalyRecord]:
        payment = invoice.payment_details
        if payment is None or not payment.iban:
            return []

        anomalies = []
        if profile.payment_details and payment.iban not in profile.known_ibans:
            anomalies.append(AnomalyRecord(
                anomaly_type=AnomalyType.NEW_BANK_ACCOUNT,
                description=f"New bank account detected for established vendor: {payment.masked_iban}",
                severity=0.7
            ))

        if payment.account_holder_name and invoice.vendor_name:
            account_name = normalize_vendor_name(payment.account_holder_name)
            vendor_name = normalize_vendor_name(invoice.vendor_name)
            if not (vendor_name in account_name or account_name in vendor_name):
                anomalies.append(AnomalyRecord(
                    anomaly_type=AnomalyType.ACCOUNT_NAME_MISMATCH,
                    description=(
                        f"Account holder name '{payment.account_holder_name}' "
                        f"does not match vendor name '{invoice.vendor_name}'"
                    ),
                    severity=0.8
                ))

        return anomalies

    def _price_anomalies(self, invoice: Invoice, profile: VendorProfile) -> List[AnomalyRecord]:
        if not profile.price_ranges:
            return []

        anomalies = []
        for item in invoice.line_items:
            if not item.description:
                continue

            bucket: Optional[PriceBucket] = lookup(profile.price_ranges, item.description, self.match_strategy)
            if bucket is None or bucket.sample_size < ANOMALY_PRICE_MIN_SAMPLES:
                continue

            unit_price = item.effective_unit_price
            min_acceptable = bucket.min_price * ANOMALY_LOW_PRICE_FACTOR
            max_acceptable = bucket.max_price * ANOMALY_HIGH_PRICE_FACTOR

            if unit_price < min_acceptable and min_acceptable > 0:
                deviation = (min_acceptable - unit_price) / min_acceptable
                if deviation > ANOMALY_PRICE_MIN_DEVIATION:
                    anomalies.append(AnomalyRecord(
                        anomaly_type=AnomalyType.SUSPICIOUSLY_LOW_PRICE,
                        description=f"Price for '{item.description}' is {deviation:.0%} below the minimum expected price",
                        severity=min(0.3 + deviation, 0.7)
                    ))
            elif unit_price > max_acceptable and max_acceptable > 0:
                deviation = (unit_price - max_acceptable) / max_acceptable
                if deviation > ANOMALY_PRICE_MIN_DEVIATION:
                    anomalies.append(AnomalyRecord(
                        anomaly_type=AnomalyType.SUSPICIOUSLY_HIGH_PRICE,
                        description=f"Price for '{item.description}' is {deviation:.0%} above the maximum expected price",
                        severity=min(0.4 + deviation, 0.8)
                    ))

        return anomalies

    def _service_anomalies(self, invoice: Invoice, profile: VendorProfile) -> List[AnomalyRecord]:
        if not profile.common_services:
            return []

        anomalies = []
        services = [
            s.service_name
            for s in sorted(profile.common_services.values(), key=lambda s: s.frequency, reverse=True)
        ]
        unusual = [
            item.description for item in invoice.line_items
            if item.description and self.match_strategy.find(item.description, services) is None
        ]

        if unusual:
            listed = ", ".join(unusual[:3])
            if len(unusual) > 3:
                listed += f", and {len(unusual) - 3} more"
            anomalies.append(AnomalyRecord(
                anomaly_type=AnomalyType.UNUSUAL_SERVICES,
                description=f"Unusual services for this vendor: {listed}",
                severity=min(0.3 + 0.1 * len(unusual), 0.7)
            ))

        if profile.specialty_services and invoice.line_items:
            has_specialty = any(
                self.match_strategy.find(item.description, profile.specialty_services) is not None
                for item in invoice.line_items
            )
            if not has_specialty:
                anomalies.append(AnomalyRecord(
                    anomaly_type=AnomalyType.NO_SPECIALTY_SERVICES,
                    description=(
                        "Invoice does not contain any of vendor's specialty services: "
                        + ", ".join(profile.specialty_services[:3])
                    ),
                    severity=0.5
                ))

        return anomalies

    @staticmethod
    def fraud_indicators(anomalies: List[AnomalyRecord]) -> List[FraudIndicator]:
        """Anomalies severe enough to count as vendor fraud indicators"""
        return [
            FraudIndicator(
                indicator_name=anomaly.anomaly_type.value,
                description=anomaly.description,
                severity=anomaly.severity,
                category=FraudIndicatorCategory.VENDOR_ISSUE,
                evidence=f"Vendor profile anomaly detected at {anomaly.detected_at.isoformat()}"
            )
            for anomaly in anomalies
            if anomaly.severity > FRAUD_INDICATOR_SEVERITY_THRESHOLD
        ]

    @staticmethod
    def apply_fraud_points(current_score: int, indicator_count: int) -> int:
        """Flat points per vendor fraud indicator, capped at 100"""
        return max(0, min(MAX_FRAUD_SCORE, current_score + indicator_count * ANOMALY_FRAUD_POINTS))
