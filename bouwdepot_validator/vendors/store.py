"""Vendor profile repository"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional
import pandas as pd
from bouwdepot_validator.constants import AnomalyType
from bouwdepot_validator.models.invoice import PaymentDetails
from bouwdepot_validator.models.vendor_profile import (
    VendorProfile,
    ServicePattern,
    PriceBucket,
    TrustMetrics,
    AnomalyRecord,
    normalize_vendor_name,
    tax_id_key,
)
from bouwdepot_validator.utils.logging import get_logger
from .matching import MatchStrategy, SubstringMatchStrategy

logger = get_logger(__name__)


class VendorProfileStore(ABC):
    """Key-value repository of vendor profiles"""

    @abstractmethod
    def get(self, vendor_id: str) -> Optional[VendorProfile]:
        pass

    @abstractmethod
    def get_by_tax_id(self, kvk_number: str, vat_number: str) -> Optional[VendorProfile]:
        pass

    @abstractmethod
    def get_by_name(self, name: str) -> Optional[VendorProfile]:
        """Normalized-name exact match, then fuzzy match"""
        pass

    @abstractmethod
    def search(self, term: str) -> List[VendorProfile]:
        pass

    @abstractmethod
    def upsert(self, profile: VendorProfile) -> str:
        pass

    @abstractmethod
    def list_by_category(self, category: str) -> List[VendorProfile]:
        pass

    @abstractmethod
    def list_with_anomalies(self) -> List[VendorProfile]:
        pass

    @abstractmethod
    def common_services_in_category(self, category: str) -> List[ServicePattern]:
        pass

    @abstractmethod
    def aggregate_industry_price_ranges(self) -> Dict[str, PriceBucket]:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def delete(self, vendor_id: str) -> bool:
        """Administrative removal; the pipeline never deletes profiles"""
        pass

    @abstractmethod
    def lock(self, key: str):
        """Context manager serializing updates for one vendor (profile id or creation key)"""
        pass


class InMemoryVendorProfileStore(VendorProfileStore):
    """
    Process-local vendor store.

    Indexes are guarded by a single re-entrant lock; profiles are copied on the
    way in and out so callers never alias stored state. Per-identity locks
    serialize the lookup -> mutate -> upsert sequence for a single vendor.
    """

    def __init__(self, match_strategy: Optional[MatchStrategy] = None, seed_sample_data: bool = False):
        self.match_strategy = match_strategy or SubstringMatchStrategy()
        self._vendors_by_id: Dict[str, VendorProfile] = {}
        self._ids_by_tax_id: Dict[str, str] = {}
        self._ids_by_name: Dict[str, str] = {}
        self._guard = threading.RLock()
        self._identity_locks: Dict[str, threading.Lock] = {}

        if seed_sample_data:
            for profile in sample_vendor_profiles():
                self.upsert(profile)

        logger.info(f"Initialized in-memory vendor store with {self.count()} vendors")

    def get(self, vendor_id: str) -> Optional[VendorProfile]:
        with self._guard:
            profile = self._vendors_by_id.get(vendor_id) if vendor_id else None
            return profile.model_copy(deep=True) if profile else None

    def get_by_tax_id(self, kvk_number: str, vat_number: str) -> Optional[VendorProfile]:
        key = tax_id_key(kvk_number, vat_number)
        if not key:
            return None

        with self._guard:
            vendor_id = self._ids_by_tax_id.get(key)
            if vendor_id is None and kvk_number and vat_number:
                # Profile may have been indexed on its VAT number only
                vendor_id = self._ids_by_tax_id.get(tax_id_key("", vat_number))
            return self.get(vendor_id) if vendor_id else None

    def get_by_name(self, name: str) -> Optional[VendorProfile]:
        normalized = normalize_vendor_name(name)
        if not normalized:
            return None

        with self._guard:
            vendor_id = self._ids_by_name.get(normalized)
            if vendor_id is None:
                match = self.match_strategy.find(normalized, self._ids_by_name.keys())
                if match is not None:
                    logger.debug(f"Fuzzy vendor match '{normalized}' -> '{match}'")
                    vendor_id = self._ids_by_name[match]
            return self.get(vendor_id) if vendor_id else None

    def search(self, term: str) -> List[VendorProfile]:
        if not term:
            return []

        normalized = normalize_vendor_name(term)
        with self._guard:
            results = [
                p for p in self._vendors_by_id.values()
                if (normalized and self.match_strategy.matches(normalized, p.normalized_name))
                or term.lower() in p.vendor_name.lower()
            ]
            results.sort(key=lambda p: p.invoice_count, reverse=True)
            return [p.model_copy(deep=True) for p in results]

    def upsert(self, profile: VendorProfile) -> str:
        if profile is None:
            raise ValueError("profile is required")

        stored = profile.model_copy(deep=True)
        if not stored.normalized_name:
            stored.normalized_name = normalize_vendor_name(stored.vendor_name)

        with self._guard:
            self._vendors_by_id[stored.id] = stored

            key = tax_id_key(stored.kvk_number, stored.vat_number)
            if key:
                self._ids_by_tax_id[key] = stored.id
            if stored.kvk_number and stored.vat_number:
                self._ids_by_tax_id[tax_id_key("", stored.vat_number)] = stored.id
            if stored.normalized_name:
                self._ids_by_name[stored.normalized_name] = stored.id

        logger.info("Upserted vendor profile", vendor_name=stored.vendor_name, vendor_id=stored.id)
        return stored.id

    def list_by_category(self, category: str) -> List[VendorProfile]:
        if not category:
            return []

        wanted = category.lower()
        with self._guard:
            results = [
                p for p in self._vendors_by_id.values()
                if wanted in (c.lower() for c in p.business_categories)
            ]
            results.sort(key=lambda p: p.invoice_count, reverse=True)
            return [p.model_copy(deep=True) for p in results]

    def list_with_anomalies(self) -> List[VendorProfile]:
        with self._guard:
            results = [p for p in self._vendors_by_id.values() if p.trust_metrics.detected_anomalies]
            results.sort(
                key=lambda p: sum(a.severity for a in p.trust_metrics.unresolved_anomalies()),
                reverse=True
            )
            return [p.model_copy(deep=True) for p in results]

    def common_services_in_category(self, category: str) -> List[ServicePattern]:
        merged: Dict[str, ServicePattern] = {}
        for profile in self.list_by_category(category):
            for service in profile.common_services.values():
                existing = merged.get(service.service_name)
                if existing is None:
                    merged[service.service_name] = service.model_copy(deep=True)
                    continue

                existing.frequency += service.frequency
                existing.first_seen = min(existing.first_seen, service.first_seen)
                existing.last_seen = max(existing.last_seen, service.last_seen)
                for keyword in service.related_keywords:
                    if keyword not in existing.related_keywords:
                        existing.related_keywords.append(keyword)

        return sorted(merged.values(), key=lambda s: s.frequency, reverse=True)

    def aggregate_industry_price_ranges(self) -> Dict[str, PriceBucket]:
        """
        Merge every vendor's buckets per category.

        Min and max are taken across vendors; the average is weighted by
        sample size.
        """
        with self._guard:
            rows = [
                {
                    'category': category,
                    'min_price': bucket.min_price,
                    'max_price': bucket.max_price,
                    'weighted_total': bucket.average_price * bucket.sample_size,
                    'sample_size': bucket.sample_size,
                }
                for profile in self._vendors_by_id.values()
                for category, bucket in profile.price_ranges.items()
            ]

        if not rows:
            return {}

        df = pd.DataFrame(rows)
        grouped = df.groupby('category').agg(
            min_price=('min_price', 'min'),
            max_price=('max_price', 'max'),
            weighted_total=('weighted_total', 'sum'),
            sample_size=('sample_size', 'sum'),
        )

        return {
            category: PriceBucket(
                item_category=category,
                min_price=float(row['min_price']),
                max_price=float(row['max_price']),
                average_price=float(row['weighted_total'] / row['sample_size']),
                sample_size=int(row['sample_size'])
            )
            for category, row in grouped.iterrows()
        }

    def count(self) -> int:
        with self._guard:
            return len(self._vendors_by_id)

    def delete(self, vendor_id: str) -> bool:
        with self._guard:
            profile = self._vendors_by_id.pop(vendor_id, None) if vendor_id else None
            if profile is None:
                return False

            self._ids_by_tax_id = {k: v for k, v in self._ids_by_tax_id.items() if v != vendor_id}
            self._ids_by_name = {k: v for k, v in self._ids_by_name.items() if v != vendor_id}

        logger.info("Deleted vendor profile", vendor_name=profile.vendor_name, vendor_id=vendor_id)
        return True

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            identity_lock = self._identity_locks.setdefault(key, threading.Lock())
        with identity_lock:
            yield


def sample_vendor_profiles() -> List[VendorProfile]:
    """Development seed data"""
    now = datetime.now()

    jansen = VendorProfile(
        vendor_name="Bouwbedrijf Jansen B.V.",
        normalized_name=normalize_vendor_name("Bouwbedrijf Jansen B.V."),
        kvk_number="12345678",
        vat_number="NL123456789B01",
        known_addresses={"Bouwweg 123, 1234 AB Amsterdam"},
        business_categories=["Construction", "Renovation", "Carpentry"],
        specialty_services=["Home renovation", "Extension building", "Foundation work"],
        invoice_count=15,
        first_seen=now - timedelta(days=180),
        last_seen=now - timedelta(days=5),
        trust_metrics=TrustMetrics(
            reliability_score=0.92,
            consistency_score=0.85,
            price_stability_score=0.78,
            document_quality_score=0.88
        ),
        payment_details=[
            PaymentDetails(
                account_holder_name="Bouwbedrijf Jansen B.V.",
                iban="NL91ABNA0417164300",
                bic="ABNANL2A",
                bank_name="ABN AMRO"
            )
        ]
    )

    de_vries = VendorProfile(
        vendor_name="Loodgietersbedrijf De Vries",
        normalized_name=normalize_vendor_name("Loodgietersbedrijf De Vries"),
        kvk_number="87654321",
        vat_number="NL987654321B01",
        known_addresses={"Waterstraat 45, 2345 BC Rotterdam"},
        business_categories=["Plumbing", "Bathroom Renovation", "Heating Systems"],
        specialty_services=["Leak repair", "Bathroom installation", "Central heating"],
        invoice_count=8,
        first_seen=now - timedelta(days=120),
        last_seen=now - timedelta(days=12),
        trust_metrics=TrustMetrics(
            reliability_score=0.85,
            consistency_score=0.82,
            price_stability_score=0.90,
            document_quality_score=0.75
        ),
        payment_details=[
            PaymentDetails(
                account_holder_name="L. de Vries",
                iban="NL39RABO0300065264",
                bic="RABONL2U",
                bank_name="Rabobank"
            )
        ],
        common_services={
            "Bathroom installation": ServicePattern(
                service_name="Bathroom installation",
                frequency=5,
                first_seen=now - timedelta(days=120),
                last_seen=now - timedelta(days=12)
            ),
            "Central heating repair": ServicePattern(
                service_name="Central heating repair",
                frequency=3,
                first_seen=now - timedelta(days=90),
                last_seen=now - timedelta(days=35)
            ),
        },
        price_ranges={
            "Bathroom installation": PriceBucket(
                item_category="Bathroom installation",
                min_price=2500.00,
                max_price=7500.00,
                average_price=4200.00,
                sample_size=5
            ),
            "Central heating repair": PriceBucket(
                item_category="Central heating repair",
                min_price=150.00,
                max_price=350.00,
                average_price=225.00,
                sample_size=3
            ),
        }
    )

    kleurrijk = VendorProfile(
        vendor_name="Schildersbedrijf Kleurrijk VOF",
        normalized_name=normalize_vendor_name("Schildersbedrijf Kleurrijk VOF"),
        kvk_number="23456789",
        vat_number="NL234567890B01",
        known_addresses={"Verfstraat 67, 3456 CD Utrecht"},
        business_categories=["Painting", "Wallpapering", "Plastering"],
        specialty_services=["Interior painting", "Exterior painting", "Decorative painting"],
        invoice_count=12,
        first_seen=now - timedelta(days=150),
        last_seen=now - timedelta(days=8),
        trust_metrics=TrustMetrics(
            reliability_score=0.95,
            consistency_score=0.93,
            price_stability_score=0.88,
            document_quality_score=0.82,
            detected_anomalies=[
                AnomalyRecord(
                    anomaly_type=AnomalyType.PRICE_INCREASE,
                    description="Significant price increase for interior painting",
                    detected_at=now - timedelta(days=8),
                    severity=0.4
                )
            ]
        )
    )

    return [jansen, de_vries, kleurrijk]
