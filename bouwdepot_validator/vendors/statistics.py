"""Running price/service statistics and trust blending"""

from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple
from bouwdepot_validator.constants import (
    MAX_HISTORICAL_WEIGHT,
    HISTORY_SATURATION_INVOICES,
    NEUTRAL_TRUST_SCORE,
)
from bouwdepot_validator.models.invoice import LineItem, VisualAnalysis
from bouwdepot_validator.models.vendor_profile import PriceBucket, ServicePattern
from .matching import MatchStrategy, SubstringMatchStrategy


def historical_weight(invoice_count: int) -> float:
    """Weight of historical evidence; saturates at 0.8 after ten invoices"""
    return min(MAX_HISTORICAL_WEIGHT, max(invoice_count, 0) / HISTORY_SATURATION_INVOICES)


def blend(current: float, incoming: float, invoice_count: int) -> float:
    """Blend a stored trust score with a new observation"""
    weight = historical_weight(invoice_count)
    return current * weight + incoming * (1.0 - weight)


def new_bucket(category: str, price: float) -> PriceBucket:
    return PriceBucket(
        item_category=category,
        min_price=price,
        max_price=price,
        average_price=price,
        sample_size=1
    )


def update_bucket(bucket: PriceBucket, price: float) -> PriceBucket:
    """Fold one unit price into a bucket, returning the updated bucket"""
    total = bucket.average_price * bucket.sample_size + price
    sample_size = bucket.sample_size + 1
    return bucket.model_copy(update={
        'min_price': min(bucket.min_price, price),
        'max_price': max(bucket.max_price, price),
        'average_price': total / sample_size,
        'sample_size': sample_size,
    })


def find_bucket_key(price_ranges: Dict[str, PriceBucket], description: str,
                    strategy: Optional[MatchStrategy] = None) -> Optional[str]:
    """Exact description first, then the first bucket the strategy matches"""
    if not description:
        return None
    if description in price_ranges:
        return description
    strategy = strategy or SubstringMatchStrategy()
    return strategy.find(description, price_ranges.keys())


def update_price_ranges(price_ranges: Dict[str, PriceBucket], line_items: Iterable[LineItem],
                        strategy: Optional[MatchStrategy] = None) -> Dict[str, PriceBucket]:
    """
    Fold every line item's unit price into the vendor's price buckets.

    Args:
        price_ranges: Current buckets keyed by item category
        line_items: Invoice line items
        strategy: Description matcher (substring containment by default)

    Returns:
        New mapping of item category to bucket
    """
    updated = dict(price_ranges)
    for item in line_items:
        description = (item.description or "").strip()
        if not description:
            continue

        price = item.effective_unit_price
        key = find_bucket_key(updated, description, strategy)
        if key is None:
            updated[description] = new_bucket(description, price)
        else:
            updated[key] = update_bucket(updated[key], price)
    return updated


def update_service_patterns(common_services: Dict[str, ServicePattern], line_items: Iterable[LineItem],
                            now: Optional[datetime] = None) -> Dict[str, ServicePattern]:
    """Count services by exact trimmed description"""
    now = now or datetime.now()
    updated = dict(common_services)
    for item in line_items:
        description = (item.description or "").strip()
        if not description:
            continue

        pattern = updated.get(description)
        if pattern is None:
            updated[description] = ServicePattern(
                service_name=description,
                frequency=1,
                first_seen=now,
                last_seen=now
            )
        else:
            updated[description] = pattern.model_copy(update={
                'frequency': pattern.frequency + 1,
                'last_seen': now,
            })
    return updated


def average_price_dispersion(price_ranges: Dict[str, PriceBucket]) -> Optional[float]:
    """Mean relative spread of the buckets with more than one sample, None if there are none"""
    deviations = []
    for bucket in price_ranges.values():
        if bucket.sample_size > 1 and bucket.average_price > 0:
            avg = bucket.average_price
            deviations.append(max(abs(bucket.max_price - avg), abs(bucket.min_price - avg)) / avg)

    if not deviations:
        return None
    return sum(deviations) / len(deviations)


def price_stability_observation(price_ranges: Dict[str, PriceBucket]) -> Optional[float]:
    dispersion = average_price_dispersion(price_ranges)
    if dispersion is None:
        return None
    return 1.0 - min(1.0, dispersion)


def document_quality_observation(visual_analysis: Optional[VisualAnalysis]) -> Optional[float]:
    if visual_analysis is None:
        return None

    score = NEUTRAL_TRUST_SCORE
    if visual_analysis.has_logo:
        score += 0.1
    if visual_analysis.has_stamp:
        score += 0.1
    if visual_analysis.has_table_structure:
        score += 0.1
    score -= 0.1 * len(visual_analysis.detected_anomalies)
    return max(0.0, min(1.0, score))


def price_band(bucket: PriceBucket, tolerance: float) -> Tuple[float, float]:
    """Acceptable unit-price band around a bucket"""
    return bucket.min_price * (1 - tolerance), bucket.max_price * (1 + tolerance)


def band_deviation(price: float, bucket: PriceBucket, tolerance: float) -> Optional[float]:
    """
    Relative deviation of a price outside the bucket's tolerance band.

    Measured against the bucket bound on the violated side. Returns None when
    the price lies inside the band.
    """
    low, high = price_band(bucket, tolerance)
    if price < low:
        return (bucket.min_price - price) / bucket.min_price if bucket.min_price > 0 else 0.0
    if price > high:
        return (price - bucket.max_price) / bucket.max_price if bucket.max_price > 0 else 0.0
    return None
