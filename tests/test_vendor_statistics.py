"""Unit tests for running price/service statistics and trust blending"""

import pytest
from datetime import datetime
from bouwdepot_validator.models.invoice import LineItem, VisualAnalysis
from bouwdepot_validator.models.vendor_profile import PriceBucket, ServicePattern
from bouwdepot_validator.vendors import statistics
from bouwdepot_validator.vendors.matching import TokenSetMatchStrategy


def bucket(min_price, max_price, average_price, sample_size, category="Bathroom installation"):
    return PriceBucket(
        item_category=category,
        min_price=min_price,
        max_price=max_price,
        average_price=average_price,
        sample_size=sample_size
    )


# Blending

def test_historical_weight_monotonic_and_bounded():
    """Weight never decreases with more invoices and saturates at 0.8"""
    weights = [statistics.historical_weight(n) for n in range(0, 30)]

    assert weights[0] == 0.0
    assert all(a <= b for a, b in zip(weights, weights[1:]))
    assert max(weights) == 0.8
    assert statistics.historical_weight(8) == 0.8
    assert statistics.historical_weight(1000) == 0.8


@pytest.mark.parametrize("value,count", [(0.5, 0), (0.73, 4), (0.1, 25), (1.0, 9)])
def test_blend_is_idempotent(value, count):
    """Blending a score with itself leaves it unchanged"""
    assert statistics.blend(value, value, count) == pytest.approx(value)


def test_blend_keeps_twenty_percent_responsiveness():
    """Established vendors still move 20% towards new evidence"""
    assert statistics.blend(1.0, 0.0, 50) == pytest.approx(0.8)
    assert statistics.blend(0.5, 1.0, 0) == pytest.approx(1.0)
    assert statistics.blend(0.5, 1.0, 5) == pytest.approx(0.75)


# Price buckets

def test_new_bucket_starts_at_price():
    result = statistics.new_bucket("Kitchen cabinets", 1200.0)

    assert result.min_price == result.max_price == result.average_price == 1200.0
    assert result.sample_size == 1


@pytest.mark.parametrize("price", [100.0, 2500.0, 4200.0, 9500.0])
def test_update_bucket_running_statistics(price):
    """min/max track extremes and the average absorbs exactly the new price"""
    old = bucket(2500.0, 7500.0, 4200.0, 5)
    new = statistics.update_bucket(old, price)

    assert new.min_price == min(old.min_price, price)
    assert new.max_price == max(old.max_price, price)
    assert new.sample_size == old.sample_size + 1
    assert new.average_price * new.sample_size - old.average_price * old.sample_size == pytest.approx(price)
    assert new.min_price <= new.average_price <= new.max_price

    # Input bucket untouched
    assert old.sample_size == 5


def test_update_price_ranges_matches_by_substring():
    """Descriptions containing an existing category update that bucket"""
    ranges = {"Bathroom installation": bucket(2500.0, 7500.0, 4200.0, 5)}
    items = [
        LineItem(description="Bathroom installation incl. shower", quantity=1, total_price=5000.0),
        LineItem(description="Tile adhesive", quantity=4, total_price=100.0),
    ]

    updated = statistics.update_price_ranges(ranges, items)

    assert set(updated) == {"Bathroom installation", "Tile adhesive"}
    assert updated["Bathroom installation"].sample_size == 6
    assert updated["Tile adhesive"].average_price == 25.0
    assert ranges["Bathroom installation"].sample_size == 5


def test_update_price_ranges_quantity_zero_counts_as_one():
    items = [LineItem(description="Roof repair", quantity=0, total_price=800.0)]

    updated = statistics.update_price_ranges({}, items)

    assert updated["Roof repair"].average_price == 800.0


def test_update_price_ranges_skips_blank_descriptions():
    items = [LineItem(description="   ", total_price=50.0)]
    assert statistics.update_price_ranges({}, items) == {}


def test_update_price_ranges_with_token_set_strategy():
    """Word order does not split buckets under the token-set strategy"""
    ranges = {"installation bathroom": bucket(2500.0, 7500.0, 4200.0, 5)}
    items = [LineItem(description="Bathroom installation", total_price=3000.0)]

    updated = statistics.update_price_ranges(ranges, items, TokenSetMatchStrategy(0.9))

    assert list(updated) == ["installation bathroom"]
    assert updated["installation bathroom"].sample_size == 6


# Service patterns

def test_service_patterns_keyed_by_exact_description():
    """Synonymous descriptions create separate patterns"""
    now = datetime(2025, 3, 1, 12, 0)
    services = {
        "Bathroom installation": ServicePattern(
            service_name="Bathroom installation",
            frequency=2,
            first_seen=datetime(2025, 1, 1),
            last_seen=datetime(2025, 1, 1)
        )
    }
    items = [
        LineItem(description="Bathroom installation"),
        LineItem(description="Bathroom installation incl. shower"),
    ]

    updated = statistics.update_service_patterns(services, items, now)

    assert updated["Bathroom installation"].frequency == 3
    assert updated["Bathroom installation"].last_seen == now
    assert updated["Bathroom installation"].first_seen == datetime(2025, 1, 1)
    assert updated["Bathroom installation incl. shower"].frequency == 1


# Observations

def test_price_stability_from_dispersion():
    ranges = {
        "a": bucket(80.0, 120.0, 100.0, 4, "a"),   # 0.2 deviation
        "b": bucket(50.0, 50.0, 50.0, 1, "b"),     # ignored, single sample
    }
    assert statistics.average_price_dispersion(ranges) == pytest.approx(0.2)
    assert statistics.price_stability_observation(ranges) == pytest.approx(0.8)


def test_price_stability_none_without_repeat_samples():
    ranges = {"a": bucket(50.0, 50.0, 50.0, 1, "a")}
    assert statistics.price_stability_observation(ranges) is None


def test_price_stability_floors_at_zero():
    ranges = {"a": bucket(10.0, 500.0, 100.0, 3, "a")}
    assert statistics.price_stability_observation(ranges) == 0.0


def test_document_quality_observation():
    assert statistics.document_quality_observation(None) is None

    good = VisualAnalysis(has_logo=True, has_stamp=True, has_table_structure=True)
    assert statistics.document_quality_observation(good) == pytest.approx(0.8)

    poor = VisualAnalysis(detected_anomalies=["font mismatch", "misaligned totals", "pasted logo", "blur", "crop", "x"])
    assert statistics.document_quality_observation(poor) == 0.0


# Price bands

def test_band_deviation_inside_band():
    b = bucket(2500.0, 7500.0, 4200.0, 5)
    assert statistics.price_band(b, 0.3) == pytest.approx((1750.0, 9750.0))
    assert statistics.band_deviation(9500.0, b, 0.3) is None
    assert statistics.band_deviation(1750.0, b, 0.3) is None


def test_band_deviation_measured_against_crossed_bound():
    b = bucket(100.0, 200.0, 150.0, 3)
    assert statistics.band_deviation(60.0, b, 0.3) == pytest.approx(0.4)
    assert statistics.band_deviation(300.0, b, 0.3) == pytest.approx(0.5)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
