"""Vendor profiling and trust scoring"""

from .matching import MatchStrategy, SubstringMatchStrategy, TokenSetMatchStrategy, get_match_strategy
from .store import VendorProfileStore, InMemoryVendorProfileStore, sample_vendor_profiles
from .trust_engine import VendorTrustEngine

__all__ = [
    "MatchStrategy",
    "SubstringMatchStrategy",
    "TokenSetMatchStrategy",
    "get_match_strategy",
    "VendorProfileStore",
    "InMemoryVendorProfileStore",
    "sample_vendor_profiles",
    "VendorTrustEngine",
]
