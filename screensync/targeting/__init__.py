"""
Geo targeting of advertisers onto screens.
"""

from screensync.targeting.matcher import MatchResult, TargetingMatcher, TargetRule
from screensync.targeting.regions import REGIONS, normalize_name, resolve_region

__all__ = [
    "TargetingMatcher",
    "MatchResult",
    "TargetRule",
    "REGIONS",
    "normalize_name",
    "resolve_region",
]
