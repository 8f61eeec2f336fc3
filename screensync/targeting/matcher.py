"""
Geo targeting: does an advertiser's targeting cover a screen's location?

Rules, in priority order:
1. No targeting at all -> nationwide match
2. Screen without city and region -> no match
3. Exact city, city named as a target region, exact region
4. Partial (substring) match in either direction, for alias spellings

Every result carries a reason string so inclusion decisions can be audited.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from screensync.targeting.regions import normalize_name, region_label, resolve_region

if TYPE_CHECKING:
    from screensync.models import Advertiser, Screen

# Shorter normalized strings are never used for substring matching
MIN_PARTIAL_LENGTH = 3


@dataclass(frozen=True)
class MatchResult:
    match: bool
    reason: str

    def __bool__(self) -> bool:
        return self.match


@dataclass(frozen=True)
class TargetRule:
    """Normalized-on-demand targeting of one advertiser."""

    regions: tuple[str, ...] = ()
    cities: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.regions and not self.cities

    @classmethod
    def from_advertiser(cls, advertiser: "Advertiser") -> "TargetRule":
        """Advertiser targeting; a contract-level override replaces it."""
        override: dict[str, Any] | None = advertiser.targeting_override
        if override:
            return cls(
                regions=_clean(override.get("regions")),
                cities=_clean(override.get("cities")),
            )
        return cls(
            regions=_clean(advertiser.target_region_codes),
            cities=_clean(advertiser.target_cities),
        )


def _clean(values: Iterable[str] | None) -> tuple[str, ...]:
    if not values:
        return ()
    return tuple(v for v in values if isinstance(v, str) and v.strip())


class TargetingMatcher:
    """Pure matcher of screen locations against targeting rules."""

    def matches(
        self,
        screen_city: str | None,
        screen_region: str | None,
        target_regions: Iterable[str] = (),
        target_cities: Iterable[str] = (),
    ) -> MatchResult:
        cities = [c for c in (normalize_name(t) for t in target_cities) if c]
        region_names: list[str] = []
        region_codes: set[str] = set()
        for target in target_regions:
            name = normalize_name(target)
            if not name:
                continue
            region_names.append(name)
            code = resolve_region(target)
            if code:
                region_codes.add(code)
                region_names.append(normalize_name(region_label(code)))

        if not cities and not region_names:
            return MatchResult(True, "no_targeting: nationwide")

        city = normalize_name(screen_city)
        region_code = resolve_region(screen_region)
        if not city and not region_code:
            return MatchResult(False, "no_match: screen_has_no_location")

        display_city = (screen_city or "").strip()

        if city and city in cities:
            return MatchResult(True, f"city_match: {display_city}")

        if city and city in region_names:
            return MatchResult(True, f"city_region_match: {display_city}")

        if region_code and region_code in region_codes:
            return MatchResult(True, f"region_match: {region_code}")

        if city and len(city) >= MIN_PARTIAL_LENGTH:
            for target in (*cities, *region_names):
                if len(target) < MIN_PARTIAL_LENGTH:
                    continue
                if target in city or city in target:
                    return MatchResult(True, f"partial_match: {display_city}~{target}")

        return MatchResult(False, "no_match")

    def match_rule(
        self,
        screen_city: str | None,
        screen_region: str | None,
        rule: TargetRule,
    ) -> MatchResult:
        return self.matches(screen_city, screen_region, rule.regions, rule.cities)

    def match_screen(self, screen: "Screen", rule: TargetRule) -> MatchResult:
        return self.match_rule(screen.effective_city, screen.region_code, rule)
