from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, List, Optional, Sequence

from storefront_pricing.app.models.config import Zone
from storefront_pricing.engine.canonical.models import Address

_RANGE_PATTERN = re.compile(r"^\s*(\d+)\s*\.\.\s*(\d+)\s*$")


def _normalize_postal(value: str) -> str:
    return "".join(value.split()).upper()


def postal_matches(postal_code: str, pattern: str) -> bool:
    """Match a postal code against a glob (``*``, ``?``) or numeric range pattern.

    ``90*`` is a prefix match, ``*-1234`` a suffix match, ``*`` matches any
    code and ``10001..10099`` is an inclusive numeric range over the leading
    segment of the code, so ZIP+4 codes such as ``10050-1234`` fall inside it.
    Hyphenated patterns like ``12345-6789`` stay literal. Comparison ignores
    case and whitespace.
    """
    if not pattern or not pattern.strip():
        return False
    code = _normalize_postal(postal_code)
    range_match = _RANGE_PATTERN.match(pattern)
    if range_match:
        digits = code.split("-", 1)[0]
        if not digits.isdigit():
            return False
        low, high = int(range_match.group(1)), int(range_match.group(2))
        return low <= int(digits) <= high
    normalized = _normalize_postal(pattern)
    # fnmatch would treat [ ] as character classes; postal patterns only use * and ?.
    normalized = normalized.replace("[", "[[]")
    return fnmatchcase(code, normalized)


def _state_keys(address: Address) -> List[str]:
    if not address.state:
        return []
    return [address.state, f"{address.country}-{address.state}"]


def _is_excluded(zone: Zone, address: Address) -> bool:
    if address.country in zone.excluded_countries:
        return True
    if any(key in zone.excluded_states for key in _state_keys(address)):
        return True
    if address.postal_code and any(
        postal_matches(address.postal_code, pattern) for pattern in zone.excluded_postal_codes
    ):
        return True
    return False


def _is_included(zone: Zone, address: Address) -> bool:
    if not zone.has_criteria:
        return False
    if zone.countries and address.country not in zone.countries:
        return False
    if zone.states and not any(key in zone.states for key in _state_keys(address)):
        return False
    if zone.postal_patterns:
        if not address.postal_code:
            return False
        if not any(postal_matches(address.postal_code, pattern) for pattern in zone.postal_patterns):
            return False
    if zone.cities:
        if not address.city or address.city.casefold() not in zone.cities:
            return False
    return True


def zone_matches(zone: Zone, address: Address) -> bool:
    return zone.is_active and _is_included(zone, address) and not _is_excluded(zone, address)


def _selection_key(zone: Zone) -> tuple[int, int, str]:
    return (-zone.priority, zone.sort_order, zone.id)


def match_zone(address: Optional[Address], zones: Iterable[Zone]) -> Optional[Zone]:
    candidates = [zone for zone in zones if zone.is_active]
    if address is not None:
        matched = [zone for zone in candidates if zone_matches(zone, address)]
        if matched:
            return sorted(matched, key=_selection_key)[0]
    defaults = [zone for zone in candidates if zone.is_default]
    if address is not None:
        defaults = [zone for zone in defaults if not _is_excluded(zone, address)]
    if not defaults:
        return None
    return sorted(defaults, key=_selection_key)[0]


@dataclass(frozen=True)
class ZoneMatcher:
    zones: Sequence[Zone]

    def match(self, address: Optional[Address]) -> Optional[Zone]:
        return match_zone(address, self.zones)

    def matching(self, address: Address) -> List[Zone]:
        return sorted(
            (zone for zone in self.zones if zone_matches(zone, address)),
            key=_selection_key,
        )
