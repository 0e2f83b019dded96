"""
Property parser for Voiceflow transcript variables

Extracts user category, rating, feedback and category-scoped locations from
the declared property bag of a transcript. Parsing is lenient: anything
unrecognized is left out, nothing here raises.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional

logger = logging.getLogger(__name__)


class UserCategory(str, Enum):
    """Mutually exclusive user categories"""
    TENANT = "tenant"
    INVESTOR = "investor"
    OWNER_OCCUPIER = "owneroccupier"


class LocationType(str, Enum):
    """Location scopes, one per user category"""
    RENTAL = "rental"
    INVESTOR = "investor"
    OWNER_OCCUPIER = "owneroccupier"


CATEGORY_LOCATION_TYPE = {
    UserCategory.TENANT: LocationType.RENTAL,
    UserCategory.INVESTOR: LocationType.INVESTOR,
    UserCategory.OWNER_OCCUPIER: LocationType.OWNER_OCCUPIER,
}

# Variable holding the location for each category
CATEGORY_LOCATION_VARIABLE = {
    UserCategory.TENANT: "rentallocation",
    UserCategory.INVESTOR: "investorlocation",
    UserCategory.OWNER_OCCUPIER: "owneroccupierlocation",
}

# Canonical locations offered for each location scope
LOCATIONS_BY_TYPE = {
    LocationType.RENTAL: frozenset({"wollongong", "huskisson", "nowra"}),
    LocationType.INVESTOR: frozenset({"wollongong", "nowra", "oranpark"}),
    LocationType.OWNER_OCCUPIER: frozenset({"wollongong", "nowra", "oranpark"}),
}

LOCATION_ALIASES = {
    "wollongong": "wollongong",
    "woollongong": "wollongong",
    "huskisson": "huskisson",
    "huskison": "huskisson",
    "nowra": "nowra",
    "oranpark": "oranpark",
    "oran park": "oranpark",
    "oran_park": "oranpark",
}

CATEGORY_KEYS = {"typeuser", "type_user"}
RATING_KEYS = {"rating", "satisfaction", "score"}
FEEDBACK_KEYS = {"feedback"}
LOCATION_KEYS = {
    LocationType.RENTAL: {"rentallocation", "rental_location"},
    LocationType.INVESTOR: {"investorlocation", "investor_location"},
    LocationType.OWNER_OCCUPIER: {
        "owneroccupierlocation",
        "owner_occupier_location",
        "owneroccupier_location",
    },
}

FEEDBACK_MAX_RATING = 3

_INTEGER_PATTERN = re.compile(r'(\d+)')


@dataclass
class ParsedProperties:
    """Partial record recovered from declared properties"""
    typeuser: Optional[UserCategory] = None
    rating: Optional[str] = None  # raw; see extract_rating
    feedback: Optional[str] = None
    rentallocation: Optional[str] = None
    investorlocation: Optional[str] = None
    owneroccupierlocation: Optional[str] = None

    def location_for(self, category: Optional[UserCategory]) -> Optional[str]:
        """Location declared for the given category, if any"""
        if category is None:
            return None
        return getattr(self, CATEGORY_LOCATION_VARIABLE[category])


def parse_category(value: Any) -> Optional[UserCategory]:
    """Accept only the three exact category spellings, case-insensitively"""
    if value is None or isinstance(value, bool):
        return None
    try:
        return UserCategory(str(value).strip().lower())
    except ValueError:
        return None


def normalize_location(value: Any, location_type: Optional[LocationType] = None) -> Optional[str]:
    """
    Map a location spelling to its canonical form

    Args:
        value: Raw location value
        location_type: When given, the canonical value must belong to this scope

    Returns:
        Canonical location or None
    """
    if value is None or isinstance(value, bool):
        return None
    canonical = LOCATION_ALIASES.get(str(value).strip().lower())
    if canonical is None:
        return None
    if location_type is not None and canonical not in LOCATIONS_BY_TYPE[location_type]:
        return None
    return canonical


def extract_rating(raw: Any) -> Optional[int]:
    """
    Extract a 1-5 rating from a loosely formatted value

    Best-effort heuristic, not a guaranteed-correct parse. The first embedded
    integer is used: 1-5 is taken as-is, 6-100 is read as a percentage and
    rescaled to 1-5 (half-up). Anything else yields None.

    Examples:
        "4/5" -> 4, "2 stars" -> 2, "80" -> 4, "N/A" -> None, "0" -> None
    """
    if raw is None or isinstance(raw, bool):
        return None

    text = str(raw).strip()
    if not text:
        return None

    match = _INTEGER_PATTERN.search(text)
    if not match:
        return None

    score = int(match.group(1))
    if 1 <= score <= 5:
        return score

    if 1 <= score <= 100:
        scaled = math.floor(score / 100 * 5 + 0.5)
        if 1 <= scaled <= 5:
            return scaled

    return None


def _stringify(value: Any) -> str:
    if value is None or value is False:
        return ""
    return str(value).strip()


def parse_properties(properties: Optional[Mapping[str, Any]]) -> ParsedProperties:
    """
    Parse declared transcript properties

    Keys are matched case-insensitively after trimming; values are trimmed and
    empty values skipped.

    Args:
        properties: Name/value property bag (may be None)

    Returns:
        ParsedProperties with only the recognized fields populated
    """
    result = ParsedProperties()
    if not properties:
        return result

    for key, value in properties.items():
        normalized_key = str(key).strip().lower()
        str_value = _stringify(value)
        if not str_value:
            continue

        if normalized_key in CATEGORY_KEYS:
            category = parse_category(str_value)
            if category is not None:
                result.typeuser = category

        elif normalized_key in RATING_KEYS:
            result.rating = str_value

        elif normalized_key in FEEDBACK_KEYS:
            result.feedback = str_value

        else:
            for location_type, keys in LOCATION_KEYS.items():
                if normalized_key in keys:
                    location = normalize_location(str_value, location_type)
                    if location is not None:
                        field_name = CATEGORY_LOCATION_VARIABLE[_category_for(location_type)]
                        setattr(result, field_name, location)
                    break

    return result


def _category_for(location_type: LocationType) -> UserCategory:
    for category, scoped in CATEGORY_LOCATION_TYPE.items():
        if scoped is location_type:
            return category
    raise KeyError(location_type)


def validate_properties(parsed: ParsedProperties) -> List[str]:
    """
    Check declared properties against the bot's variable contract

    Returns:
        Human-readable violation messages (empty when valid)
    """
    errors: List[str] = []

    if parsed.typeuser is UserCategory.TENANT:
        if parsed.investorlocation or parsed.owneroccupierlocation:
            errors.append("Tenant should not have investor or owner occupier location set")
    elif parsed.typeuser is UserCategory.INVESTOR:
        if parsed.rentallocation or parsed.owneroccupierlocation:
            errors.append("Investor should not have rental or owner occupier location set")
    elif parsed.typeuser is UserCategory.OWNER_OCCUPIER:
        if parsed.rentallocation or parsed.investorlocation:
            errors.append("Owner occupier should not have rental or investor location set")

    if parsed.feedback and parsed.rating:
        score = extract_rating(parsed.rating)
        if score is not None and score > FEEDBACK_MAX_RATING:
            errors.append("Feedback should only be provided for ratings 1-3")

    return errors

