"""Fixed internal vocabularies that provider dimensions are mapped onto."""
from typing import Optional


VISITOR_CATEGORIES: tuple[str, ...] = (
    "organic_search",
    "paid_search",
    "organic_social",
    "paid_social",
    "direct",
    "email",
    "affiliate",
    "display",
    "video",
    "referral",
    "unassigned",
    "paid_other",
)

CATCH_ALL_CATEGORY = "referral"

# GA4 sessionDefaultChannelGroup (lower-cased) -> internal category
CHANNEL_GROUP_MAPPING: dict[str, str] = {
    "organic search": "organic_search",
    "paid search": "paid_search",
    "organic social": "organic_social",
    "paid social": "paid_social",
    "direct": "direct",
    "email": "email",
    "affiliates": "affiliate",
    "display": "display",
    "video": "video",
    "referral": "referral",
    "unassigned": "unassigned",
    "paid other": "paid_other",
    "(other)": "referral",
}

# User-facing objective names -> Meta API objective values
OBJECTIVE_MAPPING: dict[str, str] = {
    "ENGAGEMENT": "OUTCOME_ENGAGEMENT",
    "AWARENESS": "OUTCOME_AWARENESS",
    "REACH": "OUTCOME_AWARENESS",
    "TRAFFIC": "OUTCOME_TRAFFIC",
    "LEADS": "OUTCOME_LEADS",
    "CONVERSIONS": "OUTCOME_CONVERSIONS",
    "SALES": "OUTCOME_SALES",
    "APP_PROMOTION": "OUTCOME_APP_PROMOTION",
    "STORE_TRAFFIC": "OUTCOME_STORE_TRAFFIC",
}

# First friendly name wins for API values shared by several names
_FRIENDLY_OBJECTIVES: dict[str, str] = {}
for _friendly, _api_value in OBJECTIVE_MAPPING.items():
    _FRIENDLY_OBJECTIVES.setdefault(_api_value, _friendly)


def map_channel_group(channel_group: Optional[str]) -> str:
    """Map a GA4 channel group onto the internal visitor categories."""
    if not channel_group:
        return "unassigned"
    if not isinstance(channel_group, str):
        return CATCH_ALL_CATEGORY
    return CHANNEL_GROUP_MAPPING.get(channel_group.strip().lower(), CATCH_ALL_CATEGORY)


def to_api_objective(value: str) -> str:
    value = value.strip().upper()
    return OBJECTIVE_MAPPING.get(value, value)


def to_friendly_objective(api_value: Optional[str]) -> str:
    if not api_value or not isinstance(api_value, str):
        return "UNKNOWN"
    return _FRIENDLY_OBJECTIVES.get(api_value, api_value)


def split_filter(value: Optional[str]) -> list[str]:
    """Split a comma-separated filter value, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
