# envelopes/services/defaults.py
#
# Default envelope layout
# Category groups and the envelopes each one starts with. Used to group lazily
# created envelopes and to populate a fresh month.

from typing import Dict, List

DEFAULT_ENVELOPE_GROUPS: Dict[str, List[str]] = {
    "Bills": ["Rent/Mortgage", "Electric", "Water", "Internet", "Cellphone"],
    "Frequent": ["Groceries", "Eating Out", "Transportation"],
    "Non-Monthly": ["Home Maintenance", "Auto Maintenance", "Gifts"],
    "Goals": ["Vacation", "Education", "Home Improvement"],
    "Quality of Life": ["Hobbies", "Entertainment", "Health & Wellness"],
}

FALLBACK_GROUP = "Misc"


def category_group_for(envelope_name: str) -> str:
    for group, names in DEFAULT_ENVELOPE_GROUPS.items():
        if envelope_name in names:
            return group
    return FALLBACK_GROUP


def all_default_envelopes() -> List[str]:
    return [name for names in DEFAULT_ENVELOPE_GROUPS.values() for name in names]
