# envelopes/services/categorize.py
"""
Envelope category derivation for imported transactions.

Order of precedence:
1. account-type rules (card payments, card interest and fees)
2. aggregator category hints, most specific first
3. merchant keyword rules
4. AI suggestion among the user's envelopes (feature flagged)
5. settings.default_category ("Needs a Category")
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from config import settings
from models import CREDIT, CREDIT_CARD_PAYMENTS_GROUP
from envelopes.services.auto_categorize import suggest_envelope

INTEREST_AND_FEES = "Interest & Fees"

# Aggregator category hint (lower case) -> envelope name
HINT_MAPPING: Dict[str, str] = {
    "food and drink": "Eating Out",
    "restaurants": "Eating Out",
    "fast food": "Eating Out",
    "coffee shop": "Eating Out",
    "bar": "Eating Out",
    "food delivery": "Eating Out",
    "groceries": "Groceries",
    "supermarkets": "Groceries",
    "supermarkets and grocery stores": "Groceries",
    "food and drink, groceries": "Groceries",
    "transportation": "Transportation",
    "gas stations": "Transportation",
    "taxi": "Transportation",
    "parking": "Transportation",
    "public transportation": "Transportation",
    "ride share": "Transportation",
    "car rental": "Transportation",
    "utilities_electric": "Electric",
    "electric": "Electric",
    "water": "Water",
    "internet and cable": "Internet",
    "telecommunications": "Cellphone",
    "phone": "Cellphone",
    "payment, rent": "Rent/Mortgage",
    "payment, mortgage": "Rent/Mortgage",
    "home improvement": "Home Improvement",
    "healthcare": "Health & Wellness",
    "pharmacies": "Health & Wellness",
    "gyms and fitness centers": "Hobbies",
    "entertainment": "Entertainment",
    "movie theaters": "Entertainment",
    "payment, credit card": CREDIT_CARD_PAYMENTS_GROUP,
}

# Envelope name -> merchant keywords
MERCHANT_RULES: Dict[str, List[str]] = {
    "Eating Out": [
        "mcdonalds", "burger king", "taco bell", "subway", "chipotle", "starbucks",
        "dunkin", "restaurant", "cafe", "bistro", "grill", "diner", "pizza", "sushi",
        "doordash", "uber eats", "grubhub",
    ],
    "Groceries": [
        "kroger", "safeway", "albertsons", "publix", "wegmans", "whole foods",
        "trader joe", "aldi", "costco", "supermarket", "grocery",
    ],
    "Transportation": [
        "shell", "exxon", "chevron", "mobil", "speedway", "wawa", "uber", "lyft",
        "taxi", "parking", "toll", "amtrak", "fuel", "gas station",
    ],
    "Electric": ["electric", "power company", "duke energy"],
    "Water": ["water utility", "water department", "sewer"],
    "Internet": ["comcast", "xfinity", "internet", "fios"],
    "Cellphone": ["verizon", "t-mobile", "wireless", "phone bill"],
    "Rent/Mortgage": ["rent", "mortgage", "property management"],
    "Health & Wellness": ["pharmacy", "cvs", "walgreens", "doctor", "dental", "clinic", "hospital"],
    "Home Maintenance": ["plumber", "electrician", "handyman", "home depot", "lowes"],
    "Auto Maintenance": ["auto repair", "mechanic", "oil change", "tire", "car wash"],
    "Entertainment": ["cinema", "movie", "theater", "concert", "netflix", "spotify"],
    "Hobbies": ["gym", "fitness", "yoga"],
    "Gifts": ["gift", "florist"],
}


def _from_hints(hints: Sequence[str]) -> str | None:
    lowered = [h.strip().lower() for h in hints if h and h.strip()]
    if not lowered:
        return None
    candidates = [", ".join(lowered)]
    if len(lowered) > 1:
        candidates.append(f"{lowered[0]}, {lowered[1]}")
    candidates.extend(reversed(lowered))
    for key in candidates:
        if key in HINT_MAPPING:
            return HINT_MAPPING[key]
    return None


def _from_merchant(merchant: str) -> str | None:
    merchant = (merchant or "").lower()
    if not merchant:
        return None
    for envelope_name, keywords in MERCHANT_RULES.items():
        if any(keyword in merchant for keyword in keywords):
            return envelope_name
    return None


def derive_category(
    description: str,
    amount: Decimal,
    account_type: str,
    hints: Sequence[str] = (),
    account_name: str = "",
    envelope_names: Iterable[str] = (),
) -> str:
    """Pick the envelope category for a normalized (canonical-sign) transaction."""
    if account_type == CREDIT:
        text = f"{description} {' '.join(hints)}".lower()
        if amount > 0:
            return CREDIT_CARD_PAYMENTS_GROUP
        if "interest" in text or "fee" in text:
            return INTEREST_AND_FEES

    category = _from_hints(hints) or _from_merchant(description)
    if category:
        return category

    suggested, _, _ = suggest_envelope(description, account_name, amount, envelope_names)
    return suggested or settings.default_category
