# filename: envelopes/services/auto_categorize.py
"""
AI envelope suggestion for imported transactions.

Used as the last resort before the default "Needs a Category" envelope, when
neither the aggregator hints nor the merchant rules recognized a transaction.

- Optional: controlled by AUTO_CATEGORIZE_AI=1 (settings.auto_categorize_ai)
- Strict: the answer must be one of the user's envelope names
- Safe: never raises to callers; every failure returns None

Public API:
    suggest_envelope(description, account_name, amount, envelope_names)
        -> (envelope_name: str|None, confidence: float, reason: str)
"""

from __future__ import annotations

import json
import logging
import os
import re
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

from config import settings

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

_INSTRUCTIONS = (
    "You assign personal budgeting transactions to spending envelopes.\n"
    "Reply with JSON only, no markdown.\n"
    "Pick an envelope ONLY from the provided list, or null when unsure.\n"
    'Schema: { "envelope": string|null, "confidence": number, "reason": string }\n'
    "confidence is between 0 and 1; reason names the merchant or keyword cue.\n"
)


def _shorten(value: Any, limit: int) -> str:
    text = str(value or "").strip()
    return text if len(text) <= limit else text[:limit].rstrip() + "…"


def _confidence(value: Any) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _parse_reply(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(_FENCE_RE.sub("", text).strip())
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _client():
    """Lazily build an OpenAI client; None when the SDK or key is unavailable."""
    if not (os.getenv("OPENAI_API_KEY") or "").strip():
        return None
    try:
        from openai import OpenAI

        return OpenAI()
    except Exception:
        logger.warning("OpenAI client unavailable", exc_info=True)
        return None


def _ask(client, description: str, account_name: str, amount: Optional[Decimal], envelopes: list[str]) -> Optional[Dict[str, Any]]:
    payload = {
        "envelopes": envelopes,
        "transaction": {
            "description": description,
            "account": account_name,
            "amount": None if amount is None else str(amount),
        },
    }
    try:
        response = client.responses.create(
            model=settings.auto_categorize_model,
            input=[
                {"role": "developer", "content": _INSTRUCTIONS},
                {"role": "user", "content": json.dumps(payload, ensure_ascii=False)},
            ],
        )
    except Exception:
        logger.warning("Envelope suggestion request failed", exc_info=True)
        return None

    text = (getattr(response, "output_text", "") or "").strip()
    return _parse_reply(text) if text else None


def suggest_envelope(
    description: str,
    account_name: str = "",
    amount: Optional[Decimal] = None,
    envelope_names: Iterable[str] = (),
) -> Tuple[Optional[str], float, str]:
    if not settings.auto_categorize_ai:
        return None, 0.0, "ai_disabled"

    names = sorted({str(n).strip() for n in envelope_names if str(n).strip()})
    if not names:
        return None, 0.0, "no_envelopes"

    description = _shorten(description, 300)
    if not description:
        return None, 0.0, "empty_description"

    client = _client()
    if client is None:
        return None, 0.0, "ai_unavailable"

    data = _ask(client, description, _shorten(account_name, 80), amount, names)
    if data is None:
        return None, 0.0, "ai_error"

    by_lower = {n.lower(): n for n in names}
    raw = data.get("envelope")
    envelope = by_lower.get(str(raw).strip().lower()) if raw is not None else None
    confidence = _confidence(data.get("confidence"))
    reason = _shorten(data.get("reason"), 120) or "ai_suggested"

    if envelope is None:
        return None, confidence, reason
    return envelope, confidence, reason
