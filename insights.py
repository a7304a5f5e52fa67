from __future__ import annotations

import json
import logging
from typing import Callable, Optional, Sequence
from urllib.request import Request, urlopen

from aggregation import SpendingSummary, TransactionLike, summarize
from config import Settings, get_settings

logger = logging.getLogger(__name__)

NOTHING_TO_ANALYZE = "Add a few transactions first so there is something to analyze."
EMPTY_RESPONSE = "Unable to generate insights at this time."
FALLBACK_MESSAGE = (
    "The AI financial advisor is currently offline. Please try again later."
)

PROMPT_TEMPLATE = """Act as a high-end financial advisor. Analyze these spending patterns for the user:
Total Income: {income:.2f}
Total Expenses: {expense:.2f}
Category Breakdown: {categories}

Please provide:
1. A professional summary of their financial health.
2. One specific actionable tip to improve savings.
3. A prediction of where they might be in 3 months if this trend continues.
Keep it encouraging but realistic. Format with Markdown."""


def build_prompt(summary: SpendingSummary) -> str:
    categories = {name: round(total, 2) for name, total in summary.categories.items()}
    return PROMPT_TEMPLATE.format(
        income=summary.income,
        expense=summary.expense,
        categories=json.dumps(categories),
    )


def _extract_text(payload: dict) -> str:
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts).strip()


class InsightService:
    """Asks the generative-text API for a narrative summary.

    One request per call and no retries. Failures are logged and turned
    into a fixed message instead of an exception.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        opener: Callable = urlopen,
    ) -> None:
        self.settings = settings or get_settings()
        self.opener = opener

    def request_insight(self, transactions: Sequence[TransactionLike]) -> str:
        if not transactions:
            return NOTHING_TO_ANALYZE
        if not self.settings.insight_api_key:
            logger.warning("insight_request: skipped reason=no_api_key")
            return FALLBACK_MESSAGE

        prompt = build_prompt(summarize(transactions))
        try:
            text = _extract_text(self._generate(prompt))
        except Exception:
            logger.warning("insight_request: failed", exc_info=True)
            return FALLBACK_MESSAGE

        logger.info(f"insight_request: ok chars={len(text)}")
        return text or EMPTY_RESPONSE

    def _generate(self, prompt: str) -> dict:
        url = (
            f"{self.settings.insight_endpoint.rstrip('/')}/"
            f"{self.settings.insight_model}:generateContent"
        )
        body = json.dumps({"contents": [{"parts": [{"text": prompt}]}]}).encode(
            "utf-8"
        )
        req = Request(
            url,
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-goog-api-key": self.settings.insight_api_key,
            },
        )
        with self.opener(req, timeout=self.settings.insight_timeout_secs) as resp:
            return json.loads(resp.read().decode("utf-8"))
