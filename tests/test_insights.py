import io
import json
from datetime import date, datetime
from urllib.error import URLError

from config import Settings
from insights import (
    EMPTY_RESPONSE,
    FALLBACK_MESSAGE,
    NOTHING_TO_ANALYZE,
    InsightService,
    build_prompt,
)
from aggregation import summarize
from models import TransactionType
from schemas import TransactionRecord


def make_settings(api_key: str = "test-key") -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        backend="sql",
        local_store_path="unused.json",
        session_secret="secret",
        session_max_age_hours=1,
        insight_api_key=api_key,
        insight_model="test-model",
        insight_endpoint="https://example.invalid/v1beta/models/",
        insight_timeout_secs=3,
        log_level="INFO",
    )


def make_txns() -> list[TransactionRecord]:
    base = dict(user_id="u1", created_at=datetime(2026, 10, 1, 8, 0))
    return [
        TransactionRecord(
            id="t1",
            type=TransactionType.income,
            amount=500,
            category="Salary",
            date=date(2026, 10, 1),
            **base,
        ),
        TransactionRecord(
            id="t2",
            type=TransactionType.expense,
            amount=100,
            category="Food",
            date=date(2026, 10, 2),
            **base,
        ),
    ]


class FakeOpener:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls = []

    def __call__(self, req, timeout):
        self.calls.append((req, timeout))
        if self.error:
            raise self.error
        return io.BytesIO(json.dumps(self.payload).encode("utf-8"))


def test_empty_transactions_skip_the_service() -> None:
    opener = FakeOpener(payload={})

    text = InsightService(make_settings(), opener=opener).request_insight([])

    assert text == NOTHING_TO_ANALYZE
    assert opener.calls == []


def test_successful_request_returns_generated_text() -> None:
    opener = FakeOpener(
        payload={
            "candidates": [
                {"content": {"parts": [{"text": "You saved "}, {"text": "80%."}]}}
            ]
        }
    )

    text = InsightService(make_settings(), opener=opener).request_insight(make_txns())

    assert text == "You saved 80%."
    assert len(opener.calls) == 1
    req, timeout = opener.calls[0]
    assert timeout == 3
    assert req.full_url == "https://example.invalid/v1beta/models/test-model:generateContent"
    assert req.get_method() == "POST"
    assert req.get_header("X-goog-api-key") == "test-key"
    body = json.loads(req.data.decode("utf-8"))
    prompt = body["contents"][0]["parts"][0]["text"]
    assert "Total Income: 500.00" in prompt
    assert "Total Expenses: 100.00" in prompt
    assert '"Food": 100' in prompt


def test_transport_error_returns_fallback_once() -> None:
    opener = FakeOpener(error=URLError("offline"))

    text = InsightService(make_settings(), opener=opener).request_insight(make_txns())

    assert text == FALLBACK_MESSAGE
    assert len(opener.calls) == 1


def test_malformed_response_returns_fallback() -> None:
    opener = FakeOpener(payload={"candidates": ["not-a-dict"]})

    text = InsightService(make_settings(), opener=opener).request_insight(make_txns())

    assert text == FALLBACK_MESSAGE


def test_empty_candidates_return_empty_response_message() -> None:
    opener = FakeOpener(payload={"candidates": []})

    text = InsightService(make_settings(), opener=opener).request_insight(make_txns())

    assert text == EMPTY_RESPONSE


def test_missing_api_key_returns_fallback_without_request() -> None:
    opener = FakeOpener(payload={})

    text = InsightService(make_settings(api_key=""), opener=opener).request_insight(
        make_txns()
    )

    assert text == FALLBACK_MESSAGE
    assert opener.calls == []


def test_prompt_lists_category_breakdown() -> None:
    prompt = build_prompt(summarize(make_txns()))

    assert '{"Salary": 500.0, "Food": 100.0}' in prompt
