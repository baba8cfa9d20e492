"""Tests for AI response parsing, prompts and the HTTP extractor."""

import asyncio
import json

import httpx
import pytest

from docfusion.ai.client import AIRequestOptions, HttpMetadataExtractor
from docfusion.ai.prompts import AIContext, build_messages, truncate_text
from docfusion.ai.response import AIMetadata, normalize_date, parse_ai_response
from docfusion.errors import AIServiceError
from docfusion.utils.config import AIConfig

VALID_REPLY = {
    "clientName": "Acme Corp",
    "clientConfidence": 0.9,
    "date": "January 15, 2024",
    "dateConfidence": 0.8,
    "docType": "Invoice",
    "docTypeConfidence": 0.95,
    "amount": "1500.00",
    "amountConfidence": 0.7,
    "title": "Consulting invoice",
    "titleConfidence": 0.6,
    "snippets": ["Bill To: Acme Corp"],
}


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _extractor(
    handler, max_retries: int = 3, api_key: str | None = "test-key"
) -> HttpMetadataExtractor:
    config = AIConfig(
        api_key=api_key,
        base_url="https://ai.test/v1",
        max_retries=max_retries,
        retry_delay_s=0,
    )
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=config.base_url
    )
    return HttpMetadataExtractor(config, client)


class TestNormalizeDate:
    """Tests for date normalization."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2024-01-15", "2024-01-15"),
            ("01/15/2024", "2024-01-15"),
            ("15.01.2024", "2024-01-15"),
            ("January 15, 2024", "2024-01-15"),
            ("15 Jan 2024", "2024-01-15"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        assert normalize_date(raw) == expected

    def test_invalid(self) -> None:
        assert normalize_date("2024-02-30") is None
        assert normalize_date("soon") is None


class TestParseAIResponse:
    """Tests for reply validation and normalization."""

    def test_valid_reply_in_prose(self) -> None:
        content = f"Here you go:\n```json\n{json.dumps(VALID_REPLY)}\n```"
        metadata = parse_ai_response(content)

        assert metadata.client_name == "Acme Corp"
        assert metadata.date == "2024-01-15"
        assert metadata.doc_type == "Invoice"
        assert metadata.snippets == ["Bill To: Acme Corp"]

    def test_no_json(self) -> None:
        with pytest.raises(AIServiceError, match="no JSON"):
            parse_ai_response("I could not read the document.")

    def test_invalid_json(self) -> None:
        with pytest.raises(AIServiceError, match="not valid JSON"):
            parse_ai_response("{clientName: Acme}")

    def test_missing_keys(self) -> None:
        reply = {k: v for k, v in VALID_REPLY.items() if k != "docType"}
        with pytest.raises(AIServiceError, match="docType"):
            parse_ai_response(json.dumps(reply))

    def test_confidences_clamped(self) -> None:
        reply = {**VALID_REPLY, "clientConfidence": 1.7, "dateConfidence": -2}
        metadata = parse_ai_response(json.dumps(reply))

        assert metadata.client_confidence == 1.0
        assert metadata.date_confidence == 0.0

    def test_placeholder_values_become_none(self) -> None:
        reply = {**VALID_REPLY, "clientName": "Unknown", "title": "N/A"}
        metadata = parse_ai_response(json.dumps(reply))

        assert metadata.client_name is None
        assert metadata.title is None
        assert metadata.confidence_for("client_name") == 0.0

    def test_overlong_client_rejected(self) -> None:
        reply = {**VALID_REPLY, "clientName": "x" * 250}
        assert parse_ai_response(json.dumps(reply)).client_name is None

    def test_snippets_bounded(self) -> None:
        reply = {**VALID_REPLY, "snippets": ["s" * 600] * 8}
        metadata = parse_ai_response(json.dumps(reply))

        assert len(metadata.snippets) == 5
        assert all(len(s) == 500 for s in metadata.snippets)


class TestAIMetadata:
    """Tests for the metadata accessors."""

    def test_overall_confidence_bonus(self) -> None:
        metadata = AIMetadata.model_validate(VALID_REPLY)
        expected = (0.9 + 0.8 + 0.95) / 3 + 0.1
        assert metadata.overall_confidence == pytest.approx(min(expected, 1.0))

    def test_overall_confidence_single_field(self) -> None:
        metadata = AIMetadata(client_name="Acme", client_confidence=0.6)
        assert metadata.overall_confidence == pytest.approx(0.6)

    def test_field_name_round_trip(self) -> None:
        metadata = AIMetadata.model_validate(VALID_REPLY)
        restored = AIMetadata.model_validate(metadata.model_dump())
        assert restored == metadata

    def test_value_for_maps_document_type(self) -> None:
        metadata = AIMetadata.model_validate(VALID_REPLY)
        assert metadata.value_for("document_type") == "Invoice"


class TestPrompts:
    """Tests for prompt construction."""

    def test_truncate_text(self) -> None:
        assert truncate_text("abc", 10) == "abc"
        assert truncate_text("a" * 20, 10).startswith("a" * 10)
        assert "truncated" in truncate_text("a" * 20, 10)

    def test_messages_include_context(self) -> None:
        context = AIContext(
            file_name="inv.pdf",
            file_size_bytes=1234,
            local_entities={"client_name": "Acme Corp"},
        )
        messages = build_messages("Document body", context, max_chars=100)

        assert messages[0]["role"] == "system"
        user = messages[1]["content"]
        assert "inv.pdf" in user
        assert "Acme Corp" in user
        assert user.endswith("Document body")


class TestHttpMetadataExtractor:
    """Tests for the chat-completions client."""

    def test_successful_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_completion(json.dumps(VALID_REPLY)))

        extractor = _extractor(handler)
        metadata = asyncio.run(
            extractor.extract("text", options=AIRequestOptions(model="other-model"))
        )

        assert metadata.client_name == "Acme Corp"
        assert seen[0].url.path == "/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer test-key"
        body = json.loads(seen[0].content)
        assert body["model"] == "other-model"
        assert body["max_tokens"] == 500

    def test_retries_transient_errors(self) -> None:
        responses = iter(
            [
                httpx.Response(503),
                httpx.Response(429),
                httpx.Response(200, json=_completion(json.dumps(VALID_REPLY))),
            ]
        )

        extractor = _extractor(lambda request: next(responses))
        metadata = asyncio.run(extractor.extract("text"))

        assert metadata.doc_type == "Invoice"

    def test_retries_transport_errors(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AIServiceError, match="after 2 attempts"):
            asyncio.run(_extractor(handler, max_retries=2).extract("text"))
        assert calls == 2

    def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, text="bad key")

        with pytest.raises(AIServiceError, match="HTTP 401"):
            asyncio.run(_extractor(handler).extract("text"))
        assert calls == 1

    def test_unusable_reply(self) -> None:
        extractor = _extractor(
            lambda request: httpx.Response(200, json=_completion("no idea"))
        )
        with pytest.raises(AIServiceError):
            asyncio.run(extractor.extract("text"))

    def test_unexpected_shape(self) -> None:
        extractor = _extractor(lambda request: httpx.Response(200, json={"x": 1}))
        with pytest.raises(AIServiceError, match="shape"):
            asyncio.run(extractor.extract("text"))

    @pytest.mark.parametrize("content", [None, [{"type": "text"}], 42])
    def test_non_text_content(self, content: object) -> None:
        reply = {"choices": [{"message": {"role": "assistant", "content": content}}]}
        extractor = _extractor(lambda request: httpx.Response(200, json=reply))
        with pytest.raises(AIServiceError, match="not text"):
            asyncio.run(extractor.extract("text"))

    def test_missing_api_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("AI_API_KEY", raising=False)
        extractor = _extractor(lambda request: httpx.Response(200), api_key=None)
        with pytest.raises(AIServiceError, match="API key"):
            asyncio.run(extractor.extract("text"))

    def test_backoff_is_capped(self) -> None:
        config = AIConfig(api_key="k", retry_delay_s=1, max_retry_delay_s=3)
        extractor = HttpMetadataExtractor(config, httpx.AsyncClient())
        assert [extractor._backoff(n) for n in (1, 2, 3, 4)] == [1, 2, 3, 3]
