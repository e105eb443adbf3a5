"""Tests for NoteExtractor."""

import json
from datetime import date
from unittest.mock import AsyncMock, Mock

import pytest

from relmind.errors import ExtractionParseError, ExtractionTransportError
from relmind.extraction.client import NoteExtractor, strip_code_fence


@pytest.fixture
def mock_client() -> AsyncMock:
    """Create a mock Groq client."""
    return AsyncMock()


@pytest.fixture
def extractor(mock_client: AsyncMock) -> NoteExtractor:
    """Create a NoteExtractor with mock client."""
    return NoteExtractor(mock_client)


def make_response(content: str) -> Mock:
    """Create a mock LLM response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


VALID_BODY = {
    "summary": "Caught up with Sarah about her new job.",
    "mentioned_people": [
        {"name": "Sarah Kim", "relationship_to_primary": None, "is_primary": True},
        {"name": "Emma", "relationship_to_primary": "daughter", "is_primary": False},
    ],
    "facts": [
        {
            "person_name": "Sarah Kim",
            "category": "career",
            "key": "employer",
            "value": "Google",
            "fact_date": "2025-03-01",
            "is_time_sensitive": True,
            "time_progression": "tenure",
            "confidence": 0.95,
        }
    ],
}


class TestNoteExtractorInit:
    def test_default_model(self, mock_client: AsyncMock):
        extractor = NoteExtractor(mock_client)
        assert extractor.model == "llama-3.3-70b-versatile"
        assert extractor.temperature == 0.1

    def test_custom_model(self, mock_client: AsyncMock):
        extractor = NoteExtractor(mock_client, model="custom-model", temperature=0.0)
        assert extractor.model == "custom-model"
        assert extractor.temperature == 0.0


class TestNoteExtractorExtract:
    """Tests for the extract method."""

    @pytest.mark.asyncio
    async def test_valid_extraction(self, extractor: NoteExtractor, mock_client: AsyncMock):
        """A valid JSON body is parsed into descriptors."""
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response(json.dumps(VALID_BODY))
        )

        response = await extractor.extract("note", "Sarah Kim", date(2025, 6, 1))

        assert response.summary == "Caught up with Sarah about her new job."
        assert [m.name for m in response.mentioned_people] == ["Sarah Kim", "Emma"]
        assert response.mentioned_people[0].is_primary is True
        assert response.mentioned_people[0].relationship_to_primary is None
        assert response.mentioned_people[1].relationship_to_primary == "daughter"
        fact = response.facts[0]
        assert fact.key == "employer"
        assert fact.fact_date == "2025-03-01"
        assert fact.time_progression == "tenure"
        assert fact.confidence == 0.95

    @pytest.mark.asyncio
    async def test_request_carries_context(self, extractor: NoteExtractor, mock_client: AsyncMock):
        """The prompt names the primary person and today's date."""
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response(json.dumps(VALID_BODY))
        )

        await extractor.extract("Met Sarah today", "Sarah Kim", date(2025, 6, 1))

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        system, user = kwargs["messages"]
        assert "Sarah Kim" in system["content"]
        assert "2025-06-01" in system["content"]
        assert user == {"role": "user", "content": "Met Sarah today"}
        assert kwargs["model"] == extractor.model

    @pytest.mark.asyncio
    async def test_transport_error(self, extractor: NoteExtractor, mock_client: AsyncMock):
        """Client failures become ExtractionTransportError."""
        mock_client.chat.completions.create = AsyncMock(side_effect=Exception("API error"))

        with pytest.raises(ExtractionTransportError):
            await extractor.extract("note", "Sarah", date(2025, 6, 1))

    @pytest.mark.asyncio
    async def test_invalid_json(self, extractor: NoteExtractor, mock_client: AsyncMock):
        """A non-JSON body becomes ExtractionParseError."""
        mock_client.chat.completions.create = AsyncMock(
            return_value=make_response("not valid json")
        )

        with pytest.raises(ExtractionParseError):
            await extractor.extract("note", "Sarah", date(2025, 6, 1))

    @pytest.mark.asyncio
    async def test_empty_content(self, extractor: NoteExtractor, mock_client: AsyncMock):
        """A missing message body is a parse error."""
        mock_client.chat.completions.create = AsyncMock(return_value=make_response(None))

        with pytest.raises(ExtractionParseError):
            await extractor.extract("note", "Sarah", date(2025, 6, 1))


class TestParseResponse:
    """Tests for tolerant response parsing."""

    def test_markdown_code_block_stripped(self, extractor: NoteExtractor):
        body = "```json\n" + json.dumps(VALID_BODY) + "\n```"
        response = extractor.parse_response(body)
        assert len(response.facts) == 1

    def test_non_object_top_level(self, extractor: NoteExtractor):
        with pytest.raises(ExtractionParseError):
            extractor.parse_response("[1, 2, 3]")

    def test_missing_sections_default_to_empty(self, extractor: NoteExtractor):
        response = extractor.parse_response("{}")
        assert response.summary == ""
        assert response.mentioned_people == []
        assert response.facts == []

    def test_invalid_mentions_skipped(self, extractor: NoteExtractor):
        body = {
            "mentioned_people": [
                {"name": "Emma"},
                "invalid",
                {"relationship_to_primary": "son"},
                {"name": "   "},
            ]
        }
        response = extractor.parse_response(json.dumps(body))
        assert [m.name for m in response.mentioned_people] == ["Emma"]
        assert response.mentioned_people[0].is_primary is False

    def test_invalid_facts_skipped(self, extractor: NoteExtractor):
        body = {
            "facts": [
                {"key": "employer", "value": "Google"},
                {"key": "employer"},
                42,
                {"value": "orphan"},
            ]
        }
        response = extractor.parse_response(json.dumps(body))
        assert len(response.facts) == 1
        fact = response.facts[0]
        assert fact.person_name == ""
        assert fact.category == "general"
        assert fact.is_time_sensitive is False
        assert fact.confidence == 1.0

    def test_fields_coerced(self, extractor: NoteExtractor):
        body = {
            "facts": [
                {
                    "person_name": "Sarah",
                    "key": "age",
                    "value": 30,
                    "fact_date": "null",
                    "is_time_sensitive": "true",
                    "confidence": 7,
                }
            ]
        }
        fact = extractor.parse_response(json.dumps(body)).facts[0]
        assert fact.value == "30"
        assert fact.fact_date is None
        assert fact.is_time_sensitive is True
        assert fact.confidence == 1.0

    @pytest.mark.parametrize("raw", ['"high"', "NaN", '"nan"', "Infinity", '"-inf"'])
    def test_bad_confidence_defaults(self, extractor: NoteExtractor, raw: str):
        """Non-numeric and non-finite confidences fall back to 1.0."""
        body = '{"facts": [{"key": "k", "value": "v", "confidence": %s}]}' % raw
        assert extractor.parse_response(body).facts[0].confidence == 1.0

    def test_confidence_clamped(self, extractor: NoteExtractor):
        body = {"facts": [{"key": "k", "value": "v", "confidence": -0.5}]}
        assert extractor.parse_response(json.dumps(body)).facts[0].confidence == 0.0


class TestStripCodeFence:
    def test_plain_passthrough(self):
        assert strip_code_fence('  {"a": 1} ') == '{"a": 1}'

    def test_fence_removed(self):
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
