"""Extraction of mentions and facts from notes using an LLM."""

import json
import math
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from groq import AsyncGroq

from ..errors import ExtractionParseError, ExtractionTransportError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"

SYSTEM_PROMPT = """You are an assistant that extracts structured relationship data from personal conversation notes. Extract:
1. A brief summary (1-2 sentences)
2. People mentioned (with relationship context if stated)
3. Structured facts about the PRIMARY person

The primary person this note is about: {primary_person_name}
Today's date: {today}

Return ONLY valid JSON in this exact format (no markdown):
{{
  "summary": "...",
  "mentioned_people": [
    {{"name": "...", "relationship_to_primary": "...", "is_primary": true}}
  ],
  "facts": [
    {{
      "person_name": "...",
      "category": "education|career|family|health|location|travel|interest|milestone|plan|general",
      "key": "...",
      "value": "...",
      "fact_date": "YYYY-MM-DD or null",
      "is_time_sensitive": true,
      "time_progression": "academicYear|age|tenure|none",
      "confidence": 0.0
    }}
  ]
}}

Rules:
- Always include the primary person in mentioned_people with is_primary: true
- Attribute facts to the PRIMARY person ({primary_person_name}), not to mentioned family members
- For family members, create facts about the primary person, e.g.
  "daughter Emma is in 2nd grade" -> key "daughter_name" value "Emma", key "daughter_grade" value "2nd grade"
  "his wife works at Google" -> key "wife_company" value "Google"
- Only extract facts that are explicitly stated or strongly implied
- Confidence 0.6-0.8 for inferred facts, 0.9-1.0 for explicit ones
- Set is_time_sensitive: true for education year, job tenure or age
- If no facts can be extracted, return an empty facts array
- If no other people are mentioned, only include the primary person
"""


@dataclass(frozen=True)
class MentionDescriptor:
    """A person mention as returned by the LLM."""

    name: str
    relationship_to_primary: str | None = None
    is_primary: bool = False


@dataclass(frozen=True)
class FactDescriptor:
    """A fact as returned by the LLM, fields still unparsed."""

    person_name: str
    category: str
    key: str
    value: str
    fact_date: str | None = None
    is_time_sensitive: bool = False
    time_progression: str | None = None
    confidence: float = 1.0


@dataclass(frozen=True)
class ExtractionResponse:
    """Raw output of the extraction collaborator."""

    summary: str = ""
    mentioned_people: list[MentionDescriptor] = field(default_factory=list)
    facts: list[FactDescriptor] = field(default_factory=list)


def strip_code_fence(content: str) -> str:
    """Remove markdown code fence lines wrapping a JSON body."""
    text = content.strip()
    if "```" not in text:
        return text
    lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
    return "\n".join(lines).strip()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == "null":
        return None
    return text


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def coerce_confidence(value: Any) -> float:
    """Coerce to a confidence in [0, 1], 1.0 if missing or not a finite number."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(confidence):
        return 1.0
    return min(max(confidence, 0.0), 1.0)


class NoteExtractor:
    """Calls the LLM to extract mentions and facts from a note."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
            temperature: Sampling temperature, low for consistent output.
        """
        self.client = llm_client
        self.model = model
        self.temperature = temperature

    async def extract(
        self, note_text: str, primary_person_name: str, today: date
    ) -> ExtractionResponse:
        """Extract mentions and facts from a note.

        Args:
            note_text: The raw note.
            primary_person_name: Display name of the person the note is about.
            today: Date used to anchor relative dates in the note.

        Returns:
            The parsed response.

        Raises:
            ExtractionTransportError: If the LLM call fails.
            ExtractionParseError: If the response is not a JSON object.
        """
        system = SYSTEM_PROMPT.format(
            primary_person_name=primary_person_name,
            today=today.isoformat(),
        )
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": note_text},
                ],
                temperature=self.temperature,
            )
        except Exception as e:
            raise ExtractionTransportError(f"Extraction request failed: {e}") from e

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise ExtractionParseError(f"No content in extraction response: {e}") from e

        return self.parse_response(content)

    def parse_response(self, content: str) -> ExtractionResponse:
        """Parse the LLM response body.

        Malformed entries are dropped or defaulted. Only an unparseable body
        or a non-object top level fails the whole response.

        Raises:
            ExtractionParseError: If the body cannot be used at all.
        """
        try:
            data = json.loads(strip_code_fence(content))
        except json.JSONDecodeError as e:
            raise ExtractionParseError(f"Invalid JSON in extraction response: {e}") from e

        if not isinstance(data, dict):
            raise ExtractionParseError("Extraction response is not a JSON object")

        summary = data.get("summary")
        return ExtractionResponse(
            summary=str(summary).strip() if summary is not None else "",
            mentioned_people=self._parse_mentions(data.get("mentioned_people")),
            facts=self._parse_facts(data.get("facts")),
        )

    def _parse_mentions(self, items: Any) -> list[MentionDescriptor]:
        if not isinstance(items, list):
            if items is not None:
                logger.warning("Ignoring non-list mentioned_people: %r", items)
            return []

        mentions = []
        for item in items:
            name = _optional_text(item.get("name")) if isinstance(item, dict) else None
            if name is None:
                logger.warning("Skipping invalid mention: %r", item)
                continue
            mentions.append(
                MentionDescriptor(
                    name=name,
                    relationship_to_primary=_optional_text(
                        item.get("relationship_to_primary")
                    ),
                    is_primary=_as_bool(item.get("is_primary", False)),
                )
            )
        return mentions

    def _parse_facts(self, items: Any) -> list[FactDescriptor]:
        if not isinstance(items, list):
            if items is not None:
                logger.warning("Ignoring non-list facts: %r", items)
            return []

        facts = []
        for item in items:
            if not isinstance(item, dict):
                logger.warning("Skipping invalid fact item: %r", item)
                continue
            key = _optional_text(item.get("key"))
            value = _optional_text(item.get("value"))
            if key is None or value is None:
                logger.warning("Skipping fact without key or value: %r", item)
                continue
            facts.append(
                FactDescriptor(
                    person_name=_optional_text(item.get("person_name")) or "",
                    category=_optional_text(item.get("category")) or "general",
                    key=key,
                    value=value,
                    fact_date=_optional_text(item.get("fact_date")),
                    is_time_sensitive=_as_bool(item.get("is_time_sensitive", False)),
                    time_progression=_optional_text(item.get("time_progression")),
                    confidence=coerce_confidence(item.get("confidence", 1.0)),
                )
            )
        return facts
