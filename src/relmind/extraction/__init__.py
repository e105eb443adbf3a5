"""Extraction pipeline: LLM client, name matching, staging and commit."""

from .client import ExtractionResponse, FactDescriptor, MentionDescriptor, NoteExtractor
from .commands import CommitOutcome
from .matcher import FuzzyMatch, MatchType, NameMatcher, similarity
from .models import ExtractedFact, ExtractionResult, MentionedPerson
from .orchestrator import AUTO_BIND_THRESHOLD, ExtractionOrchestrator, Reviewer, plan_commit

__all__ = [
    "AUTO_BIND_THRESHOLD",
    "CommitOutcome",
    "ExtractedFact",
    "ExtractionOrchestrator",
    "ExtractionResponse",
    "ExtractionResult",
    "FactDescriptor",
    "FuzzyMatch",
    "MatchType",
    "MentionDescriptor",
    "MentionedPerson",
    "NameMatcher",
    "NoteExtractor",
    "Reviewer",
    "plan_commit",
    "similarity",
]
