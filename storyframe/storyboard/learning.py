"""
Prompt Learning

Optional sink that remembers which prompts produced approved or rejected
images and suggests style keywords for new prompts. The pipeline runs the
same without one.

Only a fixed quality/style vocabulary is learned; names, outfits and actions
in a prompt never become suggestions.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from storyframe.core.constants import (
    ACTION_ENERGY_SUFFIX,
    DEFAULT_SUGGESTED_KEYWORDS,
    LEARNABLE_STYLE_KEYWORDS,
)
from storyframe.core.logging_config import get_logger

logger = get_logger("storyboard.learning")

# Spans that are pipeline boilerplate or scene content rather than style choices:
# negative constraints, bracketed character descriptors, the fixed action suffix
# and the technical camera line.
_NON_STYLE_SPANS = [
    re.compile(r"(!!!\s*)?STRICT NEGATIVE:.*?(!!!|\.)", re.IGNORECASE | re.DOTALL),
    re.compile(r"\[[^\]]*\]"),
    re.compile(re.escape(ACTION_ENERGY_SUFFIX), re.IGNORECASE),
    re.compile(r"TECHNICAL:\s*\(.*?\)\.?", re.IGNORECASE | re.DOTALL),
]

_KEYWORD_PATTERNS = [
    (keyword, re.compile(rf"(?<![\w-]){re.escape(keyword)}(?![\w-])", re.IGNORECASE))
    for keyword in LEARNABLE_STYLE_KEYWORDS
]


def extract_style_keywords(prompt: str) -> List[str]:
    """Tracked style keywords present in a prompt, ignoring boilerplate spans."""
    text = prompt or ""
    for pattern in _NON_STYLE_SPANS:
        text = pattern.sub(" ", text)
    return [keyword for keyword, pattern in _KEYWORD_PATTERNS if pattern.search(text)]


@runtime_checkable
class PromptLearningSink(Protocol):
    """Interface the orchestrator and prompt assembler talk to."""

    async def suggest_keywords(self, context: str, limit: int = 5) -> List[str]:
        ...

    async def record_outcome(self, scene_id: str, prompt: str, model_id: str,
                             approved: bool, score: Optional[float] = None) -> None:
        ...


@dataclass
class PromptRecord:
    """One generation outcome."""
    scene_id: str
    prompt: str
    model_id: str
    approved: bool
    score: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.now)


class PromptLearningStore:
    """In-memory PromptLearningSink keyed on the style vocabulary of approved prompts."""

    def __init__(self, max_records: int = 500):
        self.max_records = max_records
        self.records: List[PromptRecord] = []

    async def record_outcome(self, scene_id: str, prompt: str, model_id: str,
                             approved: bool, score: Optional[float] = None) -> None:
        self.records.append(PromptRecord(scene_id, prompt, model_id, approved, score))
        if len(self.records) > self.max_records:
            self.records = self.records[-self.max_records:]
        logger.debug(f"Recorded {'approved' if approved else 'rejected'} prompt for {scene_id}")

    async def suggest_keywords(self, context: str, limit: int = 5) -> List[str]:
        """
        Keywords that recur in approved prompts but not in rejected ones.

        Falls back to generic defaults until enough history exists.
        """
        approved = Counter()
        rejected = Counter()
        for record in self.records:
            (approved if record.approved else rejected).update(extract_style_keywords(record.prompt))

        in_context = set(extract_style_keywords(context))
        candidates = [
            (count, keyword) for keyword, count in approved.items()
            if count >= 2 and count > rejected.get(keyword, 0) and keyword not in in_context
        ]
        # Most frequent first, alphabetical among ties
        ranked = [keyword for count, keyword in sorted(candidates, key=lambda c: (-c[0], c[1]))]
        if not ranked:
            return list(DEFAULT_SUGGESTED_KEYWORDS)[:limit]
        return ranked[:limit]

    @property
    def approval_rate(self) -> float:
        if not self.records:
            return 0.0
        return sum(1 for r in self.records if r.approved) / len(self.records)
