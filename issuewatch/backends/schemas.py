"""Typed results of backend operations.

Model output is parsed into these pydantic models before anything else sees
it. The prompts ask for camelCase keys, which the aliases accept; snake_case
works as well.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models import Sentiment


class _BackendResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QuestionAnalysis(_BackendResult):
    is_question: bool = Field(alias="isQuestion")
    confidence: float = Field(ge=0, le=100)
    summary: str = ""
    sentiment: Sentiment = Sentiment.NEUTRAL
    suggested_tags: List[str] = Field(default_factory=list, alias="suggestedTags")
    suggested_reply: Optional[str] = Field(default=None, alias="suggestedReply")

    @field_validator("suggested_tags", mode="before")
    @classmethod
    def _clean_tags(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [str(tag).strip() for tag in value if str(tag).strip()]


class ReplyEvaluation(_BackendResult):
    relevance_score: float = Field(alias="relevanceScore", ge=0, le=100)
    is_counter_question: bool = Field(default=False, alias="isCounterQuestion")
    explanation: str = ""


class TagSimilarity(_BackendResult):
    similar_tag: Optional[str] = Field(default=None, alias="similarTag")
    should_merge: bool = Field(alias="shouldMerge")


class SentimentAnalysis(_BackendResult):
    sentiment: Sentiment
    reason: str = ""


class SynthesizedAnswer(_BackendResult):
    can_answer: bool = Field(alias="canAnswer")
    answer: str = ""
    confidence: float = Field(default=0, ge=0, le=100)
    used_knowledge: List[int] = Field(default_factory=list, alias="usedKnowledge")

    def used_entry_indices(self, candidate_count: int) -> List[int]:
        """Zero-based indices of the cited candidates that actually exist.

        The prompt numbers candidates from 1; anything outside
        ``1..candidate_count`` is dropped, as are repeats.
        """

        seen: List[int] = []
        for number in self.used_knowledge:
            index = number - 1
            if 0 <= index < candidate_count and index not in seen:
                seen.append(index)
        return seen
