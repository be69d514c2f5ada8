"""Shapes of the AI responses and of the metrics/health payloads.

Provider output is untrusted text. Every ``parse_*`` helper either returns a
validated model or raises ``MalformedAIResponse`` so callers can take their
fallback path.
"""
import json
import math
import logging
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator
from pydantic.alias_generators import to_camel

from errors import MalformedAIResponse

logger = logging.getLogger(__name__)

HealthStatus = Literal["excellent", "good", "at_risk", "critical"]
Priority = Literal["low", "medium", "high"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self, exclude_none: bool = False) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=exclude_none)


class ProjectMetrics(CamelModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    overdue_tasks: int = 0
    days_until_deadline: Optional[int] = None
    tasks_completed_this_week: int = 0
    avg_completion_time: float = 0


class HealthScore(CamelModel):
    score: int
    status: HealthStatus
    insights: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            raise ValueError("score must be a number")
        return max(0, min(100, int(round(v))))

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        # "At Risk", "at-risk" -> "at_risk"
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_").replace(" ", "_")
        return v


class TaskSuggestion(CamelModel):
    title: str
    description: str = ""
    priority: Priority = "medium"
    reasoning: str = ""
    due_date: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class InsightsReport(CamelModel):
    summary: str
    achievements: List[str] = Field(default_factory=list)
    attention: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class SuggestedTask(CamelModel):
    title: str
    description: str = ""
    priority: Priority = "medium"
    due_date: Optional[str] = None
    category: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class Deadline(CamelModel):
    date: str
    description: str = ""


class DocumentAnalysis(CamelModel):
    summary: str
    topics: List[str] = Field(default_factory=list)
    suggested_tasks: List[SuggestedTask] = Field(default_factory=list)
    deadlines: List[Deadline] = Field(default_factory=list)
    key_concepts: List[str] = Field(default_factory=list)


def load_json(text: str) -> Any:
    """Decode a provider response, tolerating prose around a single JSON value."""
    if not text or not text.strip():
        raise MalformedAIResponse("Empty AI response")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Find the outermost JSON value in the response
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if starts:
        start = min(starts)
        end = text.rfind("}" if text[start] == "{" else "]") + 1
        if end > start:
            try:
                return json.loads(text[start:end])
            except json.JSONDecodeError:
                pass
    raise MalformedAIResponse(f"AI response is not valid JSON: {text[:200]}")


def _validate(model, data: Any):
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedAIResponse(f"AI response does not match {model.__name__}: {e}") from e


def parse_health(text: str) -> HealthScore:
    return _validate(HealthScore, load_json(text))


def parse_report(text: str) -> InsightsReport:
    return _validate(InsightsReport, load_json(text))


def parse_document_analysis(text: str) -> DocumentAnalysis:
    return _validate(DocumentAnalysis, load_json(text))


def parse_suggestions(text: str) -> List[TaskSuggestion]:
    """Parse a suggestion array. Items that don't fit the schema are dropped.

    JSON-object mode forces an object at the top level, so ``{"suggestions": [...]}``
    (or any object holding exactly one list) is unwrapped.
    """
    data = load_json(text)
    if isinstance(data, dict):
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) == 1:
            data = lists[0]
    if not isinstance(data, list):
        raise MalformedAIResponse("AI suggestions response is not an array")

    suggestions = []
    for item in data:
        try:
            suggestions.append(TaskSuggestion.model_validate(item))
        except PydanticValidationError:
            logger.warning("Dropping malformed suggestion: %r", item)
    return suggestions
