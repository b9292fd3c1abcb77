"""
Domain types for the agentic loop: turns, search results, file references,
session state, evaluation decision, and the loop outcome.
"""

from dataclasses import asdict, dataclass, field
from typing import Literal, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConversationTurn(TypedDict):
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class SearchResult:
    """One formatted hit returned to the model by the search tool."""

    rank: int
    filename: str
    score: float
    content: str
    file_id: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FileReference:
    filename: str
    file_id: str

    def to_dict(self) -> dict:
        return asdict(self)


class FileRegistry:
    """Files cited during one loop, deduplicated by filename (first occurrence wins)."""

    def __init__(self) -> None:
        self._files: dict[str, FileReference] = {}

    def register(self, filename: str, file_id: str) -> bool:
        """Record a file; returns False if the filename was already known."""
        if not filename or filename in self._files:
            return False
        self._files[filename] = FileReference(filename=filename, file_id=file_id)
        return True

    def files(self) -> list[FileReference]:
        return list(self._files.values())

    def __len__(self) -> int:
        return len(self._files)


@dataclass(frozen=True)
class SessionState:
    """Per-session counters and search target, passed into the loop and returned from it."""

    selected_collection: str = ""
    total_searches: int = 0
    last_search_time: float = 0.0


class EvaluationDecision(BaseModel):
    """Structured output of the sufficiency check."""

    model_config = ConfigDict(populate_by_name=True)

    is_sufficient: bool = Field(
        ...,
        alias="isKnowledgeEnough",
        description="Whether the accumulated knowledge is sufficient to fully answer the user query",
    )
    next_query: Optional[str] = Field(
        None,
        alias="nextSearchQuery",
        description="If more information is needed, provide the next search query to explore",
    )

    @field_validator("next_query")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


@dataclass
class LoopOutcome:
    """Everything a finished loop hands back to the session layer."""

    answer: str
    files: list[FileReference]
    history: list[ConversationTurn]
    session_state: SessionState
    iterations: int
    stop_reason: str
    rewritten_query: str
    knowledge: list[str] = field(default_factory=list)
