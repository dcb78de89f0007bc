from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from .errors import ErrorKind

NOT_FOUND = "not found"


@dataclass(frozen=True)
class Item:
    id: int
    title: str
    description: str = ""
    category_ids: frozenset[int] = frozenset()


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    description: str = ""
    slug: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "description": self.description, "slug": self.slug}


@dataclass(frozen=True)
class CompletionParams:
    temperature: float = 0.3
    max_tokens: int | None = None


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    params: CompletionParams = CompletionParams()


@dataclass(frozen=True)
class CompletionOk:
    text: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class CompletionErr:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False


CompletionResult = Union[CompletionOk, CompletionErr]


class MatchMethod(str, Enum):
    EXACT = "exact"
    SUBSTRING = "substring"
    FUZZY = "fuzzy"


@dataclass(frozen=True)
class Matched:
    category: Category
    method: MatchMethod
    score: float | None = None

    @property
    def matched(self) -> bool:
        return True


@dataclass(frozen=True)
class NoMatch:
    @property
    def matched(self) -> bool:
        return False


MatchResult = Union[Matched, NoMatch]


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OutcomeStatus(str, Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    UNTOUCHED = "untouched"
    ERROR = "error"


@dataclass(frozen=True)
class ItemOutcome:
    item_id: int
    item_title: str
    status: OutcomeStatus
    category_name: str | None = None
    method: MatchMethod | None = None
    score: float | None = None
    error_kind: ErrorKind | None = None
    message: str = ""

    @property
    def display(self) -> str:
        if self.status in {OutcomeStatus.MATCHED, OutcomeStatus.UNMATCHED} and self.category_name:
            return self.category_name
        if self.message:
            return f"{self.status.value}: {self.message}"
        return self.status.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "item_title": self.item_title,
            "status": self.status.value,
            "category": self.category_name,
            "method": self.method.value if self.method else None,
            "score": self.score,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "display": self.display,
        }


@dataclass
class BatchState:
    total_items: int = 0
    chunk_size: int = 5
    current_chunk_index: int = 0
    total_chunks: int = 0
    processed_count: int = 0
    status: JobStatus = JobStatus.IDLE
    next_chunk: int | None = None
    cancel_requested: bool = False
    matched_count: int = 0
    unmatched_count: int = 0
    untouched_count: int = 0
    error_count: int = 0
    left_in_pool_by_chunk: dict[int, int] = field(default_factory=dict)
    last_error: str = ""

    def copy(self) -> "BatchState":
        return replace(self, left_in_pool_by_chunk=dict(self.left_in_pool_by_chunk))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total_items": self.total_items,
            "chunk_size": self.chunk_size,
            "current_chunk": self.current_chunk_index,
            "total_chunks": self.total_chunks,
            "next_chunk": self.next_chunk,
            "processed": self.processed_count,
            "matched": self.matched_count,
            "unmatched": self.unmatched_count,
            "untouched": self.untouched_count,
            "errors": self.error_count,
            "cancel_requested": self.cancel_requested,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class ChunkResult:
    results: tuple[ItemOutcome, ...]
    processed: int
    remaining: int
    total_chunks: int
    current_chunk: int
    next_chunk: int | None
    status: JobStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [outcome.to_dict() for outcome in self.results],
            "processed": self.processed,
            "remaining": self.remaining,
            "total_chunks": self.total_chunks,
            "current_chunk": self.current_chunk,
            "next_chunk": self.next_chunk,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ItemCategoryGuess:
    item_id: int
    title: str
    category: str = NOT_FOUND
    source_url: str | None = None

    @property
    def found(self) -> bool:
        return self.category.strip().lower() != NOT_FOUND

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": self.item_id, "title": self.title, "category": self.category, "source_url": self.source_url}
