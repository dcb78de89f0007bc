from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from ..config import CHUNK_SIZE_MAX, CHUNK_SIZE_MIN


class JobCreateRequest(BaseModel):
    chunk_size: int | None = Field(default=None, ge=CHUNK_SIZE_MIN, le=CHUNK_SIZE_MAX)


class ChunkRequest(BaseModel):
    chunk: int | None = Field(default=None, ge=0)


class ExternalSearchRequest(BaseModel):
    urls: list[str] = Field(min_length=1, max_length=2)
    instructions: str | None = None
    item_ids: list[int] | None = None
    limit: int = Field(default=30, ge=1, le=100)

    @field_validator("urls")
    @classmethod
    def check_urls(cls, value: list[str]) -> list[str]:
        cleaned = [url.strip() for url in value if url and url.strip()]
        if not cleaned:
            raise ValueError("At least one URL is required.")
        for url in cleaned:
            if not url.lower().startswith(("http://", "https://")):
                raise ValueError(f"URL must start with http:// or https://: {url}")
        return cleaned


class AssignmentItem(BaseModel):
    item_id: int = Field(gt=0)
    category: str = Field(min_length=1)


class AssignmentRequest(BaseModel):
    updates: list[AssignmentItem] = Field(min_length=1)
