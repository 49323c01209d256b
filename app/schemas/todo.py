from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

Tag = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


def _dedupe(tags: list[str]) -> list[str]:
    seen = set()
    return [t for t in tags if not (t in seen or seen.add(t))]


class TodoBase(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v


class TodoCreate(TodoBase):
    tags: list[Tag] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: list[str]) -> list[str]:
        return _dedupe(v)


class TodoUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[list[Tag]] = None
    completed: Optional[bool] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _dedupe(v) if v is not None else v


class TodoOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    tags: list[str] = []
    completed: bool
    created_at: datetime
    updated_at: datetime
    marked_for_deletion: bool = False


class MarkOut(BaseModel):
    id: str
    marked_for_deletion: bool


class ClearDeletedOut(BaseModel):
    deleted: int


class TagCleanupOut(BaseModel):
    success: bool = True
    active_tags: list[str]
    message: str = "Tag cleanup completed"
