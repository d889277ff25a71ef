from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class _Entity(BaseModel):
    # Hosts speak camelCase (folderId, isFavorite, ...); rows use snake_case.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Note(_Entity):
    id: str
    title: str
    description: str = Field(default="")
    description_visible: bool = Field(default=True)
    emoji: Optional[str] = None
    content: str = Field(default="")
    tags: List[str] = Field(default_factory=list)
    tags_visible: bool = Field(default=True)
    is_favorite: bool = Field(default=False)
    folder_id: Optional[str] = None
    daily_note_date: Optional[str] = None
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None


class Folder(_Entity):
    id: str
    name: str
    parent_id: Optional[str] = None
    description: str = Field(default="")
    description_visible: bool = Field(default=True)
    color: Optional[str] = None
    emoji: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    tags_visible: bool = Field(default=True)
    is_favorite: bool = Field(default=False)
    is_expanded: bool = Field(default=False)
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None


class Tag(_Entity):
    name: str
    description: str = Field(default="")
    description_visible: bool = Field(default=True)
    is_favorite: bool = Field(default=False)
    color: Optional[str] = None
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None


class IntegrityReport(_Entity):
    is_valid: bool
    issues: List[str] = Field(default_factory=list)
