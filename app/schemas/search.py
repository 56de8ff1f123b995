from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.catalog import category_filter
from app.core.config import SEARCH_DEFAULT_LIMIT, SEARCH_DEFAULT_THRESHOLD, SEARCH_MAX_LIMIT


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    query: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    circle_ids: Optional[List[str]] = Field(default=None, alias="circleIds")
    category: Optional[str] = None
    tag: Optional[str] = None
    limit: int = Field(default=SEARCH_DEFAULT_LIMIT, ge=1, le=SEARCH_MAX_LIMIT)
    threshold: float = Field(default=SEARCH_DEFAULT_THRESHOLD, ge=0.0, le=1.0)

    @field_validator("query", "image_url", "category", "tag")
    @classmethod
    def blank_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("category")
    @classmethod
    def category_is_selected(cls, value: Optional[str]) -> Optional[str]:
        return category_filter(value)

    @field_validator("circle_ids")
    @classmethod
    def circle_ids_are_ids(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        if any(not cid or not cid.strip() for cid in value):
            raise ValueError("circleIds must not contain empty values")
        return [cid.strip() for cid in value]

    @model_validator(mode="after")
    def query_or_image(self):
        if self.query is None and self.image_url is None:
            raise ValueError("Query text or image URL is required")
        return self


class OwnerSummary(BaseModel):
    id: str
    name: Optional[str] = None
    image: Optional[str] = None


class CircleSummary(BaseModel):
    id: str
    name: str


class SearchResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    image_url: str = Field(alias="imageUrl")
    image_path: str = Field(alias="imagePath")
    categories: List[str]
    tags: List[str]
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    similarity: float
    owner: OwnerSummary
    circles: List[CircleSummary] = []
    is_owner: bool = Field(alias="isOwner")
