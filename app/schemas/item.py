from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.search import CircleSummary, OwnerSummary


class ItemCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    description: Optional[str] = None
    image_path: str = Field(alias="imagePath", min_length=1)
    categories: List[str] = []
    tags: List[str] = []
    circle_ids: List[str] = Field(alias="circleIds", min_length=1)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Item name is required")
        return value

    @field_validator("description")
    @classmethod
    def description_or_none(cls, value: Optional[str]) -> Optional[str]:
        return (value or "").strip() or None


class ItemUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    image_path: Optional[str] = Field(default=None, alias="imagePath")
    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    circle_ids: Optional[List[str]] = Field(default=None, alias="circleIds")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Item name must not be empty")
        return value


class ItemRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_path: str = Field(alias="imagePath")
    categories: List[str]
    tags: List[str]
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")
    owner: OwnerSummary
    circles: List[CircleSummary] = []
    is_owner: bool = Field(alias="isOwner")
    has_embedding: bool = Field(default=False, alias="hasEmbedding")


class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(alias="imageUrl", min_length=1)
