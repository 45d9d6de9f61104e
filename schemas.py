from datetime import date
from pydantic import BaseModel, ConfigDict
from typing import Optional


class BookBase(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    published_on: Optional[date] = None
    description: Optional[str] = None


class BookCreate(BookBase):
    creator_id: Optional[str] = None


class BookUpdate(BookBase):
    """Partial update: only fields explicitly set are written."""


class Book(BookBase):
    id: int
    title: str
    creator_id: Optional[str] = None
    cover_image: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_author(self) -> str:
        return self.author or "unknown"


class CoverUpload(BaseModel):
    file_name: str
    content: bytes


class BlobRef(BaseModel):
    key: str
    url: str

    model_config = ConfigDict(frozen=True)


class User(BaseModel):
    id: str
    name: str
    image_url: Optional[str] = None


class IndexRecord(BaseModel):
    id: int
    title: str
    author: Optional[str] = None
    published_on: Optional[date] = None
    creator_id: Optional[str] = None
    image_url: Optional[str] = None
