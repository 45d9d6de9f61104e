# models.py
from sqlalchemy import Column, Integer, String, Date, Text
from database import Base


class Book(Base):
    __tablename__ = "books"
    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False, index=True)
    author = Column(String, nullable=True, index=True)
    published_on = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    creator_id = Column(String, nullable=True, index=True)
    cover_image = Column(String, nullable=True)    # blob key, see services/cover_images.py

    @property
    def display_author(self) -> str:
        return self.author or "unknown"

    def __repr__(self):
        return f"<Book id={self.id} title={self.title!r}>"
