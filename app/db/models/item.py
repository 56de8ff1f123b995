import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, func
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import relationship
from pgvector.sqlalchemy import Vector

from app.core.config import EMBEDDING_DIM
from app.db.base import Base


class Item(Base):
    __tablename__ = "items"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    image_path = Column(String, nullable=False)
    categories = Column(ARRAY(String), nullable=False, server_default="{}")
    tags = Column(ARRAY(String), nullable=False, server_default="{}")
    embedding = Column(Vector(EMBEDDING_DIM), nullable=True)  # null until embedded
    owner_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User")
    circles = relationship("ItemCircle", back_populates="item", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        Index(
            "ix_items_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class ItemCircle(Base):
    __tablename__ = "item_circles"

    item_id = Column(String, ForeignKey("items.id", ondelete="CASCADE"), primary_key=True)
    circle_id = Column(String, ForeignKey("circles.id", ondelete="CASCADE"), primary_key=True, index=True)

    item = relationship("Item", back_populates="circles")
    circle = relationship("Circle")
