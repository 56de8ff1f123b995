from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from app.db.base import Base


class Circle(Base):
    __tablename__ = "circles"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    members = relationship("CircleMember", back_populates="circle", cascade="all, delete-orphan")


class CircleMember(Base):
    """Membership row; owned by the circles service, read-only here."""

    __tablename__ = "circle_members"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    circle_id = Column(String, ForeignKey("circles.id", ondelete="CASCADE"), nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())
    left_at = Column(DateTime(timezone=True), nullable=True)  # null while active

    circle = relationship("Circle", back_populates="members")

    __table_args__ = (
        UniqueConstraint("user_id", "circle_id", name="uq_circle_member"),
    )
