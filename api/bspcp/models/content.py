"""Published content (news, articles, events) and public testimonials."""

import enum
from datetime import date, time

from sqlalchemy import Boolean, CheckConstraint, Date, Enum, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from bspcp.models.base import Base, TimestampMixin


class ContentType(enum.StrEnum):
    ARTICLE = "Article"
    NEWS = "News"
    EVENT = "Event"


class ContentStatus(enum.StrEnum):
    DRAFT = "Draft"
    PUBLISHED = "Published"


class TestimonialStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Content(TimestampMixin, Base):
    __tablename__ = "content"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[ContentType] = mapped_column(
        Enum(ContentType, name="content_type", values_callable=lambda e: [x.value for x in e]), nullable=False
    )
    status: Mapped[ContentStatus] = mapped_column(
        Enum(ContentStatus, name="content_status", values_callable=lambda e: [x.value for x in e]),
        default=ContentStatus.DRAFT,
        nullable=False,
    )
    content: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(String(255))
    location: Mapped[str | None] = mapped_column(String(255))
    event_date: Mapped[date | None] = mapped_column(Date)
    event_time: Mapped[time | None] = mapped_column(Time)
    meta_description: Mapped[str | None] = mapped_column(String(160))
    tags: Mapped[str | None] = mapped_column(Text)
    featured_image_path: Mapped[str | None] = mapped_column(String(500))

    __table_args__ = (Index("ix_content_type_status", "type", "status"),)

    def __repr__(self) -> str:
        return f"<Content {self.type} {self.slug}>"


class Testimonial(TimestampMixin, Base):
    __tablename__ = "testimonials"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    role: Mapped[str | None] = mapped_column(String(100))
    content: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    anonymous: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[TestimonialStatus] = mapped_column(
        Enum(TestimonialStatus, name="testimonial_status", values_callable=lambda e: [x.value for x in e]),
        default=TestimonialStatus.PENDING,
        nullable=False,
    )

    __table_args__ = (CheckConstraint("rating >= 1 AND rating <= 5", name="ck_testimonial_rating"),)
