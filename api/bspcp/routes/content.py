"""Published content (articles, news, events) and public testimonials."""

import logging
import re
from datetime import date, time

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_current_admin, get_settings
from bspcp.core.errors import NotFound, ValidationFailed
from bspcp.models import Admin, Content, ContentStatus, ContentType, Testimonial, TestimonialStatus
from bspcp.schemas import (
    ContentOut,
    ContentStats,
    ContentStatusUpdate,
    TestimonialCreate,
    TestimonialOut,
    TestimonialStatusUpdate,
)
from bspcp.services.audit import log_admin_action
from bspcp.services.uploads import delete_files, public_url, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["content"])

_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    """'Annual General Meeting 2025!' -> 'annual-general-meeting-2025'"""
    return _SLUG_INVALID.sub("-", title.lower()).strip("-")


def _content_out(item: Content) -> ContentOut:
    out = ContentOut.model_validate(item)
    out.featured_image_url = public_url(item.featured_image_path)
    return out


async def _get_content(db: AsyncSession, content_id: int) -> Content:
    item = await db.get(Content, content_id)
    if item is None:
        raise NotFound("Content not found")
    return item


async def _get_testimonial(db: AsyncSession, testimonial_id: int) -> Testimonial:
    testimonial = await db.get(Testimonial, testimonial_id)
    if testimonial is None:
        raise NotFound("Testimonial not found")
    return testimonial


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


@router.post("/content", status_code=status.HTTP_201_CREATED)
async def create_content(
    request: Request,
    title: str = Form(..., min_length=1, max_length=255),
    content_type: ContentType = Form(..., alias="type"),
    content_status: ContentStatus = Form(ContentStatus.DRAFT, alias="status"),
    content: str | None = Form(None),
    author: str | None = Form(None),
    location: str | None = Form(None),
    event_date: str | None = Form(None, alias="eventDate"),
    event_time: str | None = Form(None, alias="eventTime"),
    meta_description: str | None = Form(None, alias="metaDescription", max_length=160),
    tags: str | None = Form(None),
    image: UploadFile | None = File(None),
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    slug = slugify(title)
    if not slug:
        raise ValidationFailed("Title must contain letters or numbers")
    try:
        parsed_date = date.fromisoformat(event_date) if event_date else None
        parsed_time = time.fromisoformat(event_time) if event_time else None
    except ValueError:
        raise ValidationFailed("Invalid event date or time", "Use YYYY-MM-DD and HH:MM") from None

    stored = await save_upload(settings, image, "image") if image is not None and image.filename else None
    item = Content(
        title=title,
        slug=slug,
        type=content_type,
        status=content_status,
        content=content,
        author=author,
        location=location,
        event_date=parsed_date,
        event_time=parsed_time,
        meta_description=meta_description,
        tags=tags,
        featured_image_path=str(stored.path) if stored else None,
    )
    db.add(item)
    await db.flush()
    log_admin_action(db, admin, "content_create", "content", item.id, request=request, new_values={"title": title})
    return {"message": "Content created successfully", "content": _content_out(item)}


@router.get("/content", response_model=list[ContentOut])
async def list_content(
    status_filter: ContentStatus | None = Query(None, alias="status"),
    type_filter: ContentType | None = Query(None, alias="type"),
    search: str | None = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Content).order_by(Content.created_at.desc(), Content.id.desc())
    if status_filter:
        query = query.where(Content.status == status_filter)
    if type_filter:
        query = query.where(Content.type == type_filter)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(or_(func.lower(Content.title).like(pattern), func.lower(Content.content).like(pattern)))
    result = await db.execute(query)
    return [_content_out(item) for item in result.scalars()]


@router.get("/public-content", response_model=list[ContentOut])
async def public_content(
    type_filter: ContentType | None = Query(None, alias="type"),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Content)
        .where(Content.status == ContentStatus.PUBLISHED)
        .order_by(Content.created_at.desc(), Content.id.desc())
    )
    if type_filter:
        query = query.where(Content.type == type_filter)
    result = await db.execute(query)
    return [_content_out(item) for item in result.scalars()]


@router.put("/content/{content_id}/status")
async def update_content_status(
    content_id: int,
    body: ContentStatusUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    item = await _get_content(db, content_id)
    previous = item.status
    item.status = body.status
    log_admin_action(
        db,
        admin,
        "content_status_update",
        "content",
        item.id,
        request=request,
        old_values={"status": previous},
        new_values={"status": body.status},
    )
    await db.flush()
    return {"message": "Content status updated successfully", "content": _content_out(item)}


@router.delete("/content/{content_id}")
async def delete_content(
    content_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    item = await _get_content(db, content_id)
    image = item.featured_image_path
    log_admin_action(
        db, admin, "content_delete", "content", item.id, request=request, old_values={"title": item.title}
    )
    await db.delete(item)
    await db.commit()
    if image:
        delete_files([image])
    return {"message": "Content deleted successfully"}


@router.get("/content-stats", response_model=ContentStats)
async def content_stats(admin: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    rows = dict((await db.execute(select(Content.status, func.count(Content.id)).group_by(Content.status))).all())
    published = rows.get(ContentStatus.PUBLISHED, 0)
    draft = rows.get(ContentStatus.DRAFT, 0)
    return ContentStats(total=published + draft, published=published, draft=draft)


# ---------------------------------------------------------------------------
# Testimonials
# ---------------------------------------------------------------------------


@router.post("/testimonials", status_code=status.HTTP_201_CREATED)
async def submit_testimonial(body: TestimonialCreate, db: AsyncSession = Depends(get_db)):
    testimonial = Testimonial(**body.model_dump())
    db.add(testimonial)
    await db.flush()
    logger.info("Testimonial %s submitted (rating %d)", testimonial.id, testimonial.rating)
    return {
        "message": "Testimonial submitted successfully",
        "testimonial": TestimonialOut.model_validate(testimonial),
    }


@router.get("/testimonials", response_model=list[TestimonialOut])
async def list_testimonials(
    status_filter: TestimonialStatus | None = Query(None, alias="status"),
    search: str | None = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Testimonial).order_by(Testimonial.created_at.desc(), Testimonial.id.desc())
    if status_filter:
        query = query.where(Testimonial.status == status_filter)
    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(
            or_(func.lower(Testimonial.name).like(pattern), func.lower(Testimonial.content).like(pattern))
        )
    result = await db.execute(query)
    return result.scalars().all()


@router.put("/testimonials/{testimonial_id}/status")
async def update_testimonial_status(
    testimonial_id: int,
    body: TestimonialStatusUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    testimonial = await _get_testimonial(db, testimonial_id)
    previous = testimonial.status
    testimonial.status = body.status
    log_admin_action(
        db,
        admin,
        "testimonial_status_update",
        "testimonial",
        testimonial.id,
        request=request,
        old_values={"status": previous},
        new_values={"status": body.status},
    )
    await db.flush()
    return {
        "message": "Testimonial status updated successfully",
        "testimonial": TestimonialOut.model_validate(testimonial),
    }


@router.delete("/testimonials/{testimonial_id}")
async def delete_testimonial(
    testimonial_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    testimonial = await _get_testimonial(db, testimonial_id)
    log_admin_action(db, admin, "testimonial_delete", "testimonial", testimonial.id, request=request)
    await db.delete(testimonial)
    return {"message": "Testimonial deleted successfully"}
