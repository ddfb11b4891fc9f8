"""
Uploads API Endpoints

Admins upload checklist files into the storage root; the returned name goes
into a product's ``formats`` map. Files still referenced by a product cannot
be deleted.
"""

from pathlib import Path
import re

import aiofiles
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from checklistpro.config import get_settings
from checklistpro.database.connection import get_db_dependency
from checklistpro.database.models import User
from checklistpro.database.repositories import ProductRepository
from checklistpro.errors import ConflictError, NotFoundError, ValidationError
from checklistpro.serving.api.dependencies import require_admin
from checklistpro.serving.api.schemas import MessageResponse
from checklistpro.services.documents import CONTENT_TYPES, content_type_for

router = APIRouter()
logger = structlog.get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class UploadResponse(BaseModel):
    filename: str
    size: int
    content_type: str


def safe_filename(name: str) -> str:
    base = Path(name).name
    cleaned = _UNSAFE.sub("-", base).strip(".-")
    if not cleaned or "." not in cleaned:
        raise ValidationError("File name must include an extension")
    ext = cleaned.rsplit(".", 1)[-1].lower()
    if ext not in CONTENT_TYPES:
        raise ValidationError(f"Unsupported file type '.{ext}'")
    return cleaned


@router.post("", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    overwrite: bool = Form(False),
    admin: User = Depends(require_admin),
) -> UploadResponse:
    settings = get_settings()
    filename = safe_filename(file.filename or "")

    content = await file.read(settings.storage.max_upload_bytes + 1)
    if len(content) > settings.storage.max_upload_bytes:
        raise ValidationError("File is too large")

    root = Path(settings.storage.files_path)
    target = root / filename
    if target.exists() and not overwrite:
        raise ConflictError(f"File '{filename}' already exists")

    root.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(target, "wb") as f:
        await f.write(content)
    logger.info("File uploaded", filename=filename, size=len(content), admin_id=str(admin.id))

    return UploadResponse(filename=filename, size=len(content), content_type=content_type_for(filename))


@router.delete("/{filename}", response_model=MessageResponse)
async def delete_file(
    filename: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db_dependency),
) -> MessageResponse:
    if safe_filename(filename) != filename:
        raise ValidationError("Invalid file name")

    target = Path(get_settings().storage.files_path) / filename
    if not target.is_file():
        raise NotFoundError(f"File '{filename}' not found")

    in_use = await ProductRepository(db).products_using_file(filename)
    if in_use:
        raise ConflictError(
            f"File '{filename}' is used by a product",
            details=[{"field": "filename", "message": p.slug} for p in in_use],
        )

    target.unlink()
    logger.info("File deleted", filename=filename, admin_id=str(admin.id))
    return MessageResponse(message="File deleted")
