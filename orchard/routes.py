"""
HTTP routes for the orchard API.
"""

from __future__ import annotations

import logging
import mimetypes

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from starlette.concurrency import run_in_threadpool

from orchard.backup import build_backup_archive
from orchard.config import get_settings
from orchard.db import DbClient, TreeRecord
from orchard.dependencies import (
    get_db_client,
    get_garden_service,
    get_key_lock,
    get_storage_client,
)
from orchard.errors import NotFoundError, ValidationError
from orchard.locks import KeyLock
from orchard.schemas import (
    GardenCreateRequest,
    GardenResponse,
    StoreDebugResponse,
    SuccessResponse,
    TreeResponse,
    TreeUpsertPayload,
    TreeUpsertResponse,
)
from orchard.service import GardenService
from orchard.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()
uploads_router = APIRouter()


def _parse_coordinate(value: str | None) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        raise ValidationError("Hàng hoặc cột không hợp lệ.")


def _tree_response(tree: TreeRecord) -> TreeUpsertResponse:
    return TreeUpsertResponse(tree=TreeResponse(**tree.as_dict()))


@router.get("/gardens", response_model=list[GardenResponse])
def list_gardens(service: GardenService = Depends(get_garden_service)):
    return [garden.as_dict() for garden in service.list_gardens()]


@router.post("/gardens", response_model=GardenResponse, status_code=201)
def create_garden(
    payload: GardenCreateRequest,
    service: GardenService = Depends(get_garden_service),
):
    garden = service.create_garden(payload.name, payload.rows, payload.cols)
    return garden.as_dict()


@router.delete("/gardens/{name}", response_model=SuccessResponse)
def delete_garden(name: str, service: GardenService = Depends(get_garden_service)):
    service.delete_garden(name)
    return SuccessResponse()


@router.post("/gardens/{name}/trees", response_model=TreeUpsertResponse)
async def upsert_tree_form(
    name: str,
    row: str | None = Form(None),
    col: str | None = Form(None),
    variety: str | None = Form(None),
    status: str | None = Form(None),
    notes: str | None = Form(None),
    existing_images: str | None = Form(None, alias="existingImages"),
    harvest_info: str | None = Form(None, alias="harvestInfo"),
    images: list[UploadFile] | None = File(None),
    service: GardenService = Depends(get_garden_service),
    storage: StorageClient = Depends(get_storage_client),
):
    """
    Multipart variant: photos arrive as files and are stored before the
    tree record is written, once the garden is known to exist.
    """
    row_index = _parse_coordinate(row)
    col_index = _parse_coordinate(col)

    uploads = [upload for upload in images or [] if upload.filename]
    max_files = get_settings().max_upload_files
    if len(uploads) > max_files:
        raise ValidationError(f"Tối đa {max_files} ảnh mỗi lần tải lên.")
    if uploads:
        await run_in_threadpool(service.get_garden, name)

    new_images: list[str] = []
    for upload in uploads:
        data = await upload.read()
        path = await run_in_threadpool(storage.save_image, upload.filename, data)
        new_images.append(path)

    tree = await run_in_threadpool(
        lambda: service.upsert_tree(
            name,
            row_index,
            col_index,
            variety=variety,
            status=status,
            notes=notes,
            existing_images=existing_images,
            new_images=new_images,
            harvest_info=harvest_info,
        )
    )
    return _tree_response(tree)


@router.put("/gardens/{name}/trees", response_model=TreeUpsertResponse)
def upsert_tree_json(
    name: str,
    payload: TreeUpsertPayload,
    service: GardenService = Depends(get_garden_service),
):
    """JSON variant: ``images`` lists photo paths that were already uploaded."""
    tree = service.upsert_tree(
        name,
        payload.row,
        payload.col,
        variety=payload.variety,
        status=payload.status,
        notes=payload.notes,
        existing_images=payload.existingImages,
        new_images=payload.images,
        harvest_info=payload.harvestInfo,
    )
    return _tree_response(tree)


@router.get("/gardens/{name}/grouped", response_model=dict[str, list[TreeResponse]])
def group_trees_by_status(
    name: str, service: GardenService = Depends(get_garden_service)
):
    groups = service.group_by_status(name)
    return {
        status: [tree.as_dict() for tree in trees] for status, trees in groups.items()
    }


@router.get("/backup")
def download_backup(
    service: GardenService = Depends(get_garden_service),
    storage: StorageClient = Depends(get_storage_client),
):
    archive = build_backup_archive(service.snapshot(), storage)
    filename = get_settings().backup_filename
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/debug/store", response_model=StoreDebugResponse)
def inspect_store(
    service: GardenService = Depends(get_garden_service),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    lock: KeyLock = Depends(get_key_lock),
):
    snapshot = service.snapshot()
    return StoreDebugResponse(
        store=type(db).__name__,
        storage=type(storage).__name__,
        lock=type(lock).__name__,
        garden_count=len(snapshot["gardens"]),
        tree_count=sum(len(g["trees"]) for g in snapshot["gardens"]),
        snapshot=snapshot,
    )


@uploads_router.get("/uploads/{filename}")
def serve_upload(
    filename: str, storage: StorageClient = Depends(get_storage_client)
):
    try:
        data = storage.read_image(filename)
    except FileNotFoundError:
        raise NotFoundError(f"Photo {filename!r} not found")
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return Response(content=data, media_type=media_type)
