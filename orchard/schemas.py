"""
Pydantic schemas for the orchard API.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from orchard.service import INT64_MAX, INT64_MIN


class GardenCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    rows: int = Field(..., gt=0, le=INT64_MAX)
    cols: int = Field(..., gt=0, le=INT64_MAX)


class TreeResponse(BaseModel):
    row: int
    col: int
    variety: str = ""
    status: str = ""
    notes: str = ""
    images: list[str] = []
    harvestInfo: list[Any] = []
    createdAt: float
    updatedAt: float


class GardenResponse(BaseModel):
    id: int
    name: str
    rows: int
    cols: int
    createdAt: float
    trees: list[TreeResponse] = []


class TreeUpsertPayload(BaseModel):
    """JSON variant of the tree form. Photos must already be uploaded."""

    row: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    col: int = Field(..., ge=INT64_MIN, le=INT64_MAX)
    variety: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    existingImages: Any = None
    images: list[str] = []
    harvestInfo: Any = None


class TreeUpsertResponse(BaseModel):
    success: Literal[True] = True
    tree: TreeResponse


class SuccessResponse(BaseModel):
    success: Literal[True] = True


class StoreDebugResponse(BaseModel):
    store: str
    storage: str
    lock: str
    garden_count: int
    tree_count: int
    snapshot: dict
