"""monday.com integration recipe endpoints.

Every recipe posts ``{"payload": {"inputFields": {...}}}`` with the
session JWT in ``Authorization`` and gets an immediate acknowledgment;
the files are transferred in the background.

Endpoints
---------
``POST /monday/copy_move_file_column``     — column → column, same item
``POST /monday/copy_move_file_item``       — item → item
``POST /monday/copy_move_file_board``      — item → linked item on another board
``POST /monday/copy_file_update``          — update attachments → file column
``POST /monday/get_file_columns``          — file columns of a board (remote options)
``POST /monday/get_remote_list_options``   — COPY / MOVE
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body

from filerelay.api.deps import Service, SessionToken
from filerelay.api.schemas.common import RemoteOption, RemoteOptionsPage, TransferResponse

router = APIRouter(prefix="/monday", tags=["monday"])


@router.post("/copy_move_file_column", response_model=TransferResponse, response_model_exclude_none=True)
async def copy_move_file_column(
    service: Service, authorization: SessionToken, body: dict[str, Any] | None = Body(default=None)
) -> dict[str, Any]:
    """Copy or move the files of one column into another column of the same item."""
    return await service.handle("column", authorization, body)


@router.post("/copy_move_file_item", response_model=TransferResponse, response_model_exclude_none=True)
async def copy_move_file_item(
    service: Service, authorization: SessionToken, body: dict[str, Any] | None = Body(default=None)
) -> dict[str, Any]:
    """Copy or move the files of an item's column to another item."""
    return await service.handle("item", authorization, body)


@router.post("/copy_move_file_board", response_model=TransferResponse, response_model_exclude_none=True)
async def copy_move_file_board(
    service: Service, authorization: SessionToken, body: dict[str, Any] | None = Body(default=None)
) -> dict[str, Any]:
    """Copy or move files to the item linked through a connect-boards column."""
    return await service.handle("board", authorization, body)


@router.post("/copy_file_update", response_model=TransferResponse, response_model_exclude_none=True)
async def copy_file_update(
    service: Service, authorization: SessionToken, body: dict[str, Any] | None = Body(default=None)
) -> dict[str, Any]:
    """Copy the attachments of an update into a file column."""
    return await service.handle("update", authorization, body)


@router.post("/get_file_columns", response_model=RemoteOptionsPage)
async def get_file_columns(
    service: Service, authorization: SessionToken, body: dict[str, Any] | None = Body(default=None)
) -> dict[str, Any]:
    return await service.get_file_columns(authorization, body)


@router.post("/get_remote_list_options", response_model=list[RemoteOption])
async def get_remote_list_options(service: Service) -> list[dict[str, str]]:
    return service.get_remote_list_options()
