"""
Transfer scenarios.

Every integration recipe maps onto the same pipeline; what differs is where
the files come from, where they go, and which item the work is keyed by.

=========  ====================================  ==========================
Scenario   Source                                Destination
=========  ====================================  ==========================
column     ``itemId`` / ``sourceColumnId``       same item, ``destinationColumnId``
item       ``sourceItemId`` / ``fileColumnId``   ``targetItemId``, same column
board      ``sourceItemId`` / ``sourceFileColumnId``  first linked item,
                                                 ``destinationFileColumnIds``
update     ``updateId`` attachments              ``itemId`` / ``fileColumnId``
=========  ====================================  ==========================
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar

from filerelay.core.errors import ValidationError
from filerelay.core.logging import get_logger
from filerelay.platform.client import MondayClient
from filerelay.transfer.models import FileRef, TransferAction, TransferTask

logger = get_logger(__name__)


def unwrap(value: Any) -> Any:
    """``{"value": x}`` -> ``x``; anything else unchanged."""
    if isinstance(value, dict):
        return value.get("value")
    return value


def parse_action(value: Any) -> TransferAction:
    action = unwrap(value)
    try:
        return TransferAction(action)
    except ValueError:
        raise ValidationError("Invalid action specified", field="selectCopyMove")


def parse_file_value(raw: str) -> list[FileRef]:
    """File references in a file column value (``{"files": [...]}``).

    Entries without an ``assetId`` are skipped.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid file data format")

    files = data.get("files") if isinstance(data, dict) else None
    if not isinstance(files, list):
        raise ValidationError("Invalid file data structure")

    return [FileRef.from_column_entry(entry) for entry in files
            if isinstance(entry, dict) and entry.get("assetId")]


@dataclass
class TransferRequest:
    """A validated request, normalized across scenarios."""

    scenario: str
    item_key: str
    action: TransferAction
    board_id: str
    source_item_id: str
    destination_column_id: str
    source_column_id: str | None = None
    destination_item_id: str | None = None
    destination_board_id: str | None = None
    connected_column_id: str | None = None
    update_id: str | None = None


class Scenario(ABC):
    """How one recipe turns its input fields into transfer tasks."""

    name: ClassVar[str]
    key_field: ClassVar[str]
    required: ClassVar[tuple[str, ...]]
    copy_only: ClassVar[bool] = False
    empty_response: ClassVar[dict[str, Any]] = {}

    def parse(self, fields: dict[str, Any]) -> TransferRequest:
        """Validate input fields.

        Raises:
            ValidationError: Missing key field, unknown action or missing
                required parameters.
        """
        if not fields.get(self.key_field):
            raise ValidationError(f"Missing {self.key_field} in payload", field=self.key_field)

        action = TransferAction.COPY if self.copy_only else parse_action(fields.get("selectCopyMove"))

        missing = [name for name in self.required if not unwrap(fields.get(name))]
        if missing:
            raise ValidationError("Missing required parameters").with_context(
                required=list(self.required), missing=missing
            )
        return self._build(fields, action)

    @abstractmethod
    def _build(self, fields: dict[str, Any], action: TransferAction) -> TransferRequest: ...

    async def resolve_destination(
        self, client: MondayClient, token: str, request: TransferRequest
    ) -> TransferRequest:
        return request

    async def load_files(
        self, client: MondayClient, token: str, request: TransferRequest
    ) -> list[FileRef] | None:
        """Files to transfer; ``None`` when the source is empty."""
        raw = await client.get_column_value(token, request.source_item_id, request.source_column_id)
        if not raw:
            logger.info("scenario.empty_source", column_id=request.source_column_id)
            return None
        return parse_file_value(raw)

    def circuit_key(self, request: TransferRequest) -> str:
        return f"file:{request.destination_item_id}"

    def build_tasks(
        self,
        request: TransferRequest,
        files: list[FileRef],
        *,
        access_token: str,
        user_id: str,
    ) -> list[TransferTask]:
        circuit_key = self.circuit_key(request)
        return [
            TransferTask(
                item_key=request.item_key,
                access_token=access_token,
                user_id=user_id,
                board_id=request.destination_board_id or request.board_id,
                source_item_id=request.source_item_id,
                destination_item_id=request.destination_item_id,
                destination_column_id=request.destination_column_id,
                file=file,
                circuit_key=circuit_key,
                source_column_id=request.source_column_id,
                destination_board_id=request.destination_board_id,
            )
            for file in files
        ]

    async def clear_source(self, client: MondayClient, token: str, request: TransferRequest) -> None:
        """Empty the source file column (MOVE)."""
        await client.change_column_value(
            token, request.board_id, request.source_item_id, request.source_column_id, json.dumps({})
        )


class ColumnScenario(Scenario):
    """Column → column on the same item."""

    name = "column"
    key_field = "itemId"
    required = ("boardId", "itemId", "sourceColumnId", "destinationColumnId")

    def _build(self, fields, action):
        item_id = str(fields["itemId"])
        return TransferRequest(
            scenario=self.name,
            item_key=item_id,
            action=action,
            board_id=str(fields["boardId"]),
            source_item_id=item_id,
            source_column_id=fields["sourceColumnId"],
            destination_item_id=item_id,
            destination_column_id=fields["destinationColumnId"],
        )


class ItemScenario(Scenario):
    """Item → item, same file column."""

    name = "item"
    key_field = "sourceItemId"
    required = ("boardId", "sourceItemId", "targetItemId", "fileColumnId")

    def _build(self, fields, action):
        return TransferRequest(
            scenario=self.name,
            item_key=str(fields["sourceItemId"]),
            action=action,
            board_id=str(fields["boardId"]),
            source_item_id=str(fields["sourceItemId"]),
            source_column_id=fields["fileColumnId"],
            destination_item_id=str(fields["targetItemId"]),
            destination_column_id=fields["fileColumnId"],
        )


class BoardScenario(Scenario):
    """Item → the item it links to on another board."""

    name = "board"
    key_field = "sourceItemId"
    required = (
        "sourceBoardId",
        "sourceFileColumnId",
        "destinationBoardId",
        "destinationFileColumnIds",
        "connectedBoardColumnId",
        "sourceItemId",
    )

    def _build(self, fields, action):
        return TransferRequest(
            scenario=self.name,
            item_key=str(fields["sourceItemId"]),
            action=action,
            board_id=str(fields["sourceBoardId"]),
            source_item_id=str(fields["sourceItemId"]),
            source_column_id=fields["sourceFileColumnId"],
            destination_board_id=str(fields["destinationBoardId"]),
            destination_column_id=str(unwrap(fields["destinationFileColumnIds"])),
            connected_column_id=fields["connectedBoardColumnId"],
        )

    async def resolve_destination(self, client, token, request):
        raw = await client.get_column_value(token, request.source_item_id, request.connected_column_id)
        links: list[dict[str, Any]] = []
        if raw:
            try:
                links = json.loads(raw).get("linkedPulseIds") or []
            except (ValueError, AttributeError):
                logger.warning("scenario.bad_link_value", column_id=request.connected_column_id)

        if not links:
            raise ValidationError("No linked items found in the connected board column.")

        first = links[0]
        request.destination_item_id = str(first["linkedPulseId"])
        if first.get("boardId"):
            request.destination_board_id = str(first["boardId"])
        logger.info("scenario.linked_items", count=len(links), destination_item_id=request.destination_item_id)
        return request

    def circuit_key(self, request):
        return f"file:{request.destination_column_id}"


class UpdateScenario(Scenario):
    """Update attachments → file column of the update's item."""

    name = "update"
    key_field = "itemId"
    required = ("boardId", "itemId", "fileColumnId", "updateId")
    copy_only = True
    empty_response = {"message": "No files found to copy."}

    def _build(self, fields, action):
        item_id = str(fields["itemId"])
        return TransferRequest(
            scenario=self.name,
            item_key=item_id,
            action=action,
            board_id=str(fields["boardId"]),
            source_item_id=item_id,
            destination_item_id=item_id,
            destination_column_id=fields["fileColumnId"],
            update_id=str(fields["updateId"]),
        )

    async def load_files(self, client, token, request):
        update = await client.get_update(token, request.update_id)
        assets = (update or {}).get("assets") or []
        if not assets:
            logger.info("scenario.no_update_files", update_id=request.update_id)
            return None

        files: list[FileRef] = []
        seen: set[str] = set()
        for asset in assets:
            if not asset.get("id") or str(asset["id"]) in seen:
                continue
            seen.add(str(asset["id"]))
            files.append(FileRef.from_asset(asset))
        return files

    async def clear_source(self, client, token, request):
        raise ValidationError("Update attachments can only be copied")


SCENARIOS: dict[str, Scenario] = {
    scenario.name: scenario
    for scenario in (ColumnScenario(), ItemScenario(), BoardScenario(), UpdateScenario())
}


__all__ = [
    "Scenario",
    "ColumnScenario",
    "ItemScenario",
    "BoardScenario",
    "UpdateScenario",
    "SCENARIOS",
    "TransferRequest",
    "parse_action",
    "parse_file_value",
    "unwrap",
]
