"""Data model of the transfer pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any


class TransferAction(str, Enum):
    COPY = "COPY"
    MOVE = "MOVE"


#: Options served to the action dropdown.
OPERATION_TYPES: list[dict[str, str]] = [
    {"title": "Copy", "value": TransferAction.COPY.value},
    {"title": "Move", "value": TransferAction.MOVE.value},
]


@dataclass
class FileRef:
    """One file as referenced by a file column or an update.

    ``public_url`` is only known up front for update attachments; column
    files have it resolved from the asset right before download.
    """

    asset_id: str
    name: str
    public_url: str | None = None

    @property
    def extension(self) -> str:
        return PurePath(self.name).suffix.lower()

    @classmethod
    def from_column_entry(cls, entry: dict[str, Any]) -> FileRef:
        """From a ``{"files": [...]}`` column value entry."""
        return cls(asset_id=str(entry["assetId"]), name=entry.get("name") or str(entry["assetId"]))

    @classmethod
    def from_asset(cls, asset: dict[str, Any]) -> FileRef:
        """From an update's ``assets`` entry."""
        return cls(
            asset_id=str(asset["id"]),
            name=asset.get("name") or str(asset["id"]),
            public_url=asset.get("public_url"),
        )


@dataclass
class TransferTask:
    """One file to move from a source item to a destination column.

    Attributes:
        item_key: Queue the task belongs to
        access_token: Credential captured when the task was queued
        circuit_key: Circuit monitor guarding the destination
        retry_count: Failed attempts so far; mutated by the drain loop
    """

    item_key: str
    access_token: str
    user_id: str
    board_id: str
    source_item_id: str
    destination_item_id: str
    destination_column_id: str
    file: FileRef
    circuit_key: str
    source_column_id: str | None = None
    destination_board_id: str | None = None
    retry_count: int = 0


@dataclass
class DrainSummary:
    """Outcome of one drain loop."""

    item_key: str
    scenario: str
    processed: int = 0
    dropped: int = 0
    elapsed: float = 0.0
    dropped_assets: list[str] = field(default_factory=list)


__all__ = ["TransferAction", "OPERATION_TYPES", "FileRef", "TransferTask", "DrainSummary"]
