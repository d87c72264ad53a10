"""Tests for recipe scenarios."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from filerelay.core.errors import ValidationError
from filerelay.transfer.models import FileRef, TransferAction
from filerelay.transfer.scenarios import (
    SCENARIOS,
    BoardScenario,
    ColumnScenario,
    ItemScenario,
    UpdateScenario,
    parse_action,
    parse_file_value,
    unwrap,
)

COLUMN_FIELDS = {
    "boardId": 1,
    "itemId": 10,
    "sourceColumnId": "files_src",
    "destinationColumnId": "files_dst",
    "selectCopyMove": {"value": "COPY"},
}

BOARD_FIELDS = {
    "sourceBoardId": 1,
    "sourceItemId": 10,
    "sourceFileColumnId": "files",
    "destinationBoardId": 2,
    "destinationFileColumnIds": {"value": "files_dst"},
    "connectedBoardColumnId": "connect",
    "selectCopyMove": "MOVE",
}


class TestHelpers:
    def test_unwrap(self):
        assert unwrap({"value": "COPY"}) == "COPY"
        assert unwrap("COPY") == "COPY"

    def test_parse_action(self):
        assert parse_action({"value": "MOVE"}) is TransferAction.MOVE
        with pytest.raises(ValidationError, match="Invalid action specified"):
            parse_action({"value": "DELETE"})
        with pytest.raises(ValidationError):
            parse_action(None)

    def test_parse_file_value(self):
        raw = json.dumps({"files": [{"assetId": 1, "name": "a.pdf"}, {"name": "orphan"}, {"assetId": 2}]})
        assert parse_file_value(raw) == [FileRef("1", "a.pdf"), FileRef("2", "2")]

    def test_parse_file_value_errors(self):
        with pytest.raises(ValidationError, match="Invalid file data format"):
            parse_file_value("{not json")
        with pytest.raises(ValidationError, match="Invalid file data structure"):
            parse_file_value(json.dumps({"files": "nope"}))

    def test_registry(self):
        assert set(SCENARIOS) == {"column", "item", "board", "update"}


class TestParse:
    def test_column(self):
        request = ColumnScenario().parse(COLUMN_FIELDS)

        assert request.item_key == "10"
        assert request.action is TransferAction.COPY
        assert request.source_item_id == request.destination_item_id == "10"
        assert request.source_column_id == "files_src"
        assert request.destination_column_id == "files_dst"

    def test_missing_key_field(self):
        fields = {k: v for k, v in COLUMN_FIELDS.items() if k != "itemId"}
        with pytest.raises(ValidationError, match="Missing itemId in payload"):
            ColumnScenario().parse(fields)

    def test_missing_required(self):
        fields = {k: v for k, v in COLUMN_FIELDS.items() if k != "destinationColumnId"}
        with pytest.raises(ValidationError, match="Missing required parameters") as exc_info:
            ColumnScenario().parse(fields)
        assert exc_info.value.context.metadata["missing"] == ["destinationColumnId"]

    def test_item(self):
        request = ItemScenario().parse(
            {"boardId": 1, "sourceItemId": 10, "targetItemId": 20, "fileColumnId": "files",
             "selectCopyMove": "COPY"}
        )
        assert request.item_key == "10"
        assert request.destination_item_id == "20"
        assert request.source_column_id == request.destination_column_id == "files"

    def test_board(self):
        request = BoardScenario().parse(BOARD_FIELDS)
        assert request.item_key == "10"
        assert request.action is TransferAction.MOVE
        assert request.destination_column_id == "files_dst"
        assert request.destination_board_id == "2"

    def test_update_is_copy_only(self):
        request = UpdateScenario().parse(
            {"boardId": 1, "itemId": 10, "fileColumnId": "files", "updateId": 5, "selectCopyMove": "MOVE"}
        )
        assert request.action is TransferAction.COPY
        assert request.update_id == "5"


class TestLoading:
    @pytest.mark.asyncio
    async def test_column_empty_source(self):
        client = MagicMock()
        client.get_column_value = AsyncMock(return_value=None)
        scenario = ColumnScenario()

        assert await scenario.load_files(client, "tok", scenario.parse(COLUMN_FIELDS)) is None

    @pytest.mark.asyncio
    async def test_board_resolves_first_linked_item(self):
        client = MagicMock()
        client.get_column_value = AsyncMock(return_value=json.dumps(
            {"linkedPulseIds": [{"linkedPulseId": 30, "boardId": 3}, {"linkedPulseId": 31}]}
        ))
        scenario = BoardScenario()

        request = await scenario.resolve_destination(client, "tok", scenario.parse(BOARD_FIELDS))

        client.get_column_value.assert_awaited_once_with("tok", "10", "connect")
        assert request.destination_item_id == "30"
        assert request.destination_board_id == "3"
        assert scenario.circuit_key(request) == "file:files_dst"

    @pytest.mark.asyncio
    async def test_board_without_links(self):
        client = MagicMock()
        client.get_column_value = AsyncMock(return_value=json.dumps({"linkedPulseIds": []}))
        scenario = BoardScenario()

        with pytest.raises(ValidationError, match="No linked items found"):
            await scenario.resolve_destination(client, "tok", scenario.parse(BOARD_FIELDS))

    @pytest.mark.asyncio
    async def test_update_dedupes_assets(self):
        client = MagicMock()
        client.get_update = AsyncMock(return_value={"assets": [
            {"id": 1, "name": "a.png", "public_url": "https://x/a"},
            {"id": 1, "name": "a.png", "public_url": "https://x/a"},
            {"id": 2, "name": "b.png", "public_url": "https://x/b"},
        ]})
        scenario = UpdateScenario()
        request = scenario.parse({"boardId": 1, "itemId": 10, "fileColumnId": "files", "updateId": 5})

        files = await scenario.load_files(client, "tok", request)

        assert [f.asset_id for f in files] == ["1", "2"]
        assert files[0].public_url == "https://x/a"

    @pytest.mark.asyncio
    async def test_update_cannot_clear_source(self):
        scenario = UpdateScenario()
        request = scenario.parse({"boardId": 1, "itemId": 10, "fileColumnId": "files", "updateId": 5})
        with pytest.raises(ValidationError):
            await scenario.clear_source(MagicMock(), "tok", request)


class TestBuildTasks:
    def test_tasks_carry_destination(self):
        scenario = ItemScenario()
        request = scenario.parse(
            {"boardId": 1, "sourceItemId": 10, "targetItemId": 20, "fileColumnId": "files",
             "selectCopyMove": "COPY"}
        )

        tasks = scenario.build_tasks(
            request, [FileRef("1", "a.pdf"), FileRef("2", "b.pdf")], access_token="tok", user_id="7"
        )

        assert [t.file.asset_id for t in tasks] == ["1", "2"]
        assert all(t.item_key == "10" for t in tasks)
        assert tasks[0].destination_item_id == "20"
        assert tasks[0].circuit_key == "file:20"
        assert tasks[0].access_token == "tok"
        assert tasks[0].retry_count == 0
