"""
File transfer domain.

A request is parsed by a :class:`~filerelay.transfer.scenarios.Scenario`,
claimed in the :class:`~filerelay.transfer.registry.ItemRegistry`, queued
as :class:`~filerelay.transfer.models.TransferTask` objects and drained by
the scenario's :class:`~filerelay.transfer.pipeline.FileTransferPipeline`.
"""

from filerelay.transfer.models import DrainSummary, FileRef, TransferAction, TransferTask
from filerelay.transfer.pipeline import FileTransferPipeline
from filerelay.transfer.registry import ItemRegistry, ProcessingState
from filerelay.transfer.service import TransferService

__all__ = [
    "DrainSummary",
    "FileRef",
    "TransferAction",
    "TransferTask",
    "FileTransferPipeline",
    "ItemRegistry",
    "ProcessingState",
    "TransferService",
]
