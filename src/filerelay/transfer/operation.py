"""
The download → validate → upload cycle for one file.

``TransferOperation.run`` is what the pipeline wraps in
CircuitBreaker → RetryStrategy.  One call is one attempt:

1. Resolve the asset's short-lived public URL (unless the task carries one)
2. Probe its content type against the allow-list
3. Stream the file into the scratch directory
4. Multipart-upload it to the destination column
5. Delete the scratch file, whatever happened

"Value exceeded max value for column" is not a failure: the user gets a
notification and the attempt counts as done.
"""

from __future__ import annotations

import time
import uuid
from pathlib import Path
from typing import Any

import httpx

from filerelay.core.errors import (
    BusinessRuleError,
    ConnectionResetError,
    PlatformAPIError,
    TimeoutError,
)
from filerelay.core.logging import get_logger
from filerelay.execution.retry import RetryContext, RetryStrategy
from filerelay.observability.metrics import MetricsTracker
from filerelay.platform.client import MondayClient
from filerelay.platform.tokens import TokenCache
from filerelay.transfer.models import TransferTask
from filerelay.transfer.validation import FileValidator

logger = get_logger(__name__)


class TransferOperation:
    """Performs single transfer attempts.

    Args:
        client: monday.com API client
        http: Client for downloads from signed URLs
        validator: Content-type probe
        tokens: Per-item credential cache; tasks fall back to their own token
        metrics: Receives ``file_processing:success|failure`` per attempt
        scratch_dir: Where downloads are staged
        url_retry: Retry policy for public-URL resolution
    """

    def __init__(
        self,
        client: MondayClient,
        http: httpx.AsyncClient,
        validator: FileValidator,
        tokens: TokenCache,
        metrics: MetricsTracker,
        scratch_dir: Path,
        *,
        url_retry: RetryStrategy | None = None,
    ):
        self.client = client
        self.http = http
        self.validator = validator
        self.tokens = tokens
        self.metrics = metrics
        self.scratch_dir = Path(scratch_dir)
        self.url_retry = url_retry or RetryStrategy(max_retries=2)

    async def run(self, task: TransferTask) -> dict[str, Any] | None:
        """One attempt at transferring ``task.file``."""
        started = time.monotonic()
        path: Path | None = None
        try:
            token = await self._token(task)
            url = task.file.public_url or await self.resolve_public_url(token, task.file.asset_id)
            content_type = await self.validator.validate(url, task.file.name)
            path = await self.download(url, task)

            try:
                result = await self.client.upload_file_to_column(
                    token,
                    task.destination_item_id,
                    task.destination_column_id,
                    path,
                    filename=task.file.name,
                    content_type=content_type,
                )
            except BusinessRuleError as e:
                logger.warning("transfer.notify_user", asset_id=task.file.asset_id, reason=e.message)
                await self.client.send_notification(token, task.user_id, task.board_id, e.message)
                return None
        except Exception as e:
            self.metrics.track(
                "file_processing",
                "failure",
                failure=True,
                duration=time.monotonic() - started,
                error=str(e),
            )
            raise
        finally:
            if path is not None:
                path.unlink(missing_ok=True)

        logger.info(
            "transfer.file_done",
            asset_id=task.file.asset_id,
            destination_item_id=task.destination_item_id,
        )
        self.metrics.track(
            "file_processing",
            "success",
            success=True,
            duration=time.monotonic() - started,
            file_type=task.file.extension,
        )
        return result

    async def _token(self, task: TransferTask) -> str:
        if task.item_key in self.tokens:
            return await self.tokens.get(task.item_key)
        return task.access_token

    async def resolve_public_url(self, token: str, asset_id: str) -> str:
        """Public URL of *asset_id*, retried while the platform has none yet."""
        result = await self.url_retry.execute(
            lambda: self.client.get_asset(token, asset_id),
            RetryContext(label=f"asset:{asset_id}", check_public_url=True),
        )
        return result["data"]["assets"][0]["public_url"]

    async def download(self, url: str, task: TransferTask) -> Path:
        """Stream *url* into a unique scratch file."""
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        path = self.scratch_dir / f"{uuid.uuid4().hex}_{Path(task.file.name).name}"
        try:
            async with self.http.stream("GET", url) as response:
                if response.is_error:
                    raise PlatformAPIError(
                        f"Failed to download file: {response.reason_phrase}"
                    ).with_context(http_status=response.status_code, asset_id=task.file.asset_id)
                with open(path, "wb") as fh:
                    async for chunk in response.aiter_bytes():
                        fh.write(chunk)
        except httpx.TimeoutException as e:
            path.unlink(missing_ok=True)
            raise TimeoutError(f"Download timed out: {e}", cause=e).with_context(asset_id=task.file.asset_id)
        except (httpx.RemoteProtocolError, httpx.ReadError) as e:
            path.unlink(missing_ok=True)
            raise ConnectionResetError(f"Download interrupted: {e}", cause=e).with_context(
                asset_id=task.file.asset_id
            )
        except Exception:
            path.unlink(missing_ok=True)
            raise
        return path


__all__ = ["TransferOperation"]
