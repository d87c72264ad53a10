"""
Request handling for transfer recipes.

``TransferService`` is the process-wide owner of the transfer machinery:
one registry, breaker, metrics tracker and token cache, and one
:class:`FileTransferPipeline` per scenario.  The HTTP layer calls
:meth:`TransferService.handle` with the session token and the raw payload.

A request goes through:

1. Payload validation (400) and session/credential lookup (401)
2. Admission: at most ``request_concurrency`` requests enqueue at once
3. Claim of the item key ("Already processing" when busy)
4. Reading the source files and queueing them
5. Kicking off the drain loop
6. For MOVE only: waiting for the loop to finish, then clearing the source
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from filerelay.core.errors import AuthenticationError, RelayError, ValidationError
from filerelay.core.logging import get_logger
from filerelay.core.settings import RelaySettings
from filerelay.execution.circuit_breaker import CircuitBreaker
from filerelay.execution.rate_limit import RateLimiter
from filerelay.execution.retry import RetryStrategy
from filerelay.observability.metrics import MetricsTracker
from filerelay.platform.client import MondayClient
from filerelay.platform.oauth import OAuthService
from filerelay.platform.session import Session, decode_session
from filerelay.platform.tokens import InMemoryTokenStore, StoredToken, TokenCache, TokenStore
from filerelay.transfer.models import OPERATION_TYPES, TransferAction
from filerelay.transfer.operation import TransferOperation
from filerelay.transfer.pipeline import FileTransferPipeline
from filerelay.transfer.registry import ItemRegistry
from filerelay.transfer.scenarios import SCENARIOS, Scenario, TransferRequest
from filerelay.transfer.validation import FileValidator

logger = get_logger(__name__)


class TransferService:
    """Owns the transfer machinery and answers recipe requests."""

    def __init__(
        self,
        settings: RelaySettings,
        *,
        client: MondayClient,
        oauth: OAuthService,
        token_store: TokenStore,
        token_cache: TokenCache,
        registry: ItemRegistry,
        breaker: CircuitBreaker,
        metrics: MetricsTracker,
        pipelines: dict[str, FileTransferPipeline],
        scenarios: dict[str, Scenario] | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.client = client
        self.oauth = oauth
        self.token_store = token_store
        self.token_cache = token_cache
        self.registry = registry
        self.breaker = breaker
        self.metrics = metrics
        self.pipelines = pipelines
        self.scenarios = scenarios or SCENARIOS
        self._http = http
        self._admission = asyncio.Semaphore(settings.request_concurrency)

    @classmethod
    def from_settings(
        cls,
        settings: RelaySettings,
        *,
        http: httpx.AsyncClient | None = None,
        token_store: TokenStore | None = None,
    ) -> TransferService:
        """Wire the default object graph.

        *http* is shared by the API client, OAuth and downloads; tests pass
        one backed by ``httpx.MockTransport``.
        """
        http = http or httpx.AsyncClient(timeout=settings.request_timeout, follow_redirects=True)
        client = MondayClient(settings, http=http)
        oauth = OAuthService(settings, http=http)
        token_cache = TokenCache(oauth, freshness=settings.token_freshness)
        registry = ItemRegistry(
            item_timeout=settings.item_timeout,
            rate_limiter=RateLimiter(
                max_requests=settings.rate_limit_max,
                window_seconds=settings.rate_limit_window,
            ),
        )
        breaker = CircuitBreaker(
            failure_threshold=settings.breaker_failure_threshold,
            reset_timeout=settings.breaker_reset_timeout,
            cooldown_period=settings.breaker_cooldown_period,
            success_threshold=settings.breaker_success_threshold,
        )
        retry = RetryStrategy(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter_factor=settings.retry_jitter_factor,
        )
        metrics = MetricsTracker(reset_interval=settings.metrics_reset_interval)
        operation = TransferOperation(
            client,
            http,
            FileValidator(
                http,
                max_attempts=settings.download_max_attempts,
                retry_delay=settings.download_retry_delay,
            ),
            token_cache,
            metrics,
            settings.scratch_dir,
            url_retry=RetryStrategy(
                max_retries=2,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                jitter_factor=settings.retry_jitter_factor,
            ),
        )
        pipelines = {
            name: FileTransferPipeline(
                name,
                settings.profile(name),
                registry=registry,
                operation=operation,
                breaker=breaker,
                retry=retry,
                metrics=metrics,
                tokens=token_cache,
            )
            for name in SCENARIOS
        }
        return cls(
            settings,
            client=client,
            oauth=oauth,
            token_store=token_store or InMemoryTokenStore(),
            token_cache=token_cache,
            registry=registry,
            breaker=breaker,
            metrics=metrics,
            pipelines=pipelines,
            http=http,
        )

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        self.metrics.start()

    async def shutdown(self) -> None:
        await self.metrics.stop()
        for pipeline in self.pipelines.values():
            await pipeline.cancel_all()
        self.registry.clear()
        if self._http is not None:
            await self._http.aclose()

    # ── Auth ─────────────────────────────────────────────────────

    async def authenticate(self, authorization: str | None) -> tuple[Session, StoredToken]:
        """Session of the caller and the OAuth credential stored for them."""
        session = decode_session(authorization, self.settings.signing_secret)
        stored = await self.token_store.get(session.user_id)
        if stored is None or not stored.access_token:
            raise AuthenticationError("No valid token available").with_context(user_id=session.user_id)
        return session, stored

    # ── Transfers ────────────────────────────────────────────────

    async def handle(
        self,
        scenario_name: str,
        authorization: str | None,
        body: dict[str, Any] | None,
    ) -> dict[str, Any]:
        """Queue the files of one recipe run and answer the request."""
        scenario = self.scenarios[scenario_name]
        fields = ((body or {}).get("payload") or {}).get("inputFields") or {}
        request = scenario.parse(fields)
        session, stored = await self.authenticate(authorization)

        async with self._admission:
            outcome = await self._enqueue(scenario, request, session, stored)
        if isinstance(outcome, dict):
            return outcome

        state, queued = outcome
        if request.action is TransferAction.MOVE and state is not None:
            await self._complete_move(scenario, request, stored.access_token, state)

        return {"success": True, "message": f"Queued {queued} files for processing"}

    async def _enqueue(
        self,
        scenario: Scenario,
        request: TransferRequest,
        session: Session,
        stored: StoredToken,
    ) -> dict[str, Any] | tuple[Any, int]:
        key = request.item_key
        state = self.registry.claim(key)
        if state is None:
            logger.info("transfer.already_processing", item_key=key, scenario=scenario.name)
            return {"success": True, "message": "Already processing"}

        token = stored.access_token
        try:
            request = await scenario.resolve_destination(self.client, token, request)
            files = await scenario.load_files(self.client, token, request)
            if files is None:
                self.registry.release(key, state)
                return dict(scenario.empty_response)

            tasks = scenario.build_tasks(request, files, access_token=token, user_id=session.user_id)
            self.registry.enqueue(key, tasks)
            self.token_cache.set(key, stored.access_token, stored.refresh_token)
        except Exception:
            self.registry.release(key, state)
            raise

        logger.info("transfer.queued", item_key=key, scenario=scenario.name, files=len(tasks),
                    action=request.action.value)
        # start() releases the claim itself when there is nothing to drain
        started = self.pipelines[scenario.name].start(key)
        return (state if started else None), len(tasks)

    async def _complete_move(
        self, scenario: Scenario, request: TransferRequest, token: str, state: Any
    ) -> None:
        key = request.item_key
        while self.registry.state(key) is state:
            await asyncio.sleep(self.settings.move_poll_interval)

        try:
            await scenario.clear_source(self.client, token, request)
            logger.info("transfer.source_cleared", item_key=key, column_id=request.source_column_id)
        except RelayError as e:
            logger.error("transfer.clear_source_failed", item_key=key, error=str(e))

    # ── Board helpers ────────────────────────────────────────────

    async def get_file_columns(self, authorization: str | None, body: dict[str, Any] | None) -> dict[str, Any]:
        """File columns of ``destinationBoardId`` as paginated remote options."""
        payload = (body or {}).get("payload") or {}
        board_id = payload.get("destinationBoardId")
        if not board_id:
            raise ValidationError("Missing destinationBoardId in payload", field="destinationBoardId")
        _, stored = await self.authenticate(authorization)

        columns = await self.client.get_board_columns(stored.access_token, str(board_id))
        file_columns = [column for column in columns if column.get("type") == "file"]

        page = int(((payload.get("pageRequestData") or {}).get("page")) or 1)
        size = self.settings.page_size
        start = (page - 1) * size
        end = start + size
        is_last_page = end >= len(file_columns)
        return {
            "options": [{"title": c["title"], "value": c["id"]} for c in file_columns[start:end]],
            "isPaginated": True,
            "nextPageRequestData": None if is_last_page else {"page": page + 1},
            "isLastPage": is_last_page,
        }

    @staticmethod
    def get_remote_list_options() -> list[dict[str, str]]:
        return list(OPERATION_TYPES)

    def status(self) -> dict[str, Any]:
        """Metrics snapshot plus circuit and queue state."""
        return {
            "metrics": self.metrics.snapshot(),
            "circuits": self.breaker.snapshot(),
            "active_items": len(self.registry),
            "in_flight": {name: p.in_flight for name, p in self.pipelines.items()},
        }


__all__ = ["TransferService"]
