from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

from fastapi import FastAPI, HTTPException

from toolbridge.config import Settings, settings
from toolbridge.models import (
    AliasListResponse,
    AliasModel,
    AliasSyncRequest,
    AliasUpsertRequest,
    AliasUpsertResponse,
    DetectRequest,
    ErrorLogEntryModel,
    ErrorLogResponse,
    ExecuteRequest,
    ExecuteResponse,
    ParseRequest,
    ToolCallModel,
    ToolCallsResponse,
    ToolCatalogResponse,
    ToolDefinitionModel,
    ToolResultModel,
    TurnRequest,
    TurnResponse,
)
from toolbridge.router.intent_router import DirectIntentDetector
from toolbridge.services.alias_book import AliasBook, AliasSource
from toolbridge.services.background import BackgroundTaskQueue
from toolbridge.services.dispatcher import RetryingDispatcher
from toolbridge.services.error_log import ErrorLog
from toolbridge.services.kv_store import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from toolbridge.services.orchestrator import ToolExecutionOrchestrator
from toolbridge.services.readiness import ReadinessPoller
from toolbridge.services.staleness import StalenessGuard
from toolbridge.services.surfaces import AutomationSurface, HttpSurfaceBridge
from toolbridge.services.tool_call_parser import parse_tool_calls
from toolbridge.services.turn_runner import ToolTurnRunner
from toolbridge.tools import DatabaseTool, IntegrationTool, MailTool, Tool, ToolCall, ToolRegistry
from toolbridge.tools.catalog import build_default_registry, canonical_tool_name

LOGGER = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: Settings
    registry: ToolRegistry
    store: KeyValueStore
    alias_book: AliasBook
    error_log: ErrorLog
    guard: StalenessGuard
    surface: AutomationSurface
    dispatcher: RetryingDispatcher
    orchestrator: ToolExecutionOrchestrator
    detector: DirectIntentDetector
    turn_runner: ToolTurnRunner
    background: BackgroundTaskQueue
    domain_tools: dict[str, Tool]

    def unavailable_namespaces(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if not self.config.db_connection_url:
            out["db"] = "no database connection configured"
        if not (self.config.smtp_host and self.config.smtp_username and self.config.smtp_password):
            out["smtp"] = "mail relay not configured"
        if not self.config.integration_endpoints:
            out["integration"] = "no integrations allow-listed"
        return {name: reason for name, reason in out.items() if self.registry.has_namespace(name)}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _default_domain_tools(config: Settings) -> list[Tool]:
    return [
        DatabaseTool(
            bridge_url=config.db_bridge_url or f"{config.surface_bridge_url.rstrip('/')}/db/query",
            connection_url=config.db_connection_url or "",
            allow_full_table_write=config.db_allow_full_table_write,
        ),
        MailTool(
            relay_url=config.smtp_relay_url or f"{config.surface_bridge_url.rstrip('/')}/smtp/send",
            host=config.smtp_host or "",
            port=config.smtp_port,
            username=config.smtp_username or "",
            password=config.smtp_password or "",
            sender=config.smtp_from or "",
        ),
        IntegrationTool(
            config.integration_endpoints,
            timeout_seconds=config.integration_timeout_seconds,
        ),
    ]


def build_runtime(
    config: Settings = settings,
    *,
    surface: AutomationSurface | None = None,
    store: KeyValueStore | None = None,
    domain_tools: Iterable[Tool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Runtime:
    if store is None:
        store = JsonFileKeyValueStore(config.storage_path) if config.storage_path else InMemoryKeyValueStore()
    if surface is None:
        surface = HttpSurfaceBridge(
            config.surface_bridge_url,
            timeout_seconds=config.surface_bridge_timeout_seconds,
        )
    tools = list(domain_tools) if domain_tools is not None else _default_domain_tools(config)

    registry = build_default_registry()
    guard = StalenessGuard()
    alias_book = AliasBook(
        store,
        max_entries=config.alias_book_max_entries,
        cooldown_seconds=config.alias_sync_cooldown_seconds,
    )
    error_log = ErrorLog(
        store,
        max_items=config.error_log_max_items,
        max_age_seconds=config.error_log_max_age_seconds,
        coalesce_window_seconds=config.error_log_coalesce_window_seconds,
    )
    poller = ReadinessPoller(sleep=sleep, resync_every=config.readiness_resync_every)
    dispatcher = RetryingDispatcher(
        surface,
        poller,
        sleep=sleep,
        max_attempts=config.dispatch_max_attempts,
        retry_delay_seconds=config.dispatch_retry_delay_ms / 1000,
        readiness_attempts=config.readiness_attempts,
        readiness_delay_seconds=config.readiness_delay_ms / 1000,
    )
    orchestrator = ToolExecutionOrchestrator(
        registry,
        surface,
        dispatcher,
        alias_book,
        error_log,
        guard,
        tools,
        max_calls=config.max_tool_calls,
        chat_surface_url=config.chat_surface_url,
    )
    poller.bind_snapshot_source(orchestrator)
    detector = DirectIntentDetector(alias_book)
    turn_runner = ToolTurnRunner(
        orchestrator,
        detector,
        error_log,
        guard,
        max_calls=config.max_tool_calls,
        direct_intent_enabled=config.direct_intent_enabled,
    )
    return Runtime(
        config=config,
        registry=registry,
        store=store,
        alias_book=alias_book,
        error_log=error_log,
        guard=guard,
        surface=surface,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
        detector=detector,
        turn_runner=turn_runner,
        background=BackgroundTaskQueue(),
        domain_tools={tool.namespace: tool for tool in tools},
    )


def create_app(runtime: Runtime | None = None) -> FastAPI:
    rt = runtime or build_runtime(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        aliases = await rt.alias_book.load()
        errors = await rt.error_log.load()
        rt.background.start()
        LOGGER.info("toolbridge: started with %d aliases and %d recent errors", aliases, errors)
        yield
        await rt.background.stop()

    app = FastAPI(title="toolbridge API", version="0.1.0", lifespan=lifespan)
    app.state.runtime = rt

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/tools", response_model=ToolCatalogResponse)
    async def list_tools() -> ToolCatalogResponse:
        unavailable = rt.unavailable_namespaces()
        return ToolCatalogResponse(
            tools=[
                ToolDefinitionModel(
                    name=definition.name,
                    label=definition.label,
                    description=definition.description,
                    surface=definition.surface,
                    mutating=definition.mutating,
                    input_schema=dict(definition.schema),
                )
                for definition in rt.registry.definitions()
            ],
            unavailable=unavailable,
            prompt=rt.registry.render_for_prompt(unavailable=unavailable),
        )

    @app.post("/v1/tools/parse", response_model=ToolCallsResponse)
    async def parse_route(payload: ParseRequest) -> ToolCallsResponse:
        calls = parse_tool_calls(payload.text, max_calls=payload.max_calls or rt.config.max_tool_calls)
        return ToolCallsResponse(calls=[_call_model(call) for call in calls])

    @app.post("/v1/tools/detect", response_model=ToolCallsResponse)
    async def detect_route(payload: DetectRequest) -> ToolCallsResponse:
        calls = rt.detector.detect(payload.text, source=payload.source)
        return ToolCallsResponse(calls=[_call_model(call) for call in calls])

    @app.post("/v1/tools/execute", response_model=ExecuteResponse)
    async def execute_route(payload: ExecuteRequest) -> ExecuteResponse:
        calls = [ToolCall(tool=canonical_tool_name(item.tool), args=dict(item.args)) for item in payload.calls]
        results = await rt.orchestrator.execute(calls)
        return ExecuteResponse(results=[ToolResultModel(**result.to_dict()) for result in results])

    @app.post("/v1/turns", response_model=TurnResponse)
    async def turn_route(payload: TurnRequest) -> TurnResponse:
        if not (payload.model_text or payload.user_text):
            raise HTTPException(status_code=400, detail="model_text or user_text is required.")
        outcome = await rt.turn_runner.run_turn(
            payload.thread_id,
            model_text=payload.model_text,
            user_text=payload.user_text,
            source=payload.source,
        )
        return TurnResponse(
            thread_id=outcome.thread_id,
            origin=outcome.origin,
            stale=outcome.stale,
            calls=[_call_model(call) for call in outcome.calls],
            results=[ToolResultModel(**result.to_dict()) for result in outcome.results],
            followup_prompt=outcome.followup_prompt,
        )

    @app.get("/v1/errors/recent", response_model=ErrorLogResponse)
    async def recent_errors(limit: int = 10) -> ErrorLogResponse:
        bounded = max(1, min(50, limit))
        entries = rt.error_log.entries()[-bounded:]
        return ErrorLogResponse(
            entries=[ErrorLogEntryModel(**entry.to_dict()) for entry in entries],
            summary=rt.error_log.summarize_for_prompt(limit=bounded),
        )

    @app.get("/v1/aliases", response_model=AliasListResponse)
    async def list_aliases() -> AliasListResponse:
        return AliasListResponse(aliases=[AliasModel(**record.to_dict()) for record in rt.alias_book.records()])

    @app.post("/v1/aliases", response_model=AliasUpsertResponse)
    async def upsert_alias(payload: AliasUpsertRequest) -> AliasUpsertResponse:
        result = await rt.alias_book.record_mapping(
            payload.label,
            payload.target,
            source=AliasSource(payload.source),
        )
        if not result.changed and rt.alias_book.get(payload.label) is None:
            raise HTTPException(status_code=400, detail="Alias must be 2-64 characters and not purely numeric.")
        return AliasUpsertResponse(changed=result.changed, added=result.added, updated=result.updated)

    @app.post("/v1/aliases/sync", response_model=AliasUpsertResponse)
    async def sync_aliases(payload: AliasSyncRequest) -> AliasUpsertResponse:
        if payload.background:

            async def job() -> None:
                await rt.alias_book.sync_from_history(payload.rows, force=payload.force)

            queued = rt.background.submit("alias_history_sync", job)
            return AliasUpsertResponse(changed=False, added=0, updated=0, queued=queued)

        result = await rt.alias_book.sync_from_history(payload.rows, force=payload.force)
        if result is None:
            return AliasUpsertResponse(changed=False, added=0, updated=0, skipped=True)
        return AliasUpsertResponse(changed=result.changed, added=result.added, updated=result.updated)

    return app


def _call_model(call: ToolCall) -> ToolCallModel:
    return ToolCallModel(tool=call.tool, args=dict(call.args))


configure_logging(settings.log_level)
app = create_app()
