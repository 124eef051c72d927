"""Runtime orchestration for bridge events -> coherence engine -> WS/API.

Boundary note for maintainers:
- Keep this module focused on wiring, not algorithm details.
- Coherence math belongs in ``sonicsync_core``; event handling in ``engine.py``.
- API schemas belong in ``api_models.py``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from sonicsync_shared.contracts import OUTBOUND_EVENTS

from . import __version__
from .config import AppConfig, load_config
from .engine import CoherenceEngine
from .event_bus import EventBus, InProcessEventBus
from .history_db import HistoryDB
from .persistence import HistoryStore, NullHistoryStore
from .routes import create_router
from .ws_hub import WebSocketHub

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    bus: EventBus
    engine: CoherenceEngine
    ws_hub: WebSocketHub
    history_db: HistoryDB | None = None

    async def start(self) -> None:
        self.engine.start()
        self.ws_hub.attach(self.bus, OUTBOUND_EVENTS, asyncio.get_running_loop())

    async def stop(self) -> None:
        self.ws_hub.detach()
        flush_timeout_s = self.config.storage.shutdown_flush_timeout_s
        flushed = await asyncio.to_thread(self.engine.close, flush_timeout_s)
        if not flushed:
            LOGGER.warning(
                "Pending coherence writes did not finish within %.1fs on shutdown; "
                "they may be lost.",
                flush_timeout_s,
            )
        if self.history_db is not None:
            try:
                self.history_db.close()
            except Exception:
                LOGGER.warning("Error closing history DB", exc_info=True)


def build_runtime(config: AppConfig, bus: EventBus | None = None) -> RuntimeState:
    history_db: HistoryDB | None = None
    store: HistoryStore
    if config.storage.persist_history:
        history_db = HistoryDB(config.storage.history_db_path)
        store = history_db
    else:
        LOGGER.info("Coherence history persistence disabled by config")
        store = NullHistoryStore()
    runtime_bus = bus if bus is not None else InProcessEventBus()
    engine = CoherenceEngine(
        runtime_bus,
        store,
        feedback_interval_ms=config.engine.feedback_interval_ms,
        history_window_size=config.engine.history_window_size,
        write_queue_maxsize=config.storage.write_queue_maxsize,
        query_limit=config.storage.query_limit,
    )
    return RuntimeState(
        config=config,
        bus=runtime_bus,
        engine=engine,
        ws_hub=WebSocketHub(),
        history_db=history_db,
    )


def create_app(config_path: Path | None = None, bus: EventBus | None = None) -> FastAPI:
    config = load_config(config_path)
    runtime = build_runtime(config, bus)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="SonicSync", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the SonicSync coherence server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    level = runtime.config.logging.level
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        runtime_app,
        host=runtime.config.server.host,
        port=runtime.config.server.port,
        log_level=level.lower(),
    )


if __name__ == "__main__":
    main()
