"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Build process-wide shared objects (session store, manager, uploader)
- Run the idle reaper and drain sessions on shutdown
- Register routes
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from calls.records import CallRecordStore
from config import AppConfig
from observability.logger import configure_logger, log_event
from session.manager import AudioSessionManager
from session.store import SessionStore
from storage.uploader import LocalStorageUploader, StorageUploader, build_uploader

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    uploader: StorageUploader | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations and fake uploaders
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    configure_logger(level=config.log_level, json_lines=config.enable_json_logs)

    # Fails fast on a misconfigured storage backend
    if uploader is None:
        uploader = build_uploader(config)

    # One store / manager per process
    store = SessionStore(max_buffer_bytes=config.session_max_buffer_bytes)
    call_records = CallRecordStore()
    manager = AudioSessionManager(
        store=store,
        uploader=uploader,
        sample_rate=config.audio_sample_rate,
        recording_layout=config.recording_layout,
        upload_timeout_s=config.upload_timeout_s,
        idle_timeout_s=config.session_idle_timeout_s,
        call_records=call_records,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        reaper = asyncio.create_task(manager.run_idle_reaper())
        log_event({
            "event_type": "APP_STARTED",
            "env": config.env,
            "storage_type": uploader.backend_name,
            "sample_rate": config.audio_sample_rate,
            "recording_layout": config.recording_layout,
        })
        try:
            yield
        finally:
            reaper.cancel()
            with suppress(asyncio.CancelledError):
                await reaper
            drained = await manager.shutdown()
            log_event({
                "event_type": "APP_STOPPED",
                "sessions_finalized": len(drained),
            })

    app = FastAPI(title="Aegis Call Audio API", lifespan=lifespan)

    app.state.config = config
    app.state.session_store = store
    app.state.session_manager = manager
    app.state.call_records = call_records
    app.state.uploader = uploader

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    # Local recordings are served straight from disk
    if isinstance(uploader, LocalStorageUploader):
        recordings_dir = Path(uploader.base_path)
        recordings_dir.mkdir(parents=True, exist_ok=True)
        app.mount(
            config.local_public_prefix.rstrip("/") or "/recordings",
            StaticFiles(directory=recordings_dir),
            name="recordings",
        )

    return app
