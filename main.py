import asyncio
import inspect
import logging
from contextlib import asynccontextmanager

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from openai import AsyncOpenAI

from routes.chat_ws import router as chat_router
from routes.session_route import router as session_router
from services.ledger.firefly_client import FireflyLedgerClient
from services.openai.extraction_prompts import load_prompt_template
from services.openai.receipt_extractor import OpenAIReceiptExtractor
from services.realtime.chat_session import ChatSessionHandler
from services.realtime.errors import LedgerServiceError
from services.realtime.housekeeping import run_eviction_loop
from services.realtime.orchestrator import SubmissionOrchestrator
from services.realtime.session_store import SessionStore
from services.realtime.state_machine import SessionStateMachine
from services.realtime.user_locks import UserLocks
from utils.settings import Settings

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


async def _close_quietly(resource) -> None:
    """Close a client exposing aclose/close, sync or async."""
    if resource is None:
        return
    aclose = getattr(resource, "aclose", None) or getattr(resource, "close", None)
    if aclose is None:
        return
    try:
        if inspect.iscoroutinefunction(aclose):
            await aclose()
        else:
            result = aclose()
            if inspect.isawaitable(result):
                await result
    except Exception:
        # Shutdown errors must not mask the original exit reason.
        LOGGER.exception("Error while closing %s", type(resource).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - settings and logging
      - the OpenAI-compatible extraction client and the Firefly ledger client
      - the session store, state machine, orchestrator and chat handler
      - the stale session eviction task
    and attach them to `app.state`.
    """
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        openai_client = AsyncOpenAI(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            default_headers={"HTTP-Referer": settings.openrouter_referer_url},
        )
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc

    http_client = httpx.AsyncClient(timeout=30.0)
    ledger = FireflyLedgerClient(settings.firefly_api_url, settings.firefly_access_token, http_client=http_client)
    extractor = OpenAIReceiptExtractor(
        openai_client,
        prompt_template=load_prompt_template(settings.prompt_template_file),
        min_tags=settings.transaction_min_tags,
        model=settings.openrouter_model,
    )

    store = SessionStore()
    locks = UserLocks()
    machine = SessionStateMachine(
        store,
        max_attempts=settings.max_processing_attempts,
        allow_empty_finalize=settings.allow_empty_finalize,
    )
    orchestrator = SubmissionOrchestrator(
        store, machine, locks, extractor, ledger, min_tags=settings.transaction_min_tags
    )
    handler = ChatSessionHandler(machine, orchestrator, locks, debounce_ms=settings.media_group_timeout_ms)

    app.state.settings = settings
    app.state.openai_client = openai_client
    app.state.http_client = http_client
    app.state.ledger = ledger
    app.state.session_store = store
    app.state.user_locks = locks
    app.state.chat_handler = handler

    eviction_task = asyncio.create_task(
        run_eviction_loop(
            store,
            locks,
            interval_minutes=settings.session_cleanup_interval_minutes,
            max_age_hours=settings.session_max_age_hours,
        ),
        name="session-eviction",
    )
    LOGGER.info("Receipt intake service started (model %s)", settings.openrouter_model)

    try:
        yield
    finally:
        eviction_task.cancel()
        await asyncio.gather(eviction_task, return_exceptions=True)
        await handler.close()
        await _close_quietly(openai_client)
        await _close_quietly(http_client)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports collaborator presence and session count.
        """
        state = request.app.state
        store = getattr(state, "session_store", None)
        return {
            "ok": True,
            "openai_available": getattr(state, "openai_client", None) is not None,
            "ledger_configured": getattr(state, "ledger", None) is not None,
            "active_sessions": len(store) if store is not None else 0,
        }

    @app.get("/health/ledger")
    async def ledger_health(request: Request):
        """
        Verify that the finance service is reachable with the configured token.
        """
        ledger = getattr(request.app.state, "ledger", None)
        if ledger is None:
            raise HTTPException(status_code=503, detail="Ledger client unavailable")
        try:
            about = await ledger.check_connection()
        except LedgerServiceError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"ok": True, "version": about.get("version")}

    # Register application routers
    app.include_router(chat_router)
    app.include_router(session_router)

    return app


app = create_app()
