import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gtd_agent.agent.classifier import MessageClassifier
from gtd_agent.agent.context_manager import ConversationContextManager
from gtd_agent.agent.executor import ToolExecutor
from gtd_agent.agent.orchestrator import AgentOrchestrator
from gtd_agent.agent.replies import FALLBACK_ERROR
from gtd_agent.agent.tools import build_tool_registry
from gtd_agent.agent.undo import UndoManager
from gtd_agent.config import settings
from gtd_agent.database import async_session_maker
from gtd_agent.middleware.rate_limit import limiter
from gtd_agent.routers import turns
from gtd_agent.services.llm import LLMClient
from gtd_agent.services.session_store import RedisSessionStore
from gtd_agent.services.task_store import TaskStore

# Force console logging — errors go to stderr
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    store: RedisSessionStore,
    *,
    llm: LLMClient | None = None,
    classifier_llm: LLMClient | None = None,
    task_store: TaskStore | None = None,
) -> AgentOrchestrator:
    """Wire registry, router, context manager and orchestrator once from settings."""
    undo = UndoManager(cap=settings.undo_stack_cap)
    executor = ToolExecutor(build_tool_registry(undo), undo, recent_cap=settings.recent_entities_cap)
    classifier = MessageClassifier(
        classifier_llm
        or LLMClient(
            model=settings.classifier_model,
            temperature=settings.classifier_temperature,
            max_tokens=settings.classifier_max_tokens,
        ),
        max_items=settings.max_batch_items,
        hint_threshold=settings.pattern_hint_threshold,
        hint_limit=settings.pattern_hint_limit,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    contexts = ConversationContextManager(
        store,
        session_ttl_seconds=settings.session_ttl_seconds,
        recent_cap=settings.recent_entities_cap,
        undo_cap=settings.undo_stack_cap,
    )
    return AgentOrchestrator(
        llm=llm or LLMClient(),
        classifier=classifier,
        executor=executor,
        context_manager=contexts,
        session_factory=session_factory,
        task_store=task_store,
        max_tool_rounds=settings.max_tool_rounds,
        max_batch_items=settings.max_batch_items,
        max_tool_output_chars=settings.max_tool_output_chars,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    def _run_migrations() -> None:
        alembic_cfg = Config("alembic.ini")
        command.upgrade(alembic_cfg, "head")

    loop = asyncio.get_event_loop()
    await loop.run_in_executor(None, _run_migrations)
    logger.info("Migrations applied")

    store = RedisSessionStore()
    app.state.orchestrator = build_orchestrator(async_session_maker, store)
    logger.info("Agent ready")

    yield

    await store.close()


app = FastAPI(title="GTD SMS Agent", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(Exception)
async def log_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", extra={"path": request.url.path, "method": request.method})
    if request.url.path == "/turns":
        return JSONResponse(status_code=200, content={"response": FALLBACK_ERROR})
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(turns.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
