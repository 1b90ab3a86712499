"""
EAA Assistant Server

FastAPI application exposing the assistant under /api/v1.

Endpoints:
- POST /ask: answer a question (JSON or server-sent events)
- GET /health, GET /config
- GET /welcome/{user_id}
- POST /whisper/transcribe
- POST /agent/proactive-analysis, POST /agent/ai-suggestions
- POST /suggestions/modern, GET /suggestions/fallback, GET /suggestions/health
- POST /explain-term
- GET /chat/sessions/{user_id}, GET /chat/messages/{session_id},
  DELETE /chat/sessions/{session_id}

Components are built once in the lifespan and kept on app.state.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from openai import AsyncOpenAI
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..assistants.email_composer import EmailComposer
from ..assistants.frustration import FrustrationDetector
from ..assistants.proactive import ProactiveAgent
from ..assistants.suggestions import SuggestionGenerator, fallback_suggestions
from ..assistants.term_explainer import TermExplainer
from ..assistants.transcriber import Transcriber
from ..assistants.welcome import WelcomeBuilder
from ..common.config import AssistantConfig, load_config
from ..common.embedding_service import EmbeddingService
from ..common.errors import AssistantError, ValidationError
from ..common.llm_client import LLMClient
from ..common.logging_setup import configure_logging
from ..common.result_cache import ResultCache
from ..memory.facts import FactExtractor
from ..memory.manager import ChatMemory
from ..memory.store import ChatStore, InMemoryChatStore, SupabaseChatStore
from ..retriever.question_splitter import QuestionSplitter
from ..retriever.synthesizer import AnswerComposer
from ..retriever.vector_search import InMemoryVectorStore, SupabaseVectorStore, VectorSearchGateway, VectorStore
from .models import AskRequest, ExplainTermRequest, ProactiveRequest, SuggestionRequest
from .orchestrator import AskOrchestrator, validate_question

logger = logging.getLogger("eaa_assistant.chat.server")

API_PREFIX = "/api/v1"
API_VERSION = "1.0"

_HTTP_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


# =============================================================================
# Components
# =============================================================================

@dataclass
class Components:
    """Everything the routes need, built once per process"""
    config: AssistantConfig
    llm: LLMClient
    embeddings: EmbeddingService
    vector_store: VectorStore
    store: ChatStore
    memory: ChatMemory
    orchestrator: AskOrchestrator
    suggestions: SuggestionGenerator
    proactive: ProactiveAgent
    terms: TermExplainer
    welcome: WelcomeBuilder
    transcriber: Transcriber

    async def close(self) -> None:
        await self.vector_store.close()
        await self.store.close()


def build_components(
    config: AssistantConfig,
    *,
    llm: Optional[LLMClient] = None,
    openai_client=None,
    vector_store: Optional[VectorStore] = None,
    store: Optional[ChatStore] = None,
) -> Components:
    """
    Wire clients, caches, gateways and agents from configuration.

    The keyword arguments replace the corresponding hosted client or
    backend; everything else is still built from config.
    """
    timeout = config.server.request_timeout
    if openai_client is None and config.openai.api_key:
        openai_client = AsyncOpenAI(api_key=config.openai.api_key)

    if llm is None:
        chat_model = config.llm.anthropic_model if config.llm.provider == "anthropic" else config.openai.chat_model
        llm = LLMClient(
            provider=config.llm.provider,
            model=chat_model,
            openai_api_key=config.openai.api_key or None,
            anthropic_api_key=config.llm.anthropic_api_key or None,
            timeout=timeout,
        )

    embeddings = EmbeddingService(
        openai_client,
        model=config.openai.embedding_model,
        cache=ResultCache(config.cache.embedding_capacity, ttl_ms=config.cache.ttl_ms, name="embeddings"),
        timeout=timeout,
    )

    if config.supabase.is_configured:
        if vector_store is None:
            vector_store = SupabaseVectorStore(
                config.supabase.url,
                config.supabase.service_key,
                function_name=config.supabase.match_function,
                dataset_param=config.supabase.dataset_param or None,
                timeout=timeout,
            )
        if store is None:
            store = SupabaseChatStore(config.supabase.url, config.supabase.service_key, timeout=timeout)
    elif vector_store is None or store is None:
        logger.warning("Supabase not configured, using in-memory stores")
    vector_store = vector_store if vector_store is not None else InMemoryVectorStore()
    store = store if store is not None else InMemoryChatStore()

    memory = ChatMemory(store)
    search = VectorSearchGateway(
        vector_store,
        cache=ResultCache(config.cache.search_capacity, ttl_ms=config.cache.ttl_ms, name="search"),
        timeout=timeout,
    )
    suggestions = SuggestionGenerator(llm, memory)
    orchestrator = AskOrchestrator(
        embeddings,
        search,
        AnswerComposer(llm),
        memory,
        splitter=QuestionSplitter(llm),
        retrieval=config.retrieval,
        suggestions=suggestions,
        fact_extractor=FactExtractor(llm, memory, min_confidence=config.agents.fact_min_confidence),
        frustration=FrustrationDetector(
            llm,
            min_level=config.agents.frustration_min_level,
            min_confidence=config.agents.frustration_min_confidence,
            min_triggers=config.agents.frustration_min_triggers,
        ),
        email_composer=EmailComposer(llm),
    )

    return Components(
        config=config,
        llm=llm,
        embeddings=embeddings,
        vector_store=vector_store,
        store=store,
        memory=memory,
        orchestrator=orchestrator,
        suggestions=suggestions,
        proactive=ProactiveAgent(llm, memory),
        terms=TermExplainer(llm),
        welcome=WelcomeBuilder(memory, suggestions),
        transcriber=Transcriber(
            openai_client,
            model=config.openai.whisper_model,
            max_bytes=config.server.max_audio_bytes,
            timeout=config.server.transcription_timeout,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build components on startup unless they were injected."""
    owns_components = getattr(app.state, "components", None) is None
    if owns_components:
        config = load_config()
        configure_logging(config)
        config.validate()
        app.state.components = build_components(config)
        logger.info(
            "EAA Assistant ready (env: %s, chat: %s, embedding: %s)",
            config.server.environment, config.openai.chat_model, config.openai.embedding_model,
        )

    yield

    if owns_components:
        logger.info("Shutting down...")
        await app.state.components.close()
        app.state.components = None


def get_components(request: Request) -> Components:
    return request.app.state.components


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Endpoints
# =============================================================================

router = APIRouter(prefix=API_PREFIX)


@router.post("/ask")
async def ask(
    body: AskRequest,
    background_tasks: BackgroundTasks,
    components: Components = Depends(get_components),
):
    orchestrator = components.orchestrator
    if body.stream:
        # Validate before the stream opens so errors are still a 400
        validate_question(body)
        return StreamingResponse(
            orchestrator.stream(body, schedule=background_tasks.add_task),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    return await orchestrator.ask(body, schedule=background_tasks.add_task)


@router.get("/health")
async def health():
    return {"status": "OK", "timestamp": _now()}


@router.get("/config")
async def get_config(components: Components = Depends(get_components)):
    config = components.config
    return {
        "version": API_VERSION,
        "models": {
            "chat": components.llm.model,
            "embedding": config.openai.embedding_model,
        },
        "defaults": {
            "max_chunks": config.retrieval.max_chunks,
            "similarity_threshold": config.retrieval.similarity_threshold,
        },
    }


@router.get("/welcome/{user_id}")
async def welcome(user_id: str, components: Components = Depends(get_components)):
    result = await components.welcome.build(user_id)
    return result.to_dict()


@router.post("/whisper/transcribe")
async def transcribe(
    audio: Optional[UploadFile] = File(None),
    components: Components = Depends(get_components),
):
    if audio is None:
        raise ValidationError("Audio file not found in request", code="MISSING_AUDIO")
    data = await audio.read()
    transcript = await components.transcriber.transcribe(data, filename=audio.filename or "audio.webm")
    return {"transcript": transcript}


@router.post("/agent/proactive-analysis")
async def proactive_analysis(body: ProactiveRequest, components: Components = Depends(get_components)):
    if not body.currentText or not body.userId or not body.sessionId:
        raise ValidationError(
            "Missing required parameters: currentText, userId, sessionId", code="MISSING_PARAMETERS",
        )
    suggestion = await components.proactive.suggest(body.currentText, body.userId, body.sessionId)
    return {"suggestion": suggestion}


@router.post("/agent/ai-suggestions")
async def ai_suggestions(body: SuggestionRequest, components: Components = Depends(get_components)):
    if not body.userId or not body.sessionId:
        raise ValidationError("Missing required parameters: userId, sessionId", code="MISSING_PARAMETERS")
    result = await components.suggestions.generate(body.userId, body.sessionId, body.currentQuestion or "")
    return {"suggestions": result.suggestions, "header": result.header, "reasoning": result.reasoning}


@router.post("/suggestions/modern")
async def modern_suggestions(body: SuggestionRequest, components: Components = Depends(get_components)):
    if not (body.userId or "").strip():
        raise ValidationError("userId is required and must be non-empty string", code="MISSING_USER_ID")
    if not (body.sessionId or "").strip():
        raise ValidationError("sessionId is required and must be non-empty string", code="MISSING_SESSION_ID")

    started = time.perf_counter()
    result = await components.suggestions.generate(body.userId, body.sessionId, body.currentQuestion or "")
    return {
        "success": True,
        "data": result.to_dict(),
        "performance": {
            "processing_time_ms": int(round((time.perf_counter() - started) * 1000)),
            "timestamp": _now(),
        },
    }


@router.get("/suggestions/fallback")
async def suggestions_fallback():
    return {"success": True, "data": fallback_suggestions().to_dict()}


@router.get("/suggestions/health")
async def suggestions_health(components: Components = Depends(get_components)):
    status = await components.suggestions.health()
    return JSONResponse(status_code=200 if status["status"] == "healthy" else 503, content=status)


@router.post("/explain-term")
async def explain_term(body: ExplainTermRequest, components: Components = Depends(get_components)):
    term = (body.term or "").strip()
    if not term:
        raise ValidationError('Parameter "term" is required and must be a non-empty string', code="MISSING_TERM")

    started = time.perf_counter()
    explanation = await components.terms.explain(term, body.context or "")
    return {
        "term": term,
        "explanation": explanation,
        "context": body.context or None,
        "performance": {"response_time_ms": int(round((time.perf_counter() - started) * 1000))},
        "session_id": body.session_id or "no-session",
        "user_id": body.user_id or "anonymous",
        "timestamp": _now(),
    }


@router.get("/chat/sessions/{user_id}")
async def list_sessions(user_id: str, components: Components = Depends(get_components)):
    sessions = await components.memory.list_sessions(user_id)
    return {"sessions": [s.to_dict() for s in sessions]}


@router.get("/chat/messages/{session_id}")
async def list_messages(session_id: str, components: Components = Depends(get_components)):
    messages = await components.memory.get_session_messages(session_id)
    return {"messages": [m.to_dict() for m in messages]}


@router.delete("/chat/sessions/{session_id}")
async def delete_session(session_id: str, components: Components = Depends(get_components)):
    await components.memory.delete_session(session_id)
    return {"success": True, "message": "Session deleted successfully"}


# =============================================================================
# Error handlers
# =============================================================================

async def handle_assistant_error(request: Request, exc: AssistantError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content={"error": f"Invalid request: {details}", "code": "VALIDATION_ERROR"},
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 405:
        message = "Method Not Allowed. Use POST instead."
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message, "code": _HTTP_CODES.get(exc.status_code, "HTTP_ERROR")},
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})


def create_app(components: Optional[Components] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        components: Pre-built components (tests); built from config at
            startup when omitted
    """
    application = FastAPI(
        title="EAA Assistant",
        description="European Accessibility Act compliance assistant",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.components = components
    application.include_router(router)
    application.add_exception_handler(AssistantError, handle_assistant_error)
    application.add_exception_handler(RequestValidationError, handle_validation_error)
    application.add_exception_handler(StarletteHTTPException, handle_http_error)
    application.add_exception_handler(Exception, handle_unexpected_error)
    return application


app = create_app()


# =============================================================================
# CLI Entry Point
# =============================================================================

def run_server():
    """Run the EAA Assistant server"""
    import uvicorn

    config = load_config()
    configure_logging(config)

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        "eaa_assistant.chat.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=False,
    )


if __name__ == "__main__":
    run_server()
