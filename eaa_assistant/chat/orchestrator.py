"""
Ask Orchestrator

Runs one /ask request through the pipeline:

    VALIDATING -> EMBEDDING -> SEARCHING -> SINGLE_ANSWER | MULTI_ANSWER -> DONE
                        (any state) -> ERRORED

Multi-question messages are answered concurrently (bounded by a semaphore)
and returned in input order; one failing sub-question never affects its
siblings. Persistence, suggestions, fact extraction and frustration
analysis are enrichment steps that never fail the answer.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from ..assistants.email_composer import EmailComposer
from ..assistants.frustration import FrustrationDetector
from ..assistants.suggestions import SuggestionGenerator, SuggestionSet
from ..common.config import RetrievalConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import PipelineError, UpstreamError, ValidationError
from ..common.language import LanguageInfo, detect_language
from ..memory.facts import FactExtractor
from ..memory.manager import ChatMemory
from ..memory.models import ChatMessage, MessageRole
from ..retriever.question_splitter import QuestionSplitter
from ..retriever.synthesizer import FAILED_ANSWER, AnswerComposer, ComposedAnswer
from ..retriever.vector_search import Performance, VectorSearchGateway, elapsed_ms
from .fast_paths import FastPathReply, match_fast_path
from .models import AskRequest, Query, new_session_id

logger = logging.getLogger("eaa_assistant.chat.orchestrator")

HISTORY_WINDOW = 8

# Schedules an enrichment coroutine function (e.g. BackgroundTasks.add_task)
Scheduler = Callable[..., Any]


class PipelineState(str, Enum):
    VALIDATING = "validating"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    SINGLE_ANSWER = "single_answer"
    MULTI_ANSWER = "multi_answer"
    DONE = "done"
    ERRORED = "errored"


@dataclass
class PipelineRun:
    """Per-request bookkeeping"""
    query_id: str
    session_id: str
    started: float = field(default_factory=time.perf_counter)
    state: PipelineState = PipelineState.VALIDATING

    def advance(self, state: PipelineState) -> None:
        logger.debug("[%s] %s -> %s", self.query_id, self.state.value, state.value)
        self.state = state


@dataclass
class AnswerResult:
    """Answer to one (sub-)question"""
    question: str
    answer: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    performance: Performance = field(default_factory=Performance)
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "question": self.question,
            "answer": self.answer,
            "sources": self.sources,
            "performance": self.performance.to_dict(),
        }
        if self.failed:
            data["failed"] = True
        return data


def validate_question(request: AskRequest) -> str:
    """
    Return the trimmed question.

    Raises:
        ValidationError: empty question
    """
    question = (request.question or "").strip()
    if not question:
        raise ValidationError("Question must not be empty", code="EMPTY_QUESTION")
    return question


def sse_event(event_type: str, content: Any = None) -> str:
    payload = {"type": event_type}
    if content is not None:
        payload["content"] = content
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def combine_answers(results: Sequence[AnswerResult]) -> str:
    return "\n\n".join(
        f"**{idx}. {r.question}**\n{r.answer}" for idx, r in enumerate(results, start=1)
    )


def merge_sources(results: Sequence[AnswerResult]) -> List[Dict[str, Any]]:
    merged, seen = [], set()
    for result in results:
        for source in result.sources:
            key = (source.get("title"), source.get("text_preview"))
            if key in seen:
                continue
            seen.add(key)
            merged.append(source)
    return merged


class AskOrchestrator:
    """
    Coordinates embedding, search, composition and enrichment for /ask.

    All collaborators are injected; the orchestrator holds no global state.
    """

    def __init__(
        self,
        embeddings: EmbeddingService,
        search: VectorSearchGateway,
        composer: AnswerComposer,
        memory: ChatMemory,
        splitter: Optional[QuestionSplitter] = None,
        retrieval: Optional[RetrievalConfig] = None,
        *,
        suggestions: Optional[SuggestionGenerator] = None,
        fact_extractor: Optional[FactExtractor] = None,
        frustration: Optional[FrustrationDetector] = None,
        email_composer: Optional[EmailComposer] = None,
    ):
        self._embeddings = embeddings
        self._search = search
        self._composer = composer
        self._memory = memory
        self._splitter = splitter or QuestionSplitter()
        self._retrieval = retrieval or RetrievalConfig()
        self._suggestions = suggestions
        self._facts = fact_extractor
        self._frustration = frustration
        self._email = email_composer

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def build_query(self, request: AskRequest, session_id: Optional[str] = None) -> Query:
        """
        Validate the request and apply defaults.

        Raises:
            ValidationError: empty question
        """
        question = validate_question(request)
        return Query(
            question=question,
            dataset_id=request.dataset_id or self._retrieval.dataset_id,
            similarity_threshold=(
                request.similarity_threshold
                if request.similarity_threshold is not None
                else self._retrieval.similarity_threshold
            ),
            max_chunks=request.max_chunks or self._retrieval.max_chunks,
            user_id=request.user_id or "anonymous",
            session_id=session_id or request.session_id or new_session_id(),
        )

    async def ask(self, request: AskRequest, schedule: Optional[Scheduler] = None) -> Dict[str, Any]:
        """
        Answer an /ask request.

        Args:
            request: Parsed request body
            schedule: Runs enrichment after the response (awaited inline when None)

        Returns:
            ProcessingResult payload

        Raises:
            ValidationError: invalid request, before any gateway call
            PipelineError: anything else; detail is only logged
        """
        run = PipelineRun(query_id=str(uuid.uuid4()), session_id=request.session_id or new_session_id())
        query = self.build_query(request, run.session_id)

        try:
            history = await self._history(query)
            reply = match_fast_path(query.question, self._previous_question(history))
            if reply is not None:
                payload = self._fast_path_payload(run, reply)
                await self._persist(query, reply.answer, {"query_id": run.query_id, "fast_path": reply.kind})
                run.advance(PipelineState.DONE)
                return payload

            language = detect_language(query.question)
            results = [r async for r in self._answers(query, run, language)]
            payload = await self._build_payload(query, run, results, language)

            user_message = await self._persist(
                query, payload["answer"], {"query_id": run.query_id, "sources": payload["sources"]},
            )
            await self._dispatch_enrichment(schedule, query, history, user_message)
            run.advance(PipelineState.DONE)
            return payload
        except Exception as e:
            raise self._fail(run, e) from e

    async def stream(self, request: AskRequest, schedule: Optional[Scheduler] = None) -> AsyncIterator[str]:
        """
        Answer as server-sent events.

        Emits one "answer" event per (sub-)question, then "meta" and "done".
        Failures after the stream has started emit "error" before "done".
        Validation is the caller's job (validate_question) so a 400 can still be
        returned before the stream opens.
        """
        run = PipelineRun(query_id=str(uuid.uuid4()), session_id=request.session_id or new_session_id())
        try:
            query = self.build_query(request, run.session_id)
            history = await self._history(query)
            reply = match_fast_path(query.question, self._previous_question(history))
            if reply is not None:
                payload = self._fast_path_payload(run, reply)
                yield sse_event("answer", {"question": query.question, "answer": reply.answer, "sources": []})
                yield sse_event("meta", {
                    "performance": payload["performance"],
                    "suggestions": payload["suggestions"],
                    "suggestions_header": payload["suggestions_header"],
                    "query_id": run.query_id,
                    "session_id": run.session_id,
                })
                await self._persist(query, reply.answer, {"query_id": run.query_id, "fast_path": reply.kind})
            else:
                language = detect_language(query.question)
                results = []
                async for result in self._answers(query, run, language):
                    results.append(result)
                    yield sse_event("answer", result.to_dict())

                payload = await self._build_payload(query, run, results, language)
                yield sse_event("meta", {
                    "performance": payload["performance"],
                    "suggestions": payload["suggestions"],
                    "suggestions_header": payload["suggestions_header"],
                    "query_id": run.query_id,
                    "session_id": run.session_id,
                    "language": payload["language"],
                })
                user_message = await self._persist(
                    query, payload["answer"], {"query_id": run.query_id, "sources": payload["sources"]},
                )
                await self._dispatch_enrichment(schedule, query, history, user_message)
            run.advance(PipelineState.DONE)
        except Exception as e:
            error = self._fail(run, e)
            yield sse_event("error", error.to_dict())
        yield sse_event("done")

    # -------------------------------------------------------------------------
    # Answering
    # -------------------------------------------------------------------------

    async def _answers(self, query: Query, run: PipelineRun, language: LanguageInfo) -> AsyncIterator[AnswerResult]:
        split = await self._splitter.split(query.question)
        if not split.is_multiple:
            memory_context = await self._memory_context(query)
            yield await self._answer_one(
                query, query.question, memory_context=memory_context, language=language, run=run,
            )
            return

        run.advance(PipelineState.MULTI_ANSWER)
        logger.info("[%s] Answering %d questions (%s split)", run.query_id, len(split.questions), split.method.value)
        semaphore = asyncio.Semaphore(self._retrieval.max_concurrent_questions)

        async def answer_isolated(question: str) -> AnswerResult:
            async with semaphore:
                try:
                    return await self._answer_one(query, question, language=language, concise=True)
                except Exception as e:
                    logger.warning("[%s] Sub-question failed (%r): %s", run.query_id, question[:60], e)
                    return AnswerResult(question=question, answer=FAILED_ANSWER, failed=True)

        tasks = [asyncio.ensure_future(answer_isolated(q)) for q in split.questions]
        try:
            for task in tasks:
                yield await task
        finally:
            for task in tasks:
                task.cancel()

    async def _answer_one(
        self,
        query: Query,
        question: str,
        *,
        memory_context: str = "",
        language: Optional[LanguageInfo] = None,
        concise: bool = False,
        run: Optional[PipelineRun] = None,
    ) -> AnswerResult:
        """Embed, search and compose one question. Embedding and search errors propagate."""
        if run:
            run.advance(PipelineState.EMBEDDING)
        embed_timer = time.perf_counter()
        embedding = await self._embeddings.create_embedding(question)
        embedding_ms = elapsed_ms(embed_timer)

        if run:
            run.advance(PipelineState.SEARCHING)
        search = await self._search.search_similar_chunks(
            embedding,
            query.dataset_id,
            query.similarity_threshold,
            query.max_chunks,
            embedding_ms=embedding_ms,
        )

        if run:
            run.advance(PipelineState.SINGLE_ANSWER)
        failed = False
        try:
            composed = await self._composer.compose(
                question, search.chunks, memory_context, concise=concise, language=language,
            )
        except UpstreamError as e:
            logger.warning("Answer composition failed, using placeholder: %s", e)
            composed = ComposedAnswer(answer=FAILED_ANSWER)
            failed = True

        performance = Performance(
            embedding_ms=search.performance.embedding_ms,
            search_ms=search.performance.search_ms,
            generate_ms=composed.generate_ms,
        )
        performance.total_ms = performance.phase_sum
        return AnswerResult(
            question=question,
            answer=composed.answer,
            sources=search.sources,
            performance=performance,
            failed=failed,
        )

    async def _build_payload(
        self,
        query: Query,
        run: PipelineRun,
        results: List[AnswerResult],
        language: LanguageInfo,
    ) -> Dict[str, Any]:
        performance = Performance()
        for result in results:
            performance = performance + result.performance
        performance.total_ms = max(elapsed_ms(run.started), performance.phase_sum)

        suggestion_set = await self._suggest(query)
        payload = {
            "sources": merge_sources(results),
            "performance": performance.to_dict(),
            "session_id": run.session_id,
            "query_id": run.query_id,
            "language": language.code,
            "suggestions": suggestion_set.suggestions if suggestion_set else [],
            "suggestions_header": suggestion_set.header if suggestion_set else "",
        }
        if len(results) > 1:
            payload["answer"] = combine_answers(results)
            payload["results"] = [r.to_dict() for r in results]
        else:
            payload["answer"] = results[0].answer
        logger.info(
            "[%s] Answered %d question(s) in %dms", run.query_id, len(results), performance.total_ms,
        )
        return payload

    def _fast_path_payload(self, run: PipelineRun, reply: FastPathReply) -> Dict[str, Any]:
        logger.info("[%s] Fast path: %s", run.query_id, reply.kind)
        performance = Performance(total_ms=elapsed_ms(run.started))
        return {
            "answer": reply.answer,
            "sources": [],
            "performance": performance.to_dict(),
            "session_id": run.session_id,
            "query_id": run.query_id,
            "suggestions": list(reply.suggestions),
            "suggestions_header": reply.suggestions_header,
        }

    def _fail(self, run: PipelineRun, error: Exception) -> PipelineError:
        run.advance(PipelineState.ERRORED)
        error_id = f"error_{uuid.uuid4().hex}"
        logger.error(
            "[%s] Request failed (error id %s): %s", run.query_id, error_id, error, exc_info=True,
        )
        return PipelineError(query_id=error_id, session_id=run.session_id)

    # -------------------------------------------------------------------------
    # Memory and enrichment (never fail the answer)
    # -------------------------------------------------------------------------

    async def _history(self, query: Query) -> List[ChatMessage]:
        try:
            return await self._memory.get_recent_messages(query.session_id, limit=HISTORY_WINDOW)
        except UpstreamError as e:
            logger.warning("Could not load history for %s: %s", query.session_id, e)
            return []

    @staticmethod
    def _previous_question(history: Sequence[ChatMessage]) -> Optional[str]:
        for message in reversed(history):
            if message.role == MessageRole.USER:
                return message.content
        return None

    async def _memory_context(self, query: Query) -> str:
        try:
            return await self._memory.create_context_for_request(query.user_id, query.session_id)
        except UpstreamError as e:
            logger.warning("Memory context unavailable: %s", e)
            return ""

    async def _suggest(self, query: Query) -> Optional[SuggestionSet]:
        if self._suggestions is None:
            return None
        try:
            return await self._suggestions.generate(query.user_id, query.session_id, query.question)
        except Exception as e:
            logger.warning("Suggestion generation failed: %s", e, exc_info=True)
            return None

    async def _persist(self, query: Query, answer: str, metadata: Dict[str, Any]) -> Optional[ChatMessage]:
        try:
            return await self._memory.save_conversation_pair(
                query.session_id, query.user_id, query.question, answer, metadata,
            )
        except UpstreamError as e:
            logger.warning("Could not save conversation for %s: %s", query.session_id, e)
            return None

    async def _dispatch_enrichment(
        self,
        schedule: Optional[Scheduler],
        query: Query,
        history: List[ChatMessage],
        user_message: Optional[ChatMessage],
    ) -> None:
        message_id = user_message.id if user_message else None
        if schedule is None:
            await self.enrich(query, history, message_id)
        else:
            schedule(self.enrich, query, history, message_id)

    async def enrich(
        self,
        query: Query,
        history: List[ChatMessage],
        source_message_id: Optional[str] = None,
    ) -> None:
        """Fact extraction, then frustration analysis and escalation drafting."""
        if self._facts is not None:
            try:
                await self._facts.extract_and_save(query.user_id, query.question, source_message_id)
            except Exception as e:
                logger.warning("Fact extraction failed for %s: %s", query.user_id, e, exc_info=True)

        if self._frustration is not None:
            try:
                await self._check_frustration(query, history)
            except Exception as e:
                logger.warning("Frustration analysis failed for %s: %s", query.session_id, e, exc_info=True)

    async def _check_frustration(self, query: Query, history: List[ChatMessage]) -> None:
        analysis = await self._frustration.analyze(query.question, history)
        store = self._memory.store
        await store.save_record("frustration_analysis", {
            "user_id": query.user_id,
            "session_id": query.session_id,
            "message": query.question,
            "frustration_level": analysis.frustration_level,
            "confidence": analysis.confidence,
            "triggers": analysis.triggers,
            "patterns": analysis.patterns,
            "reasoning": analysis.reasoning,
            "should_escalate": analysis.should_escalate,
            "escalation_reason": analysis.escalation_reason,
        })
        if not analysis.should_escalate or self._email is None:
            return

        facts = await self._memory.get_user_facts(query.user_id)
        draft = await self._email.compose(query.user_id, query.session_id, analysis, facts, history)
        if draft is None:
            return
        row = draft.to_dict()
        row.update({"user_id": query.user_id, "session_id": query.session_id, "status": "draft"})
        await store.save_record("escalation_emails", row)
        logger.info("Stored escalation draft %s for session %s", draft.id, query.session_id)
