"""
Tests for the Ask Orchestrator

Validation, single and multi-question answering, failure handling,
fast paths, streaming and post-answer enrichment.
"""

import json

import pytest
from unittest.mock import AsyncMock, Mock

from .fakes import make_embedding_client, make_llm

MULTI_QUESTION = (
    "What is the EAA and who does it apply to? When does it take effect? "
    "What are the penalties for banks?"
)


def _chunk(cid, similarity, content="EAA text"):
    from eaa_assistant.retriever.vector_search import Chunk
    return Chunk(id=cid, content=content, similarity=similarity, section_title=f"Section {cid}")


def _request(question, **kwargs):
    from eaa_assistant.chat.models import AskRequest
    kwargs.setdefault("session_id", "s1")
    kwargs.setdefault("user_id", "u1")
    return AskRequest(question=question, **kwargs)


def _events(chunks):
    return [json.loads(c[len("data: "):].strip()) for c in chunks]


def build_orchestrator(
    llm=None,
    embedding_client=None,
    chunks=None,
    **agents,
):
    """Orchestrator over fakes; returns (orchestrator, parts)."""
    from eaa_assistant.chat.orchestrator import AskOrchestrator
    from eaa_assistant.common.embedding_service import EmbeddingService
    from eaa_assistant.memory.manager import ChatMemory
    from eaa_assistant.memory.store import InMemoryChatStore
    from eaa_assistant.retriever.synthesizer import AnswerComposer
    from eaa_assistant.retriever.vector_search import VectorSearchGateway

    llm = llm or make_llm("Answer from excerpts.")
    embedding_client = embedding_client or make_embedding_client({})
    vector_store = Mock()
    vector_store.match = AsyncMock(return_value=list(chunks if chunks is not None else [_chunk("a", 0.85)]))
    store = InMemoryChatStore()
    memory = ChatMemory(store)

    orchestrator = AskOrchestrator(
        EmbeddingService(embedding_client),
        VectorSearchGateway(vector_store),
        AnswerComposer(llm),
        memory,
        **agents,
    )
    parts = Mock(llm=llm, embedding_client=embedding_client, vector_store=vector_store, store=store, memory=memory)
    return orchestrator, parts


class TestBuildQuery:
    def test_defaults_are_applied(self):
        orchestrator, _ = build_orchestrator()
        query = orchestrator.build_query(_request("  What is EAA?  ", session_id=None, user_id=None))
        assert query.question == "What is EAA?"
        assert query.dataset_id == "eaa"
        assert query.similarity_threshold == 0.78
        assert query.max_chunks == 5
        assert query.user_id == "anonymous"
        assert query.session_id.startswith("session_")

    def test_validate_question_trims(self):
        from eaa_assistant.chat.orchestrator import validate_question
        assert validate_question(_request("  What is EAA?  ")) == "What is EAA?"

    @pytest.mark.parametrize("question", [None, "", "   "])
    def test_validate_question_rejects_empty(self, question):
        from eaa_assistant.chat.orchestrator import validate_question
        from eaa_assistant.common.errors import ValidationError
        with pytest.raises(ValidationError) as exc:
            validate_question(_request(question))
        assert exc.value.code == "EMPTY_QUESTION"

    def test_zero_threshold_is_kept(self):
        orchestrator, _ = build_orchestrator()
        assert orchestrator.build_query(_request("q", similarity_threshold=0.0)).similarity_threshold == 0.0

    @pytest.mark.parametrize("question", [None, "", "   "])
    @pytest.mark.asyncio
    async def test_empty_question_never_embeds(self, question):
        from eaa_assistant.common.errors import ValidationError
        orchestrator, parts = build_orchestrator()

        with pytest.raises(ValidationError) as exc:
            await orchestrator.ask(_request(question))

        assert exc.value.code == "EMPTY_QUESTION"
        parts.embedding_client.embeddings.create.assert_not_called()
        parts.vector_store.match.assert_not_called()


class TestSingleQuestion:
    @pytest.mark.asyncio
    async def test_end_to_end(self):
        orchestrator, parts = build_orchestrator(
            chunks=[_chunk("a", 0.95), _chunk("b", 0.88), _chunk("c", 0.81)],
        )

        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert payload["answer"] == "Answer from excerpts."
        assert payload["session_id"] == "s1"
        assert payload["language"] == "en"
        assert [s["id"] for s in payload["sources"]] == ["a", "b", "c"]
        perf = payload["performance"]
        assert perf["total_ms"] >= perf["embedding_ms"] + perf["search_ms"]
        assert "results" not in payload

        prompt = parts.llm.complete.call_args.args[1][0]["content"]
        assert prompt.count("Excerpt ") == 3

    @pytest.mark.asyncio
    async def test_request_overrides_reach_search(self):
        orchestrator, parts = build_orchestrator()
        await orchestrator.ask(_request(
            "What does the EAA require from banks?", dataset_id="eaa-v2", similarity_threshold=0.5, max_chunks=2,
        ))
        args = parts.vector_store.match.call_args.args
        assert args[1:] == ("eaa-v2", 0.5, 2)

    @pytest.mark.asyncio
    async def test_no_chunks_gives_no_results_answer(self):
        from eaa_assistant.retriever.formatting import NO_RESULTS_ANSWER
        orchestrator, parts = build_orchestrator(chunks=[])

        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert payload["answer"] == NO_RESULTS_ANSWER
        assert payload["sources"] == []
        parts.llm.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_composer_failure_degrades_in_band(self):
        from eaa_assistant.common.errors import UpstreamError
        from eaa_assistant.retriever.synthesizer import FAILED_ANSWER
        llm = make_llm()
        llm.complete = AsyncMock(side_effect=UpstreamError("chat", "rate limited"))
        orchestrator, _ = build_orchestrator(llm=llm)

        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert payload["answer"] == FAILED_ANSWER
        assert payload["sources"]

    @pytest.mark.asyncio
    async def test_embedding_failure_is_pipeline_error(self):
        from eaa_assistant.common.errors import PipelineError
        client = Mock()
        client.embeddings.create = AsyncMock(side_effect=RuntimeError("401 invalid key"))
        orchestrator, parts = build_orchestrator(embedding_client=client)

        with pytest.raises(PipelineError) as exc:
            await orchestrator.ask(_request("What does the EAA require from banks?"))

        body = exc.value.to_dict()
        assert body["error"] == "Internal server error"
        assert body["code"] == "INTERNAL_ERROR"
        assert body["query_id"].startswith("error_")
        assert body["session_id"] == "s1"
        assert "401" not in json.dumps(body)
        parts.vector_store.match.assert_not_called()

    @pytest.mark.asyncio
    async def test_answer_is_persisted(self):
        orchestrator, parts = build_orchestrator()
        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        messages = await parts.memory.get_session_messages("s1")
        assert [m.content for m in messages] == ["What does the EAA require from banks?", "Answer from excerpts."]
        assert messages[1].metadata["query_id"] == payload["query_id"]


class TestMultiQuestion:
    @pytest.mark.asyncio
    async def test_answers_in_input_order(self):
        llm = make_llm(["first", "second", "third"])
        orchestrator, parts = build_orchestrator(llm=llm)

        payload = await orchestrator.ask(_request(MULTI_QUESTION))

        questions = [r["question"] for r in payload["results"]]
        assert questions == [
            "What is the EAA and who does it apply to?",
            "When does it take effect?",
            "What are the penalties for banks?",
        ]
        assert payload["answer"].startswith("**1. What is the EAA and who does it apply to?**\n")
        assert "**3. What are the penalties for banks?**" in payload["answer"]
        for call in llm.complete.call_args_list:
            assert call.kwargs["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_failing_sub_question_is_isolated(self):
        from eaa_assistant.retriever.synthesizer import FAILED_ANSWER

        async def create(model, input):
            from types import SimpleNamespace
            if input == "When does it take effect?":
                raise RuntimeError("upstream 500")
            return SimpleNamespace(data=[SimpleNamespace(embedding=[1.0, 0.0])])

        client = Mock()
        client.embeddings.create = AsyncMock(side_effect=create)
        orchestrator, _ = build_orchestrator(embedding_client=client)

        payload = await orchestrator.ask(_request(MULTI_QUESTION))

        results = payload["results"]
        assert [r.get("failed", False) for r in results] == [False, True, False]
        assert results[1]["answer"] == FAILED_ANSWER
        assert results[0]["answer"] == "Answer from excerpts."
        assert results[2]["answer"] == "Answer from excerpts."

    @pytest.mark.asyncio
    async def test_sources_are_merged_without_duplicates(self):
        orchestrator, _ = build_orchestrator(chunks=[_chunk("a", 0.85), _chunk("b", 0.82)])
        payload = await orchestrator.ask(_request(MULTI_QUESTION))
        assert [s["id"] for s in payload["sources"]] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_total_covers_summed_phases(self):
        orchestrator, _ = build_orchestrator()
        payload = await orchestrator.ask(_request(MULTI_QUESTION))
        perf = payload["performance"]
        assert perf["total_ms"] >= perf["embedding_ms"] + perf["search_ms"] + perf["generate_ms"]


class TestFastPaths:
    @pytest.mark.asyncio
    async def test_greeting_skips_retrieval_and_is_persisted(self):
        from eaa_assistant.chat.fast_paths import GREETING_REPLY
        orchestrator, parts = build_orchestrator()

        payload = await orchestrator.ask(_request("Hello!"))

        assert payload["answer"] == GREETING_REPLY.answer
        assert payload["suggestions"] == GREETING_REPLY.suggestions
        assert payload["sources"] == []
        parts.embedding_client.embeddings.create.assert_not_called()
        messages = await parts.memory.get_session_messages("s1")
        assert messages[1].metadata["fast_path"] == "greeting"

    @pytest.mark.asyncio
    async def test_repeated_question_gets_reask_reply(self):
        from eaa_assistant.chat.fast_paths import REASK_REPLY
        orchestrator, parts = build_orchestrator()

        await orchestrator.ask(_request("What does the EAA require from banks?"))
        payload = await orchestrator.ask(_request("what does the EAA require from banks"))

        assert payload["answer"] == REASK_REPLY.answer
        assert parts.embedding_client.embeddings.create.await_count == 1

    @pytest.mark.asyncio
    async def test_same_question_in_new_session_is_answered(self):
        orchestrator, parts = build_orchestrator()
        await orchestrator.ask(_request("What does the EAA require from banks?"))
        payload = await orchestrator.ask(_request("What does the EAA require from banks?", session_id="s2"))
        assert payload["answer"] == "Answer from excerpts."


class TestSuggestionsInPayload:
    @pytest.mark.asyncio
    async def test_rule_based_suggestions_are_attached(self, llm):
        from eaa_assistant.assistants.suggestions import DEFAULT_HEADER, SuggestionGenerator
        orchestrator, parts = build_orchestrator(llm=llm)
        orchestrator._suggestions = SuggestionGenerator(None, parts.memory)

        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert len(payload["suggestions"]) == 3
        assert payload["suggestions_header"] == DEFAULT_HEADER

    @pytest.mark.asyncio
    async def test_suggestion_crash_does_not_fail_answer(self):
        suggestions = Mock()
        suggestions.generate = AsyncMock(side_effect=RuntimeError("boom"))
        orchestrator, _ = build_orchestrator(suggestions=suggestions)

        payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert payload["answer"] == "Answer from excerpts."
        assert payload["suggestions"] == []


class TestEnrichment:
    @pytest.mark.asyncio
    async def test_schedule_receives_enrichment(self):
        orchestrator, _ = build_orchestrator()
        schedule = Mock()

        await orchestrator.ask(_request("What does the EAA require from banks?"), schedule=schedule)

        func, query, history, message_id = schedule.call_args.args
        assert func == orchestrator.enrich
        assert query.question == "What does the EAA require from banks?"
        assert history == []
        assert message_id

    @pytest.mark.asyncio
    async def test_inline_enrichment_extracts_facts(self):
        facts = Mock()
        facts.extract_and_save = AsyncMock(return_value=[])
        orchestrator, parts = build_orchestrator(fact_extractor=facts)

        await orchestrator.ask(_request("We are a bank in Latvia, what must we do?"))

        user_id, text, message_id = facts.extract_and_save.call_args.args
        assert (user_id, text) == ("u1", "We are a bank in Latvia, what must we do?")
        first = (await parts.memory.get_session_messages("s1"))[0]
        assert message_id == first.id

    @pytest.mark.asyncio
    async def test_frustration_sees_history_before_current_message(self):
        from eaa_assistant.assistants.frustration import FrustrationAnalysis
        frustration = Mock()
        frustration.analyze = AsyncMock(return_value=FrustrationAnalysis())
        orchestrator, _ = build_orchestrator(frustration=frustration)

        await orchestrator.ask(_request("What does the EAA require from banks?"))
        await orchestrator.ask(_request("And what about online shops in Spain?"))

        message, history = frustration.analyze.call_args.args
        assert message == "And what about online shops in Spain?"
        assert [m.content for m in history] == ["What does the EAA require from banks?", "Answer from excerpts."]

    @pytest.mark.asyncio
    async def test_escalation_stores_analysis_and_draft(self):
        from eaa_assistant.assistants.email_composer import EmailComposer
        from eaa_assistant.assistants.frustration import FrustrationDetector
        analysis_llm = make_llm(json.dumps({
            "frustration_level": 0.9, "confidence": 0.9, "triggers": ["useless", "waste of time"],
        }))
        email_llm = make_llm(json.dumps({"subject": "Call this user", "body": "They need help."}))
        orchestrator, parts = build_orchestrator(
            frustration=FrustrationDetector(analysis_llm),
            email_composer=EmailComposer(email_llm),
        )
        query = orchestrator.build_query(_request("This is useless, a waste of time"))

        await orchestrator.enrich(query, [])

        analyses = parts.store.records("frustration_analysis")
        assert len(analyses) == 1
        assert analyses[0]["should_escalate"] is True
        drafts = parts.store.records("escalation_emails")
        assert drafts[0]["subject"] == "Call this user"
        assert drafts[0]["status"] == "draft"
        assert drafts[0]["session_id"] == "s1"

    @pytest.mark.asyncio
    async def test_no_draft_without_escalation(self):
        from eaa_assistant.assistants.email_composer import EmailComposer
        from eaa_assistant.assistants.frustration import FrustrationDetector
        email_llm = make_llm(json.dumps({"subject": "s", "body": "b"}))
        orchestrator, parts = build_orchestrator(
            frustration=FrustrationDetector(make_llm('{"frustration_level": 0.1, "confidence": 0.9}')),
            email_composer=EmailComposer(email_llm),
        )

        await orchestrator.enrich(orchestrator.build_query(_request("Thanks, clear now")), [])

        assert len(parts.store.records("frustration_analysis")) == 1
        assert parts.store.records("escalation_emails") == []
        email_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_enrichment_errors_are_logged(self, caplog):
        import logging
        facts = Mock()
        facts.extract_and_save = AsyncMock(side_effect=RuntimeError("db down"))
        orchestrator, _ = build_orchestrator(fact_extractor=facts)

        with caplog.at_level(logging.WARNING, logger="eaa_assistant.chat.orchestrator"):
            payload = await orchestrator.ask(_request("What does the EAA require from banks?"))

        assert payload["answer"] == "Answer from excerpts."
        assert "Fact extraction failed" in caplog.text


class TestStream:
    @pytest.mark.asyncio
    async def test_single_question_events(self):
        orchestrator, _ = build_orchestrator()

        events = _events([e async for e in orchestrator.stream(_request("What does the EAA require from banks?"))])

        assert [e["type"] for e in events] == ["answer", "meta", "done"]
        assert events[0]["content"]["answer"] == "Answer from excerpts."
        assert events[1]["content"]["session_id"] == "s1"
        assert "total_ms" in events[1]["content"]["performance"]

    @pytest.mark.asyncio
    async def test_multi_question_streams_each_answer(self):
        orchestrator, _ = build_orchestrator()
        events = _events([e async for e in orchestrator.stream(_request(MULTI_QUESTION))])
        assert [e["type"] for e in events] == ["answer", "answer", "answer", "meta", "done"]

    @pytest.mark.asyncio
    async def test_failure_emits_error_then_done(self):
        client = Mock()
        client.embeddings.create = AsyncMock(side_effect=RuntimeError("down"))
        orchestrator, _ = build_orchestrator(embedding_client=client)

        events = _events([e async for e in orchestrator.stream(_request("What does the EAA require from banks?"))])

        assert [e["type"] for e in events] == ["error", "done"]
        assert events[0]["content"]["error"] == "Internal server error"

    @pytest.mark.asyncio
    async def test_fast_path_stream(self):
        orchestrator, _ = build_orchestrator()
        events = _events([e async for e in orchestrator.stream(_request("thanks"))])
        assert [e["type"] for e in events] == ["answer", "meta", "done"]
        assert events[1]["content"]["suggestions"]
