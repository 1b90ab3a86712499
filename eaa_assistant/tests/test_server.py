# tests/test_server.py
import json
import os
from types import SimpleNamespace

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from .fakes import make_embedding_client, make_llm

QUESTION = "What does the EAA require from banks?"


@pytest.fixture
def components():
    """
    Components wired by build_components over fakes.
    The vector store holds one EAA document matching every query.
    """
    from eaa_assistant.chat.server import build_components
    from eaa_assistant.common.config import AssistantConfig
    from eaa_assistant.memory.store import InMemoryChatStore
    from eaa_assistant.retriever.vector_search import InMemoryVectorStore

    vector_store = InMemoryVectorStore()
    vector_store.add(
        "eaa", "doc-1", "Banking services must meet accessibility requirements from 28 June 2025.",
        [1.0, 0.0, 0.0], section_title="Banking services",
    )
    return build_components(
        AssistantConfig(),
        llm=make_llm("Answer from excerpts."),
        openai_client=make_embedding_client({}),
        vector_store=vector_store,
        store=InMemoryChatStore(),
    )


@pytest.fixture
def client(components):
    from eaa_assistant.chat.server import create_app
    return TestClient(create_app(components))


# ----------- /ask ----------- #
class TestAsk:
    def test_answer(self, client):
        response = client.post("/api/v1/ask", json={"question": QUESTION, "session_id": "s1", "user_id": "u1"})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Answer from excerpts."
        assert body["session_id"] == "s1"
        assert body["sources"][0]["title"] == "Banking services"
        assert set(body["performance"]) == {"embedding_ms", "search_ms", "generate_ms", "total_ms"}
        assert len(body["suggestions"]) == 3

    def test_session_is_generated(self, client):
        body = client.post("/api/v1/ask", json={"question": QUESTION}).json()
        assert body["session_id"].startswith("session_")

    @pytest.mark.parametrize("payload", [{}, {"question": ""}, {"question": "   "}])
    def test_empty_question_is_400(self, client, components, payload):
        response = client.post("/api/v1/ask", json=payload)
        assert response.status_code == 400
        assert response.json()["code"] == "EMPTY_QUESTION"
        components.embeddings._client.embeddings.create.assert_not_called()

    @pytest.mark.parametrize("payload", [
        {"question": QUESTION, "similarity_threshold": 1.5},
        {"question": QUESTION, "max_chunks": 0},
        {"question": QUESTION, "max_chunks": "many"},
    ])
    def test_invalid_fields_are_400(self, client, payload):
        response = client.post("/api/v1/ask", json=payload)
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_get_is_405(self, client):
        response = client.get("/api/v1/ask")
        assert response.status_code == 405
        assert response.json() == {"error": "Method Not Allowed. Use POST instead.", "code": "METHOD_NOT_ALLOWED"}

    def test_embedding_failure_is_500_with_query_id(self, client, components):
        components.embeddings._client.embeddings.create = AsyncMock(side_effect=RuntimeError("invalid key"))

        response = client.post("/api/v1/ask", json={"question": QUESTION, "session_id": "s1"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Internal server error"
        assert body["query_id"].startswith("error_")
        assert body["session_id"] == "s1"

    def test_stream(self, client):
        with client.stream("POST", "/api/v1/ask", json={"question": QUESTION, "stream": True}) as response:
            assert response.status_code == 200
            assert response.headers["content-type"].startswith("text/event-stream")
            lines = [line for line in response.iter_lines() if line.startswith("data: ")]

        types = [json.loads(line[len("data: "):])["type"] for line in lines]
        assert types == ["answer", "meta", "done"]

    def test_stream_empty_question_is_400(self, client):
        response = client.post("/api/v1/ask", json={"question": "", "stream": True})
        assert response.status_code == 400
        assert response.json()["code"] == "EMPTY_QUESTION"

    def test_enrichment_runs_after_response(self, client, components):
        client.post("/api/v1/ask", json={"question": QUESTION, "session_id": "s1", "user_id": "u1"})
        records = components.store.records("frustration_analysis")
        assert len(records) == 1
        assert records[0]["session_id"] == "s1"


# ----------- Service endpoints ----------- #
class TestServiceEndpoints:
    def test_health(self, client):
        body = client.get("/api/v1/health").json()
        assert body["status"] == "OK"
        assert body["timestamp"]

    def test_config(self, client):
        assert client.get("/api/v1/config").json() == {
            "version": "1.0",
            "models": {"chat": "gpt-4o-mini", "embedding": "text-embedding-ada-002"},
            "defaults": {"max_chunks": 5, "similarity_threshold": 0.78},
        }

    def test_unknown_route_is_404(self, client):
        response = client.get("/api/v1/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_welcome_new_user(self, client):
        from eaa_assistant.assistants.welcome import DEFAULT_GREETING
        body = client.get("/api/v1/welcome/u1").json()
        assert body["greeting"] == DEFAULT_GREETING
        assert body["has_context"] is False
        assert len(body["suggestions"]) == 3

    @pytest.mark.asyncio
    async def test_welcome_returning_user(self, components):
        from httpx import ASGITransport, AsyncClient
        from eaa_assistant.chat.server import create_app
        await components.memory.save_user_fact("u1", "business_type", "bank", 0.9)

        transport = ASGITransport(app=create_app(components))
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            body = (await http.get("/api/v1/welcome/u1")).json()

        assert body["has_context"] is True
        assert body["greeting"].startswith("Welcome back, I see you represent a bank")


# ----------- Voice ----------- #
class TestTranscribe:
    def test_missing_file_is_400(self, client):
        response = client.post("/api/v1/whisper/transcribe")
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_AUDIO"

    def test_transcript(self, client, components):
        from eaa_assistant.assistants.transcriber import Transcriber

        async def fake_convert(source, target):
            with open(target, "wb") as f:
                f.write(b"RIFF")

        components.transcriber._client.audio.transcriptions.create = AsyncMock(
            return_value=SimpleNamespace(text="What is EAA?"),
        )
        with patch.object(Transcriber, "_convert", new=AsyncMock(side_effect=fake_convert)):
            response = client.post(
                "/api/v1/whisper/transcribe",
                files={"audio": ("voice.webm", b"webm-bytes", "audio/webm")},
            )

        assert response.status_code == 200
        assert response.json() == {"transcript": "What is EAA?"}

    def test_oversized_file_is_413(self, client, components):
        from eaa_assistant.assistants.transcriber import Transcriber
        components.transcriber = Transcriber(components.transcriber._client, max_bytes=4)

        response = client.post(
            "/api/v1/whisper/transcribe",
            files={"audio": ("voice.webm", b"too many bytes", "audio/webm")},
        )

        assert response.status_code == 413
        assert response.json()["code"] == "AUDIO_TOO_LARGE"


# ----------- Agents ----------- #
class TestAgents:
    def test_proactive(self, client, components):
        components.llm.generate = AsyncMock(return_value='"Explain WCAG levels?"')
        response = client.post(
            "/api/v1/agent/proactive-analysis",
            json={"currentText": "what is wcag", "userId": "u1", "sessionId": "s1"},
        )
        assert response.status_code == 200
        assert response.json() == {"suggestion": "Explain WCAG levels?"}

    def test_proactive_missing_fields(self, client):
        response = client.post("/api/v1/agent/proactive-analysis", json={"currentText": "x"})
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_PARAMETERS"

    def test_proactive_upstream_failure_is_502(self, client, components):
        from eaa_assistant.common.errors import UpstreamError
        components.llm.generate = AsyncMock(side_effect=UpstreamError("chat", "down"))
        response = client.post(
            "/api/v1/agent/proactive-analysis",
            json={"currentText": "what is wcag", "userId": "u1", "sessionId": "s1"},
        )
        assert response.status_code == 502
        assert response.json()["code"] == "UPSTREAM_ERROR"

    def test_ai_suggestions(self, client, components):
        components.llm.generate = AsyncMock(return_value=json.dumps({
            "suggestions": ["Do banks need an audit?", "What are the deadlines?"],
            "header": "For banks",
            "reasoning": "bank user",
        }))
        body = client.post("/api/v1/agent/ai-suggestions", json={"userId": "u1", "sessionId": "s1"}).json()
        assert body == {
            "suggestions": ["Do banks need an audit?", "What are the deadlines?"],
            "header": "For banks",
            "reasoning": "bank user",
        }

    def test_ai_suggestions_missing_fields(self, client):
        response = client.post("/api/v1/agent/ai-suggestions", json={"userId": "u1"})
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_PARAMETERS"


# ----------- Suggestions ----------- #
class TestSuggestions:
    def test_modern(self, client):
        response = client.post("/api/v1/suggestions/modern", json={"userId": "u1", "sessionId": "s1"})
        body = response.json()
        assert body["success"] is True
        assert len(body["data"]["suggestions"]) == 3
        assert set(body["data"]["analytics"]) == {
            "user_persona", "business_maturity", "conversation_stage", "opportunity_score",
        }
        assert body["performance"]["processing_time_ms"] >= 0

    @pytest.mark.parametrize("payload,code", [
        ({"sessionId": "s1"}, "MISSING_USER_ID"),
        ({"userId": "  ", "sessionId": "s1"}, "MISSING_USER_ID"),
        ({"userId": "u1"}, "MISSING_SESSION_ID"),
    ])
    def test_modern_validation(self, client, payload, code):
        response = client.post("/api/v1/suggestions/modern", json=payload)
        assert response.status_code == 400
        assert response.json()["code"] == code

    def test_fallback(self, client):
        body = client.get("/api/v1/suggestions/fallback").json()
        assert body["success"] is True
        assert body["data"]["generated_by"] == "fallback_system_v1"
        assert body["data"]["header"] == "EAA Compliance Guidance"

    def test_health(self, client, components):
        assert client.get("/api/v1/suggestions/health").status_code == 200
        components.llm.is_available = False
        response = client.get("/api/v1/suggestions/health")
        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


# ----------- Term explanations ----------- #
class TestExplainTerm:
    def test_explain(self, client, components):
        components.llm.generate = AsyncMock(return_value="WCAG is a set of guidelines.")
        body = client.post("/api/v1/explain-term", json={"term": " WCAG "}).json()
        assert body["term"] == "WCAG"
        assert body["explanation"] == "WCAG is a set of guidelines."
        assert body["context"] is None
        assert body["session_id"] == "no-session"
        assert body["user_id"] == "anonymous"
        assert "response_time_ms" in body["performance"]

    def test_missing_term(self, client):
        response = client.post("/api/v1/explain-term", json={"context": "web"})
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_TERM"


# ----------- Chat history ----------- #
class TestChatHistory:
    def test_sessions_messages_and_delete(self, client):
        client.post("/api/v1/ask", json={"question": QUESTION, "session_id": "s1", "user_id": "u1"})

        sessions = client.get("/api/v1/chat/sessions/u1").json()["sessions"]
        assert [s["id"] for s in sessions] == ["s1"]
        assert sessions[0]["title"] == QUESTION

        messages = client.get("/api/v1/chat/messages/s1").json()["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant"]

        deleted = client.delete("/api/v1/chat/sessions/s1").json()
        assert deleted == {"success": True, "message": "Session deleted successfully"}
        assert client.get("/api/v1/chat/sessions/u1").json() == {"sessions": []}

    def test_unknown_session(self, client):
        assert client.get("/api/v1/chat/messages/missing").status_code == 404
        response = client.delete("/api/v1/chat/sessions/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "SESSION_NOT_FOUND"


# ----------- Lifespan ----------- #
class TestLifespan:
    def test_builds_components_from_config(self, tmp_path):
        from eaa_assistant.chat.server import create_app
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"server": {"environment": "test"}}))

        app = create_app()
        with patch.dict(os.environ, {"EAA_CONFIG_PATH": str(config_file)}, clear=True):
            with TestClient(app) as http:
                assert app.state.components is not None
                assert http.get("/api/v1/health").status_code == 200
                assert http.get("/api/v1/config").json()["models"]["chat"] == "gpt-4o-mini"
        assert app.state.components is None

    def test_injected_components_are_kept(self, components):
        from eaa_assistant.chat.server import create_app
        app = create_app(components)
        with TestClient(app):
            pass
        assert app.state.components is components
