"""Integration tests for the relay HTTP API."""
import sys
import json
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from services.errors import UpstreamError
from services.gemini_backend import BackendReply


class StubBackend:
    """Backend with canned output; can be told to fail on open or mid-stream."""

    def __init__(self, fragments=("Hel", "lo!"), fail_with=None, fail_after=None):
        self.fragments = list(fragments)
        self.fail_with = fail_with
        self.fail_after = fail_after
        self.calls = []

    def generate(self, model_name, system_instruction, history, prompt):
        self.calls.append({"model": model_name, "history": history, "prompt": prompt})
        if self.fail_with:
            raise UpstreamError(self.fail_with)
        return BackendReply(text="".join(self.fragments), raw={"candidates": []}, latency_ms=3, model_used=model_name)

    def generate_stream(self, model_name, system_instruction, history, prompt):
        self.calls.append({"model": model_name, "history": history, "prompt": prompt})
        for i, fragment in enumerate(self.fragments):
            if self.fail_with and (self.fail_after is None or i == self.fail_after):
                raise UpstreamError(self.fail_with)
            yield fragment


def make_client(backend=None, **settings):
    settings.setdefault("gemini_api_key", "test_key")
    return TestClient(create_app(Settings(**settings), backend=backend))


@pytest.fixture
def backend():
    return StubBackend()


@pytest.fixture
def client(backend):
    return make_client(backend)


def stream_lines(response):
    return [json.loads(line) for line in response.text.splitlines()]


def test_streamed_chat_is_default(client):
    """Test that /chat streams NDJSON fragments when stream is omitted."""
    response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert stream_lines(response) == [
        {"message": {"content": "Hel"}},
        {"message": {"content": "lo!"}},
    ]
    assert response.text.endswith("\n")


def test_non_streamed_chat(client, backend):
    """Test stream=false returns the message and raw backend response."""
    response = client.post("/chat", json={
        "messages": [{"role": "user", "content": "Hi"}],
        "model": "models/gemini-pro",
        "stream": False,
    })

    assert response.status_code == 200
    assert response.json() == {"message": "Hello!", "raw": {"candidates": []}}
    assert backend.calls[0]["model"] == "models/gemini-pro"


def test_streamed_fragments_match_non_streamed(client):
    """Test streamed fragments concatenate to the non-streamed reply."""
    messages = [
        {"role": "assistant", "content": "Hi, I am AVAS."},
        {"role": "user", "content": "Hi", "timestamp": 1760880000000},
    ]

    streamed = client.post("/chat", json={"messages": messages, "stream": True})
    single = client.post("/chat", json={"messages": messages, "stream": False})

    joined = "".join(line["message"]["content"] for line in stream_lines(streamed))
    assert joined == single.json()["message"]


def test_messages_must_be_array(client):
    """Test a non-array messages field is rejected with 400."""
    response = client.post("/chat", json={"messages": "Hi"})

    assert response.status_code == 400
    assert response.json() == {"error": "messages must be an array"}


def test_missing_body_is_validation_error(client):
    """Test a missing or unparseable body is rejected with 400."""
    response = client.post("/chat", content=b"not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"error": "messages must be an array"}


def test_last_message_must_be_user(client):
    """Test a conversation ending in an assistant turn is rejected."""
    response = client.post("/chat", json={"messages": [{"role": "assistant", "content": "Hi"}]})

    assert response.status_code == 400
    assert "user" in response.json()["error"]


def test_missing_credential_returns_500():
    """Test requests fail with 500 when no API key is configured."""
    client = make_client(gemini_api_key="")

    for messages in ([{"role": "user", "content": "Hi"}], [], [{"role": "robot"}]):
        response = client.post("/chat", json={"messages": messages})

        assert response.status_code == 500
        assert response.json() == {
            "error": "gemini_not_configured",
            "detail": "GEMINI_API_KEY environment variable is not set",
        }


def test_upstream_failure_returns_502():
    """Test a backend failure before any output becomes a 502 envelope."""
    client = make_client(StubBackend(fail_with="API key not valid"))

    for stream in (True, False):
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}], "stream": stream})

        assert response.status_code == 502
        assert response.json() == {
            "error": "gemini_request_failed",
            "detail": "API key not valid",
            "hint": "Check your GEMINI_API_KEY and rate limits.",
        }


def test_mid_stream_failure_closes_stream():
    """Test a backend failure after output ends the stream early."""
    client = make_client(StubBackend(fragments=("a", "b", "c"), fail_with="reset", fail_after=2))

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 200
    assert [line["message"]["content"] for line in stream_lines(response)] == ["a", "b"]


def test_empty_upstream_stream():
    """Test an empty backend stream returns an empty 200 body."""
    client = make_client(StubBackend(fragments=()))

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

    assert response.status_code == 200
    assert response.text == ""


def test_payload_too_large():
    """Test bodies over the size limit are rejected with 413."""
    client = make_client(StubBackend(), max_body_bytes=64)

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "x" * 100}]})

    assert response.status_code == 413
    assert response.json() == {"error": "payload_too_large"}


def test_health_configured(client):
    """Test health reports a configured backend."""
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "gemini": True, "apiKeyConfigured": True}


def test_health_unconfigured():
    """Test health reports a missing API key."""
    response = make_client(gemini_api_key="").get("/health")

    assert response.json() == {"ok": True, "gemini": False, "apiKeyConfigured": False}


def test_models(client):
    """Test the static model list."""
    response = client.get("/models")

    assert response.status_code == 200
    assert response.json() == {"models": [
        {"name": "models/gemini-pro", "description": "Gemini Pro"},
        {"name": "models/gemini-pro-vision", "description": "Gemini Pro Vision"},
    ]}


def test_rag_not_implemented(client):
    """Test the retrieval route answers 501."""
    response = client.post("/rag", json={"query": "anything"})

    assert response.status_code == 501
    assert response.json() == {"error": "rag_not_implemented"}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
