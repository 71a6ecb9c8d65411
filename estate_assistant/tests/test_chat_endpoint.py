import json

import httpx
import pytest

from conftest import FakeGenerationClient, serving, starlette_request
from estate_assistant.errors import ProviderError
from estate_assistant.routers.chat import chat
from estate_assistant.services.router import Agents
from estate_assistant.utils.prompts import (
    FALLBACK_MESSAGE,
    ISSUE_DETECTION_PREAMBLE,
    TENANCY_FAQ_PREAMBLE,
)

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 24


def test_text_question_streams_faq_answer_with_disclaimer():
    fake = FakeGenerationClient(steps=["You can ", "request it in writing."])
    with serving(fake) as client:
        response = client.post("/api/chat", json={"text": "My landlord won't return my deposit"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; charset=utf-8"
    assert response.text.startswith("You can request it in writing.")
    assert "does not constitute legal advice" in response.text
    assert fake.envelopes[0].system_preamble == TENANCY_FAQ_PREAMBLE
    assert fake.envelopes[0].history == ()


def test_image_without_text_streams_issue_sections(client, fake_client):
    response = client.post(
        "/api/chat",
        files={"image": ("wall.jpg", JPEG_BYTES, "image/jpeg")},
    )

    assert response.status_code == 200
    assert "**Issues:**" in response.text
    assert "**Suggestions:**" in response.text
    envelope = fake_client.envelopes[0]
    assert envelope.system_preamble == ISSUE_DETECTION_PREAMBLE
    assert envelope.current_turn.image_mime == "image/jpeg"


def test_image_wins_over_tenancy_text(client, fake_client):
    response = client.post(
        "/api/chat",
        data={"text": "what is the rent", "history": json.dumps([{"role": "user", "text": "hi"}])},
        files={"image": ("wall.jpg", JPEG_BYTES, "image/jpeg")},
    )

    assert response.status_code == 200
    assert fake_client.labels == ["issue-detection agent"]
    assert [t.text for t in fake_client.envelopes[0].history] == ["hi"]


def test_empty_payload_is_400_before_streaming(client, fake_client):
    response = client.post("/api/chat", json={"text": ""})

    assert response.status_code == 400
    assert response.headers["content-type"] == "application/json"
    body = response.json()
    assert body["error"]["message"] == "No content provided (text or image required)"
    assert "details" in body["error"]
    assert fake_client.envelopes == []


def test_unsupported_content_type_is_415(client, fake_client):
    response = client.post("/api/chat", content=b"<chat/>", headers={"content-type": "text/xml"})

    assert response.status_code == 415
    assert response.json() == {
        "error": {
            "message": "Unsupported content type: text/xml",
            "details": "Unsupported content type: text/xml",
        }
    }
    assert fake_client.envelopes == []


def test_provider_start_failure_is_500_json():
    fake = FakeGenerationClient(start_error=ProviderError("The tenancy-FAQ agent could not reach the model provider.", details="quota"))
    with serving(fake) as client:
        response = client.post("/api/chat", json={"text": "lease question"})

    assert response.status_code == 500
    assert response.json()["error"] == {
        "message": "The tenancy-FAQ agent could not reach the model provider.",
        "details": "quota",
    }


def test_failure_on_first_chunk_is_500_json():
    fake = FakeGenerationClient(steps=[ConnectionError("stream refused")])
    with serving(fake) as client:
        response = client.post("/api/chat", json={"text": "lease question"})

    assert response.status_code == 500
    assert response.json()["error"]["details"] == "stream refused"
    assert fake.closed == [True]


def test_mid_stream_failure_aborts_after_partial_body():
    fake = FakeGenerationClient(steps=["one ", "two ", RuntimeError("connection reset")])
    with serving(fake) as client:
        response = client.post("/api/chat", json={"text": "lease question"})

    # Headers were already sent; the body simply stops.
    assert response.status_code == 200
    assert response.text == "one two "
    assert fake.closed == [True]


def test_non_streaming_variant_returns_reply():
    fake = FakeGenerationClient(steps=["Notice is ", "usually 30 days."])
    with serving(fake) as client:
        response = client.post("/api/chat?stream=false", json={"text": "How much notice?"})

    assert response.status_code == 200
    reply = response.json()["reply"]
    assert reply.startswith("Notice is usually 30 days.")
    assert "does not constitute legal advice" in reply


def test_non_streaming_mid_stream_failure_is_500_json():
    fake = FakeGenerationClient(steps=["one ", RuntimeError("connection reset")])
    with serving(fake) as client:
        response = client.post("/api/chat?stream=false", json={"text": "lease question"})

    assert response.status_code == 500
    assert response.json()["error"]["details"] == "connection reset"


def test_unconfigured_provider_is_500_json():
    with serving(None) as client:
        response = client.post("/api/chat", json={"text": "lease question"})

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "The model provider is not configured."


def test_unconfigured_provider_still_reports_bad_requests_first():
    with serving(None) as client:
        response = client.post("/api/chat", json={})

    assert response.status_code == 400


def test_keyword_policy_falls_back_for_off_topic_text(monkeypatch, client, fake_client):
    monkeypatch.setattr("estate_assistant.routers.chat.settings.router_policy", "keyword")
    response = client.post("/api/chat", json={"text": "tell me a joke"})

    assert response.status_code == 200
    assert response.text == FALLBACK_MESSAGE
    assert fake_client.envelopes == []


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_without_client_is_503(client):
    response = client.get("/ready")
    assert response.status_code == 503
    assert response.json() == {"provider": "error"}


@pytest.mark.asyncio
async def test_stream_never_iterated_is_closed_after_response():
    fake = FakeGenerationClient(steps=["Notice must ", "be in writing."])
    request = starlette_request(
        httpx.Request("POST", "http://testserver/api/chat", json={"text": "How do I end my lease?"})
    )

    response = await chat(request, stream=True, agents=Agents.from_client(fake))

    # The first chunk was pulled but the body was never sent.
    assert fake.closed == []
    await response.background()
    assert fake.closed == [True]
