import base64
import enum
from types import SimpleNamespace

import pytest

from estate_assistant.errors import ProviderError
from estate_assistant.schemas.chat import CurrentTurn, GenerationOptions, PromptEnvelope, Turn
from estate_assistant.services import gemini
from estate_assistant.services.chunks import ResponseChunk
from estate_assistant.services.gemini import GeminiClient, build_contents, to_response_chunk
from estate_assistant.services.stream_bridge import collect_text


class FinishReason(enum.IntEnum):
    FINISH_REASON_UNSPECIFIED = 0
    STOP = 1
    SAFETY = 3


class BlockReason(enum.IntEnum):
    BLOCK_REASON_UNSPECIFIED = 0
    SAFETY = 1


def _raw(texts=(), finish=FinishReason.FINISH_REASON_UNSPECIFIED, block=BlockReason.BLOCK_REASON_UNSPECIFIED):
    parts = [SimpleNamespace(text=t) for t in texts]
    candidate = SimpleNamespace(content=SimpleNamespace(parts=parts), finish_reason=finish)
    return SimpleNamespace(candidates=[candidate], prompt_feedback=SimpleNamespace(block_reason=block))


def test_text_parts_are_joined():
    assert to_response_chunk(_raw(["Hello ", "there"])) == ResponseChunk(text_delta="Hello there")


def test_finish_reason_marks_terminal():
    chunk = to_response_chunk(_raw(["bye"], finish=FinishReason.STOP))
    assert chunk == ResponseChunk(text_delta="bye", terminal=True)


def test_safety_finish_is_reported_as_block():
    chunk = to_response_chunk(_raw([], finish=FinishReason.SAFETY))
    assert chunk == ResponseChunk(blocked="SAFETY", terminal=True)


def test_prompt_block_without_candidates():
    raw = SimpleNamespace(candidates=[], prompt_feedback=SimpleNamespace(block_reason=BlockReason.SAFETY))
    assert to_response_chunk(raw) == ResponseChunk(blocked="SAFETY")


def test_missing_fields_give_empty_chunk():
    assert to_response_chunk(SimpleNamespace()) == ResponseChunk()
    assert to_response_chunk(SimpleNamespace(candidates=[SimpleNamespace()])) == ResponseChunk()


def test_build_contents_orders_history_then_current_turn_with_image():
    image = base64.b64encode(b"\xff\xd8\xffdata").decode()
    envelope = PromptEnvelope(
        system_preamble="preamble",
        history=(
            Turn(role="model", text="greeting"),
            Turn(role="user", text="first"),
            Turn(role="user", text="second"),
            Turn(role="model", text="answer"),
        ),
        current_turn=CurrentTurn(text="note", image=image, image_mime="image/png"),
    )

    contents = build_contents(envelope)

    assert contents == [
        {"role": "model", "parts": ["greeting"]},
        {"role": "user", "parts": ["first", "second"]},
        {"role": "model", "parts": ["answer"]},
        {"role": "user", "parts": ["note", {"mime_type": "image/png", "data": b"\xff\xd8\xffdata"}]},
    ]


class _FakeResponse:
    def __init__(self, raws):
        self._raws = raws

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for raw in self._raws:
            yield raw


def _install_fake_model(monkeypatch, raws=None, error=None):
    created = []

    class FakeModel:
        def __init__(self, model_name, system_instruction=None, generation_config=None):
            created.append(SimpleNamespace(
                model_name=model_name,
                system_instruction=system_instruction,
                generation_config=generation_config,
            ))

        async def generate_content_async(self, contents, stream=False):
            created[-1].contents = contents
            created[-1].stream = stream
            if error is not None:
                raise error
            return _FakeResponse(raws or [])

    monkeypatch.setattr(gemini.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(gemini.genai, "GenerativeModel", FakeModel)
    return created


def _envelope():
    return PromptEnvelope(
        system_preamble="You are a tenancy-law assistant.",
        current_turn=CurrentTurn(text="Can I be evicted?"),
        options=GenerationOptions(temperature=0.7, max_output_tokens=800),
    )


def test_client_requires_api_key():
    with pytest.raises(ValueError):
        GeminiClient("", "gemini-1.5-pro")


@pytest.mark.asyncio
async def test_generate_stream_passes_preamble_and_streams_chunks(monkeypatch):
    created = _install_fake_model(
        monkeypatch,
        raws=[_raw(["Only with "]), _raw(["notice."], finish=FinishReason.STOP)],
    )
    client = GeminiClient("key", "gemini-1.5-pro")

    source = await client.generate_stream(_envelope(), label="tenancy-FAQ agent")

    assert await collect_text(source) == "Only with notice."
    call = created[0]
    assert call.model_name == "gemini-1.5-pro"
    assert call.system_instruction == "You are a tenancy-law assistant."
    assert call.stream is True
    assert call.contents == [{"role": "user", "parts": ["Can I be evicted?"]}]


@pytest.mark.asyncio
async def test_generate_stream_start_failure_raises_provider_error(monkeypatch):
    _install_fake_model(monkeypatch, error=RuntimeError("429 RESOURCE_EXHAUSTED"))
    client = GeminiClient("key", "gemini-1.5-pro")

    with pytest.raises(ProviderError) as info:
        await client.generate_stream(_envelope(), label="tenancy-FAQ agent")

    assert "429" in info.value.details
    assert isinstance(info.value.__cause__, RuntimeError)


def test_client_configures_sdk_credentials_once(monkeypatch):
    calls = []
    monkeypatch.setattr(gemini.genai, "configure", lambda **kwargs: calls.append(kwargs))

    client = GeminiClient("key", "gemini-1.5-pro")

    assert calls == [{"api_key": "key"}]
    assert client.model_name == "gemini-1.5-pro"
