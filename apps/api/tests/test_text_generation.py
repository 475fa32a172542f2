from types import SimpleNamespace

import pytest

from config import settings
from services.text_generation import (
    TextGenerationClient,
    TextGenerationUnavailableError,
    get_openrouter_client,
)


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.parametrize("api_key", ["", "your_openrouter_key", "test-key"])
def test_placeholder_keys_disable_the_client(api_key):
    assert get_openrouter_client(api_key) is None


@pytest.mark.asyncio
async def test_chat_without_key_is_unavailable(monkeypatch):
    monkeypatch.setattr(settings, "OPENROUTER_API_KEY", "")
    client = TextGenerationClient()
    with pytest.raises(TextGenerationUnavailableError):
        await client.chat([{"role": "user", "content": "hello"}])


@pytest.mark.asyncio
async def test_chat_uses_default_model_and_returns_text():
    fake, completions = _fake_client("Bonjour")
    client = TextGenerationClient(client=fake, default_model="openai/gpt-4o-mini")

    text = await client.chat([{"role": "user", "content": "hello"}], temperature=0.2, max_tokens=50)

    assert text == "Bonjour"
    request = completions.requests[0]
    assert request["model"] == "openai/gpt-4o-mini"
    assert request["temperature"] == 0.2
    assert request["max_tokens"] == 50
    assert "response_format" not in request


@pytest.mark.asyncio
async def test_generate_json_requests_json_mode_and_decodes():
    fake, completions = _fake_client('{"bio": "Skincare reviews from Lagos"}')
    client = TextGenerationClient(client=fake, default_model="openai/gpt-4o-mini")

    result = await client.generate_json("Write a bio", system_prompt="You write influencer bios.")

    assert result == {"bio": "Skincare reviews from Lagos"}
    request = completions.requests[0]
    assert request["response_format"] == {"type": "json_object"}
    assert [message["role"] for message in request["messages"]] == ["system", "user"]
