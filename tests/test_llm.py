from types import SimpleNamespace

import httpx
import openai
import pytest

from webui_agent.exceptions import ModelOutputError, RateLimitError, TransientModelError
from webui_agent.llm import (
    OpenAIModelService,
    extract_json_from_model_output,
    remove_think_tags,
    to_openai_messages,
)
from webui_agent.message_manager import ConversationMessage, MessageSegment


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions: FakeCompletions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_extract_plain_json():
    assert extract_json_from_model_output('{"a": 1}') == {"a": 1}


def test_extract_fenced_json_with_think_tags():
    content = '<think>先想一想</think>\n```json\n{"action": []}\n```'

    assert extract_json_from_model_output(content) == {"action": []}


@pytest.mark.parametrize("content", ["not json", "[1, 2]"])
def test_extract_rejects_invalid(content):
    with pytest.raises(ModelOutputError):
        extract_json_from_model_output(content)


def test_remove_stray_think_close_tag():
    assert remove_think_tags("reasoning...</think> answer") == "answer"


def test_to_openai_messages():
    messages = [
        ConversationMessage(role="system", content="sys"),
        ConversationMessage(
            role="user",
            content=[
                MessageSegment(type="text", text="state"),
                MessageSegment(type="image", image_url="data:image/png;base64,AAAA"),
            ],
        ),
    ]

    converted = to_openai_messages(messages)

    assert converted[0] == {"role": "system", "content": "sys"}
    assert converted[1]["content"][1] == {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}}


async def test_invoke_json_mode():
    completions = FakeCompletions(content='{"ok": true}')
    service = OpenAIModelService(fake_client(completions), "qwen-plus")

    raw = await service.invoke([ConversationMessage(role="user", content="hi")])

    assert raw == '{"ok": true}'
    assert completions.kwargs["model"] == "qwen-plus"
    assert completions.kwargs["response_format"] == {"type": "json_object"}


async def test_invoke_plain_text_mode():
    completions = FakeCompletions(content="plan")
    service = OpenAIModelService(fake_client(completions), "qwen-plus")

    await service.invoke([ConversationMessage(role="user", content="hi")], json_mode=False)

    assert "response_format" not in completions.kwargs


async def test_rate_limit_is_mapped():
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
    service = OpenAIModelService(fake_client(FakeCompletions(error=error)), "qwen-plus")

    with pytest.raises(RateLimitError):
        await service.invoke([ConversationMessage(role="user", content="hi")])


async def test_timeout_is_transient():
    request = httpx.Request("POST", "https://api.example.com/v1/chat/completions")
    service = OpenAIModelService(fake_client(FakeCompletions(error=openai.APITimeoutError(request=request))), "qwen-plus")

    with pytest.raises(TransientModelError):
        await service.invoke([ConversationMessage(role="user", content="hi")])
