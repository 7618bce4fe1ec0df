"""Bedrock converse wrapper with a fake runtime client."""

from __future__ import annotations

import asyncio

import pytest

from app.config.settings import BedrockConfig
from app.services.llm_client import BedrockLlmClient, LlmInvocationError


class FakeBedrockRuntime:
    def __init__(self, response: dict | None = None, error: Exception | None = None) -> None:
        self.response = response or {}
        self.error = error
        self.requests: list[dict] = []

    def converse(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def test_invoke_joins_text_blocks() -> None:
    runtime = FakeBedrockRuntime(
        {"output": {"message": {"content": [{"text": '{"totalScore": 70,'}, {"text": '"pros": "a", "recommendations": "b"}'}]}}}
    )
    client = BedrockLlmClient(BedrockConfig(model_id="test-model", max_tokens=900), client=runtime)

    text = asyncio.run(client.invoke(system_prompt="grade", user_prompt="answer"))

    assert text == '{"totalScore": 70,\n"pros": "a", "recommendations": "b"}'
    request = runtime.requests[0]
    assert request["modelId"] == "test-model"
    assert request["system"] == [{"text": "grade"}]
    assert request["messages"] == [{"role": "user", "content": [{"text": "answer"}]}]
    assert request["inferenceConfig"]["maxTokens"] == 900
    assert request["inferenceConfig"]["temperature"] == 0.0


def test_invoke_wraps_runtime_errors() -> None:
    client = BedrockLlmClient(BedrockConfig(), client=FakeBedrockRuntime(error=RuntimeError("throttled")))

    with pytest.raises(LlmInvocationError, match="throttled"):
        asyncio.run(client.invoke(system_prompt="s", user_prompt="u"))
