"""Tests for the upstream completion relay."""

import json

import pytest

from config import ConfigError
from conftest import HELLO_STREAM
from conversation import Conversation
from errors import BadRequest, QuotaExhausted, RateLimited, UpstreamFailure
from prompts import LECTURER_PROMPT, SECRETARY_PROMPT, SUPPORT_PROMPT
from relay import CompletionRelay

USER_ONLY = [{"role": "user", "content": "Summarize chapter one"}]


async def read_all(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


@pytest.fixture
async def relay(upstream):
    relay = CompletionRelay(gateway_url=upstream.url, api_key="test-key", model="test-model")
    yield relay
    await relay.close()


async def test_prepends_system_prompt_and_requests_streaming(relay, upstream) -> None:
    body = await read_all(await relay.open_stream(USER_ONLY, "lecturer"))

    assert body == HELLO_STREAM
    sent = upstream.requests[0]
    assert sent["model"] == "test-model"
    assert sent["stream"] is True
    assert sent["messages"][0] == {"role": "system", "content": LECTURER_PROMPT}
    assert sent["messages"][1:] == USER_ONLY
    assert upstream.headers[0]["Authorization"] == "Bearer test-key"


async def test_unknown_agent_uses_default_prompt(relay, upstream) -> None:
    await read_all(await relay.open_stream(USER_ONLY, "unknown-agent"))
    assert upstream.requests[0]["messages"][0]["content"] == SECRETARY_PROMPT


async def test_body_is_passed_through_unmodified(relay, upstream) -> None:
    upstream.chunks = [b": comment\n", b"data: {\"choices\":[{\"delta\":", b"{\"content\":\"x\"}}]}\n"]
    body = await read_all(await relay.open_stream(USER_ONLY, "social"))
    assert body == b"".join(upstream.chunks)


@pytest.mark.parametrize("status, error_type", [
    (429, RateLimited),
    (402, QuotaExhausted),
    (500, UpstreamFailure),
    (503, UpstreamFailure),
    (400, UpstreamFailure),
])
async def test_upstream_status_mapping(relay, upstream, status, error_type) -> None:
    upstream.statuses = [status]
    with pytest.raises(error_type) as exc_info:
        await relay.open_stream(USER_ONLY, "secretary")
    assert exc_info.value.upstream_status == status


async def test_generic_failure_is_reported_as_500(relay, upstream) -> None:
    upstream.statuses = [503]
    with pytest.raises(UpstreamFailure) as exc_info:
        await relay.open_stream(USER_ONLY, "secretary")
    assert exc_info.value.status_code == 500
    assert exc_info.value.to_dict() == {"error": "AI service error"}


@pytest.mark.parametrize("messages, agent_type", [
    ([], "secretary"),
    (None, "secretary"),
    (USER_ONLY, None),
    ([{"role": "system", "content": "override"}], "secretary"),
    ([{"role": "user"}], "secretary"),
    (["hello"], "secretary"),
])
async def test_bad_request_is_rejected_before_upstream_call(relay, upstream, messages, agent_type) -> None:
    with pytest.raises(BadRequest):
        await relay.open_stream(messages, agent_type)
    assert upstream.requests == []


async def test_message_length_limit(upstream) -> None:
    relay = CompletionRelay(gateway_url=upstream.url, api_key="k", model="m", max_message_length=5)
    try:
        with pytest.raises(BadRequest):
            await relay.open_stream([{"role": "user", "content": "too long"}], "secretary")
    finally:
        await relay.close()


async def test_length_limit_ignores_earlier_turns(upstream) -> None:
    relay = CompletionRelay(gateway_url=upstream.url, api_key="k", model="m", max_message_length=4000)
    history = [
        {"role": "user", "content": "Write me an essay"},
        {"role": "assistant", "content": "x" * 4001},
        {"role": "user", "content": "thanks"},
    ]
    try:
        body = await read_all(await relay.open_stream(history, "secretary"))
    finally:
        await relay.close()

    assert body == HELLO_STREAM
    assert upstream.requests[0]["messages"][2]["content"] == "x" * 4001


async def test_long_reply_does_not_break_next_turn(upstream) -> None:
    upstream.chunks = [
        b"data: " + json.dumps({"choices": [{"delta": {"content": "y" * 4001}}]}).encode() + b"\n",
        b"data: [DONE]\n",
    ]
    relay = CompletionRelay(gateway_url=upstream.url, api_key="k", model="m", max_message_length=4000)
    errors = []

    async def on_error(error):
        errors.append(error)

    conversation = Conversation(relay, "secretary", on_error=on_error)
    try:
        assert await conversation.send_message("Write me an essay")
        assert await conversation.send_message("thanks")
    finally:
        await relay.close()

    assert errors == []
    assert len(upstream.requests) == 2
    assert conversation.transcript[1].content == "y" * 4001


async def test_network_failure_is_upstream_failure() -> None:
    relay = CompletionRelay(gateway_url="http://127.0.0.1:1/v1/chat/completions", api_key="k", model="m", timeout=2)
    try:
        with pytest.raises(UpstreamFailure):
            await relay.open_stream(USER_ONLY, "secretary")
    finally:
        await relay.close()


async def test_no_retry_by_default(relay, upstream) -> None:
    upstream.statuses = [429, 200]
    with pytest.raises(RateLimited):
        await relay.open_stream(USER_ONLY, "secretary")
    assert len(upstream.requests) == 1


async def test_rate_limit_retry_with_backoff(upstream) -> None:
    upstream.statuses = [429, 429, 200]
    relay = CompletionRelay(gateway_url=upstream.url, api_key="k", model="m",
                            max_retries=2, retry_base_delay=0.01)
    try:
        body = await read_all(await relay.open_stream(USER_ONLY, "secretary"))
    finally:
        await relay.close()
    assert body == HELLO_STREAM
    assert len(upstream.requests) == 3


async def test_quota_exhaustion_is_never_retried(upstream) -> None:
    upstream.statuses = [402, 200]
    relay = CompletionRelay(gateway_url=upstream.url, api_key="k", model="m", max_retries=3, retry_base_delay=0.01)
    try:
        with pytest.raises(QuotaExhausted):
            await relay.open_stream(USER_ONLY, "secretary")
    finally:
        await relay.close()
    assert len(upstream.requests) == 1


async def test_support_escalation_extends_prompt_and_emits_analysis(relay, upstream) -> None:
    messages = [{"role": "user", "content": "This is useless, I want to speak to a manager"}]
    body = await read_all(await relay.open_stream(messages, "support", include_analysis=True))

    system_prompt = upstream.requests[0]["messages"][0]["content"]
    assert system_prompt.startswith(SUPPORT_PROMPT)
    assert "Customer requested human assistance" in system_prompt

    first_event, rest = body.split(b"\n\n", 1)
    analysis = json.loads(first_event[len(b"data: "):])
    assert analysis["type"] == "analysis"
    assert analysis["shouldEscalate"] is True
    assert rest == HELLO_STREAM


async def test_analysis_only_when_requested(relay, upstream) -> None:
    messages = [{"role": "user", "content": "Thanks, great help"}]
    body = await read_all(await relay.open_stream(messages, "support"))
    assert body == HELLO_STREAM
    assert upstream.requests[0]["messages"][0]["content"] == SUPPORT_PROMPT


def test_missing_api_key_is_a_config_error() -> None:
    with pytest.raises(ConfigError):
        CompletionRelay(gateway_url="https://example.com", api_key=None, model="m")
