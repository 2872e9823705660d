"""Tests for the chat session state machine and message stream."""

import asyncio
import gc
from datetime import datetime, timedelta, timezone

import pytest

from trovo.auth import AccessTokenOnly
from trovo.chat.exceptions import ConnectError, DecodeError, LinkError
from trovo.chat.models import ChatMessage
from trovo.chat.session import ChatMessageStream, ChatState
from trovo.config import ChatConfig
from trovo.errors import AccessTokenExpired, AuthenticatedRequestError, RequestError

from .conftest import FakeConnector, FakeExchanger, chat_entry, chat_frame

TIMEOUT = 2.0


async def next_item(stream: ChatMessageStream):
    return await asyncio.wait_for(stream.__anext__(), timeout=TIMEOUT)


def make_stream(exchanger, connector, config, **kwargs) -> ChatMessageStream:
    return ChatMessageStream(
        channel_id="100",
        exchanger=exchanger,
        config=config,
        connector=connector,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_stream_is_lazy(exchanger, chat_config):
    """Test that nothing connects before the first pull."""
    connector = FakeConnector()
    stream = make_stream(exchanger, connector, chat_config)

    await asyncio.sleep(0.01)

    assert stream.state == ChatState.IDLE
    assert connector.calls == []
    assert exchanger.calls == []
    await stream.aclose()


@pytest.mark.asyncio
async def test_handshake_and_messages(exchanger, chat_config):
    """Test AUTH then JOIN, then messages in arrival order."""
    second = chat_entry(message_id="m2", content="second")
    del second["sender_id"]
    connector = FakeConnector({"frames": [chat_frame(chat_entry(message_id="m1"), second)]})
    stream = make_stream(exchanger, connector, chat_config)

    first = await next_item(stream)
    last = await next_item(stream)

    assert first.message_id == "m1"
    assert first.sender_id == 1001
    assert last.message_id == "m2"
    assert last.sender_id is None
    assert last.nickname == "viewer"
    assert last.content == "second"
    assert stream.state == ChatState.ACTIVE

    link = connector.links[0]
    assert link.sent_types() == ["AUTH", "JOIN"]
    assert link.sent[0]["data"] == {"token": "chat-token-1"}
    assert link.sent[1]["data"] == {"channel_id": "100"}
    assert connector.calls == [chat_config.url]

    await stream.aclose()


@pytest.mark.asyncio
async def test_malformed_message_is_interleaved(exchanger, chat_config):
    """Test N-1 messages plus one decode error, in order."""
    bad = chat_entry(message_id="m2")
    del bad["message_id"]
    connector = FakeConnector(
        {"frames": [chat_frame(chat_entry(message_id="m1"), bad, chat_entry(message_id="m3"))]}
    )
    stream = make_stream(exchanger, connector, chat_config)

    items = [await next_item(stream) for _ in range(3)]

    assert isinstance(items[0], ChatMessage)
    assert isinstance(items[1], DecodeError)
    assert isinstance(items[2], ChatMessage)
    assert [items[0].message_id, items[2].message_id] == ["m1", "m3"]
    await stream.aclose()


@pytest.mark.asyncio
async def test_undecodable_frame_does_not_end_session(exchanger, chat_config):
    connector = FakeConnector(
        {"frames": ["{not json", {"type": "GIFT_STORM"}, chat_frame(chat_entry())]}
    )
    stream = make_stream(exchanger, connector, chat_config)

    error = await next_item(stream)
    message = await next_item(stream)

    assert isinstance(error, DecodeError)
    assert error.raw == "{not json"
    assert message.message_id == "msg-1"
    assert len(connector.links) == 1
    await stream.aclose()


@pytest.mark.asyncio
async def test_reconnects_after_link_failure(exchanger, chat_config):
    """Test that a dropped link is replaced without the caller noticing."""
    connector = FakeConnector(
        {"frames": [chat_frame(chat_entry(message_id="before")), LinkError("connection reset")]},
        {"frames": [chat_frame(chat_entry(message_id="after"))]},
    )
    stream = make_stream(exchanger, connector, chat_config)

    before = await next_item(stream)
    after = await next_item(stream)

    assert before.message_id == "before"
    assert after.message_id == "after"
    assert len(connector.links) == 2
    assert connector.links[0].closed
    # A fresh chat token for every connection
    assert len(exchanger.calls) == 2
    assert connector.links[1].sent[0]["data"] == {"token": "chat-token-2"}
    assert stream.session.total_reconnects == 1
    assert stream.session.reconnect_attempts == 0
    await stream.aclose()


@pytest.mark.asyncio
async def test_connect_error_is_retried(exchanger, chat_config):
    connector = FakeConnector(
        {"frames": [chat_frame(chat_entry())]},
        failures=[ConnectError("dns failure"), ConnectError("tls failure")],
    )
    stream = make_stream(exchanger, connector, chat_config)

    message = await next_item(stream)

    assert message.message_id == "msg-1"
    assert len(connector.calls) == 3
    assert stream.session.total_reconnects == 2
    await stream.aclose()


@pytest.mark.asyncio
async def test_transient_token_exchange_failure_is_retried(chat_config):
    exchanger = FakeExchanger(errors=[RequestError("HTTP 503"), None])
    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, chat_config)

    message = await next_item(stream)

    assert message.message_id == "msg-1"
    assert len(exchanger.calls) == 2
    assert len(connector.links) == 1
    await stream.aclose()


@pytest.mark.asyncio
async def test_rejected_auth_frame_reconnects(exchanger, chat_config):
    connector = FakeConnector(
        {"reject_auth": True},
        {"frames": [chat_frame(chat_entry())]},
    )
    stream = make_stream(exchanger, connector, chat_config)

    message = await next_item(stream)

    assert message.message_id == "msg-1"
    assert connector.links[0].sent_types() == ["AUTH"]
    assert connector.links[0].closed
    await stream.aclose()


@pytest.mark.asyncio
async def test_chat_before_join_response_counts_as_joined(exchanger, chat_config):
    connector = FakeConnector({"ack_join": False, "frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, chat_config)

    message = await next_item(stream)

    assert message.message_id == "msg-1"
    assert stream.state == ChatState.ACTIVE
    await stream.aclose()


@pytest.mark.asyncio
async def test_join_can_be_disabled(exchanger):
    config = ChatConfig(join_channel=False, initial_backoff=0.01, max_backoff=0.05)
    connector = FakeConnector()
    stream = make_stream(exchanger, connector, config)
    task = asyncio.create_task(stream.__anext__())

    await asyncio.sleep(0.05)

    assert stream.state == ChatState.ACTIVE
    assert connector.links[0].sent_types() == ["AUTH"]
    await stream.aclose()
    with pytest.raises(StopAsyncIteration):
        await task


@pytest.mark.asyncio
async def test_fatal_rejection_during_reconnect(chat_config):
    """Test that bad credentials end the stream with exactly one error."""
    exchanger = FakeExchanger(
        errors=[None, AuthenticatedRequestError("access token rejected")]
    )
    connector = FakeConnector(
        {"frames": [chat_frame(chat_entry()), LinkError("connection reset")]},
    )
    stream = make_stream(exchanger, connector, chat_config)

    message = await next_item(stream)
    with pytest.raises(AuthenticatedRequestError):
        await next_item(stream)
    with pytest.raises(StopAsyncIteration):
        await next_item(stream)

    await asyncio.sleep(0.1)

    assert message.message_id == "msg-1"
    assert len(exchanger.calls) == 2
    assert len(connector.links) == 1
    assert stream.state == ChatState.CLOSED
    assert stream.closed


@pytest.mark.asyncio
async def test_expired_static_token_is_fatal(exchanger, chat_config):
    provider = AccessTokenOnly(
        "client", "token", expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )
    connector = FakeConnector()
    stream = make_stream(exchanger, connector, chat_config, token_provider=provider)

    with pytest.raises(AccessTokenExpired):
        await next_item(stream)

    assert exchanger.calls == []
    assert connector.calls == []


@pytest.mark.asyncio
async def test_access_token_is_used_for_exchange(exchanger, chat_config):
    provider = AccessTokenOnly("client", "user-token")
    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, chat_config, token_provider=provider)

    await next_item(stream)

    access_token, channel_id = exchanger.calls[0]
    assert access_token.token == "user-token"
    assert channel_id == "100"
    await stream.aclose()


@pytest.mark.asyncio
async def test_heartbeat_interval(exchanger):
    """Test that PINGs are sent on the configured interval with increasing nonces."""
    config = ChatConfig(heartbeat_interval=0.05, staleness_window=1.0)
    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, config)

    await next_item(stream)
    await asyncio.sleep(0.23)

    pings = [frame for frame in connector.links[0].sent if frame["type"] == "PING"]
    assert 3 <= len(pings) <= 5
    assert [p["nonce"] for p in pings] == [str(i) for i in range(1, len(pings) + 1)]
    assert stream.session.last_heartbeat_at is not None
    await stream.aclose()


@pytest.mark.asyncio
async def test_staleness_triggers_one_reconnect(exchanger):
    """Test that a silent server is detected and replaced exactly once."""
    config = ChatConfig(
        heartbeat_interval=0.05,
        staleness_window=0.15,
        initial_backoff=0.01,
        max_backoff=0.05,
    )
    connector = FakeConnector(
        {"auto_pong": False, "frames": [chat_frame(chat_entry(message_id="first"))]},
        {"frames": [chat_frame(chat_entry(message_id="second"))]},
    )
    stream = make_stream(exchanger, connector, config)

    first = await next_item(stream)
    second = await next_item(stream)
    await asyncio.sleep(0.3)

    assert first.message_id == "first"
    assert second.message_id == "second"
    assert stream.session.total_reconnects == 1
    assert len(connector.links) == 2
    assert connector.links[0].closed
    assert stream.state == ChatState.ACTIVE
    await stream.aclose()


@pytest.mark.asyncio
async def test_close_stops_all_activity(exchanger):
    """Test that closing the stream closes the link and stops heartbeats."""
    config = ChatConfig(heartbeat_interval=0.02, staleness_window=1.0)
    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, config)

    await next_item(stream)
    await asyncio.sleep(0.05)
    await stream.aclose()

    link = connector.links[0]
    sent = len(link.sent)
    await asyncio.sleep(0.1)

    assert link.closed
    assert len(link.sent) == sent
    assert len(connector.links) == 1
    assert stream.state == ChatState.CLOSED
    with pytest.raises(StopAsyncIteration):
        await next_item(stream)


@pytest.mark.asyncio
async def test_close_while_reconnecting():
    """Test that closing during backoff stops further connection attempts."""
    config = ChatConfig(initial_backoff=5.0, max_backoff=5.0)
    exchanger = FakeExchanger(errors=[RequestError("HTTP 502")])
    connector = FakeConnector()
    stream = make_stream(exchanger, connector, config)
    task = asyncio.create_task(stream.__anext__())

    await asyncio.sleep(0.05)
    assert stream.state == ChatState.RECONNECTING

    await stream.aclose()

    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(task, timeout=TIMEOUT)
    assert stream.state == ChatState.CLOSED
    assert connector.calls == []


@pytest.mark.asyncio
async def test_context_manager_runs_on_close(exchanger, chat_config):
    closed = []

    async def on_close():
        closed.append(True)

    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    async with make_stream(exchanger, connector, chat_config, on_close=on_close) as stream:
        async for message in stream:
            assert message.message_id == "msg-1"
            break

    assert closed == [True]
    assert connector.links[0].closed


@pytest.mark.asyncio
async def test_dropped_stream_is_cancelled(exchanger):
    """Test that dropping an unclosed stream tears the session down."""
    closed = []

    async def on_close():
        closed.append(True)

    config = ChatConfig(heartbeat_interval=0.02, staleness_window=1.0)
    connector = FakeConnector({"frames": [chat_frame(chat_entry())]})
    stream = make_stream(exchanger, connector, config, on_close=on_close)

    await next_item(stream)
    link = connector.links[0]

    del stream
    gc.collect()
    await asyncio.sleep(0.1)

    sent = len(link.sent)
    await asyncio.sleep(0.1)

    assert link.closed
    assert len(link.sent) == sent
    assert len(connector.links) == 1
    assert closed == [True]


@pytest.mark.asyncio
async def test_on_close_runs_for_unstarted_stream(exchanger, chat_config):
    closed = []

    async def on_close():
        closed.append(True)

    stream = make_stream(exchanger, FakeConnector(), chat_config, on_close=on_close)
    await stream.aclose()
    await stream.aclose()

    assert closed == [True]
    assert not stream.session.started
