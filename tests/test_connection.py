import asyncio
import json

import pytest

from paarth_server.container import build_services
from paarth_server.core.errors import GenerationFailed, MalformedMessage
from paarth_server.prompts import (
    APOLOGY_TEXT,
    AUDIO_RETRY_TEXT,
    INVALID_FORMAT_TEXT,
    SESSION_NOT_FOUND_TEXT,
    UNKNOWN_MESSAGE_TEXT,
)
from paarth_server.relay.connection import ConnectionHandler, parse_message

from conftest import FakeEmbedder, FakeGenerator, FakeTransport, drain


def msg(**data) -> str:
    return json.dumps(data, ensure_ascii=False)


@pytest.fixture
async def connection(services):
    transport = FakeTransport()
    handler = ConnectionHandler(services, transport)
    session = await handler.open()
    yield handler, transport, session
    await handler.close()


async def open_with(test_settings, corpus, generator):
    services = build_services(
        test_settings, corpus=corpus, embedder=FakeEmbedder(fail=True), generator=generator
    )
    transport = FakeTransport()
    handler = ConnectionHandler(services, transport)
    session = await handler.open()
    return services, handler, transport, session


def test_parse_message_rejects_non_objects():
    with pytest.raises(MalformedMessage):
        parse_message("not json")
    with pytest.raises(MalformedMessage):
        parse_message("[1, 2]")
    with pytest.raises(MalformedMessage):
        parse_message('{"type": 5}')

    assert parse_message('{"type": "ping"}') == {"type": "ping"}


# ---------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_open_sends_connection_established(connection):
    handler, transport, session = connection

    [greeting] = transport.of_type("connection_established")
    assert greeting["sessionId"] == session.id
    assert greeting["knowledgeBaseStats"]["total_verses"] == 3


@pytest.mark.asyncio
async def test_end_session_reports_stats_and_closes(connection, services):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="end_session"))

    [ended] = transport.of_type("session_ended")
    assert ended["sessionId"] == session.id
    assert ended["stats"]["questions"] == 0
    assert handler.ended
    assert not transport.open
    assert len(services.registry) == 0


@pytest.mark.asyncio
async def test_message_for_destroyed_session(connection, services):
    handler, transport, session = connection
    await services.registry.destroy(session.id)

    await handler.handle_raw(msg(type="ping"))

    assert transport.sent[-1] == {"type": "error", "message": SESSION_NOT_FOUND_TEXT}


# ---------------------------------------------------------------------
# Protocol errors
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_malformed_message_keeps_connection_open(connection, services):
    handler, transport, session = connection

    await handler.handle_raw("{not json")

    assert transport.sent[-1] == {"type": "error", "message": INVALID_FORMAT_TEXT}
    assert transport.open
    assert services.registry.has_session(session.id)


@pytest.mark.asyncio
async def test_unknown_message_type(connection):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="dance"))

    assert transport.sent[-1] == {
        "type": "error",
        "message": UNKNOWN_MESSAGE_TEXT,
        "sessionId": session.id,
    }


@pytest.mark.asyncio
async def test_ping_pong(connection):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="ping"))
    await handler.handle_raw(msg(type="pong"))

    assert transport.sent[-1]["type"] == "pong"
    assert isinstance(transport.sent[-1]["timestamp"], int)
    assert not transport.of_type("error")


# ---------------------------------------------------------------------
# Questions and interruption
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_text_query_is_answered_and_recorded(connection, services, generator):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="text_query", query="मुझे चिंता है"))
    await drain(handler)

    [response] = transport.of_type("text_response")
    assert response["text"] == generator.answer
    assert response["speaker"] == "krishna"
    assert response["sessionId"] == session.id
    assert [v["id"] for v in response["versesUsed"]] == ["bg_6_5", "bg_2_47"]
    assert "embedding" not in response["versesUsed"][0]
    assert "transcription" not in response

    assert len(session.turns) == 1
    assert session.turns[0].verse_ids == ("bg_6_5", "bg_2_47")
    assert services.coordinator.active_count() == 0


@pytest.mark.asyncio
async def test_history_is_included_in_later_prompts(connection, generator):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="text_message", text="पहला प्रश्न"))
    await drain(handler)
    await handler.handle_raw(msg(type="text_message", text="दूसरा प्रश्न"))
    await drain(handler)

    assert "पिछली बातचीत का संदर्भ:\nप्रश्न: पहला प्रश्न" in generator.calls[-1]["prompt"]


@pytest.mark.asyncio
async def test_interrupt_without_active_request(connection, services):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="interrupt"))

    [interrupted] = transport.of_type("interrupted")
    assert interrupted["interruptCount"] == 1
    assert not transport.of_type("error")
    assert services.registry.get(session.id).interrupt_count == 1


@pytest.mark.asyncio
async def test_only_latest_audio_is_answered(test_settings, corpus):
    """A second audio message supersedes the first one still in flight."""
    generator = FakeGenerator(
        transcripts={"first": "पहला प्रश्न", "second": "दूसरा प्रश्न"},
        delays={"first": 0.5},
    )
    services, handler, transport, session = await open_with(test_settings, corpus, generator)

    await handler.handle_raw(msg(type="audio_data", audio="first"))
    await asyncio.sleep(0.05)
    await handler.handle_raw(msg(type="audio_data", audio="second"))
    await drain(handler)
    await asyncio.sleep(0.6)

    responses = transport.of_type("text_response")
    assert len(responses) == 1
    assert responses[0]["transcription"] == "दूसरा प्रश्न"
    assert [turn.user_text for turn in session.turns] == ["दूसरा प्रश्न"]

    await handler.close()


@pytest.mark.asyncio
async def test_interrupt_drops_pending_answer(test_settings, corpus):
    generator = FakeGenerator(delays={"slow": 0.5})
    services, handler, transport, session = await open_with(test_settings, corpus, generator)

    await handler.handle_raw(msg(type="audio_data", audio="slow"))
    await asyncio.sleep(0.05)
    await handler.handle_raw(msg(type="interrupt"))
    await drain(handler)

    assert transport.of_type("text_response") == []
    assert transport.of_type("interrupted")[0]["interruptCount"] == 1
    assert session.turns == []

    await handler.close()


@pytest.mark.asyncio
async def test_generation_failure_degrades_to_apology(test_settings, corpus):
    generator = FakeGenerator(error=RuntimeError("model unavailable"))
    services, handler, transport, session = await open_with(test_settings, corpus, generator)

    await handler.handle_raw(msg(type="text_query", query="मन अशांत है"))
    await drain(handler)

    [response] = transport.of_type("text_response")
    assert response["text"] == APOLOGY_TEXT
    assert services.registry.has_session(session.id)

    await handler.close()


@pytest.mark.asyncio
async def test_transcription_failure_sends_error(test_settings, corpus):
    generator = FakeGenerator(error=GenerationFailed("bad audio"))
    services, handler, transport, session = await open_with(test_settings, corpus, generator)

    await handler.handle_raw(msg(type="audio_data", audio="QUJD"))
    await drain(handler)

    assert transport.sent[-1] == {"type": "error", "message": AUDIO_RETRY_TEXT}
    assert transport.of_type("text_response") == []
    assert services.coordinator.active_count() == 0

    await handler.close()


@pytest.mark.asyncio
async def test_superseded_request_failure_sends_no_error(connection, services, monkeypatch):
    handler, transport, session = connection
    superseded = []

    async def fail_after_newer_question(session_id, request, question):
        services.coordinator.start_request(session_id)
        superseded.append(request)
        raise RuntimeError("index exploded")

    monkeypatch.setattr(services.conversation, "answer_text", fail_after_newer_question)

    await handler.handle_raw(msg(type="text_query", query="प्रश्न"))
    await drain(handler)

    assert superseded[0].cancelled
    assert transport.of_type("error") == []


# ---------------------------------------------------------------------
# Corpus access
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_random_verse(connection):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="get_random_verse"))

    [message] = transport.of_type("random_verse")
    assert message["verse"]["id"] in {"bg_2_47", "bg_2_20", "bg_6_5"}


@pytest.mark.asyncio
async def test_advanced_search_message(connection):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="advanced_search", options={"themes": ["soul"], "maxResults": 2}))

    [message] = transport.of_type("search_results")
    assert [v["id"] for v in message["results"]] == ["bg_2_20"]
    assert message["searchOptions"]["maxResults"] == 2


@pytest.mark.asyncio
async def test_start_session_clears_history(connection):
    handler, transport, session = connection

    await handler.handle_raw(msg(type="text_query", query="प्रश्न"))
    await drain(handler)
    await handler.handle_raw(msg(type="start_session"))

    assert transport.of_type("session_started")[0]["sessionId"] == session.id
    assert session.turns == []


@pytest.mark.asyncio
async def test_close_cancels_in_flight_work(test_settings, corpus):
    generator = FakeGenerator(delays={"slow": 5})
    services, handler, transport, session = await open_with(test_settings, corpus, generator)

    await handler.handle_raw(msg(type="audio_data", audio="slow"))
    await asyncio.sleep(0.05)
    transport.open = False
    await handler.close()

    assert len(services.registry) == 0
    assert services.coordinator.active_count() == 0
