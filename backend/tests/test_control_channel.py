import asyncio

import pytest

from avatar_interview.control.channel import CONNECTION_LOST_STATUS, ControlChannel
from avatar_interview.control.commands import EndInterview, NewQuestion, parse_command, user_answer_frame
from avatar_interview.errors import ControlChannelError
from avatar_interview.system_metrics import get_metrics_snapshot
from avatar_interview.transcription.events import Utterance
from avatar_interview.turn.gate import TurnGate
from fakes import FakeConnector, FakeSocket, wait_until


class _FakeSpeech:
    def __init__(self, gate: TurnGate):
        self.gate = gate
        self.log = []

    async def speak(self, text: str) -> None:
        self.log.append(("start", text, self.gate.is_user_turn()))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.log.append(("end", text))
        self.gate.open_for_user()


def _channel(gate, view=None, socket=None, on_end=None):
    ended = []

    async def _on_end(reason: str):
        ended.append(reason)

    connector = FakeConnector({"ws://backend.test/ws/interview/s-1": socket or FakeSocket()})
    channel = ControlChannel(
        gate,
        _FakeSpeech(gate),
        "s-1",
        on_end or _on_end,
        view=view,
        ws_base_url="ws://backend.test/",
        connect_fn=connector,
    )
    return channel, ended, connector


def test_parse_command_variants():
    assert parse_command('{"type": "new_question", "payload": {"text": " Why us? "}}') == NewQuestion(text="Why us?")
    assert parse_command({"type": "end_interview"}) == EndInterview()
    assert parse_command({"type": "new_question", "payload": {"text": "  "}}) is None
    assert parse_command({"type": "new_question"}) is None
    assert parse_command({"type": "heartbeat"}) is None
    assert parse_command("{broken") is None


def test_user_answer_frame_shape():
    assert user_answer_frame("Yes") == '{"type": "user_answer", "payload": {"answer": "Yes"}}'


@pytest.mark.asyncio
async def test_connects_to_session_endpoint():
    channel, _, connector = _channel(TurnGate())
    await channel.connect()
    assert connector.calls == ["ws://backend.test/ws/interview/s-1"]
    assert channel.is_open() is True


@pytest.mark.asyncio
async def test_connect_failure_raises():
    gate = TurnGate()
    channel = ControlChannel(gate, _FakeSpeech(gate), "s-1", None, connect_fn=FakeConnector(fail_on={"ws"}))
    with pytest.raises(ControlChannelError):
        await channel.connect()


@pytest.mark.asyncio
async def test_new_question_renders_closes_gate_and_speaks(view):
    gate = TurnGate()
    gate.open_for_user()
    channel, _, _ = _channel(gate, view=view)

    await channel.handle_command(NewQuestion(text="Describe a hard bug."))

    assert view.questions == ["Describe a hard bug."]
    assert channel.speech.log[0] == ("start", "Describe a hard bug.", False)
    assert gate.is_user_turn() is True
    assert get_metrics_snapshot()["questions_received"] == 1


@pytest.mark.asyncio
async def test_end_interview_invokes_teardown():
    channel, ended, _ = _channel(TurnGate())
    await channel.handle_command(EndInterview())
    assert ended == ["end_interview"]


@pytest.mark.asyncio
async def test_questions_are_processed_one_at_a_time_in_order():
    socket = FakeSocket()
    channel, ended, _ = _channel(TurnGate(), socket=socket)
    await channel.connect()

    socket.push({"type": "new_question", "payload": {"text": "Q1"}})
    socket.push({"type": "new_question", "payload": {"text": "Q2"}})
    await socket.close()

    await asyncio.wait_for(channel.run(), timeout=2)
    assert await wait_until(lambda: len(channel.speech.log) == 4)

    assert channel.speech.log == [
        ("start", "Q1", False),
        ("end", "Q1"),
        ("start", "Q2", False),
        ("end", "Q2"),
    ]
    assert ended == []
    await channel.close()


class _BlockedSpeech:
    def __init__(self, gate: TurnGate):
        self.gate = gate
        self.started = []
        self.release = asyncio.Event()

    async def speak(self, text: str) -> None:
        self.started.append(text)
        await self.release.wait()
        self.gate.open_for_user()


@pytest.mark.asyncio
async def test_end_interview_is_not_held_behind_a_question_being_spoken():
    gate = TurnGate()
    socket = FakeSocket()
    channel, ended, _ = _channel(gate, socket=socket)
    channel.speech = _BlockedSpeech(gate)
    await channel.connect()

    run_task = asyncio.create_task(channel.run())
    socket.push({"type": "new_question", "payload": {"text": "Walk me through your last project."}})
    socket.push({"type": "new_question", "payload": {"text": "Queued behind the first."}})
    assert await wait_until(lambda: channel.speech.started == ["Walk me through your last project."])

    socket.push({"type": "end_interview"})
    assert await wait_until(lambda: ended == ["end_interview"])
    assert channel.speech.started == ["Walk me through your last project."]
    assert gate.is_user_turn() is False

    await channel.close()
    channel.speech.release.set()
    await asyncio.wait_for(run_task, timeout=2)

    assert channel.speech.started == ["Walk me through your last project."]
    assert get_metrics_snapshot()["questions_received"] == 1


@pytest.mark.asyncio
async def test_commands_after_close_are_discarded(view):
    channel, ended, _ = _channel(TurnGate(), view=view)
    await channel.connect()
    await channel.close()

    await channel.handle_command(NewQuestion(text="Late question"))
    await channel.handle_command(EndInterview())

    assert view.questions == []
    assert ended == []
    assert get_metrics_snapshot()["commands_discarded"] == 2


@pytest.mark.asyncio
async def test_submit_answer_sends_user_answer_frame():
    socket = FakeSocket()
    channel, _, _ = _channel(TurnGate(), socket=socket)
    await channel.connect()

    assert await channel.submit_answer(Utterance(text="Kafka, mostly.")) is True
    assert socket.sent_frames() == [{"type": "user_answer", "payload": {"answer": "Kafka, mostly."}}]
    assert get_metrics_snapshot()["answers_submitted"] == 1


@pytest.mark.asyncio
async def test_submit_answer_without_transport_reports_and_does_not_raise(view):
    channel, _, _ = _channel(TurnGate(), view=view)

    assert await channel.submit_answer(Utterance(text="hello")) is False
    assert view.statuses == [CONNECTION_LOST_STATUS]
    assert get_metrics_snapshot()["answers_failed"] == 1


@pytest.mark.asyncio
async def test_submit_answer_on_dropped_transport_fails_softly(view):
    socket = FakeSocket()
    channel, _, _ = _channel(TurnGate(), view=view, socket=socket)
    await channel.connect()
    await socket.close()

    assert await channel.submit_answer(Utterance(text="hello")) is False
    assert channel.is_open() is False
    assert view.statuses == [CONNECTION_LOST_STATUS]
