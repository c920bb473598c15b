"""Unit tests for the phase sequencer."""
import asyncio

import pytest

from app.services.orchestration.phases import CallPhase
from app.services.orchestration.script import build_script
from app.services.orchestration.sequencer import PhaseSequencer
from app.services.realtime.events import (
    AudioStarted,
    ChannelClosed,
    ResponseCompleted,
    ResponseCreated,
    ResponseFailed,
)

NOTICE_TEXT = "Notice text"
INTRO_TEXT = "Intro text"


@pytest.fixture
async def make_sequencer(fake_client, sequencer_config):
    """Build sequencers on the fake channel and stop them after the test."""
    created = []

    def _make(script, config=None):
        sequencer = PhaseSequencer("call_abc", fake_client, script, config or sequencer_config)
        created.append(sequencer)
        return sequencer

    yield _make

    for sequencer in created:
        sequencer.stop()


async def complete(sequencer, response_id):
    await sequencer.handle(ResponseCreated(response_id))
    await sequencer.handle(AudioStarted(response_id))
    await sequencer.handle(ResponseCompleted(response_id))


class TestScriptedOpening:
    """Start-up and scripted phase behaviour."""

    async def test_start_silences_session_before_speaking(self, make_sequencer, fake_client, notice_only_script):
        sequencer = make_sequencer(notice_only_script)

        await sequencer.start()

        assert fake_client.sent[0][0] == "configure"
        update = fake_client.session_updates[0]
        assert update["turn_detection"] is None
        assert update["input_audio_transcription"] is None
        assert update["temperature"] == 0.0
        assert update["instructions"] == "strict"
        assert update["voice"] == "marin"
        assert update["input_audio_format"] == "g711_ulaw"
        assert fake_client.sent[1] == ("speak", NOTICE_TEXT)
        assert sequencer.phase == CallPhase.NOTICE

    async def test_start_twice_is_rejected(self, make_sequencer, notice_only_script):
        sequencer = make_sequencer(notice_only_script)
        await sequencer.start()

        with pytest.raises(RuntimeError):
            await sequencer.start()

    async def test_notice_then_intro_then_conversation(self, make_sequencer, fake_client, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()

        await complete(sequencer, "r1")
        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]
        assert sequencer.phase == CallPhase.INTRO

        await complete(sequencer, "r2")
        assert sequencer.phase == CallPhase.CONVERSATION
        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]

    async def test_notice_completion_hands_off_to_conversation(self, make_sequencer, fake_client, notice_only_script):
        sequencer = make_sequencer(notice_only_script)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(ResponseCompleted("r1"))

        assert sequencer.in_conversation
        assert fake_client.sent[-1][0] == "configure"
        handoff = fake_client.session_updates[-1]
        assert handoff["turn_detection"] == {"type": "server_vad"}
        assert handoff["input_audio_transcription"] == {"model": "whisper-1"}
        assert handoff["temperature"] == 0.6
        assert handoff["instructions"] == "persona"

        # Later service-driven responses never trigger scripted speech
        await complete(sequencer, "r_conv_1")
        assert fake_client.spoken == [NOTICE_TEXT]
        assert len(fake_client.session_updates) == 2

    async def test_handoff_without_transcription(self, make_sequencer, fake_client, notice_only_script, sequencer_config):
        config = sequencer_config.model_copy(update={"transcription_model": None})
        sequencer = make_sequencer(notice_only_script, config)
        await sequencer.start()

        await complete(sequencer, "r1")

        assert fake_client.session_updates[-1]["input_audio_transcription"] is None

    async def test_primer_runs_before_notice(self, make_sequencer, fake_client):
        script = build_script(notice_text=NOTICE_TEXT, primer_text="Hello?", intro_text=INTRO_TEXT)
        sequencer = make_sequencer(script)
        phases = []

        await sequencer.start()
        phases.append(sequencer.phase)
        for response_id in ("r1", "r2", "r3"):
            await complete(sequencer, response_id)
            phases.append(sequencer.phase)

        assert phases == [
            CallPhase.PRIMER,
            CallPhase.NOTICE,
            CallPhase.INTRO,
            CallPhase.CONVERSATION,
        ]
        assert fake_client.spoken == ["Hello?", NOTICE_TEXT, INTRO_TEXT]


class TestPendingUtterance:
    """Only one scripted response may be outstanding."""

    async def test_unrelated_completion_does_not_advance(self, make_sequencer, fake_client, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))

        await sequencer.handle(ResponseCompleted("other"))

        assert sequencer.phase == CallPhase.NOTICE
        assert fake_client.spoken == [NOTICE_TEXT]
        assert sequencer.pending.response_id == "r1"

    async def test_second_created_does_not_rebind_pending(self, make_sequencer, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(ResponseCreated("r_extra"))

        assert sequencer.pending.response_id == "r1"

    async def test_created_with_foreign_event_id_is_ignored(self, make_sequencer, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r_other", event_id="evt_unknown"))
        assert sequencer.pending.response_id is None

        await sequencer.handle(ResponseCreated("r1", event_id=sequencer.pending.event_id))
        assert sequencer.pending.response_id == "r1"

    async def test_duplicate_completion_advances_once(self, make_sequencer, fake_client, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(ResponseCompleted("r1"))
        await sequencer.handle(ResponseCompleted("r1"))

        assert sequencer.phase == CallPhase.INTRO
        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]


class TestFailures:
    """Failed utterances are skipped rather than stalling the call."""

    async def test_failed_notice_moves_to_intro(self, make_sequencer, fake_client, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(ResponseFailed("r1", "server_error"))

        assert sequencer.phase == CallPhase.INTRO
        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]
        assert [line.phase for line in sequencer.skipped] == [CallPhase.NOTICE]

    async def test_rejected_request_is_matched_by_event_id(self, make_sequencer, fake_client, notice_only_script):
        sequencer = make_sequencer(notice_only_script)
        await sequencer.start()

        await sequencer.handle(ResponseFailed(None, "invalid request", event_id=sequencer.pending.event_id))

        assert sequencer.in_conversation

    async def test_unrelated_error_is_ignored(self, make_sequencer, notice_only_script):
        sequencer = make_sequencer(notice_only_script)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))

        await sequencer.handle(ResponseFailed(None, "bad session.update", event_id="evt_other"))
        await sequencer.handle(ResponseFailed(None, "no event id"))

        assert sequencer.phase == CallPhase.NOTICE

    async def test_channel_close_stops_sequencer(self, make_sequencer, fake_client, full_script):
        sequencer = make_sequencer(full_script)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))
        assert sequencer.watchdog.armed == {"r1"}

        await sequencer.handle(ChannelClosed(1000, "bye"))
        await sequencer.handle(ResponseCompleted("r1"))

        assert sequencer.stopped
        assert sequencer.watchdog.armed == set()
        assert sequencer.pending is None
        assert fake_client.spoken == [NOTICE_TEXT]


class TestAudioStartRetry:
    """Watchdog-driven resend of silent utterances."""

    async def test_silent_notice_is_resent_exactly_once(
        self, make_sequencer, fake_client, notice_only_script, fast_watchdog_config
    ):
        sequencer = make_sequencer(notice_only_script, fast_watchdog_config)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await asyncio.sleep(0.1)

        assert fake_client.spoken == [NOTICE_TEXT, NOTICE_TEXT]
        assert fake_client.cancelled == ["r1"]
        assert sequencer.retries == 1

        # The retry stays silent too: no further resend
        await sequencer.handle(ResponseCreated("r2"))
        await asyncio.sleep(0.1)

        assert fake_client.spoken == [NOTICE_TEXT, NOTICE_TEXT]
        assert sequencer.retries == 1
        assert sequencer.watchdog.retry_issued == {"r1"}
        assert sequencer.watchdog.timed_out == {"r1", "r2"}

    async def test_cancelled_stalled_response_does_not_advance(
        self, make_sequencer, fake_client, notice_only_script, fast_watchdog_config
    ):
        sequencer = make_sequencer(notice_only_script, fast_watchdog_config)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))
        await asyncio.sleep(0.1)

        await sequencer.handle(ResponseFailed("r1", "cancelled"))
        assert sequencer.phase == CallPhase.NOTICE

        await sequencer.handle(ResponseCreated("r2"))
        await sequencer.handle(ResponseCompleted("r2"))
        assert sequencer.in_conversation
        assert fake_client.spoken.count(NOTICE_TEXT) == 2

    async def test_audio_start_prevents_retry(self, make_sequencer, fake_client, notice_only_script, fast_watchdog_config):
        sequencer = make_sequencer(notice_only_script, fast_watchdog_config)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(AudioStarted("r1", implicit=True))
        await asyncio.sleep(0.1)

        assert fake_client.spoken == [NOTICE_TEXT]
        assert sequencer.retries == 0
        assert "r1" in sequencer.watchdog.audio_confirmed

    async def test_completion_before_timeout_prevents_retry(
        self, make_sequencer, fake_client, full_script, fast_watchdog_config
    ):
        sequencer = make_sequencer(full_script, fast_watchdog_config)
        await sequencer.start()

        await sequencer.handle(ResponseCreated("r1"))
        await sequencer.handle(ResponseCompleted("r1"))
        await asyncio.sleep(0.1)

        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]
        assert sequencer.retries == 0

    async def test_notice_is_the_only_compliance_line(
        self, make_sequencer, fake_client, full_script, fast_watchdog_config
    ):
        sequencer = make_sequencer(full_script, fast_watchdog_config)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))
        await asyncio.sleep(0.1)
        await sequencer.handle(ResponseCreated("r2"))
        await sequencer.handle(ResponseCompleted("r2"))
        await complete(sequencer, "r3")

        # Everything before the intro is the notice text, nothing else
        intro_index = fake_client.spoken.index(INTRO_TEXT)
        assert set(fake_client.spoken[:intro_index]) == {NOTICE_TEXT}
        assert fake_client.spoken[0] == NOTICE_TEXT
        assert sequencer.in_conversation

    async def test_completion_during_retry_cancel_does_not_resend(
        self, make_sequencer, fake_client, full_script, fast_watchdog_config
    ):
        fake_client.cancel_gate = asyncio.Event()
        sequencer = make_sequencer(full_script, fast_watchdog_config)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))

        # Watchdog fires and the retry is suspended inside cancel_response
        await asyncio.wait_for(fake_client.cancel_started.wait(), timeout=1)
        await sequencer.handle(ResponseCompleted("r1"))
        fake_client.cancel_gate.set()
        await asyncio.sleep(0.05)

        assert fake_client.spoken == [NOTICE_TEXT, INTRO_TEXT]
        assert sequencer.phase == CallPhase.INTRO
        assert sequencer.pending.utterance.phase == CallPhase.INTRO
        assert sequencer.retries == 0
        assert sequencer.watchdog.retry_issued == set()

    async def test_cancellation_of_stalled_response_still_resends(
        self, make_sequencer, fake_client, notice_only_script, fast_watchdog_config
    ):
        fake_client.cancel_gate = asyncio.Event()
        sequencer = make_sequencer(notice_only_script, fast_watchdog_config)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))

        await asyncio.wait_for(fake_client.cancel_started.wait(), timeout=1)
        await sequencer.handle(ResponseFailed("r1", "cancelled"))
        fake_client.cancel_gate.set()
        await asyncio.sleep(0.05)

        assert fake_client.spoken == [NOTICE_TEXT, NOTICE_TEXT]
        assert sequencer.phase == CallPhase.NOTICE
        assert sequencer.skipped == []
        assert sequencer.retries == 1
        assert sequencer.watchdog.retry_issued == {"r1"}

    async def test_stop_during_retry_cancel_does_not_resend(
        self, make_sequencer, fake_client, notice_only_script, fast_watchdog_config
    ):
        fake_client.cancel_gate = asyncio.Event()
        sequencer = make_sequencer(notice_only_script, fast_watchdog_config)
        await sequencer.start()
        await sequencer.handle(ResponseCreated("r1"))

        await asyncio.wait_for(fake_client.cancel_started.wait(), timeout=1)
        await sequencer.handle(ChannelClosed(1000, "hangup"))
        fake_client.cancel_gate.set()
        await asyncio.sleep(0.05)

        assert fake_client.spoken == [NOTICE_TEXT]
        assert sequencer.stopped
