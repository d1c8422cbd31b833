"""Tests for single-voice playback coordination and preemption."""

from __future__ import annotations

import asyncio

import pytest

from coach_core.services.coaching_cache import CoachingCache
from coach_core.services.cues import CueCategory, CueKey, CueRequest, SpokenLine
from coach_core.services.playback import AudioPlaybackCoordinator
from coach_core.services.providers import ClipLibrary
from tests.fakes import FakeAmbient, FakeBackend, FakeSynthesizer, FakeTextGenerator, make_context


def _coordinator(text=None, synth=None, backend=None, **kwargs):
    cache = CoachingCache(text or FakeTextGenerator(), synth or FakeSynthesizer())
    backend = backend or FakeBackend()
    coordinator = AudioPlaybackCoordinator(cache, backend, **kwargs)
    deliveries = []
    coordinator.on_delivery(deliveries.append)
    return coordinator, backend, deliveries


def _request(step=0, category=CueCategory.INSTRUCTION) -> CueRequest:
    return CueRequest(CueKey("jacks", step, category), make_context(category, step))


@pytest.mark.asyncio
async def test_play_immediate_starts_one_handle():
    coordinator, backend, deliveries = _coordinator()
    handle = await coordinator.play_immediate(_request())
    assert handle is not None and handle.active
    assert coordinator.current is handle
    assert len(backend.started) == 1
    assert deliveries[0].source == "generated"
    assert coordinator.status()["audio_status"] == "playing"


@pytest.mark.asyncio
async def test_new_cue_stops_previous_before_starting():
    coordinator, backend, _ = _coordinator()
    first = await coordinator.play_immediate(SpokenLine("one", audio=b"1"))
    second = await coordinator.play_immediate(SpokenLine("two", audio=b"2"))

    assert first.active is False
    assert coordinator.current is second
    assert backend.events == [("start", first.token), ("stop", first.token), ("start", second.token)]
    assert backend.max_active == 1


@pytest.mark.asyncio
async def test_latest_trigger_wins_over_slow_resolution():
    gate = asyncio.Event()
    coordinator, backend, _ = _coordinator(text=FakeTextGenerator(gate=gate))

    slow = asyncio.create_task(coordinator.play_immediate(_request()))
    await asyncio.sleep(0)
    fast = await coordinator.play_immediate(SpokenLine("Go!", audio=b"go"))
    gate.set()

    assert await slow is None
    assert fast is not None
    assert [audio for _, audio in backend.started] == [b"go"]
    assert coordinator.current is fast


@pytest.mark.asyncio
async def test_natural_completion_releases_handle():
    coordinator, backend, _ = _coordinator()
    handle = await coordinator.play_immediate(SpokenLine("done soon", audio=b"x"))
    backend.finish(handle.token)
    assert coordinator.current is None
    assert handle.active is False
    assert coordinator.status()["audio_status"] == "idle"


@pytest.mark.asyncio
async def test_stream_error_releases_handle_and_reports():
    coordinator, backend, _ = _coordinator()
    handle = await coordinator.play_immediate(SpokenLine("broken", audio=b"x"))
    backend.finish(handle.token, RuntimeError("decode error"))

    status = coordinator.status()
    assert coordinator.current is None
    assert status["audio_status"] == "error"
    assert "decode error" in status["last_error"]

    again = await coordinator.play_immediate(SpokenLine("next", audio=b"y"))
    assert again is not None
    assert coordinator.status()["audio_status"] == "playing"


@pytest.mark.asyncio
async def test_backend_start_failure_is_not_raised():
    coordinator, backend, _ = _coordinator(backend=FakeBackend(fail_start=True))
    assert await coordinator.play_immediate(SpokenLine("x", audio=b"x")) is None
    assert coordinator.current is None
    assert coordinator.status()["audio_status"] == "error"


@pytest.mark.asyncio
async def test_silent_cue_is_delivered_without_audio():
    coordinator, backend, deliveries = _coordinator(synth=FakeSynthesizer(fail=True))
    assert await coordinator.play_immediate(SpokenLine("Ready?")) is None
    assert backend.started == []
    assert deliveries[0].text == "Ready?"
    assert deliveries[0].source == "silent"


@pytest.mark.asyncio
async def test_silent_cue_still_stops_previous():
    coordinator, backend, _ = _coordinator(synth=FakeSynthesizer(fail=True))
    first = await coordinator.play_immediate(SpokenLine("one", audio=b"1"))
    await coordinator.play_immediate(SpokenLine("quiet"))
    assert first.active is False
    assert coordinator.current is None


@pytest.mark.asyncio
async def test_line_voiced_through_synthesizer():
    coordinator, backend, deliveries = _coordinator()
    await coordinator.play_immediate(SpokenLine("Get ready"))
    assert backend.started[0][1] == b"mp3:Get ready"
    assert deliveries[0].source == "line"


@pytest.mark.asyncio
async def test_line_prefers_recorded_clip(tmp_path):
    (tmp_path / "coach").mkdir()
    (tmp_path / "coach" / "ready.mp3").write_bytes(b"recorded")
    coordinator, backend, deliveries = _coordinator(clips=ClipLibrary(tmp_path, voice="coach"))
    await coordinator.play_immediate(SpokenLine("Get ready", category=CueCategory.READY))
    assert backend.started[0][1] == b"recorded"
    assert deliveries[0].source == "clip"


def test_clip_library_falls_back_to_root(tmp_path):
    (tmp_path / "ready.mp3").write_bytes(b"root")
    clips = ClipLibrary(tmp_path, voice="missing")
    assert clips.load("ready") == b"root"
    assert clips.load("rest-announcement") is None
    assert ClipLibrary(None).load("ready") is None


@pytest.mark.asyncio
async def test_adhoc_cues_respect_spacing():
    now = [100.0]
    coordinator, backend, _ = _coordinator(clock=lambda: now[0], adhoc_spacing_seconds=8.0)
    assert await coordinator.play_adhoc(SpokenLine("one", audio=b"1")) is True
    now[0] += 3
    assert await coordinator.play_adhoc(SpokenLine("two", audio=b"2")) is False
    now[0] += 5
    assert await coordinator.play_adhoc(SpokenLine("three", audio=b"3")) is True
    assert [audio for _, audio in backend.started] == [b"1", b"3"]


@pytest.mark.asyncio
async def test_adhoc_while_disabled_does_not_start_spacing_window():
    now = [100.0]
    coordinator, backend, _ = _coordinator(clock=lambda: now[0], adhoc_spacing_seconds=8.0)
    coordinator.set_enabled(False)
    assert await coordinator.play_adhoc(SpokenLine("muted", audio=b"0")) is False
    now[0] += 1
    coordinator.set_enabled(True)
    assert await coordinator.play_adhoc(SpokenLine("back", audio=b"1")) is True
    assert [audio for _, audio in backend.started] == [b"1"]


@pytest.mark.asyncio
async def test_keyed_line_plays_prepared_audio():
    synth = FakeSynthesizer()
    coordinator, backend, deliveries = _coordinator(synth=synth)
    key = CueKey("jacks", 0, CueCategory.READY)
    assert await coordinator.cache.prepare_line(key, "Get ready!") is True
    assert synth.calls == ["Get ready!"]

    await coordinator.play_immediate(SpokenLine("Get ready!", key=key))
    assert synth.calls == ["Get ready!"]
    assert backend.started[0][1] == b"mp3:Get ready!"
    assert deliveries[0].source == "cache"


@pytest.mark.asyncio
async def test_disabled_voice_plays_nothing():
    coordinator, backend, _ = _coordinator()
    playing = await coordinator.play_immediate(SpokenLine("one", audio=b"1"))
    coordinator.set_enabled(False)
    assert playing.active is False
    assert await coordinator.play_immediate(SpokenLine("two", audio=b"2")) is None
    assert len(backend.started) == 1
    assert coordinator.status()["enabled"] is False


@pytest.mark.asyncio
async def test_stop_drops_cue_still_resolving():
    gate = asyncio.Event()
    coordinator, backend, _ = _coordinator(text=FakeTextGenerator(gate=gate))
    pending = coordinator.speak(_request())
    await asyncio.sleep(0)
    coordinator.stop()
    gate.set()
    assert await pending is None
    assert backend.started == []


@pytest.mark.asyncio
async def test_ambient_stop_and_restart():
    ambient = FakeAmbient()
    coordinator, _, _ = _coordinator(ambient=ambient)
    coordinator.start_ambient()
    assert ambient.playing
    coordinator.pause_ambient()
    assert not ambient.playing
    coordinator.resume_ambient()
    assert ambient.playing and ambient.starts == 2


@pytest.mark.asyncio
async def test_close_stops_everything():
    ambient = FakeAmbient()
    coordinator, backend, _ = _coordinator(ambient=ambient)
    coordinator.start_ambient()
    handle = await coordinator.play_immediate(SpokenLine("x", audio=b"x"))
    await coordinator.close()
    assert handle.active is False
    assert not ambient.playing
    assert backend.active == {}
