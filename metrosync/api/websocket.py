"""WebSocket endpoint for a live metronome session."""

import asyncio
import json
import logging
from dataclasses import asdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from metrosync.analysis.models import TrackAnalysis
from metrosync.api.schemas import BeatMessage, ConfigMessage, SnapshotMessage, ToneResponse, TransportMessage
from metrosync.scheduling.clock import AsyncioTimers, AudioClock, MonotonicClock
from metrosync.scheduling.scheduler import BeatEvent
from metrosync.session import PracticeSession

logger = logging.getLogger(__name__)

router = APIRouter()


class QueueRenderer:
    """Forwards scheduled events to the client, which does the actual audio.

    ``render`` is called from scheduler ticks on the event loop thread, so a
    plain asyncio.Queue is enough.
    """

    def __init__(self, clock: AudioClock) -> None:
        self.clock = clock
        self.queue: asyncio.Queue = asyncio.Queue()

    def render(self, event: BeatEvent) -> None:
        self.queue.put_nowait(BeatMessage(
            time=event.time,
            delay=event.time - self.clock.now(),
            beat_in_bar=event.beat_in_bar,
            total_beats=event.total_beats,
            accent=event.accent,
            subdivision=event.subdivision,
            sub_index=event.sub_index,
            sound_type=event.sound_type.value,
            volume=event.volume,
            tone=ToneResponse(**asdict(event.tone)),
        ).model_dump())


def snapshot_message(session: PracticeSession) -> dict:
    snap = session.snapshot()
    data = asdict(snap)
    return SnapshotMessage(**data).model_dump()


def handle_command(session: PracticeSession, message: dict) -> dict | None:
    """Apply one client command; returns an optional direct reply."""
    kind = message.get("type")
    if kind == "start":
        if not session.scheduler.running:
            session.toggle_metronome()
    elif kind == "stop":
        session.stop()
        session.scheduler.stop()
    elif kind == "config":
        changes = {k: v for k, v in message.items() if k != "type"}
        session.update_config(**changes)
    elif kind == "track":
        session.attach_analysis(TrackAnalysis(
            duration=float(message["duration"]),
            bpm=message.get("bpm"),
            first_onset=float(message.get("first_onset", 0.0)),
            beats_per_bar=session.config.beats_per_bar,
        ), name=message.get("name"))
    elif kind == "remove_track":
        session.remove_track()
    elif kind == "play":
        session.play()
    elif kind == "pause":
        session.pause()
    elif kind == "seek":
        session.seek(float(message["position"]))
    elif kind == "nudge":
        session.nudge_phase(int(message.get("direction", 1)))
    elif kind == "loop":
        session.set_loop(float(message["start"]), float(message["end"]))
    elif kind == "clear_loop":
        session.clear_loop()
    elif kind == "tap":
        session.tap()
    elif kind == "snapshot":
        return snapshot_message(session)
    else:
        raise ValueError(f"Unknown message type: {kind!r}")
    return None


@router.websocket("/ws/metronome")
async def metronome_session(websocket: WebSocket):
    """Live metronome via WebSocket.

    Protocol:
    - Client sends JSON commands: {"type": "start" | "stop" | "config" |
      "track" | "remove_track" | "play" | "pause" | "seek" | "nudge" |
      "loop" | "clear_loop" | "tap" | "snapshot", ...}
    - Server sends JSON messages:
      - {"type": "beat", "time": T, "delay": D, ...} for every scheduled click
      - {"type": "config", "changed": {...}} after settings change
      - {"type": "snapshot", ...} on request
      - {"type": "transport", "event": "loop" | "ended", "position": P}
        when playback wraps to the loop start or reaches the end
      - {"type": "error", "message": "..."} for rejected commands,
        including malformed JSON
    """
    await websocket.accept()

    clock = MonotonicClock()
    renderer = QueueRenderer(clock)
    session = PracticeSession(clock=clock, timers=AsyncioTimers(), renderer=renderer)
    session.subscribe(lambda changed: renderer.queue.put_nowait(
        ConfigMessage(changed=_jsonable(changed)).model_dump()
    ))
    session.on_transport(lambda event, position: renderer.queue.put_nowait(
        TransportMessage(event=event, position=position).model_dump()
    ))

    async def _sender():
        while True:
            message = await renderer.queue.get()
            await websocket.send_json(message)

    sender = asyncio.create_task(_sender())
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
                if not isinstance(message, dict):
                    raise ValueError("Message must be a JSON object")
                reply = handle_command(session, message)
            except (ValidationError, ValueError, KeyError, TypeError) as e:
                # json.JSONDecodeError is a ValueError
                renderer.queue.put_nowait({"type": "error", "message": str(e)})
                continue
            if reply is not None:
                renderer.queue.put_nowait(reply)
    except WebSocketDisconnect:
        pass
    finally:
        session.stop()
        session.scheduler.stop()
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("WebSocket sender failed")


def _jsonable(changed: dict) -> dict:
    return {k: getattr(v, "value", v) for k, v in changed.items()}
