"""
Live voice session management
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, Optional

from .audio_utils import AudioFormat, float32_to_pcm16
from .context import VisualContext
from .exceptions import PermissionDenied, SessionAlreadyActive
from .microphone import MicrophoneSource
from .playback import AudioChunk, AudioOutput, PlaybackHandle, PlaybackQueue
from .prompts import (
    Persona,
    build_priming_text,
    build_system_prompt,
    truncate_context,
    voice_for,
)
from .state_machine import LiveState, VoiceStateMachine
from .transcript import Speaker, TranscriptLog
from .transport import (
    LiveConfig,
    LiveEvent,
    LiveEventData,
    LiveTransport,
    MediaFrame,
    TextFrame,
    TransportObserver,
)

logger = logging.getLogger(__name__)

# Speaking -> active settle time; callers tune it between 0.5 and 0.8 s
DEFAULT_SETTLE_DELAY = 0.5

RUNNING_STATES = (LiveState.CONNECTING, LiveState.ACTIVE, LiveState.SPEAKING)


class SessionCallbacks:
    """
    Caller hooks, each optional and either sync or async

    on_state_change(state), on_transcript(transcript_log), on_error(error)
    """

    def __init__(
        self,
        on_state_change: Optional[Callable] = None,
        on_transcript: Optional[Callable] = None,
        on_error: Optional[Callable] = None
    ):
        self.on_state_change = on_state_change
        self.on_transcript = on_transcript
        self.on_error = on_error


async def _invoke(session_id: str, callback: Optional[Callable], *args) -> None:
    if callback is None:
        return
    try:
        if asyncio.iscoroutinefunction(callback):
            await callback(*args)
        else:
            callback(*args)
    except Exception as e:
        logger.error(f"[{session_id}] Error in session callback: {e}", exc_info=True)


class LiveSession(TransportObserver):
    """
    One duplex voice conversation

    Streams microphone blocks out, schedules inbound audio for gapless
    playback, and keeps the live transcript. A session is never reused:
    once stopped every handler becomes a no-op.
    """

    def __init__(
        self,
        role: str,
        context_text: str,
        microphone: MicrophoneSource,
        output: AudioOutput,
        transport: LiveTransport,
        callbacks: Optional[SessionCallbacks] = None,
        visual: Optional[VisualContext] = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clamp_pcm: bool = True,
        model: Optional[str] = None,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.role = Persona(role)
        self.context_text = truncate_context(context_text)
        self.microphone = microphone
        self.output = output
        self.transport = transport
        self.callbacks = callbacks or SessionCallbacks()
        self.visual = visual
        self.settle_delay = settle_delay
        self.clamp_pcm = clamp_pcm
        self.model = model

        self.state_machine = VoiceStateMachine(self.session_id)
        self.playback = PlaybackQueue(output)
        self.transcript = TranscriptLog()

        self.created_at = datetime.now()

        self._stopped = False
        self._connect_task: Optional[asyncio.Task] = None
        self._capture_task: Optional[asyncio.Task] = None
        self._settle_task: Optional[asyncio.Task] = None

        # Metrics
        self.metrics = {
            "blocks_sent": 0,
            "chunks_received": 0,
            "interruptions": 0
        }

        self._setup_state_callbacks()

    def _setup_state_callbacks(self):
        """Forward state changes to the caller"""
        async def on_transition(session_id, old_state, new_state, metadata):
            await _invoke(session_id, self.callbacks.on_state_change, new_state)

        self.state_machine.on_transition(on_transition)

    @property
    def state(self) -> LiveState:
        return self.state_machine.get_state()

    @property
    def output_clock(self) -> float:
        return self.playback.output_clock

    @property
    def active_buffers(self) -> set:
        return self.playback.active_buffers

    def is_active(self) -> bool:
        """False once the session has been stopped or closed remotely"""
        return not self._stopped

    # Lifecycle

    async def start(self) -> "LiveSession":
        """
        Acquire the microphone and begin connecting

        Returns without waiting for the remote handshake; `stop` may be
        called at any point afterwards.

        Raises:
            PermissionDenied: microphone unavailable; the session is closed
            SessionAlreadyActive: the session was already started
        """
        if self._stopped or self.state != LiveState.IDLE:
            raise SessionAlreadyActive(f"Session {self.session_id} cannot be started again")

        await self.state_machine.transition_to(LiveState.CONNECTING)

        try:
            await self.microphone.open()
        except PermissionDenied as e:
            logger.warning(f"[{self.session_id}] Microphone unavailable: {e}")
            await self.stop()
            raise

        try:
            await self.output.open()
        except Exception as e:
            logger.error(f"[{self.session_id}] Could not open audio output: {e}", exc_info=True)
            await self.stop()
            raise

        if self._stopped:
            return self

        self._connect_task = asyncio.create_task(self._connect())
        return self

    async def _connect(self) -> None:
        live_config = LiveConfig(
            system_prompt=build_system_prompt(self.role, self.context_text),
            voice_name=voice_for(self.role),
            transcription_enabled=True,
            model=self.model
        )

        try:
            await self.transport.connect(live_config, self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Could not open transport: {e}")
            await self.on_error(e)

    async def stop(self) -> None:
        """
        Tear everything down; idempotent and never raises

        Closes the transport, drops queued audio, releases the microphone
        and the output device.
        """
        await self._shutdown(close_transport=True)

    async def _shutdown(self, close_transport: bool) -> None:
        if self._stopped:
            return
        self._stopped = True

        logger.info(f"[{self.session_id}] Closing session")

        self._cancel_settle()
        await self._cancel_task(self._connect_task)
        await self._cancel_task(self._capture_task)

        if close_transport:
            try:
                await self.transport.close()
            except Exception as e:
                logger.debug(f"[{self.session_id}] Ignoring transport close error: {e}")

        self.playback.stop_all()

        for resource in (self.microphone, self.output):
            try:
                await resource.close()
            except Exception as e:
                logger.debug(f"[{self.session_id}] Ignoring release error: {e}")

        await self.state_machine.transition_to(LiveState.CLOSED)

        logger.info(
            f"[{self.session_id}] Session metrics: "
            f"blocks_sent={self.metrics['blocks_sent']}, "
            f"chunks_received={self.metrics['chunks_received']}, "
            f"interruptions={self.metrics['interruptions']}"
        )

    # Transport callbacks

    async def on_open(self) -> None:
        if self._stopped:
            return

        await self.state_machine.transition_to(LiveState.ACTIVE)
        self.microphone.start_capture()
        self._capture_task = asyncio.create_task(self._capture_loop())
        self._send_priming()

    async def on_message(self, event: LiveEventData) -> None:
        if self._stopped:
            return

        if event.event_type == LiveEvent.AUDIO:
            await self._handle_audio(event)

        elif event.event_type == LiveEvent.INTERRUPTED:
            await self._handle_interruption()

        elif event.event_type == LiveEvent.INPUT_TRANSCRIPTION:
            await self._handle_transcription(Speaker.USER, event.text)

        elif event.event_type == LiveEvent.OUTPUT_TRANSCRIPTION:
            await self._handle_transcription(Speaker.AGENT, event.text)

        elif event.event_type == LiveEvent.TURN_COMPLETE:
            logger.debug(f"[{self.session_id}] Agent turn complete")

    async def on_error(self, error: Exception) -> None:
        # No reconnect: a broken conversation is not resumed
        if self._stopped:
            return
        logger.error(f"[{self.session_id}] Transport error: {error}")
        await self.stop()
        await _invoke(self.session_id, self.callbacks.on_error, error)

    async def on_close(self, reason: str = "") -> None:
        if self._stopped:
            return
        logger.info(f"[{self.session_id}] Remote closed the session: {reason or 'no reason'}")
        await self._shutdown(close_transport=False)

    # Outbound

    def _send_priming(self) -> None:
        """Send the grounding context, image first when there is one"""
        has_visual = self.visual is not None
        if has_visual:
            self.transport.send(MediaFrame(self.visual.data, self.visual.mime_type))
        self.transport.send(TextFrame(build_priming_text(self.role, self.context_text, has_visual)))

    async def _capture_loop(self) -> None:
        """Pump microphone blocks to the transport as PCM16 frames"""
        try:
            async for block in self.microphone.blocks():
                if self._stopped:
                    break
                pcm = float32_to_pcm16(block, clamp=self.clamp_pcm)
                self.transport.send(MediaFrame(pcm, AudioFormat.INPUT_MIME_TYPE))
                self.metrics["blocks_sent"] += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Error in capture loop: {e}", exc_info=True)
            await self.on_error(e)

    # Inbound

    async def _handle_audio(self, event: LiveEventData) -> None:
        if not event.audio:
            return

        self._cancel_settle()
        if self.state != LiveState.SPEAKING:
            await self.state_machine.transition_to(LiveState.SPEAKING)
        if self._stopped:
            return

        chunk = AudioChunk(event.audio, sample_rate=AudioFormat.OUTPUT_SAMPLE_RATE)
        self.playback.schedule(chunk, self._on_buffer_ended)
        self.metrics["chunks_received"] += 1

    def _on_buffer_ended(self, handle: PlaybackHandle) -> None:
        if self._stopped:
            return
        if not self.playback.release(handle):
            return
        if self.playback.is_idle():
            self._cancel_settle()
            self._settle_task = asyncio.create_task(self._settle())

    async def _settle(self) -> None:
        """Return to listening once playback stayed drained for the settle delay"""
        await asyncio.sleep(self.settle_delay)
        if self._stopped or not self.playback.is_idle():
            return
        if self.state == LiveState.SPEAKING:
            await self.state_machine.transition_to(LiveState.ACTIVE)

    async def _handle_interruption(self) -> None:
        # Barge-in: the user's speech always wins over queued agent audio
        self._cancel_settle()
        dropped = self.playback.interrupt()
        self.metrics["interruptions"] += 1
        logger.info(f"[{self.session_id}] Interrupted, dropped {dropped} queued buffers")

        if self.state == LiveState.SPEAKING:
            await self.state_machine.transition_to(LiveState.ACTIVE)

    async def _handle_transcription(self, speaker: Speaker, text: str) -> None:
        if not text:
            return
        self.transcript.append(speaker, text)
        await _invoke(self.session_id, self.callbacks.on_transcript, self.transcript)

    # Helpers

    def _cancel_settle(self) -> None:
        task, self._settle_task = self._settle_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"[{self.session_id}] Ignoring task error on shutdown: {e}")

    def to_dict(self) -> dict:
        """Convert session to dictionary"""
        return {
            "session_id": self.session_id,
            "role": self.role.value,
            "state": self.state_machine.to_dict(),
            "created_at": self.created_at.isoformat(),
            "is_active": self.is_active(),
            "output_clock": self.output_clock,
            "active_buffers": len(self.active_buffers),
            "transcript": self.transcript.to_list(),
            "metrics": self.metrics
        }


class VoiceSessionManager:
    """
    Manages live sessions, at most one running session per caller
    """

    def __init__(
        self,
        transport_factory: Callable[[], LiveTransport],
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        clamp_pcm: bool = True,
        model: Optional[str] = None
    ):
        self._transport_factory = transport_factory
        self.settle_delay = settle_delay
        self.clamp_pcm = clamp_pcm
        self.model = model
        self._sessions: Dict[str, LiveSession] = {}

    async def start_session(
        self,
        caller_id: str,
        role: str,
        context_text: str,
        microphone: MicrophoneSource,
        output: AudioOutput,
        callbacks: Optional[SessionCallbacks] = None,
        visual: Optional[VisualContext] = None
    ) -> LiveSession:
        """
        Create and start a new live session for a caller

        Args:
            caller_id: Identifies the UI context that owns the session
            role: Persona name (teacher, examiner, colleague, partner)
            context_text: Grounding text, truncated by the session
            microphone: Capture source
            output: Playback device
            callbacks: Optional lifecycle hooks
            visual: Optional document image

        Returns:
            The started session (still connecting)

        Raises:
            SessionAlreadyActive: the caller's previous session is still running
            PermissionDenied: microphone unavailable
        """
        existing = self._sessions.get(caller_id)
        if existing is not None and existing.state in RUNNING_STATES:
            raise SessionAlreadyActive(f"Caller {caller_id} must stop the running session first")

        session = LiveSession(
            role=role,
            context_text=context_text,
            microphone=microphone,
            output=output,
            transport=self._transport_factory(),
            callbacks=callbacks,
            visual=visual,
            settle_delay=self.settle_delay,
            clamp_pcm=self.clamp_pcm,
            model=self.model
        )
        self._sessions[caller_id] = session

        try:
            await session.start()
        except PermissionDenied:
            if self._sessions.get(caller_id) is session:
                del self._sessions[caller_id]
            raise

        logger.info(f"Started live session {session.session_id} for caller {caller_id} (role={role})")
        return session

    def get_session(self, caller_id: str) -> Optional[LiveSession]:
        """Latest session of a caller, possibly already closed"""
        return self._sessions.get(caller_id)

    def get_state(self, caller_id: str) -> LiveState:
        """Caller-facing state; IDLE when nothing is running"""
        session = self._sessions.get(caller_id)
        if session is None or session.state == LiveState.CLOSED:
            return LiveState.IDLE
        return session.state

    async def stop_session(self, caller_id: str) -> Optional[LiveSession]:
        """Stop and forget a caller's session; no-op when there is none"""
        session = self._sessions.pop(caller_id, None)
        if session is not None:
            await session.stop()
            logger.info(f"Stopped live session {session.session_id} for caller {caller_id}")
        return session

    def get_session_count(self) -> int:
        """Get count of running sessions"""
        return sum(1 for s in self._sessions.values() if s.state in RUNNING_STATES)

    async def close_all_sessions(self) -> None:
        """Stop every session"""
        for caller_id in list(self._sessions.keys()):
            await self.stop_session(caller_id)
        logger.info("Closed all live sessions")
