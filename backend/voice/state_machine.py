"""
Live session state machine with speaking/listening transitions
"""
from enum import Enum
from typing import Callable, Dict, Optional
import logging
import asyncio
from datetime import datetime

logger = logging.getLogger(__name__)


class LiveState(Enum):
    """Live voice session states"""
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    SPEAKING = "speaking"
    CLOSED = "closed"


class VoiceStateMachine:
    """
    Tracks the state of one live session and notifies listeners on change
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.state = LiveState.IDLE
        self.previous_state = LiveState.IDLE
        self.state_changed_at = datetime.now()
        self._state_callbacks: Dict[LiveState, list] = {
            state: [] for state in LiveState
        }
        self._transition_callbacks = []

    async def transition_to(
        self,
        new_state: LiveState,
        metadata: Optional[dict] = None
    ) -> bool:
        """
        Transition to a new state

        Args:
            new_state: Target state
            metadata: Optional metadata about the transition

        Returns:
            True if transition was successful
        """
        if not self._is_valid_transition(self.state, new_state):
            logger.warning(
                f"[{self.session_id}] Invalid transition: "
                f"{self.state.value} -> {new_state.value}"
            )
            return False

        if new_state == self.state:
            return True

        old_state = self.state
        self.previous_state = old_state
        self.state = new_state
        self.state_changed_at = datetime.now()

        logger.info(
            f"[{self.session_id}] State transition: "
            f"{old_state.value} -> {new_state.value}"
        )

        await self._execute_callbacks(old_state, new_state, metadata or {})

        return True

    def _is_valid_transition(
        self,
        from_state: LiveState,
        to_state: LiveState
    ) -> bool:
        """
        Check if a state transition is valid

        Valid transitions:
        - IDLE -> CONNECTING (user pressed "start talking")
        - CONNECTING -> ACTIVE (transport open)
        - ACTIVE -> SPEAKING (first agent audio fragment)
        - SPEAKING -> ACTIVE (playback drained or barge-in)
        - any -> CLOSED (stop, remote close or transport error)
        """
        valid_transitions = {
            LiveState.IDLE: [LiveState.CONNECTING, LiveState.CLOSED],
            LiveState.CONNECTING: [LiveState.ACTIVE, LiveState.CLOSED],
            LiveState.ACTIVE: [LiveState.SPEAKING, LiveState.CLOSED],
            LiveState.SPEAKING: [LiveState.ACTIVE, LiveState.CLOSED],
            LiveState.CLOSED: [],
        }

        # Allow same-state transitions for idempotency
        if from_state == to_state:
            return True

        return to_state in valid_transitions.get(from_state, [])

    async def _execute_callbacks(
        self,
        old_state: LiveState,
        new_state: LiveState,
        metadata: dict
    ) -> None:
        """Execute registered callbacks for state transitions"""
        callbacks = self._state_callbacks.get(new_state, []) + self._transition_callbacks
        for callback in callbacks:
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(self.session_id, old_state, new_state, metadata)
                else:
                    callback(self.session_id, old_state, new_state, metadata)
            except Exception as e:
                logger.error(
                    f"[{self.session_id}] Error in state callback: {e}",
                    exc_info=True
                )

    def on_state_enter(self, state: LiveState, callback: Callable) -> None:
        """
        Register a callback for when entering a specific state

        Args:
            state: State to watch
            callback: Callback function(session_id, old_state, new_state, metadata)
        """
        self._state_callbacks[state].append(callback)

    def on_transition(self, callback: Callable) -> None:
        """
        Register a callback for any state transition

        Args:
            callback: Callback function(session_id, old_state, new_state, metadata)
        """
        self._transition_callbacks.append(callback)

    def get_state(self) -> LiveState:
        """Get current state"""
        return self.state

    def get_state_duration_ms(self) -> int:
        """Get duration in current state in milliseconds"""
        return int((datetime.now() - self.state_changed_at).total_seconds() * 1000)

    def to_dict(self) -> dict:
        """Convert state machine to dictionary"""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "previous_state": self.previous_state.value,
            "state_duration_ms": self.get_state_duration_ms(),
        }
