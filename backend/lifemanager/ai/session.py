"""Process-scoped assistant session state with copy-on-write updates.

A session owns one `SessionState` value and replaces it wholesale on every
change. Observers either poll `state` or subscribe for each new value.
Nothing here is persisted; a restart starts every user with an empty session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from uuid import UUID

from lifemanager.ai.models import AIMode, ChatMessage, ConversationContext

logger = logging.getLogger(__name__)

StateListener = Callable[["SessionState"], None]


class ConversationBusyError(Exception):
    """Raised when a turn starts while another is still in flight."""


@dataclass(frozen=True)
class SessionState:
    context: ConversationContext = field(default_factory=ConversationContext)
    mode: AIMode = AIMode.ASSISTANT
    is_processing: bool = False


class AssistantSession:
    def __init__(self) -> None:
        self._state = SessionState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def context(self) -> ConversationContext:
        return self._state.context

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register `listener` for future states; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            # Listener errors are logged; the state change itself stands.
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener %r failed", listener)

    def begin_turn(self) -> None:
        # Only one turn per conversation; the flag is checked and set without
        # an intervening await, so this is atomic on the event loop.
        if self._state.is_processing:
            raise ConversationBusyError("A message is already being processed")
        self._publish(replace(self._state, is_processing=True))

    def end_turn(self) -> None:
        self._publish(replace(self._state, is_processing=False))

    def append(self, message: ChatMessage) -> ConversationContext:
        context = self._state.context.append(message)
        self._publish(replace(self._state, context=context))
        return context

    def clear(self) -> None:
        self._publish(replace(self._state, context=self._state.context.clear()))
        logger.info("Conversation cleared")

    def set_mode(self, mode: AIMode) -> None:
        self._publish(replace(self._state, mode=mode))
        logger.info("Assistant mode set to %s", mode.value)


class SessionRegistry:
    """Maps user ids to their live session for the lifetime of the process."""

    def __init__(self) -> None:
        self._sessions: dict[UUID, AssistantSession] = {}

    def get(self, user_id: UUID) -> AssistantSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = AssistantSession()
            self._sessions[user_id] = session
        return session

    def reset(self) -> None:
        self._sessions.clear()
