"""Conversational assistant: one turn = snapshot, prompt, model call, parse.

Only model/transport failures propagate to callers. Malformed model output is
absorbed by the parser and returned as a plain chat reply.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from lifemanager.ai.models import (
    AIMode,
    ChatMessage,
    ChatRole,
    DataQueryResult,
    QuickReply,
)
from lifemanager.ai.parser import parse_conversational_response, parse_query_result
from lifemanager.ai.prompt import DEFAULT_WINDOW_SIZE, build_chat_payload, build_query_payload
from lifemanager.ai.session import AssistantSession
from lifemanager.services.snapshot_service import build_data_snapshot, build_query_snapshot

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

WELCOME_SUGGESTIONS = (
    QuickReply("今天花了多少"),
    QuickReply("本月收支情况"),
    QuickReply("记一笔支出"),
    QuickReply("添加待办"),
)


class ModelClient(Protocol):
    async def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
    ) -> str: ...


class AssistantError(Exception):
    """Base exception for assistant failures surfaced to callers."""


class AssistantNotConfiguredError(AssistantError):
    """Raised when no model API key is configured."""


def greeting_for_hour(hour: int) -> str:
    if 5 <= hour <= 11:
        return "早上好"
    if 12 <= hour <= 13:
        return "中午好"
    if 14 <= hour <= 17:
        return "下午好"
    if 18 <= hour <= 22:
        return "晚上好"
    return "夜深了"


def _status_line(today_expense: Decimal, pending_todos: int) -> str:
    parts: list[str] = []
    if today_expense > Decimal("0"):
        parts.append(f"今日已消费¥{today_expense:.2f}")
    if pending_todos > 0:
        parts.append(f"有{pending_todos}项待办")
    return "，".join(parts)


class ConversationalAssistant:
    def __init__(
        self,
        client: ModelClient | None,
        *,
        window_size: int = DEFAULT_WINDOW_SIZE,
        chat_temperature: float = 0.5,
        chat_max_tokens: int = 1000,
        query_temperature: float = 0.3,
        query_max_tokens: int = 500,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.client = client
        self.window_size = window_size
        self.chat_temperature = chat_temperature
        self.chat_max_tokens = chat_max_tokens
        self.query_temperature = query_temperature
        self.query_max_tokens = query_max_tokens
        self.clock = clock

    def _require_client(self) -> ModelClient:
        if self.client is None:
            raise AssistantNotConfiguredError("AI is not configured")
        return self.client

    async def send_message(
        self,
        session: AssistantSession,
        connection: AsyncConnection,
        user_id: UUID,
        text: str,
    ) -> ChatMessage:
        """Run one conversational turn and return the assistant reply.

        The user's message stays in the conversation even if the model call
        fails; the reply is appended only on success.
        """
        message_text = text.strip()
        if not message_text:
            raise ValueError("message must not be empty")

        client = self._require_client()
        session.begin_turn()
        try:
            history = session.context
            session.append(ChatMessage(role=ChatRole.USER, content=message_text))

            today = self.clock().date()
            snapshot = await build_data_snapshot(connection, user_id, today)
            payload = build_chat_payload(
                history,
                message_text,
                snapshot,
                today=today,
                window_size=self.window_size,
                temperature=self.chat_temperature,
                max_tokens=self.chat_max_tokens,
            )

            raw_reply = await client.chat_completion(
                payload.messages,
                temperature=payload.temperature,
                max_tokens=payload.max_tokens,
            )

            parsed = parse_conversational_response(raw_reply)
            reply = ChatMessage(
                role=ChatRole.ASSISTANT,
                content=parsed.text,
                intent=parsed.intent,
                suggestions=parsed.suggestions,
            )
            session.append(reply)
            return reply
        finally:
            session.end_turn()

    async def execute_query(
        self,
        connection: AsyncConnection,
        user_id: UUID,
        query: str,
    ) -> DataQueryResult:
        """Answer a read-only analytical question; does not touch the conversation."""
        query_text = query.strip()
        if not query_text:
            raise ValueError("query must not be empty")

        client = self._require_client()
        snapshot = await build_query_snapshot(connection, user_id, self.clock().date())
        payload = build_query_payload(
            query_text,
            snapshot,
            temperature=self.query_temperature,
            max_tokens=self.query_max_tokens,
        )
        raw_reply = await client.chat_completion(
            payload.messages,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
        )
        return parse_query_result(raw_reply)

    async def get_welcome_message(self, connection: AsyncConnection, user_id: UUID) -> ChatMessage:
        now = self.clock()
        snapshot = await build_data_snapshot(connection, user_id, now.date())

        status = _status_line(snapshot.today_expense, snapshot.pending_todo_count)
        content = f"{greeting_for_hour(now.hour)}！我是小管家，很高兴为你服务。\n"
        if status:
            content += f"{status}。\n"
        content += "你可以告诉我要记账、添加待办，或者问我任何问题~"

        return ChatMessage(role=ChatRole.ASSISTANT, content=content, suggestions=WELCOME_SUGGESTIONS)

    def clear_conversation(self, session: AssistantSession) -> None:
        session.clear()

    def set_mode(self, session: AssistantSession, mode: AIMode) -> None:
        session.set_mode(mode)
