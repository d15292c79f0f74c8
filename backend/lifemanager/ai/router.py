"""FastAPI router for the conversational assistant and confirmed transaction commits."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from lifemanager.ai.assistant import AssistantNotConfiguredError, ConversationalAssistant
from lifemanager.ai.deepseek_client import DeepSeekClient, ModelClientError, ModelRequestError
from lifemanager.ai.models import (
    AddTransactionResult,
    AIMode,
    ChatMessage,
    DataQueryResult,
    DuplicateType,
    TransactionType,
    intent_to_dict,
)
from lifemanager.ai.session import ConversationBusyError, SessionRegistry
from lifemanager.auth import get_current_user_id
from lifemanager.config import settings
from lifemanager.database import get_db_connection
from lifemanager.services.dates import MAX_EPOCH_DAY, MIN_EPOCH_DAY, epoch_day_to_date
from lifemanager.services.transactions_service import (
    add_transaction_with_duplicate_check,
    check_for_duplicates,
)

router = APIRouter(prefix="/ai", tags=["ai"])

sessions = SessionRegistry()

RETRY_MESSAGE = "AI assistant request failed. Please try again."


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)


class QueryRequest(BaseModel):
    query: str = Field(min_length=1, max_length=2000)


class ModeRequest(BaseModel):
    mode: AIMode


class TransactionCommitRequest(BaseModel):
    """Accepts the `data` of a transaction intent as-is, plus commit options."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["income", "expense"] = "expense"
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    # Either an ISO date or the epoch-day number carried by the intent as `date`.
    occurred_on: date | None = None
    epoch_day: int | None = Field(default=None, alias="date", ge=MIN_EPOCH_DAY, le=MAX_EPOCH_DAY)
    category_id: UUID | None = None
    category_name: str | None = Field(default=None, max_length=80)
    note: str | None = None
    force: bool = False


class ChatMessageResponse(BaseModel):
    id: str
    role: str
    content: str
    intent: dict[str, Any] | None = None
    suggestions: list[str] = Field(default_factory=list)
    timestamp_ms: int


class ConversationResponse(BaseModel):
    session_id: str
    mode: str
    is_processing: bool
    messages: list[ChatMessageResponse]


class QueryDetailResponse(BaseModel):
    label: str
    value: str
    change: float | None = None
    trend: str | None = None


class DataQueryResponse(BaseModel):
    success: bool
    query_type: str
    summary: str
    details: list[QueryDetailResponse] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class AddTransactionResponse(BaseModel):
    success: bool
    transaction_id: str | None = None
    duplicate_type: str
    potential_duplicates: list[dict[str, Any]] = Field(default_factory=list)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value.quantize(Decimal("0.01")))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(key): _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


def _message_response(message: ChatMessage) -> ChatMessageResponse:
    return ChatMessageResponse(
        id=message.id,
        role=message.role.value,
        content=message.content,
        intent=intent_to_dict(message.intent),
        suggestions=[reply.text for reply in message.suggestions],
        timestamp_ms=message.timestamp_ms,
    )


def _query_response(result: DataQueryResult) -> DataQueryResponse:
    return DataQueryResponse(
        success=result.success,
        query_type=result.query_type,
        summary=result.summary,
        details=[
            QueryDetailResponse(
                label=detail.label,
                value=detail.value,
                change=detail.change,
                trend=detail.trend.value if detail.trend else None,
            )
            for detail in result.details
        ],
        suggestions=list(result.suggestions),
    )


def _add_result_response(result: AddTransactionResult) -> AddTransactionResponse:
    return AddTransactionResponse(
        success=result.success,
        transaction_id=str(result.transaction_id) if result.transaction_id else None,
        duplicate_type=result.duplicate_type.value,
        potential_duplicates=[_to_jsonable(asdict(record)) for record in result.potential_duplicates],
    )


def _get_assistant() -> ConversationalAssistant:
    client = None
    if settings.is_assistant_configured():
        client = DeepSeekClient(
            api_key=settings.deepseek_api_key,
            model=settings.deepseek_model,
            base_url=settings.deepseek_base_url,
        )
    return ConversationalAssistant(
        client,
        window_size=settings.prompt_window_size,
        chat_temperature=settings.chat_temperature,
        chat_max_tokens=settings.chat_max_tokens,
        query_temperature=settings.query_temperature,
        query_max_tokens=settings.query_max_tokens,
    )


def _raise_upstream(exc: Exception) -> NoReturn:
    if isinstance(exc, AssistantNotConfiguredError):
        raise HTTPException(
            status_code=503,
            detail="AI assistant is unavailable because DEEPSEEK_API_KEY is not configured.",
        ) from exc
    if isinstance(exc, ModelRequestError) and exc.status_code == 429:
        raise HTTPException(
            status_code=503,
            detail="AI assistant is rate-limited right now. Try again shortly.",
        ) from exc
    raise HTTPException(status_code=502, detail=RETRY_MESSAGE) from exc


def _resolve_commit_date(payload: TransactionCommitRequest) -> date:
    if payload.occurred_on is not None:
        return payload.occurred_on
    if payload.epoch_day is not None:
        return epoch_day_to_date(payload.epoch_day)
    raise HTTPException(status_code=422, detail="Provide occurred_on or epoch_day")


@router.get("/welcome", response_model=ChatMessageResponse)
async def ai_welcome(
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> ChatMessageResponse:
    message = await _get_assistant().get_welcome_message(connection, user_id)
    return _message_response(message)


@router.post("/chat", response_model=ChatMessageResponse)
async def ai_chat(
    payload: ChatRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> ChatMessageResponse:
    """
    Send one user message and return the assistant reply.

    Example response:
    {
      "role": "assistant",
      "content": "好的，帮你记一笔午饭支出35元",
      "intent": {"type": "transaction", "data": {"type": "expense", "amount": 35.0, "date": 20513, ...}},
      "suggestions": ["确认", "修改金额"]
    }

    A transaction intent is not committed here; the client confirms it by posting
    `intent.data` to `POST /ai/transactions`.
    """
    message_text = payload.message.strip()
    if not message_text:
        raise HTTPException(status_code=422, detail="message must not be empty")

    session = sessions.get(user_id)
    try:
        reply = await _get_assistant().send_message(session, connection, user_id, message_text)
    except ConversationBusyError as exc:
        raise HTTPException(status_code=409, detail="A previous message is still being processed.") from exc
    except (AssistantNotConfiguredError, ModelClientError) as exc:
        _raise_upstream(exc)

    return _message_response(reply)


@router.post("/query", response_model=DataQueryResponse)
async def ai_query(
    payload: QueryRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> DataQueryResponse:
    query_text = payload.query.strip()
    if not query_text:
        raise HTTPException(status_code=422, detail="query must not be empty")

    try:
        result = await _get_assistant().execute_query(connection, user_id, query_text)
    except (AssistantNotConfiguredError, ModelClientError) as exc:
        _raise_upstream(exc)

    return _query_response(result)


@router.get("/conversation", response_model=ConversationResponse)
async def ai_conversation(user_id: UUID = Depends(get_current_user_id)) -> ConversationResponse:
    state = sessions.get(user_id).state
    return ConversationResponse(
        session_id=state.context.session_id,
        mode=state.mode.value,
        is_processing=state.is_processing,
        messages=[_message_response(message) for message in state.context.messages],
    )


@router.delete("/conversation", status_code=204)
async def ai_clear_conversation(user_id: UUID = Depends(get_current_user_id)) -> None:
    _get_assistant().clear_conversation(sessions.get(user_id))


@router.put("/mode", response_model=ConversationResponse)
async def ai_set_mode(
    payload: ModeRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> ConversationResponse:
    _get_assistant().set_mode(sessions.get(user_id), payload.mode)
    return await ai_conversation(user_id)


@router.post("/transactions", response_model=AddTransactionResponse)
async def ai_commit_transaction(
    payload: TransactionCommitRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> AddTransactionResponse:
    """Commit a confirmed transaction intent through the duplicate guard.

    A blocked commit returns 200 with `success=false` and the conflicting
    rows; resubmitting with `force=true` adds it anyway.
    """
    occurred_on = _resolve_commit_date(payload)
    try:
        result = await add_transaction_with_duplicate_check(
            connection,
            user_id,
            occurred_on=occurred_on,
            transaction_type=TransactionType(payload.type),
            amount=payload.amount,
            category_id=payload.category_id,
            category_name=payload.category_name,
            note=payload.note,
            skip_duplicate_check=payload.force,
            window_minutes=settings.duplicate_window_minutes,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return _add_result_response(result)


@router.post("/transactions/duplicates", response_model=AddTransactionResponse)
async def ai_preview_duplicates(
    payload: TransactionCommitRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: Any = Depends(get_db_connection),
) -> AddTransactionResponse:
    occurred_on = _resolve_commit_date(payload)
    try:
        candidates = await check_for_duplicates(
            connection,
            user_id,
            occurred_on=occurred_on,
            transaction_type=TransactionType(payload.type),
            amount=payload.amount,
            category_id=payload.category_id,
            category_name=payload.category_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    preview = AddTransactionResult(
        success=not candidates,
        duplicate_type=DuplicateType.SAME_DAY if candidates else DuplicateType.NONE,
        potential_duplicates=tuple(candidates),
    )
    return _add_result_response(preview)
