"""Prompt assembly for the conversational assistant and the data-query path."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from lifemanager.ai.models import ChatRole, ConversationContext
from lifemanager.ai.schema import chat_response_format, query_response_format
from lifemanager.services.dates import date_to_epoch_day
from lifemanager.services.snapshot_service import BudgetUsage, DataSnapshot, QuerySnapshot

DEFAULT_WINDOW_SIZE = 10

PERSONA = """
你是"小管家"，一个智能生活助理。你的特点是：
- 亲切友好，像朋友一样聊天
- 专业高效，能准确理解用户意图
- 主动贴心，适时给出建议
""".strip()

CAPABILITIES = """
你可以帮助用户：
1. 记账 - 记录收入支出
2. 待办 - 管理任务和日程
3. 习惯 - 追踪习惯打卡
4. 目标 - 管理个人目标
5. 查询 - 查询财务、习惯等数据
6. 建议 - 给出个性化建议
""".strip()

CONVERSATION_RULES = """
对话规则：
1. 如果用户要执行操作（记账、添加待办等），提取关键信息并确认
2. 如果信息不完整，友好地询问补充
3. 对于查询请求，直接回答并可附带建议
4. 保持对话流畅自然，适当使用表情符号
""".strip()

_ROLE_LABELS = {
    ChatRole.USER: "user",
    ChatRole.ASSISTANT: "assistant",
    ChatRole.SYSTEM: "system",
}


@dataclass(frozen=True)
class PromptPayload:
    messages: list[dict[str, str]]
    temperature: float
    max_tokens: int


def _money(value: Decimal) -> str:
    return f"¥{value:.2f}"


def _budget_percent(usage: BudgetUsage) -> str:
    percent = usage.percent
    return "--" if percent is None else f"{percent}%"


def render_data_snapshot(snapshot: DataSnapshot) -> str:
    budget_line = ", ".join(
        f"{usage.name}: {_budget_percent(usage)}" for usage in snapshot.budget_usage
    )
    lines = [
        "【用户数据概览】",
        f"- 本月收入: {_money(snapshot.month_income)}",
        f"- 本月支出: {_money(snapshot.month_expense)}",
        f"- 今日待办: {snapshot.pending_todo_count}项",
        f"- 习惯未打卡: {snapshot.habit_unchecked}/{snapshot.habit_total}个",
        f"- 活跃目标: {snapshot.active_goal_count}个",
        f"- 预算使用: {budget_line or '无'}",
        f"- 可用分类: {'、'.join(snapshot.category_names) or '无'}",
    ]
    return "\n".join(lines)


def build_system_prompt(snapshot: DataSnapshot, today: date) -> str:
    """System instruction with today's date, the data snapshot and the reply contract."""
    date_line = (
        f"今天是{today.isoformat()}（星期{today.isoweekday()}），"
        f"epochDay={date_to_epoch_day(today)}"
    )
    return "\n\n".join(
        [
            PERSONA,
            date_line,
            render_data_snapshot(snapshot),
            CAPABILITIES,
            CONVERSATION_RULES,
            chat_response_format(),
        ]
    )


def build_chat_payload(
    history: ConversationContext,
    user_message: str,
    snapshot: DataSnapshot,
    *,
    today: date,
    window_size: int = DEFAULT_WINDOW_SIZE,
    temperature: float = 0.5,
    max_tokens: int = 1000,
) -> PromptPayload:
    """Assemble system prompt, bounded prior turns, then the current message.

    `history` must not yet contain `user_message`; the window counts the
    current message, so at most `window_size - 1` prior turns are included.
    """
    messages = [{"role": "system", "content": build_system_prompt(snapshot, today)}]

    for message in history.recent_window(window_size - 1):
        messages.append({"role": _ROLE_LABELS[message.role], "content": message.content})

    messages.append({"role": "user", "content": user_message})

    return PromptPayload(messages=messages, temperature=temperature, max_tokens=max_tokens)


def render_query_snapshot(snapshot: QuerySnapshot) -> str:
    top_categories = "; ".join(
        f"{item.name}: {_money(item.amount)}" for item in snapshot.top_categories
    )
    budgets = "; ".join(
        f"{usage.name}: 已用{_money(usage.spent)}/{usage.total:.2f}" for usage in snapshot.budgets
    )
    habits = "; ".join(f"{item.name}: 本周{item.checked_days}/7天" for item in snapshot.habit_weeks)
    goals = "; ".join(f"{item.title}: {item.percent}%" for item in snapshot.goals)

    lines = [
        "【详细数据】",
        f"今日: 收入{_money(snapshot.today_income)}, 支出{_money(snapshot.today_expense)}",
        (
            f"本月: 收入{_money(snapshot.month_income)}, 支出{_money(snapshot.month_expense)}, "
            f"结余{_money(snapshot.month_balance)}"
        ),
        f"上月: 收入{_money(snapshot.last_month_income)}, 支出{_money(snapshot.last_month_expense)}",
        f"分类消费TOP5: {top_categories}",
        f"预算情况: {budgets}",
        f"习惯打卡: {habits}",
        f"目标进度: {goals}",
    ]
    return "\n".join(lines)


def build_query_payload(
    query: str,
    snapshot: QuerySnapshot,
    *,
    temperature: float = 0.3,
    max_tokens: int = 500,
) -> PromptPayload:
    prompt = "\n\n".join(
        [
            "根据用户查询和数据，生成查询结果。",
            f"用户查询：{query}",
            render_query_snapshot(snapshot),
            query_response_format(),
        ]
    )
    return PromptPayload(
        messages=[{"role": "user", "content": prompt}],
        temperature=temperature,
        max_tokens=max_tokens,
    )
