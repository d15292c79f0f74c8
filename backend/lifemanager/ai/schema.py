"""JSON reply contracts shared by the prompt builder and the response parser.

Both sides import their key names and intent/query vocabularies from here so
the format described to the model and the format we decode cannot drift apart.
"""

from __future__ import annotations

from lifemanager.ai.models import QueryType

TEXT_KEY = "text"
INTENT_KEY = "intent"
SUGGESTIONS_KEY = "suggestions"
INTENT_TYPE_KEY = "type"
INTENT_DATA_KEY = "data"

# Decoded into a typed intent.
ACTIONABLE_INTENT_TYPES = ("transaction", "todo", "habit", "goal", "query")
# Advertised to the model but decoded as a chat-only reply.
PASSIVE_INTENT_TYPES = ("chat", "none")

QUERY_TYPE_VALUES = tuple(item.value for item in QueryType)

INTENT_DATA_FIELDS: dict[str, tuple[str, ...]] = {
    "transaction": ("transactionType", "amount", "category", "date", "note"),
    "todo": ("title", "description", "dueDate", "startTime", "endTime", "priority", "quadrant"),
    "habit": ("habitName", "value"),
    "goal": ("goalName",),
    "query": ("queryType",),
}

QUERY_RESULT_KEYS = ("success", "queryType", "summary", "details", "suggestions")
QUERY_DETAIL_KEYS = ("label", "value", "change", "trend")


def chat_response_format() -> str:
    intent_types = "|".join(ACTIONABLE_INTENT_TYPES + PASSIVE_INTENT_TYPES)
    field_lines = "\n".join(
        f"  - {intent_type}: {', '.join(names)}"
        for intent_type, names in INTENT_DATA_FIELDS.items()
    )
    return (
        "响应格式（JSON）：\n"
        "{\n"
        f'  "{TEXT_KEY}": "回复给用户的文字",\n'
        f'  "{INTENT_KEY}": {{\n'
        f'    "{INTENT_TYPE_KEY}": "{intent_types}",\n'
        f'    "{INTENT_DATA_KEY}": {{...}}\n'
        "  },\n"
        f'  "{SUGGESTIONS_KEY}": ["建议回复1", "建议回复2"]\n'
        "}\n"
        f"{INTENT_KEY} 与 {SUGGESTIONS_KEY} 可以为 null。{INTENT_DATA_KEY} 可用字段：\n"
        f"{field_lines}\n"
        "  transactionType 取 income 或 expense；date 和 dueDate 使用 epochDay 整数；\n"
        f"  queryType 取 {'|'.join(QUERY_TYPE_VALUES)}。\n"
        f"必须只返回一个 JSON 对象，且只包含 {TEXT_KEY}、{INTENT_KEY}、{SUGGESTIONS_KEY} 三个键，不要其他内容。"
    )


def query_response_format() -> str:
    success_key, query_type_key, summary_key, details_key, suggestions_key = QUERY_RESULT_KEYS
    label_key, value_key, change_key, trend_key = QUERY_DETAIL_KEYS
    return (
        "请按以下JSON格式返回：\n"
        "{\n"
        f'  "{success_key}": true,\n'
        f'  "{query_type_key}": "expense|income|budget|habit|goal",\n'
        f'  "{summary_key}": "一句话总结查询结果",\n'
        f'  "{details_key}": [\n'
        f'    {{"{label_key}": "项目名", "{value_key}": "数值/描述", '
        f'"{change_key}": 变化百分比, "{trend_key}": "UP|DOWN|STABLE"}}\n'
        "  ],\n"
        f'  "{suggestions_key}": ["基于数据的建议1", "建议2"]\n'
        "}\n"
        "只返回JSON。"
    )
