import json

import pytest

from lifemanager.ai.models import (
    QueryIntent,
    QueryType,
    QuickReply,
    TransactionIntent,
    TransactionType,
    TrendDirection,
)
from lifemanager.ai.parser import extract_json, parse_conversational_response, parse_query_result


def test_well_formed_reply_is_extracted_exactly() -> None:
    raw = json.dumps(
        {
            "text": "好的，记一笔午饭35元",
            "intent": {
                "type": "transaction",
                "data": {"transactionType": "expense", "amount": 35, "category": "餐饮", "date": 20513, "note": "午饭"},
            },
            "suggestions": ["确认", "修改金额"],
        },
        ensure_ascii=False,
    )

    parsed = parse_conversational_response(raw)

    assert parsed.text == "好的，记一笔午饭35元"
    assert parsed.intent == TransactionIntent(
        type=TransactionType.EXPENSE,
        amount=35.0,
        category_name="餐饮",
        date=20513,
        note="午饭",
    )
    assert parsed.suggestions == (QuickReply("确认"), QuickReply("修改金额"))


def test_today_expense_query_reply() -> None:
    raw = '{"text":"你今天花了50元","intent":{"type":"query","data":{"queryType":"today_expense"}},"suggestions":["查看明细"]}'

    parsed = parse_conversational_response(raw)

    assert parsed.text == "你今天花了50元"
    assert parsed.intent == QueryIntent(query_type=QueryType.TODAY_EXPENSE)
    assert parsed.suggestions == (QuickReply("查看明细"),)


def test_plain_prose_is_returned_verbatim() -> None:
    parsed = parse_conversational_response("好的，我明白了")

    assert parsed.text == "好的，我明白了"
    assert parsed.intent is None
    assert parsed.suggestions == ()


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "}{",
        "{not json}",
        '{"text": "unterminated"',
        "prefix { broken: [1, 2 } suffix",
        "[1, 2, 3]",
        "{" * 5000 + "}" * 5000,
    ],
)
def test_malformed_replies_degrade_to_raw_text(raw) -> None:
    parsed = parse_conversational_response(raw)

    assert parsed.text == raw
    assert parsed.intent is None
    assert parsed.suggestions == ()


def test_fenced_json_with_surrounding_prose_is_decoded() -> None:
    raw = '好的！\n```json\n{"text": "已记录", "intent": null, "suggestions": null}\n```\n还有别的吗'

    parsed = parse_conversational_response(raw)

    assert parsed.text == "已记录"
    assert parsed.intent is None
    assert parsed.suggestions == ()


def test_trailing_brace_in_prose_breaks_the_slice() -> None:
    # First-{ to last-} slicing is not balance aware.
    raw = '{"text": "ok", "intent": null} 备注：{见上}'

    parsed = parse_conversational_response(raw)

    assert parsed.text == raw
    assert parsed.intent is None


def test_missing_or_non_string_text_falls_back_to_raw() -> None:
    raw = '{"text": 42, "suggestions": ["a"]}'

    parsed = parse_conversational_response(raw)

    assert parsed.text == raw
    assert parsed.suggestions == (QuickReply("a"),)


@pytest.mark.parametrize(
    "intent",
    [
        None,
        "transaction",
        {"type": "chat", "data": {}},
        {"type": "none"},
        {"type": "unknown", "data": {"amount": 1}},
        {"data": {"amount": 1}},
        {"type": 7},
    ],
)
def test_unrecognized_intents_become_chat_only(intent) -> None:
    raw = json.dumps({"text": "hi", "intent": intent})

    parsed = parse_conversational_response(raw)

    assert parsed.text == "hi"
    assert parsed.intent is None


def test_intent_with_non_object_data_uses_defaults() -> None:
    parsed = parse_conversational_response('{"text": "记账", "intent": {"type": "transaction", "data": "35元"}}')

    assert parsed.intent == TransactionIntent()


def test_non_string_suggestions_are_dropped() -> None:
    parsed = parse_conversational_response('{"text": "hi", "suggestions": ["好", 3, null, "不用了"]}')

    assert [reply.text for reply in parsed.suggestions] == ["好", "不用了"]


def test_suggestions_must_be_a_list() -> None:
    parsed = parse_conversational_response('{"text": "hi", "suggestions": "好"}')

    assert parsed.suggestions == ()


def test_extract_json_slices_first_to_last_brace() -> None:
    assert extract_json('abc {"a": {"b": 1}} xyz') == '{"a": {"b": 1}}'
    assert extract_json("no braces") == "no braces"
    assert extract_json("} before {") == "} before {"


def test_query_result_is_decoded() -> None:
    raw = """
    结果如下：
    {
      "success": true,
      "queryType": "expense",
      "summary": "本月支出比上月增加12%",
      "details": [
        {"label": "本月支出", "value": 1234.5, "change": 12, "trend": "UP"},
        {"label": "餐饮", "value": "¥456.00", "trend": "sideways"},
        "bogus"
      ],
      "suggestions": ["减少外卖"]
    }
    """

    result = parse_query_result(raw)

    assert result.success is True
    assert result.query_type == "expense"
    assert result.summary == "本月支出比上月增加12%"
    assert len(result.details) == 2
    assert result.details[0].value == "1234.5"
    assert result.details[0].change == 12.0
    assert result.details[0].trend == TrendDirection.UP
    assert result.details[1].change is None
    assert result.details[1].trend is None
    assert result.suggestions == ("减少外卖",)


def test_query_result_defaults_success_to_true() -> None:
    result = parse_query_result('{"summary": "ok"}')

    assert result.success is True
    assert result.query_type == ""
    assert result.details == ()


def test_undecodable_query_result_reports_failure() -> None:
    result = parse_query_result("抱歉，我无法回答")

    assert result.success is False
    assert result.summary.startswith("解析失败")
    assert result.details == ()
