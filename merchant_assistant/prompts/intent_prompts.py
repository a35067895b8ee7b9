import json
from typing import Iterable

from merchant_assistant.schemas.intent import UserIntent

INTENT_DESCRIPTIONS: dict[UserIntent, str] = {
    UserIntent.STATUS_QUERY: "查询商户健康度和基本状况",
    UserIntent.DIAGNOSIS: "诊断商户风险和问题",
    UserIntent.RECOMMENDATION: "推荐帮扶方案和措施",
    UserIntent.DATA_QUERY: "查询具体数据指标",
    UserIntent.AGGREGATION_QUERY: "统计满足条件的商户数量或分布",
    UserIntent.RISK_STATISTICS: "统计全场风险等级分布",
    UserIntent.HEALTH_OVERVIEW: "全场健康度概览",
    UserIntent.COMPARISON_QUERY: "商户之间或不同时期的对比",
    UserIntent.TREND_ANALYSIS: "指标随时间的变化趋势",
    UserIntent.COMPOSITE_QUERY: "一句话中包含多个问题",
    UserIntent.GENERAL_CHAT: "通用对话",
    UserIntent.UNKNOWN: "未知意图",
}


def build_intent_list_text() -> str:
    return "\n".join(f'- "{intent.value}": {description}' for intent, description in INTENT_DESCRIPTIONS.items())


def get_system_prompt() -> str:
    prompt = """
你是商场运营助手的意图识别器。用户可能在一句话中表达多个意图，请全部识别出来。

结合对话上下文理解省略和指代，例如"那它呢"沿用上一轮讨论的商户。

只返回一个 JSON 数组，不要解释，不要使用 markdown：
[{{"intent": "有效意图之一", "confidence": 0.0, "reason": "简短理由"}}]

有效意图：
{intent_text}

无法判断时返回 [{{"intent": "general_chat", "confidence": 0.3, "reason": "..."}}]。
"""
    return prompt.format(intent_text=build_intent_list_text())


def build_user_prompt(
    normalized_query: str,
    entity_names: Iterable[str] = (),
    context_summary: str | None = None,
) -> str:
    """Build the user turn for multi-intent classification."""
    parts = [f"### 用户输入\n{normalized_query}"]

    names = list(entity_names)
    if names:
        parts.append(f"### 已识别商户\n{json.dumps(names, ensure_ascii=False)}")

    if context_summary:
        parts.append(f"### 对话上下文\n{context_summary}")

    return "\n\n".join(parts)
