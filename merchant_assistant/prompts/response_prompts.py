import json
from typing import Any


def get_chat_system_prompt() -> str:
    return (
        "你是商场运营助手，帮助运营人员了解商户经营状况、识别风险并制定帮扶方案。"
        "回答简洁专业，使用中文。不知道的数据不要编造。"
    )


def build_chat_messages(
    user_input: str,
    entity_name: str | None = None,
    context_summary: str | None = None,
    recent_messages: list[dict[str, str]] | None = None,
) -> list[dict[str, str]]:
    """Messages for the free-form llm strategy."""
    system = get_chat_system_prompt()
    if context_summary:
        system += f"\n\n对话上下文：{context_summary}"
    if entity_name:
        system += f"\n当前讨论的商户：{entity_name}"

    messages: list[dict[str, str]] = [{"role": "system", "content": system}]
    for message in recent_messages or []:
        if message.get("role") in ("user", "assistant") and message.get("content"):
            messages.append({"role": message["role"], "content": message["content"]})
    messages.append({"role": "user", "content": user_input})
    return messages


def build_recommendation_messages(
    user_input: str,
    entity: dict[str, Any],
    diagnosis: Any,
    cases: list[Any],
) -> list[dict[str, str]]:
    """
    Messages asking the LLM for a narrative recommendation grounded in the
    merchant's diagnosis and similar historical cases.
    """
    system = (
        get_chat_system_prompt()
        + "\n请基于给出的商户数据、诊断结果和相似案例，给出3条以内可执行的帮扶建议，每条说明依据。"
    )
    payload = {
        "merchant": entity,
        "diagnosis": diagnosis,
        "similarCases": cases[:3],
    }
    user = f"{user_input}\n\n参考资料：\n{json.dumps(payload, ensure_ascii=False, default=str, indent=2)}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]
