import json
from typing import Any

from merchant_assistant.interfaces.registry import Entity
from merchant_assistant.schemas.intent import UserIntent

RISK_LEVEL_LABELS = {
    "none": "无风险",
    "low": "低风险",
    "medium": "中风险",
    "high": "高风险",
    "critical": "极高风险",
}


def format_skill_output(intent: UserIntent, entity: Entity | None, data: Any) -> str:
    """Render a skill result as user-facing text."""
    if data is None:
        return "暂无相关数据。"
    if isinstance(data, str):
        return data

    # Comparisons span several merchants and carry their own heading
    header = f"【{entity.name}】" if entity and intent != UserIntent.COMPARISON_QUERY else ""

    if isinstance(data, dict):
        if isinstance(data.get("content"), str):
            return f"{header}{data['content']}" if header else data["content"]

        lines = [header] if header else []
        if "summary" in data:
            lines.append(str(data["summary"]))
        if "totalScore" in data:
            lines.append(f"健康度评分: {data['totalScore']}")
        if "riskLevel" in data:
            lines.append(f"风险等级: {RISK_LEVEL_LABELS.get(data['riskLevel'], data['riskLevel'])}")
        for factor in data.get("risks", []) or []:
            lines.append(f"- {factor}")
        for item in data.get("recommendations", []) or []:
            lines.append(f"• {item}")
        if "count" in data:
            lines.append(f"共 {data['count']} 家")
        for group, count in (data.get("groups") or {}).items():
            lines.append(f"- {group}: {count} 家")
        if len(lines) > (1 if header else 0):
            return "\n".join(lines)

    return f"{header}\n{json.dumps(data, ensure_ascii=False, default=str, indent=2)}".strip()
