from merchant_assistant.skills.formatters import format_skill_output
from merchant_assistant.skills.registry import SkillFunc, SkillInput, SkillRegistry
from merchant_assistant.skills.risk_scan import RiskFactor, scan_risk_factors

__all__ = [
    "RiskFactor",
    "SkillFunc",
    "SkillInput",
    "SkillRegistry",
    "format_skill_output",
    "scan_risk_factors",
]
