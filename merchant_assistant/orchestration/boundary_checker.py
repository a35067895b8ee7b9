"""
Capability boundaries

The assistant only reads and analyses. Requests to change data, run bulk
operations, reveal sensitive records or administer the system are declined
with a pointer to the right channel.
"""

from dataclasses import dataclass

MODIFICATION_KEYWORDS = ("修改", "删除", "更新", "设置为", "调整为", "改成", "改为")
# "所有"/"全部" are left out: they are ordinary aggregation phrasing
BATCH_KEYWORDS = ("批量", "一键")
SENSITIVE_KEYWORDS = ("银行", "账号", "密码", "身份证", "合同", "协议")
ADMIN_KEYWORDS = ("权限", "用户管理", "系统设置", "数据库")

PREDICTION_KEYWORDS = ("预测", "未来", "明年", "下个月会", "趋势会")
PROFESSIONAL_KEYWORDS = ("法律", "合规", "税务", "财务建议", "投资")


@dataclass(frozen=True)
class BoundaryDecision:
    allowed: bool
    category: str | None = None
    reason: str | None = None
    suggested_action: str | None = None

    def to_message(self) -> str:
        if self.allowed:
            return ""
        return f"{self.reason}。{self.suggested_action}" if self.suggested_action else f"{self.reason}。"


@dataclass(frozen=True)
class UncertaintyDecision:
    needs_human: bool
    reason: str | None = None


class BoundaryChecker:
    def check(self, user_input: str) -> BoundaryDecision:
        text = user_input or ""
        if any(k in text for k in MODIFICATION_KEYWORDS):
            return BoundaryDecision(False, "modification", "我无法直接修改数据", "请前往商户管理页面进行修改，或联系管理员")
        if any(k in text for k in BATCH_KEYWORDS):
            return BoundaryDecision(False, "batch", "批量操作需要人工审核", "请明确具体商户和操作内容")
        if any(k in text for k in SENSITIVE_KEYWORDS):
            return BoundaryDecision(False, "sensitive", "该信息涉及商户隐私", "请联系商户运营经理获取授权")
        if any(k in text for k in ADMIN_KEYWORDS):
            return BoundaryDecision(False, "admin", "系统管理操作需要管理员权限", "请联系系统管理员处理")
        return BoundaryDecision(True)

    def check_uncertainty(self, user_input: str, confidence: float) -> UncertaintyDecision:
        """Whether the question should be handed to a person instead of answered."""
        text = user_input or ""
        if confidence < 0.5:
            return UncertaintyDecision(True, "查询意图不明确，建议重新表述或咨询运营团队")
        if any(k in text for k in PREDICTION_KEYWORDS):
            return UncertaintyDecision(True, "系统无法预测未来，建议基于历史数据分析趋势")
        if any(k in text for k in PROFESSIONAL_KEYWORDS):
            return UncertaintyDecision(True, "此类问题需要专业人士意见，建议咨询法务/财务部门")
        return UncertaintyDecision(False)
