"""
Prompts for turning analytic questions into structured queries.
"""

from merchant_assistant.schemas.query import ComparisonTarget, QueryType

# One exemplar per query type
FEW_SHOT_EXAMPLES = """
示例1
输入: 海底捞最近怎么样
输出: {"type": "single_entity", "entities": {"names": ["海底捞"]}, "intents": ["status_query"], "confidence": 0.95}

示例2
输入: 高风险的餐饮商户有多少家
输出: {"type": "aggregation", "entities": {"names": ["all"]}, "intents": ["aggregation_query"], "filters": {"riskLevel": ["high", "critical"], "category": ["餐饮"]}, "aggregations": {"operation": "count"}, "confidence": 0.9}

示例3
输入: 海底捞和小龙坎对比一下营收
输出: {"type": "comparison", "entities": {"names": ["海底捞", "小龙坎"], "comparisonTarget": "entity_vs_entity"}, "intents": ["comparison_query", "data_query"], "confidence": 0.9}

示例4
输入: 星巴克这个月和上个月比怎么样
输出: {"type": "comparison", "entities": {"names": ["星巴克"], "comparisonTarget": "last_month"}, "intents": ["comparison_query", "status_query"], "confidence": 0.85}

示例5
输入: 海底捞近三个月的营收趋势
输出: {"type": "trend_analysis", "entities": {"names": ["海底捞"], "timeRange": {"period": "last_3_months"}}, "intents": ["trend_analysis", "data_query"], "confidence": 0.9}
"""


def get_system_prompt() -> str:
    types = ", ".join(f'"{t.value}"' for t in QueryType)
    targets = ", ".join(f'"{t.value}"' for t in ComparisonTarget)
    prompt = """
你是商场运营助手的查询解析器，把用户的问题解析成结构化查询。

提取规则：
1. entities.names 只填写商户名本身，去掉"和""跟""与"等连接词以及"对比""比较"等动词。
2. 统计全场或一类商户时 names 填 ["all"]。
3. comparisonTarget 只能取以下值之一：{targets}
4. type 只能取以下值之一：{types}
5. type 为 "aggregation" 时必须给出 aggregations.operation（count、sum、avg、max、min 之一）。
6. intents 从 status_query、diagnosis、recommendation、data_query、aggregation_query、risk_statistics、
   health_overview、comparison_query、trend_analysis 中选择。

只返回一个 JSON 对象，不要解释，不要使用 markdown。
{examples}
"""
    return prompt.format(targets=targets, types=types, examples=FEW_SHOT_EXAMPLES)


def build_user_prompt(user_input: str, context_entity_name: str | None = None) -> str:
    prompt = f"输入: {user_input}"
    if context_entity_name:
        prompt = f"当前讨论的商户: {context_entity_name}\n{prompt}"
    return f"{prompt}\n输出:"
