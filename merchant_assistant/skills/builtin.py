"""
Default skills computed directly from registry records.

Hosts with real analytics register their own skills over these; the
defaults keep the engine usable on merchant records alone.
"""

from collections import Counter

from merchant_assistant.interfaces.registry import Entity, IEntityRegistry
from merchant_assistant.schemas.intent import UserIntent
from merchant_assistant.schemas.query import ComparisonTarget, QueryFilters
from merchant_assistant.skills.formatters import RISK_LEVEL_LABELS
from merchant_assistant.skills.registry import SkillInput, SkillRegistry
from merchant_assistant.skills.risk_scan import scan_risk_factors

FACTOR_ADVICE = {
    "low_collection": "核查租金逾期情况，制定分期缴纳计划",
    "low_operational": "分析营收下滑原因，开展联合营销活动",
    "low_customer_review": "梳理差评原因，加强服务培训",
    "low_efficiency": "优化商品结构和陈列，提升坪效",
    "low_anti_risk": "建立经营预警机制，储备应急资金",
    "high_rent_ratio": "评估租金减免或调整方案",
    "health_declining": "全面评估商户状况，定期跟进改善进度",
    "risk_level": "列入重点帮扶名单，安排专人跟进",
}

PERIOD_LABELS = {
    "current_day": "今日",
    "current_week": "本周",
    "current_month": "本月",
    "last_week": "上周",
    "last_month": "上月",
    "last_3_months": "近三个月",
    "this_year": "今年",
    "last_year": "去年",
}


def status_skill(skill_input: SkillInput) -> dict:
    entity = skill_input.entity
    if entity is None:
        return {"summary": "未指定商户"}
    return {
        "summary": f"{entity.category or '商户'}，位于{entity.floor or '未知楼层'}",
        "totalScore": entity.total_score,
        "riskLevel": entity.risk_level or "none",
    }


def diagnosis_skill(skill_input: SkillInput) -> dict:
    factors = scan_risk_factors(skill_input.entity)
    if not factors:
        return {"summary": "未发现明显风险", "riskLevel": (skill_input.entity and skill_input.entity.risk_level) or "none"}
    return {
        "summary": f"发现 {len(factors)} 项风险",
        "riskLevel": (skill_input.entity and skill_input.entity.risk_level) or "medium",
        "risks": [f"{f.label}（{'高' if f.severity == 'high' else '中'}）" for f in factors],
        "factorCodes": [f.code for f in factors],
    }


def recommendation_skill(skill_input: SkillInput) -> dict:
    factors = scan_risk_factors(skill_input.entity)
    advice = list(dict.fromkeys(FACTOR_ADVICE[f.code] for f in factors if f.code in FACTOR_ADVICE))
    if not advice:
        advice = ["保持现有经营策略，按月跟踪健康度"]
    return {"summary": "帮扶建议", "recommendations": advice}


def data_skill(skill_input: SkillInput) -> dict:
    entity = skill_input.entity
    if entity is None:
        return {"summary": "未指定商户"}
    data: dict = {"summary": "经营数据"}
    if entity.last_month_revenue is not None:
        data["lastMonthRevenue"] = entity.last_month_revenue
    if entity.rent_to_sales_ratio is not None:
        data["rentToSalesRatio"] = entity.rent_to_sales_ratio
    data.update(entity.metrics)
    return data


def _apply_filters(entities: list[Entity], filters: QueryFilters | None) -> list[Entity]:
    if filters is None:
        return entities
    selected = entities
    if filters.risk_level:
        selected = [e for e in selected if e.risk_level in filters.risk_level]
    if filters.category:
        selected = [e for e in selected if e.category and any(c in e.category for c in filters.category)]
    if filters.floor:
        selected = [e for e in selected if e.floor in filters.floor]
    return selected


def make_aggregation_skill(registry: IEntityRegistry):
    def aggregation_skill(skill_input: SkillInput) -> dict:
        query = skill_input.query
        entities = _apply_filters(registry.get_all(), query.filters if query else None)
        result: dict = {"summary": "统计结果", "count": len(entities)}

        group_by = query.aggregations.group_by if query and query.aggregations else None
        if group_by:
            attr = {"risk_level": "risk_level", "category": "category", "floor": "floor"}.get(group_by, group_by)
            counts = Counter(getattr(e, attr, None) or "未知" for e in entities)
            result["groups"] = dict(counts.most_common())
        return result

    return aggregation_skill


def make_risk_statistics_skill(registry: IEntityRegistry):
    def risk_statistics_skill(skill_input: SkillInput) -> dict:
        counts = Counter(e.risk_level or "none" for e in registry.get_all())
        return {"summary": "风险等级分布", "count": sum(counts.values()), "groups": dict(counts.most_common())}

    return risk_statistics_skill


def make_health_overview_skill(registry: IEntityRegistry):
    def health_overview_skill(skill_input: SkillInput) -> dict:
        scores = [e.total_score for e in registry.get_all() if e.total_score is not None]
        average = round(sum(scores) / len(scores), 1) if scores else None
        return {
            "summary": f"全场平均健康度 {average}" if average is not None else "暂无健康度数据",
            "count": len(scores),
        }

    return health_overview_skill


def _find_by_name(registry: IEntityRegistry, name: str) -> Entity | None:
    for entity in registry.get_all():
        if entity.name == name or name in entity.name or entity.name in name:
            return entity
    return None


def _named_entities(registry: IEntityRegistry, skill_input: SkillInput) -> list[Entity]:
    """Merchants named in the query, in order, falling back to the resolved one."""
    found: dict[str, Entity] = {}
    names = skill_input.query.entities.names if skill_input.query else []
    for name in names:
        if not name or name == "all":
            continue
        entity = _find_by_name(registry, name)
        if entity is not None:
            found.setdefault(entity.id, entity)
    if not found and skill_input.entity is not None:
        found[skill_input.entity.id] = skill_input.entity
    return list(found.values())


def _risk_label(entity: Entity) -> str:
    return RISK_LEVEL_LABELS.get(entity.risk_level or "none", entity.risk_level or "")


def _average_score(entities: list[Entity]) -> float | None:
    scores = [e.total_score for e in entities if e.total_score is not None]
    return round(sum(scores) / len(scores), 1) if scores else None


def _compare_merchants(merchants: list[Entity]) -> dict:
    lines = ["商户对比"]
    for entity in merchants:
        lines.append(f"- {entity.name}: 健康度 {entity.total_score}，{_risk_label(entity)}，{entity.category or '未知业态'}")

    scored = [e for e in merchants if e.total_score is not None]
    if len(scored) >= 2:
        best = max(scored, key=lambda e: e.total_score)
        worst = min(scored, key=lambda e: e.total_score)
        if best.total_score == worst.total_score:
            lines.append("健康度相当")
        else:
            lines.append(f"{best.name}健康度更优（{best.total_score} vs {worst.total_score}）")
    if len({e.risk_level for e in merchants}) > 1:
        lines.append("风险等级不同：" + "，".join(f"{e.name}为{_risk_label(e)}" for e in merchants))
    if len({e.category for e in merchants}) > 1:
        lines.append("业态不同：" + " vs ".join(e.category or "未知" for e in merchants))
    return {"content": "\n".join(lines)}


def _compare_with_peers(current: Entity, peers: list[Entity], label: str) -> dict:
    average = _average_score(peers)
    lines = [f"{current.name}与{label}对比", f"- {current.name}: 健康度 {current.total_score}，{_risk_label(current)}"]
    if average is None or current.total_score is None:
        lines.append(f"暂无可对比的{label}数据")
        return {"content": "\n".join(lines)}

    lines.append(f"- {label}（{len(peers)}家）: 平均健康度 {average}")
    diff = round(current.total_score - average, 1)
    if diff > 10:
        lines.append(f"健康度高于{label} {diff} 分")
    elif diff < -10:
        lines.append(f"健康度低于{label} {abs(diff)} 分")
    else:
        lines.append(f"健康度接近{label}")
    return {"content": "\n".join(lines)}


def make_comparison_skill(registry: IEntityRegistry):
    def comparison_skill(skill_input: SkillInput) -> dict:
        merchants = _named_entities(registry, skill_input)
        if len(merchants) >= 2:
            return _compare_merchants(merchants)
        if not merchants:
            return {"content": "未找到可对比的商户，请提供商户名称"}

        current = merchants[0]
        target = skill_input.query.entities.comparison_target if skill_input.query else None
        match target:
            case ComparisonTarget.SAME_CATEGORY:
                peers = [e for e in registry.get_all() if e.category == current.category and e.id != current.id]
                return _compare_with_peers(current, peers, f"{current.category or '同类'}商户平均")
            case ComparisonTarget.SAME_FLOOR:
                peers = [e for e in registry.get_all() if e.floor == current.floor and e.id != current.id]
                return _compare_with_peers(current, peers, f"{current.floor or '同楼层'}商户平均")
            case _:
                # Period comparisons need the host's history; the registry holds only the current snapshot
                period = {
                    ComparisonTarget.LAST_MONTH: "上月",
                    ComparisonTarget.LAST_WEEK: "上周",
                }.get(target, "上一周期")
                return {
                    "content": (
                        f"{current.name}当前健康度 {current.total_score}，{_risk_label(current)}\n"
                        f"暂无{period}的历史数据，无法计算变化"
                    )
                }

    return comparison_skill


def make_trend_skill(registry: IEntityRegistry):
    def trend_skill(skill_input: SkillInput) -> dict:
        query = skill_input.query
        period = query.entities.time_range.period if query and query.entities.time_range else "last_3_months"
        label = PERIOD_LABELS.get(period, period)

        merchants = _named_entities(registry, skill_input)
        if not merchants:
            average = _average_score(registry.get_all())
            return {"content": f"全场{label}走势\n当前平均健康度 {average}\n暂无历史数据，无法计算变化"}

        lines = []
        for entity in merchants:
            factors = scan_risk_factors(entity)
            direction = "下滑预警" if any(f.code == "health_declining" for f in factors) else "平稳"
            lines.append(f"{entity.name}{label}走势: {direction}，当前健康度 {entity.total_score}")
        return {"content": "\n".join(lines)}

    return trend_skill


def register_default_skills(skills: SkillRegistry, registry: IEntityRegistry) -> SkillRegistry:
    """Register the default skill for every intent without a host skill."""
    defaults = {
        UserIntent.STATUS_QUERY: status_skill,
        UserIntent.DIAGNOSIS: diagnosis_skill,
        UserIntent.RECOMMENDATION: recommendation_skill,
        UserIntent.DATA_QUERY: data_skill,
        UserIntent.AGGREGATION_QUERY: make_aggregation_skill(registry),
        UserIntent.RISK_STATISTICS: make_risk_statistics_skill(registry),
        UserIntent.HEALTH_OVERVIEW: make_health_overview_skill(registry),
        UserIntent.COMPARISON_QUERY: make_comparison_skill(registry),
        UserIntent.TREND_ANALYSIS: make_trend_skill(registry),
    }
    for intent, func in defaults.items():
        if not skills.has(intent):
            skills.register(intent, func)
    return skills
