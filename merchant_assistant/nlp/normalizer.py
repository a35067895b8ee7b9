"""
Text normalization

Canonicalizes user utterances and merchant names so they can be compared,
and extracts keyword candidates (tokens plus 2-/3-grams per script run) for
the reverse keyword match.
"""

import re
import unicodedata
from typing import Iterable

MODAL_PARTICLES = ("呢", "吧", "啊", "呀", "哦", "哈", "嘛", "咯")

_PUNCTUATION_RE = re.compile(r"[，。！？；：“”‘’\"'（）【】《》,.!?;:()\[\]<>、~…·]")
# Particles count only at the end of a clause, so 酒吧 mid-sentence keeps its 吧
_CLAUSE_FINAL_PARTICLE_RE = re.compile(rf"[{''.join(MODAL_PARTICLES)}](?=[\s{_PUNCTUATION_RE.pattern[1:-1]}]|$)")
_WHITESPACE_RE = re.compile(r"\s+")
_DELIMITER_RE = re.compile(r"[\s，。！？；：“”‘’\"'（）【】《》,.!?;:()\[\]<>、~…·的和与跟]+")

# Function words and query vocabulary that never identify a merchant
DEFAULT_STOPWORDS = frozenset(
    {
        "最近", "现在", "当前", "近期", "怎么", "怎么样", "如何", "怎样", "什么", "为什么",
        "有没", "没有", "是不", "是否", "可以", "能否", "需要", "应该", "一下", "看看",
        "查看", "查询", "了解", "告诉", "我们", "你们", "他们", "这个", "那个", "这家",
        "那家", "情况", "状况", "表现", "健康", "评分", "分数", "得分", "风险", "问题",
        "诊断", "检测", "分析", "隐患", "异常", "预警", "危机", "方案", "建议", "措施",
        "推荐", "帮扶", "改善", "提升", "解决", "策略", "营收", "收入", "销售", "客流",
        "满意", "满意度", "租金", "成本", "数据", "指标", "多少", "几个", "几家", "数量",
        "统计", "总共", "有哪", "哪些", "有哪些", "对比", "比较", "相比", "趋势", "走势",
        "变化", "商户", "商家", "店铺", "本月", "上月", "上个", "个月", "今年", "去年",
    }
)


def longest_common_substring(a: str, b: str) -> str:
    """Longest contiguous substring shared by a and b (first one found in a)."""
    if not a or not b:
        return ""
    best_len = 0
    best_end = 0
    prev = [0] * (len(b) + 1)
    for i in range(1, len(a) + 1):
        curr = [0] * (len(b) + 1)
        ai = a[i - 1]
        for j in range(1, len(b) + 1):
            if ai == b[j - 1]:
                curr[j] = prev[j - 1] + 1
                if curr[j] > best_len:
                    best_len = curr[j]
                    best_end = i
        prev = curr
    return a[best_end - best_len : best_end]


def _script_of(char: str) -> str:
    if "一" <= char <= "鿿" or "㐀" <= char <= "䶿":
        return "han"
    if char.isdigit():
        return "digit"
    if char.isalpha():
        return "latin"
    return "other"


class Normalizer:
    """
    Canonical form: clause-final modal particles and punctuation removed, case-folded,
    NFKC width-normalized, whitespace removed.
    """

    def __init__(self, stopwords: Iterable[str] | None = None, extra_stopwords: Iterable[str] = ()):
        base = DEFAULT_STOPWORDS if stopwords is None else frozenset(stopwords)
        self.stopwords = frozenset(base) | frozenset(extra_stopwords)

    def normalize(self, text: str | None) -> str:
        if not text:
            return ""
        normalized = _CLAUSE_FINAL_PARTICLE_RE.sub("", unicodedata.normalize("NFKC", text).strip())
        return self.normalize_name(normalized)

    def normalize_name(self, name: str | None) -> str:
        """Canonical form of a registry name: particles are part of the name."""
        if not name:
            return ""
        normalized = unicodedata.normalize("NFKC", name).casefold().strip()
        normalized = _WHITESPACE_RE.sub("", normalized)
        return _PUNCTUATION_RE.sub("", normalized)

    def tokenize(self, text: str | None) -> list[str]:
        """Split on whitespace, punctuation and connective characters."""
        if not text:
            return []
        cleaned = _CLAUSE_FINAL_PARTICLE_RE.sub(" ", unicodedata.normalize("NFKC", text).strip()).casefold()
        return [token for token in _DELIMITER_RE.split(cleaned) if token]

    @staticmethod
    def script_runs(text: str) -> list[str]:
        """Maximal runs of the same script (Han, Latin letters, digits)."""
        runs: list[str] = []
        current = ""
        current_script = None
        for char in text:
            script = _script_of(char)
            if script == "other":
                if current:
                    runs.append(current)
                current, current_script = "", None
                continue
            if script != current_script and current:
                runs.append(current)
                current = ""
            current += char
            current_script = script
        if current:
            runs.append(current)
        return runs

    @staticmethod
    def ngrams(text: str, sizes: tuple[int, ...] = (2, 3)) -> list[str]:
        grams = []
        for size in sizes:
            grams.extend(text[i : i + size] for i in range(len(text) - size + 1))
        return grams

    def keyword_candidates(self, text: str | None, min_length: int = 2) -> list[str]:
        """
        Keyword candidates in first-seen order: delimiter tokens, then
        2-/3-gram windows over every Han run, with stopwords removed.
        Latin and digit runs are kept whole.
        """
        candidates: list[str] = []
        for token in self.tokenize(text):
            candidates.append(token)
            for run in self.script_runs(token):
                if _script_of(run[0]) == "han":
                    candidates.extend(self.ngrams(run))
                else:
                    candidates.append(run)

        seen: dict[str, None] = {}
        for candidate in candidates:
            if len(candidate) >= min_length and candidate not in self.stopwords:
                seen.setdefault(candidate, None)
        return list(seen)

    @staticmethod
    def strip_suffixes(text: str, suffixes: Iterable[str]) -> str:
        """Remove each suffix once from the end, in the given order."""
        result = text
        for suffix in suffixes:
            if suffix and result.endswith(suffix):
                result = result[: -len(suffix)]
        return result
