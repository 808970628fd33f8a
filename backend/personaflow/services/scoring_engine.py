"""
推荐打分惩罚

按固定优先级依次检查惩罚规则，第一条命中的规则决定结果：
1. hide_post 命中候选文章      -> -999.0（完全屏蔽）
2. 作者被 mute / block          -> -999.0（完全屏蔽）
3. 候选所属分类被 dismiss        -> base_score × 0.1（降权）
4. 无命中                       -> base_score

分类不感兴趣是较弱、较易误判的信号，所以只降权不移除。
"""
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Sequence

from personaflow.services.exclusion_service import (
    ExclusionCache,
    ExclusionRule,
    ExclusionService,
    ExclusionType,
)
from personaflow.services.post_metadata import PostMetadata

logger = logging.getLogger(__name__)

# 完全屏蔽哨兵值
SUPPRESSION_SCORE = -999.0
# 低于等于此分数的结果在最终过滤中移除
SUPPRESSION_THRESHOLD = -900.0


class PenaltyContext:
    """单个候选的打分上下文，作者和分类按需查询且只查一次"""

    def __init__(
        self,
        base_score: float,
        post_id: int,
        visitor_hash: str,
        exclusions: Sequence[ExclusionRule],
        post_metadata: PostMetadata,
    ):
        self.base_score = base_score
        self.post_id = post_id
        self.visitor_hash = visitor_hash
        self.exclusions = exclusions
        self._post_metadata = post_metadata
        self._author_loaded = False
        self._author_id: Optional[int] = None
        self._categories: Optional[FrozenSet[int]] = None

    def rules_of(self, *exclusion_types: ExclusionType) -> List[ExclusionRule]:
        wanted = {t.value for t in exclusion_types}
        return [rule for rule in self.exclusions if rule.exclusion_type in wanted]

    async def author_id(self) -> Optional[int]:
        if not self._author_loaded:
            self._author_id = await self._post_metadata.get_author(self.post_id)
            self._author_loaded = True
        return self._author_id

    async def categories(self) -> FrozenSet[int]:
        if self._categories is None:
            self._categories = frozenset(await self._post_metadata.get_categories(self.post_id))
        return self._categories


class PenaltyRule(Protocol):
    """惩罚规则：命中返回新分数，未命中返回 None"""

    name: str

    async def evaluate(self, ctx: PenaltyContext) -> Optional[float]:
        ...


class HiddenPostRule:
    name = "hide_post"

    async def evaluate(self, ctx: PenaltyContext) -> Optional[float]:
        for rule in ctx.rules_of(ExclusionType.HIDE_POST):
            if rule.target_id == ctx.post_id:
                return SUPPRESSION_SCORE
        return None


class ExcludedAuthorRule:
    name = "author_exclusion"

    async def evaluate(self, ctx: PenaltyContext) -> Optional[float]:
        rules = ctx.rules_of(ExclusionType.MUTE_AUTHOR, ExclusionType.BLOCK_AUTHOR)
        if not rules:
            return None

        author_id = await ctx.author_id()
        if not author_id:
            return None

        for rule in rules:
            if rule.target_id == author_id:
                return SUPPRESSION_SCORE
        return None


class DismissedCategoryRule:
    name = "dismiss_category"

    def __init__(self, factor: float = 0.1):
        self.factor = factor

    async def evaluate(self, ctx: PenaltyContext) -> Optional[float]:
        rules = ctx.rules_of(ExclusionType.DISMISS_CATEGORY)
        if not rules:
            return None

        categories = await ctx.categories()
        for rule in rules:
            if rule.target_id in categories:
                return ctx.base_score * self.factor
        return None


def default_penalty_rules(settings=None) -> List[PenaltyRule]:
    """内置规则，顺序即优先级"""
    factor = settings.CATEGORY_DISMISS_FACTOR if settings is not None else 0.1
    return [HiddenPostRule(), ExcludedAuthorRule(), DismissedCategoryRule(factor)]


def _score_of(item: Any) -> Optional[float]:
    if isinstance(item, Mapping):
        return item.get("score")
    return getattr(item, "score", None)


class ScoringEngine:
    """
    推荐打分引擎

    只读、无状态，可被多个并发请求共享。
    """

    def __init__(
        self,
        exclusions: ExclusionService,
        post_metadata: PostMetadata,
        rules: Optional[Iterable[PenaltyRule]] = None,
        settings=None,
    ):
        self.exclusions = exclusions
        self.post_metadata = post_metadata
        self.rules: List[PenaltyRule] = list(rules) if rules is not None else default_penalty_rules(settings)

    async def apply_penalty(
        self,
        base_score: float,
        candidate_post_id: int,
        visitor_hash: str,
        cache: Optional[ExclusionCache] = None,
    ) -> float:
        """
        对候选推荐分数施加排除惩罚

        Args:
            base_score: 原始混合分数
            candidate_post_id: 候选文章 ID
            visitor_hash: 访客标识
            cache: 本次打分过程的排除列表缓存（None 时每次调用单独查询）

        Returns:
            惩罚后的分数（完全屏蔽时为 -999.0）
        """
        exclusions = await self.exclusions.list_exclusions(visitor_hash, cache=cache)
        if not exclusions:
            return base_score

        ctx = PenaltyContext(base_score, candidate_post_id, visitor_hash, exclusions, self.post_metadata)
        for rule in self.rules:
            penalized = await rule.evaluate(ctx)
            if penalized is not None:
                logger.debug(
                    f"Penalty {rule.name} applied: visitor={visitor_hash}, "
                    f"post={candidate_post_id}, score={base_score} -> {penalized}"
                )
                return penalized

        return base_score

    def filter_results(self, results: Iterable[Any], visitor_hash: Optional[str] = None) -> List[Any]:
        """移除被完全屏蔽的结果（score <= -900），保持其余结果的相对顺序"""
        kept = []
        for item in results:
            score = _score_of(item)
            if score is not None and score <= SUPPRESSION_THRESHOLD:
                continue
            kept.append(item)
        return kept

    async def score_candidates(
        self,
        candidates: Iterable[Mapping[str, Any]],
        visitor_hash: str,
    ) -> List[Dict[str, Any]]:
        """
        一次完整的打分过程：逐个施加惩罚后做最终过滤

        Args:
            candidates: 包含 post_id 和 score 的候选列表

        Returns:
            惩罚并过滤后的候选（新字典，不修改入参）
        """
        cache = ExclusionCache()
        scored = []
        for candidate in candidates:
            item = dict(candidate)
            item["score"] = await self.apply_penalty(
                float(item["score"]), int(item["post_id"]), visitor_hash, cache=cache
            )
            scored.append(item)
        return self.filter_results(scored, visitor_hash)
