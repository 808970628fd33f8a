"""
信号目录 - 信号类型到基础权重的静态映射

107 种信号 = 30 种基础信号 + 77 种扩展信号。
每个事件入库前调用一次 resolve_weight() 得到最终权重：
- 先取基础权重
- 再按 event_type 依次执行注册的权重调整策略（可插拔）

内置策略：
- multi_revisit（递增型）：computed > 0 时 min(computed × 1.5, 10.0)
- star_rating（分级型）：按 1-5 星查表，替换计算值
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from personaflow.core.errors import InvalidRatingValue, UnknownSignalType

logger = logging.getLogger(__name__)


# ── 基础信号（30） ──
BASE_SIGNAL_WEIGHTS: Dict[str, float] = {
    # 内容
    "page_view": 1.0,
    "dwell_time": 2.0,
    "scroll_depth": 1.5,
    "read_completion": 4.0,
    "content_revisit": 3.0,
    "click_read_more": 1.5,
    "text_selection": 1.0,
    "copy_text": 2.0,
    "media_play": 2.5,
    # 导航
    "internal_link_click": 1.5,
    "search_query": 1.0,
    "search_click": 2.0,
    "related_post_click": 3.0,
    "category_browse_deep": 2.0,
    "tag_explore": 1.5,
    # 商品
    "product_view": 1.5,
    "add_to_cart": 5.0,
    "add_to_wishlist": 4.0,
    "purchase_complete": 10.0,
    "product_review": 6.0,
    "product_rating": 3.0,
    "cross_sell_click": 2.0,
    "product_tab_switch": 0.5,
    # 显式反馈
    "like": 4.0,
    "dislike": -4.0,
    "bookmark_save": 5.0,
    "bookmark_remove": -2.0,
    # 会话
    "session_start": 0.0,
    "return_visitor": 1.0,
    "recommendation_impression": 0.0,
}

# ── 扩展信号（77） ──
EXTENDED_SIGNAL_WEIGHTS: Dict[str, float] = {
    # 内容（8）
    "multi_revisit": 6.0,         # 同一文章访问 3 次以上
    "expand_content": 1.5,
    "image_interaction": 1.5,
    "media_completion": 5.0,      # 音视频播放到 90%+
    "download_resource": 4.0,
    "print_page": 2.0,
    "code_copy": 3.0,
    "outbound_link_click": 0.5,

    # 导航（8）
    "archive_browse": 0.5,
    "pagination_advance": 1.5,
    "breadcrumb_navigate": 0.5,
    "author_archive_visit": 2.5,
    "back_button_return": 2.0,
    "archive_browse_no_click": -1.0,
    "search_no_click": -0.5,
    "random_navigation": 1.0,

    # 电商（15）
    "remove_from_cart": -3.0,
    "checkout_start": 7.0,
    "checkout_abandon": -5.0,
    "subscription_signup": 8.0,
    "refund_request": -6.0,
    "reorder": 7.0,
    "product_compare": 2.0,
    "gallery_view": 1.5,
    "coupon_apply": 2.0,
    "variation_select": 1.0,
    "quantity_change": 1.5,
    "product_qa": 3.0,
    "helpful_vote": 2.0,
    "cart_abandon": -4.0,
    "checkout_complete": 9.0,     # 已下单，未必已付款

    # 社交（9）
    "native_share": 6.0,
    "social_click": 4.0,
    "copy_link": 3.0,
    "email_share": 5.0,
    "private_share": 4.0,
    "comment_upvote": 2.0,
    "mention_author": 3.0,
    "share_cancel": -0.5,
    "reshare": 5.0,

    # 显式反馈（10）
    "multi_react": 4.0,
    "weighted_like": 3.0,
    "star_rating": 2.0,           # 实际权重按星级查表
    "follow_author": 5.0,
    "unfollow_author": -3.0,
    "subscribe_category": 4.0,
    "unsubscribe_category": -2.0,
    "newsletter_signup": 5.0,
    "collection_add": 4.0,
    "premium_reaction": 6.0,

    # 负面 / 流失（13）
    "bounce": -3.0,
    "pogo_stick": -4.0,
    "fast_scroll": -2.0,
    "dismiss": -3.0,
    "reduce_affinity": -2.0,
    "hide_post": -5.0,
    "mute_author": -6.0,
    "block_author": -8.0,
    "report_content": -7.0,
    "close_widget": -1.0,
    "rage_quit": -5.0,
    "ad_blocker": 0.0,            # 仅作上下文
    "cart_abandon_final": -4.0,

    # 会话上下文（14）
    "session_depth": 0.0,
    "session_duration": 0.0,
    "referral_source": 0.0,
    "device_type": 0.0,
    "time_of_day": 0.0,
    "day_of_week": 0.0,
    "logged_in_context": 0.0,
    "first_visit": 1.0,
    "tab_visibility": 0.0,
    "scroll_direction": 0.0,
    "idle_detection": -0.5,
    "font_size_change": 0.0,
    "reader_mode": 2.0,
    "recommendation_ctr": 0.0,
}

SIGNAL_WEIGHTS: Dict[str, float] = {**BASE_SIGNAL_WEIGHTS, **EXTENDED_SIGNAL_WEIGHTS}

BASE_SIGNAL_TYPES = frozenset(BASE_SIGNAL_WEIGHTS)

NEGATIVE_SIGNAL_TYPES = frozenset({
    "bounce", "pogo_stick", "fast_scroll", "dismiss", "hide_post",
    "mute_author", "block_author", "report_content", "close_widget",
    "rage_quit", "cart_abandon_final",
})

SOCIAL_SIGNAL_TYPES = frozenset({
    "native_share", "social_click", "copy_link", "email_share", "private_share", "reshare",
})

ESCALATING_SIGNAL_TYPE = "multi_revisit"
GRADED_SIGNAL_TYPE = "star_rating"

# 1 星 = -2.0 ... 5 星 = 5.0
RATING_WEIGHTS: Dict[int, float] = {1: -2.0, 2: 0.0, 3: 2.0, 4: 3.5, 5: 5.0}

WeightAdjustment = Callable[[float, Optional[float]], float]


@dataclass(frozen=True)
class SignalDefinition:
    """信号定义"""
    event_type: str
    base_weight: float


@dataclass(frozen=True)
class EscalatingWeight:
    """递增型权重：放大正向权重并封顶，防止刷量无限累积"""
    scale: float = 1.5
    cap: float = 10.0

    def __call__(self, computed: float, declared_value: Optional[float] = None) -> float:
        if computed <= 0:
            return computed
        return min(computed * self.scale, self.cap)


@dataclass(frozen=True)
class GradedRatingWeight:
    """分级型权重：按评分查表"""
    table: Mapping[int, float] = field(default_factory=lambda: dict(RATING_WEIGHTS))

    def __call__(self, computed: float, declared_value: Optional[float] = None) -> float:
        rating = _coerce_rating(declared_value)
        if rating not in self.table:
            raise InvalidRatingValue(declared_value)
        return self.table[rating]


def _coerce_rating(value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidRatingValue(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidRatingValue(value)
    if not number.is_integer():
        raise InvalidRatingValue(value)
    return int(number)


def default_adjustments(settings=None) -> Dict[str, Sequence[WeightAdjustment]]:
    """内置的权重调整策略"""
    escalating = EscalatingWeight()
    if settings is not None:
        escalating = EscalatingWeight(
            scale=settings.ESCALATING_WEIGHT_SCALE,
            cap=settings.ESCALATING_WEIGHT_CAP,
        )
    return {
        ESCALATING_SIGNAL_TYPE: [escalating],
        GRADED_SIGNAL_TYPE: [GradedRatingWeight()],
    }


class SignalCatalog:
    """
    信号目录

    Args:
        weights: 覆盖/追加的基础权重
        adjustments: event_type -> 有序的权重调整策略列表（None 时使用内置策略）
        settings: 用于构建内置策略的配置
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        adjustments: Optional[Mapping[str, Iterable[WeightAdjustment]]] = None,
        settings=None,
    ):
        self._weights: Dict[str, float] = dict(SIGNAL_WEIGHTS)
        if weights:
            self._weights.update({k: float(v) for k, v in weights.items()})

        if adjustments is None:
            adjustments = default_adjustments(settings)
        self._adjustments: Dict[str, tuple] = {
            event_type: tuple(chain) for event_type, chain in adjustments.items()
        }

    def is_known(self, event_type: str) -> bool:
        return event_type in self._weights

    def base_weight(self, event_type: str) -> float:
        try:
            return self._weights[event_type]
        except KeyError:
            raise UnknownSignalType(event_type)

    def event_types(self) -> List[str]:
        return sorted(self._weights)

    def definitions(self) -> List[SignalDefinition]:
        return [SignalDefinition(t, self._weights[t]) for t in self.event_types()]

    def resolve_weight(self, event_type: str, declared_value: Optional[float] = None) -> float:
        """
        计算事件最终权重（纯函数，无副作用）

        Raises:
            UnknownSignalType: 类型不在目录中
            InvalidRatingValue: 分级信号的评分无效
        """
        computed = self.base_weight(event_type)
        for adjust in self._adjustments.get(event_type, ()):
            computed = adjust(computed, declared_value)
        return float(computed)
