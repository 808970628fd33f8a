"""
服务端电商信号

由商店的购物车 / 订单事件触发，每个商品行写一条信号：
- 移出购物车        remove_from_cart     -3.0
- 开始结账          checkout_start        7.0（每个购物车商品）
- 完成下单          checkout_complete     9.0（每个订单商品）
- 申请退款          refund_request       -6.0
- 使用优惠券        coupon_apply          2.0（每个购物车商品）
- 修改数量          quantity_change      +1.5 增加 / -1.0 减少
- 订阅              subscription_signup   8.0
- 再次购买          reorder               7.0

行为采集绝不能阻塞主请求：tracker 不可用时静默跳过，写入失败只记录日志。
"""
import logging
from typing import Any, Callable, Dict, Iterable, Optional

from personaflow.core.errors import TrackerUnavailable
from personaflow.services.signal_tracker import SignalTracker

logger = logging.getLogger(__name__)

COMMERCE_WEIGHTS: Dict[str, float] = {
    "remove_from_cart": -3.0,
    "checkout_start": 7.0,
    "checkout_complete": 9.0,
    "refund_request": -6.0,
    "coupon_apply": 2.0,
    "subscription_signup": 8.0,
    "reorder": 7.0,
}

QUANTITY_INCREASE_WEIGHT = 1.5
QUANTITY_DECREASE_WEIGHT = -1.0

TrackerProvider = Callable[[], Optional[SignalTracker]]


class CommerceSignalProducer:
    """电商钩子 -> 行为信号"""

    def __init__(self, tracker_provider: TrackerProvider):
        self.tracker_provider = tracker_provider

    def _tracker(self) -> Optional[SignalTracker]:
        try:
            tracker = self.tracker_provider()
        except TrackerUnavailable:
            tracker = None
        if tracker is None:
            logger.debug("Signal tracker unavailable, commerce signal skipped")
        return tracker

    async def _store(
        self,
        visitor_hash: str,
        session_id: str,
        event_type: str,
        product_ids: Iterable[Any],
        weight: float,
        meta: Optional[Dict[str, Any]] = None,
    ) -> int:
        tracker = self._tracker()
        if tracker is None:
            return 0

        stored = 0
        for product_id in product_ids:
            if not product_id:
                continue
            try:
                await tracker.record(
                    visitor_hash,
                    session_id,
                    event_type,
                    target_id=int(product_id),
                    event_value=0.0,
                    meta=meta,
                    weight=weight,
                )
                stored += 1
            except Exception as e:
                logger.error(f"Failed to store {event_type} for product {product_id}: {e}")
        return stored

    async def on_remove_from_cart(self, visitor_hash: str, session_id: str, product_id: int) -> int:
        return await self._store(
            visitor_hash, session_id, "remove_from_cart", [product_id], COMMERCE_WEIGHTS["remove_from_cart"]
        )

    async def on_checkout_start(self, visitor_hash: str, session_id: str, cart_product_ids: Iterable[int]) -> int:
        return await self._store(
            visitor_hash, session_id, "checkout_start", cart_product_ids, COMMERCE_WEIGHTS["checkout_start"]
        )

    async def on_checkout_complete(
        self, visitor_hash: str, session_id: str, order_product_ids: Iterable[int], order_id: Optional[int] = None
    ) -> int:
        meta = {"order_id": order_id} if order_id else None
        return await self._store(
            visitor_hash, session_id, "checkout_complete", order_product_ids,
            COMMERCE_WEIGHTS["checkout_complete"], meta,
        )

    async def on_refund_request(
        self, visitor_hash: str, session_id: str, order_product_ids: Iterable[int], order_id: Optional[int] = None
    ) -> int:
        meta = {"order_id": order_id} if order_id else None
        return await self._store(
            visitor_hash, session_id, "refund_request", order_product_ids,
            COMMERCE_WEIGHTS["refund_request"], meta,
        )

    async def on_coupon_apply(
        self, visitor_hash: str, session_id: str, cart_product_ids: Iterable[int], coupon_code: Optional[str] = None
    ) -> int:
        meta = {"coupon_code": coupon_code} if coupon_code else None
        return await self._store(
            visitor_hash, session_id, "coupon_apply", cart_product_ids, COMMERCE_WEIGHTS["coupon_apply"], meta
        )

    async def on_quantity_change(
        self, visitor_hash: str, session_id: str, product_id: int, quantity: int, old_quantity: int
    ) -> int:
        """数量增加记正向信号，减少（或不变）记负向信号"""
        weight = QUANTITY_INCREASE_WEIGHT if quantity > old_quantity else QUANTITY_DECREASE_WEIGHT
        return await self._store(
            visitor_hash, session_id, "quantity_change", [product_id], weight,
            {"quantity": quantity, "old_quantity": old_quantity},
        )

    async def on_subscription_signup(
        self, visitor_hash: str, session_id: str, product_ids: Iterable[int]
    ) -> int:
        return await self._store(
            visitor_hash, session_id, "subscription_signup", product_ids, COMMERCE_WEIGHTS["subscription_signup"]
        )

    async def on_reorder(
        self, visitor_hash: str, session_id: str, order_product_ids: Iterable[int], order_id: Optional[int] = None
    ) -> int:
        meta = {"original_order_id": order_id} if order_id else None
        return await self._store(
            visitor_hash, session_id, "reorder", order_product_ids, COMMERCE_WEIGHTS["reorder"], meta
        )
