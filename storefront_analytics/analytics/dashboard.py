"""运营看板：销售额/订单数环比、发货状态、支付状态、库存分布、近30天订单概览"""
import logging
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Tuple

import pandas as pd

from ..data.models import PAYMENT_STATUSES, Order, Payment, ProductStock
from .frames import completed_only, orders_frame, payments_frame, percent_change, within
from .periods import PeriodWindow, ValidationError

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('pending', 'confirmed', 'processing', 'shipped', 'ready_for_pickup')
PICKUP_DELIVERY_TYPES = ('pickup', 'store_pickup')

LOW_STOCK_THRESHOLD = 10
OVERVIEW_DAYS = 30

# 看板卡片 -> 归入该卡片的订单状态
SHIPPING_GROUPS: Mapping[str, Tuple[str, ...]] = {
    'pending': ('pending',),
    'processing': ('confirmed', 'processing'),
    'shipped': ('shipped',),
    'delivered': ('delivered', 'completed'),
    'ready_for_pickup': ('ready_for_pickup',),
}

OVERVIEW_GROUPS: Mapping[str, Tuple[str, ...]] = {
    'pending': ('pending',),
    'processing': ('processing', 'confirmed', 'ready_for_pickup'),
    'shipped': ('shipped',),
    'delivered': ('delivered',),
    'cancelled': ('cancelled',),
    'completed': ('completed',),
}


@dataclass
class KpiTotal:
    """带环比的看板总量"""
    total: float
    previous: float
    change: float
    is_increase: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShippingStats:
    """发货状态（已取消订单不计入）"""
    pending: int
    processing: int
    shipped: int
    delivered: int
    ready_for_pickup: int
    pickup: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StockBands:
    """库存分布：缺货、低库存、有货"""
    total: int
    in_stock: int
    low_stock: int
    out_of_stock: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _kpi(current: float, previous: float) -> KpiTotal:
    change = percent_change(current, previous)
    return KpiTotal(total=current, previous=previous, change=change, is_increase=change >= 0)


def _grouped_counts(statuses: pd.Series, groups: Mapping[str, Tuple[str, ...]]) -> Dict[str, int]:
    counts = statuses.value_counts()
    return {
        name: int(counts.reindex(list(members), fill_value=0).sum())
        for name, members in groups.items()
    }


def total_sales(
        orders: List[Order],
        previous_orders: List[Order],
        window: PeriodWindow,
        previous_window: PeriodWindow
) -> KpiTotal:
    """已完成订单的销售额及环比"""
    current = within(completed_only(orders_frame(orders)), window)['total'].sum()
    previous = within(completed_only(orders_frame(previous_orders)), previous_window)['total'].sum()
    return _kpi(float(current), float(previous))


def total_orders(
        orders: List[Order],
        previous_orders: List[Order],
        window: PeriodWindow,
        previous_window: PeriodWindow
) -> KpiTotal:
    """所有状态的订单数及环比"""
    current = len(within(orders_frame(orders), window))
    previous = len(within(orders_frame(previous_orders), previous_window))
    return _kpi(current, previous)


def shipping_stats(orders: List[Order], window: PeriodWindow) -> ShippingStats:
    df = within(orders_frame(orders), window)
    df = df[df['status'] != 'cancelled']

    counts = _grouped_counts(df['status'], SHIPPING_GROUPS)
    delivery = df['delivery_type'].fillna('').astype(str).str.lower()
    pickup = int(delivery.isin(PICKUP_DELIVERY_TYPES).sum())

    return ShippingStats(pickup=pickup, **counts)


def order_counts(orders: List[Order], window: PeriodWindow) -> Dict[str, int]:
    """进行中和已取消的订单数"""
    statuses = within(orders_frame(orders), window)['status']
    return {
        'active': int(statuses.isin(ACTIVE_STATUSES).sum()),
        'cancelled': int((statuses == 'cancelled').sum()),
    }


def payment_status_counts(payments: List[Payment]) -> Dict[str, int]:
    """按支付状态计数，未知状态忽略"""
    counts = payments_frame(payments)['payment_status'].value_counts()
    return {status: int(counts.get(status, 0)) for status in PAYMENT_STATUSES}


def stock_bands(stock: List[ProductStock], low_threshold: int = LOW_STOCK_THRESHOLD) -> StockBands:
    """库存为0算缺货，不超过阈值算低库存，其余算有货"""
    levels = pd.Series([max(p.current_stock, 0) for p in stock], dtype=int)

    out_of_stock = int((levels == 0).sum())
    low_stock = int(((levels > 0) & (levels <= low_threshold)).sum())

    bands = StockBands(
        total=int(len(levels)),
        in_stock=int((levels > low_threshold).sum()),
        low_stock=low_stock,
        out_of_stock=out_of_stock
    )
    if out_of_stock:
        logger.info(f"{out_of_stock} products are out of stock")
    return bands


def overview_window(window: PeriodWindow, days: int = OVERVIEW_DAYS) -> PeriodWindow:
    """截止到窗口结束时间的最近N天"""
    try:
        start = window.end - timedelta(days=days)
    except OverflowError as e:
        raise ValidationError(f"No {days}-day overview before {window.end.isoformat()}") from e
    return PeriodWindow(start=start, end=window.end)


def orders_overview(orders: List[Order], window: PeriodWindow) -> Dict[str, int]:
    """最近30天的订单状态分布，confirmed 和 ready_for_pickup 并入 processing"""
    statuses = within(orders_frame(orders), window)['status']
    return _grouped_counts(statuses, OVERVIEW_GROUPS)
