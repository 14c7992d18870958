import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from ..data.models import Order, ProductStock
from .frames import (
    completed_only, items_frame, orders_frame, percent_change, safe_divide, within
)
from .periods import PeriodWindow, iter_buckets

logger = logging.getLogger(__name__)


@dataclass
class TopProduct:
    """销量最高的商品"""
    product_id: str
    name: str
    units_sold: int


@dataclass
class SalesOverview:
    """销售概览"""
    total_revenue: float
    total_orders: int
    avg_order_value: float
    top_product: Optional[TopProduct]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProductPerformance:
    """单个商品的销售表现"""
    product_id: str
    name: str
    sku: Optional[str]
    units_sold: int
    revenue: float
    avg_price: float
    stock: int
    trend: float


@dataclass
class TrendPoint:
    """趋势图中的一个点"""
    period_label: str
    period_start: datetime
    revenue: float
    order_count: int


@dataclass
class GroupPerformance:
    """按品类或品牌汇总的销售表现"""
    name: str
    units_sold: int
    revenue: float
    product_count: int
    top_product: Optional[str]
    top_product_units: int


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _completed_items(orders: Iterable[Order], window: PeriodWindow) -> pd.DataFrame:
    return within(completed_only(items_frame(orders)), window)


def _units_by_product(items: pd.DataFrame) -> pd.DataFrame:
    """按商品汇总销量，保持首次出现的顺序"""
    return items.groupby('product_id', sort=False).agg(
        name=('product_name', 'first'),
        sku=('sku', 'first'),
        units=('quantity', 'sum'),
        revenue=('total', 'sum')
    )


def _pick_top(per_product: pd.DataFrame) -> Optional[TopProduct]:
    if per_product.empty:
        return None
    # idxmax 在并列时返回第一个出现的商品
    product_id = per_product['units'].idxmax()
    row = per_product.loc[product_id]
    return TopProduct(product_id=str(product_id), name=str(row['name']), units_sold=int(row['units']))


def sales_overview(orders: List[Order], window: PeriodWindow) -> SalesOverview:
    """营收、订单数、客单价与最畅销商品（仅统计已完成订单）"""
    df = within(completed_only(orders_frame(orders)), window)

    total_revenue = float(df['total'].sum())
    total_orders = int(len(df))

    top_product = _pick_top(_units_by_product(_completed_items(orders, window)))

    return SalesOverview(
        total_revenue=total_revenue,
        total_orders=total_orders,
        avg_order_value=safe_divide(total_revenue, total_orders),
        top_product=top_product
    )


def product_performance(
        orders: List[Order],
        previous_orders: List[Order],
        window: PeriodWindow,
        stock: Optional[List[ProductStock]] = None,
        previous_window: Optional[PeriodWindow] = None
) -> List[ProductPerformance]:
    """商品销售表现及销量环比，按营收降序"""
    previous_window = previous_window or window.previous()

    current = _units_by_product(_completed_items(orders, window))
    previous = _units_by_product(_completed_items(previous_orders, previous_window))
    previous_units = {str(pid): int(units) for pid, units in previous['units'].items()}
    stock_levels = {s.product_id: s.current_stock for s in (stock or [])}

    results = []
    for product_id, row in current.iterrows():
        product_id = str(product_id)
        units = int(row['units'])
        revenue = float(row['revenue'])
        results.append(ProductPerformance(
            product_id=product_id,
            name=str(row['name']),
            sku=_optional_text(row['sku']),
            units_sold=units,
            revenue=revenue,
            avg_price=safe_divide(revenue, units),
            stock=int(stock_levels.get(product_id, 0)),
            trend=percent_change(units, previous_units.get(product_id, 0))
        ))

    results.sort(key=lambda p: p.revenue, reverse=True)
    return results


def sales_trend(orders: List[Order], window: PeriodWindow) -> List[TrendPoint]:
    """按时间桶统计营收和订单数，空桶补0"""
    df = completed_only(orders_frame(orders))

    points = []
    for bucket in iter_buckets(window):
        part = within(df, bucket)
        points.append(TrendPoint(
            period_label=bucket.label,
            period_start=bucket.start,
            revenue=float(part['total'].sum()),
            order_count=int(len(part))
        ))
    return points


def _group_performance(items: pd.DataFrame, key: str) -> List[GroupPerformance]:
    results = []
    for name, group in items.groupby(key, sort=False):
        per_product = _units_by_product(group)
        top = _pick_top(per_product)
        results.append(GroupPerformance(
            name=str(name),
            units_sold=int(group['quantity'].sum()),
            revenue=float(group['total'].sum()),
            product_count=int(group['product_id'].nunique()),
            top_product=top.name if top else None,
            top_product_units=top.units_sold if top else 0
        ))

    results.sort(key=lambda g: g.revenue, reverse=True)
    return results


def category_performance(orders: List[Order], window: PeriodWindow) -> List[GroupPerformance]:
    """按商品品类汇总"""
    return _group_performance(_completed_items(orders, window), 'category')


def brand_performance(orders: List[Order], window: PeriodWindow) -> List[GroupPerformance]:
    """按品牌汇总"""
    return _group_performance(_completed_items(orders, window), 'brand')
