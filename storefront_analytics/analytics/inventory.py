import math
import logging
from dataclasses import dataclass
from typing import List

from ..data.models import Order, ProductStock
from .frames import completed_only, items_frame, safe_divide, within
from .periods import PeriodWindow

logger = logging.getLogger(__name__)

# 无销量时的"不会断货"标记
NO_STOCKOUT_DAYS = 999
HIGH_PRIORITY_DAYS = 7
MEDIUM_PRIORITY_DAYS = 14
REORDER_SUPPLY_DAYS = 30


@dataclass
class InventoryRecommendation:
    """补货建议"""
    product_id: str
    product_name: str
    current_stock: int
    units_sold: int
    avg_daily_sales: float
    days_until_stockout: int
    reorder_quantity: int
    priority: str
    recommendation: str


def days_until_stockout(current_stock: int, avg_daily_sales: float) -> int:
    if current_stock <= 0:
        return 0
    if avg_daily_sales <= 0:
        return NO_STOCKOUT_DAYS
    return int(math.floor(current_stock / avg_daily_sales))


def stock_priority(days: int) -> str:
    if days < HIGH_PRIORITY_DAYS:
        return 'High'
    if days < MEDIUM_PRIORITY_DAYS:
        return 'Medium'
    return 'Low'


def _recommendation_text(priority: str, days: int, reorder_quantity: int) -> str:
    if priority == 'High':
        return (f"URGENT: Restock immediately! Only {days} days of inventory left. "
                f"Order {reorder_quantity} units for {REORDER_SUPPLY_DAYS}-day supply.")
    if priority == 'Medium':
        return f"Restock soon. Order {reorder_quantity} units for {REORDER_SUPPLY_DAYS}-day supply."
    return "Stock level healthy. Monitor for changes in demand."


def inventory_recommendations(
        orders: List[Order],
        stock: List[ProductStock],
        window: PeriodWindow
) -> List[InventoryRecommendation]:
    """按当前库存和窗口内日均销量预测断货天数，最紧急的排在前面"""
    items = within(completed_only(items_frame(orders)), window)
    units_sold = items.groupby('product_id')['quantity'].sum().to_dict()

    recommendations = []
    for product in stock:
        units = int(units_sold.get(product.product_id, 0))
        avg_daily_sales = safe_divide(units, window.days)
        days = days_until_stockout(product.current_stock, avg_daily_sales)
        priority = stock_priority(days)
        reorder_quantity = int(math.ceil(avg_daily_sales * REORDER_SUPPLY_DAYS))

        recommendations.append(InventoryRecommendation(
            product_id=product.product_id,
            product_name=product.product_name,
            current_stock=max(product.current_stock, 0),
            units_sold=units,
            avg_daily_sales=avg_daily_sales,
            days_until_stockout=days,
            reorder_quantity=reorder_quantity,
            priority=priority,
            recommendation=_recommendation_text(priority, days, reorder_quantity)
        ))

    recommendations.sort(key=lambda r: r.days_until_stockout)

    high = sum(1 for r in recommendations if r.priority == 'High')
    if high:
        logger.info(f"{high} products projected to stock out within {HIGH_PRIORITY_DAYS} days")

    return recommendations
