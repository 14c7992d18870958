"""记录 -> DataFrame 转换以及通用的比率计算"""
from typing import Iterable, List

import pandas as pd

from ..data.models import COMPLETED_STATUSES, Order, Payment
from .periods import PeriodWindow

ORDER_COLUMNS = [
    'order_id', 'status', 'created_at', 'total', 'subtotal', 'discount',
    'shipping_fee', 'user_id', 'delivery_type', 'payment_method', 'payment_status'
]

ITEM_COLUMNS = [
    'order_id', 'status', 'created_at', 'user_id', 'product_id', 'product_name',
    'category', 'brand', 'sku', 'quantity', 'unit_price', 'total'
]

PAYMENT_COLUMNS = ['order_id', 'payment_method', 'payment_status', 'amount', 'paid_at', 'created_at']


def _frame(rows: List[dict], columns: List[str], time_columns: Iterable[str]) -> pd.DataFrame:
    df = pd.DataFrame(rows, columns=columns)
    for col in time_columns:
        df[col] = pd.to_datetime(df[col], utc=True)
    return df


def orders_frame(orders: Iterable[Order]) -> pd.DataFrame:
    """订单列表转DataFrame（空列表也保留列结构）"""
    rows = [{
        'order_id': o.id,
        'status': o.status,
        'created_at': o.created_at,
        'total': o.total,
        'subtotal': o.subtotal,
        'discount': o.discount,
        'shipping_fee': o.shipping_fee,
        'user_id': o.user_id,
        'delivery_type': o.delivery_type,
        'payment_method': o.payment.payment_method if o.payment else None,
        'payment_status': o.payment.payment_status if o.payment else None,
    } for o in orders]
    df = _frame(rows, ORDER_COLUMNS, ['created_at'])
    df['total'] = df['total'].astype(float)
    return df


def items_frame(orders: Iterable[Order]) -> pd.DataFrame:
    """订单商品明细展开为DataFrame，保留输入顺序"""
    rows = []
    for o in orders:
        for item in o.items:
            rows.append({
                'order_id': o.id,
                'status': o.status,
                'created_at': o.created_at,
                'user_id': o.user_id,
                'product_id': item.product_id,
                'product_name': item.product_name,
                'category': item.category,
                'brand': item.brand,
                'sku': item.sku,
                'quantity': item.quantity,
                'unit_price': item.unit_price,
                'total': item.total,
            })
    df = _frame(rows, ITEM_COLUMNS, ['created_at'])
    df['quantity'] = df['quantity'].astype(int)
    df['total'] = df['total'].astype(float)
    return df


def payments_frame(payments: Iterable[Payment]) -> pd.DataFrame:
    rows = [{
        'order_id': p.order_id,
        'payment_method': p.payment_method,
        'payment_status': p.payment_status,
        'amount': p.amount,
        'paid_at': p.paid_at,
        'created_at': p.created_at,
    } for p in payments]
    df = _frame(rows, PAYMENT_COLUMNS, ['paid_at', 'created_at'])
    df['amount'] = df['amount'].astype(float)
    return df


def completed_only(df: pd.DataFrame) -> pd.DataFrame:
    return df[df['status'].isin(COMPLETED_STATUSES)]


def within(df: pd.DataFrame, window: PeriodWindow, column: str = 'created_at') -> pd.DataFrame:
    """按 [start, end) 过滤"""
    return df[(df[column] >= window.start) & (df[column] < window.end)]


def safe_divide(numerator: float, denominator: float) -> float:
    """除数为0时返回0"""
    if not denominator:
        return 0.0
    return float(numerator) / float(denominator)


def percentage(part: float, whole: float) -> float:
    return safe_divide(part, whole) * 100


def percent_change(current: float, previous: float) -> float:
    """环比变化百分比

    上期为0而本期有量记为100，两期都为0记为0。
    """
    if previous > 0:
        return round((current - previous) / previous * 100, 1)
    if current > 0:
        return 100.0
    return 0.0
