import logging
from typing import List, Optional, Dict, Any, Iterable
from datetime import datetime
from collections import defaultdict

import pandas as pd

from .connectors import ClickHouseConnector
from .models import Order, Payment, Customer, ProductStock

logger = logging.getLogger(__name__)

# 所有时间过滤都是 [start, end)，UTC
WINDOW_FILTER = """
    created_at >= {start:DateTime64(3, 'UTC')}
    AND created_at < {end:DateTime64(3, 'UTC')}
"""


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame转字典列表，NaN/NaT统一转为None"""
    if df is None or df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict('records')


class BaseRepository:
    """基础数据仓库类"""

    def __init__(self):
        self.db = ClickHouseConnector()


class OrderRepository(BaseRepository):
    """订单数据仓库"""

    def get_orders(
            self,
            start_date: datetime,
            end_date: datetime,
            statuses: Optional[Iterable[str]] = None,
            customers_only: bool = False
    ) -> List[Order]:
        """获取时间窗口内的订单（附带商品明细和支付记录）"""
        query = f"""
        SELECT
            id,
            status,
            created_at,
            total,
            subtotal,
            discount,
            shipping_fee,
            user_id,
            delivery_type
        FROM orders
        WHERE {WINDOW_FILTER}
        """
        params = {'start': start_date, 'end': end_date}

        if statuses:
            query += " AND status IN {statuses:Array(String)}"
            params['statuses'] = list(statuses)

        if customers_only:
            query += " AND user_id IS NOT NULL"

        query += " ORDER BY created_at"

        rows = _records(self.db.execute_df(query, params))
        if not rows:
            return []

        order_ids = [str(row['id']) for row in rows]
        items = self._get_items(order_ids)
        payments = self._get_payments(order_ids)

        orders = []
        for row in rows:
            order_id = str(row['id'])
            row['items'] = items.get(order_id, [])
            row['payment'] = payments.get(order_id)
            orders.append(Order.from_row(row))

        logger.info(f"Fetched {len(orders)} orders from {start_date} to {end_date}")
        return orders

    def _get_items(self, order_ids: List[str]) -> Dict[str, List[Dict[str, Any]]]:
        query = """
        SELECT
            oi.order_id AS order_id,
            oi.product_id AS product_id,
            p.name AS product_name,
            p.category AS category,
            p.brand AS brand,
            p.sku AS sku,
            oi.quantity AS quantity,
            oi.price AS unit_price
        FROM order_items oi
        LEFT JOIN products p ON p.id = oi.product_id
        WHERE oi.order_id IN {order_ids:Array(String)}
        """
        grouped = defaultdict(list)
        for row in _records(self.db.execute_df(query, {'order_ids': order_ids})):
            grouped[str(row['order_id'])].append(row)
        return grouped

    def _get_payments(self, order_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        query = """
        SELECT order_id, payment_method, payment_status, amount, paid_at, created_at
        FROM payments
        WHERE order_id IN {order_ids:Array(String)}
        ORDER BY created_at DESC
        """
        latest = {}
        for row in _records(self.db.execute_df(query, {'order_ids': order_ids})):
            # 每个订单只保留最新的一条支付记录
            latest.setdefault(str(row['order_id']), row)
        return latest


class PaymentRepository(BaseRepository):
    """支付数据仓库"""

    def get_payments(
            self,
            start_date: datetime,
            end_date: datetime,
            status: Optional[str] = None
    ) -> List[Payment]:
        query = f"""
        SELECT order_id, payment_method, payment_status, amount, paid_at, created_at
        FROM payments
        WHERE {WINDOW_FILTER}
        """
        params = {'start': start_date, 'end': end_date}

        if status:
            query += " AND payment_status = {status:String}"
            params['status'] = status

        return [Payment.from_row(row) for row in _records(self.db.execute_df(query, params))]


class CustomerRepository(BaseRepository):
    """客户数据仓库"""

    def get_customers(self) -> List[Customer]:
        """获取所有客户资料（role = customer）"""
        query = """
        SELECT id, email, full_name, first_name, last_name, city, role, created_at
        FROM profiles
        WHERE role = 'customer'
        """
        return [Customer.from_row(row) for row in _records(self.db.execute_df(query))]


class InventoryRepository(BaseRepository):
    """库存数据仓库"""

    def get_stock_levels(self) -> List[ProductStock]:
        """获取商品当前库存"""
        query = """
        SELECT
            id AS product_id,
            name AS product_name,
            stock_quantity AS current_stock,
            category,
            brand,
            sku
        FROM products
        ORDER BY name
        """
        return [ProductStock.from_row(row) for row in _records(self.db.execute_df(query))]
