import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Iterable

import numpy as np

from .models import Order, OrderItem, Payment, Customer, ProductStock, ORDER_STATUSES

logger = logging.getLogger(__name__)

MOCK_SEED = 20240101

# (product_id, 名称, 品类, 品牌, 单价, 库存)
CATALOG = [
    ('P001', 'Ryzen 5 7600', 'Processors', 'AMD', 12500, 14),
    ('P002', 'Core i5-14400F', 'Processors', 'Intel', 11800, 22),
    ('P003', 'GeForce RTX 4060', 'Graphics Cards', 'NVIDIA', 19500, 6),
    ('P004', 'Radeon RX 7600', 'Graphics Cards', 'AMD', 16900, 9),
    ('P005', 'B650M Motherboard', 'Motherboards', 'ASUS', 8900, 17),
    ('P006', 'DDR5 32GB Kit', 'Memory', 'Kingston', 6200, 40),
    ('P007', 'NVMe SSD 1TB', 'Storage', 'Samsung', 4800, 55),
    ('P008', '650W Gold PSU', 'Power Supplies', 'Seasonic', 5400, 0),
    ('P009', 'Mid Tower Case', 'Cases', 'Lian Li', 4200, 11),
    ('P010', '27" 165Hz Monitor', 'Monitors', 'MSI', 13900, 3),
]

CITIES = ['Manila', 'Quezon City', 'Cebu City', 'Davao City', 'Makati', 'Pasig']
PAYMENT_METHODS = ['gcash', 'card', 'cod', 'bank_transfer']
MOCK_CUSTOMERS = 60
CUSTOMER_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

# 状态抽样权重，与 ORDER_STATUSES 一一对应
STATUS_WEIGHTS = [0.08, 0.04, 0.06, 0.04, 0.02, 0.30, 0.38, 0.05, 0.03]


def _mock_orders_for_day(day: datetime) -> List[Order]:
    """按日期生成订单，同一天总是生成相同的数据"""
    rng = np.random.default_rng(MOCK_SEED + day.toordinal())
    orders = []

    for n in range(int(rng.integers(2, 9))):
        created_at = day + timedelta(seconds=int(rng.integers(0, 86400)))
        status = str(rng.choice(ORDER_STATUSES, p=STATUS_WEIGHTS))

        items = []
        for idx in rng.choice(len(CATALOG), size=int(rng.integers(1, 4)), replace=False):
            product_id, name, category, brand, price, _ = CATALOG[idx]
            items.append(OrderItem(
                product_id=product_id,
                product_name=name,
                category=category,
                brand=brand,
                sku=f"SKU-{product_id}",
                quantity=int(rng.integers(1, 3)),
                unit_price=float(price)
            ))

        subtotal = sum(item.total for item in items)
        shipping_fee = 0.0 if subtotal >= 10000 else 150.0
        order_id = f"ORD-{day.strftime('%Y%m%d')}-{n + 1:03d}"
        payment_status = 'paid' if status in ('completed', 'delivered', 'shipped') else 'pending'

        orders.append(Order(
            id=order_id,
            status=status,
            created_at=created_at,
            total=subtotal + shipping_fee,
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            user_id=f"CUST-{int(rng.integers(1, MOCK_CUSTOMERS + 1)):03d}",
            delivery_type=str(rng.choice(['delivery', 'pickup'])),
            items=items,
            payment=Payment(
                order_id=order_id,
                payment_method=str(rng.choice(PAYMENT_METHODS)),
                payment_status=payment_status,
                amount=subtotal + shipping_fee,
                paid_at=created_at if payment_status == 'paid' else None,
                created_at=created_at
            )
        ))

    return orders


def _mock_orders(start_date: datetime, end_date: datetime) -> List[Order]:
    day = start_date.replace(hour=0, minute=0, second=0, microsecond=0)
    orders = []
    while day < end_date:
        orders.extend(o for o in _mock_orders_for_day(day) if start_date <= o.created_at < end_date)
        day += timedelta(days=1)
    return orders


class MockOrderRepository:
    """模拟订单数据仓库（用于开发和演示）"""

    def __init__(self):
        logger.info("Using mock order repository (no database connection)")
        self.db = None  # 兼容接口

    def get_orders(self, start_date: datetime, end_date: datetime,
                   statuses: Optional[Iterable[str]] = None,
                   customers_only: bool = False) -> List[Order]:
        logger.info(f"Generating mock orders from {start_date} to {end_date}")
        orders = _mock_orders(start_date, end_date)
        if statuses:
            wanted = set(statuses)
            orders = [o for o in orders if o.status in wanted]
        if customers_only:
            orders = [o for o in orders if o.user_id is not None]
        return orders


class MockPaymentRepository:
    """模拟支付数据仓库"""

    def __init__(self):
        logger.info("Using mock payment repository (no database connection)")
        self.db = None

    def get_payments(self, start_date: datetime, end_date: datetime,
                     status: Optional[str] = None) -> List[Payment]:
        payments = [o.payment for o in _mock_orders(start_date, end_date) if o.payment]
        if status:
            payments = [p for p in payments if p.payment_status == status]
        return payments


class MockCustomerRepository:
    """模拟客户数据仓库"""

    def __init__(self):
        logger.info("Using mock customer repository (no database connection)")
        self.db = None

    def get_customers(self) -> List[Customer]:
        return [
            Customer(
                id=f"CUST-{i:03d}",
                email=f"customer{i}@example.com",
                first_name="Customer",
                last_name=f"{i:03d}",
                city=CITIES[i % len(CITIES)],
                created_at=CUSTOMER_EPOCH + timedelta(days=9 * i)
            )
            for i in range(1, MOCK_CUSTOMERS + 1)
        ]


class MockInventoryRepository:
    """模拟库存数据仓库"""

    def __init__(self):
        logger.info("Using mock inventory repository (no database connection)")
        self.db = None

    def get_stock_levels(self) -> List[ProductStock]:
        return [
            ProductStock(
                product_id=product_id,
                product_name=name,
                current_stock=stock,
                category=category,
                brand=brand,
                sku=f"SKU-{product_id}"
            )
            for product_id, name, category, brand, _, stock in CATALOG
        ]
