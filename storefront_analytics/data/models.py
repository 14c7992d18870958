from datetime import datetime, date
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field

import pandas as pd

ORDER_STATUSES = (
    'pending', 'confirmed', 'processing', 'shipped', 'ready_for_pickup',
    'delivered', 'completed', 'cancelled', 'refunded'
)

# 计入营收的订单状态
COMPLETED_STATUSES = frozenset({'completed', 'delivered'})

PAYMENT_STATUSES = ('pending', 'paid', 'failed', 'cancelled')


def to_utc(value: Any) -> Optional[datetime]:
    """把时间戳统一转换为带时区的UTC datetime（无时区视为UTC）"""
    if value is None or value == "":
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize('UTC')
    else:
        ts = ts.tz_convert('UTC')
    return ts.to_pydatetime()


def _money(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if pd.isna(result) else result


def _count(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _text(value: Any, default: Optional[str] = None) -> Optional[str]:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


@dataclass
class OrderItem:
    """订单商品模型"""
    product_id: str
    product_name: str = "Unknown Product"
    category: str = "Uncategorized"
    brand: str = "Unbranded"
    sku: Optional[str] = None
    quantity: int = 1
    unit_price: float = 0.0
    total: Optional[float] = None

    def __post_init__(self):
        if self.total is None:
            self.total = self.unit_price * self.quantity

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderItem":
        unit_price = _money(row.get('unit_price', row.get('price')))
        quantity = _count(row.get('quantity'), default=1)
        total = row.get('total')
        return cls(
            product_id=str(row.get('product_id')),
            product_name=_text(row.get('product_name'), "Unknown Product"),
            category=_text(row.get('category'), "Uncategorized"),
            brand=_text(row.get('brand'), "Unbranded"),
            sku=_text(row.get('sku')),
            quantity=quantity,
            unit_price=unit_price,
            total=None if total is None else _money(total)
        )


@dataclass
class Payment:
    """支付记录模型"""
    order_id: str
    payment_method: str = "unknown"
    payment_status: str = "pending"
    amount: float = 0.0
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Payment":
        return cls(
            order_id=str(row.get('order_id')),
            payment_method=_text(row.get('payment_method'), "unknown").lower(),
            payment_status=_text(row.get('payment_status'), "pending").lower(),
            amount=_money(row.get('amount')),
            paid_at=to_utc(row.get('paid_at')),
            created_at=to_utc(row.get('created_at'))
        )


@dataclass
class Order:
    """订单模型"""
    id: str
    status: str
    created_at: datetime
    total: float = 0.0
    subtotal: float = 0.0
    discount: float = 0.0
    shipping_fee: float = 0.0
    user_id: Optional[str] = None
    delivery_type: Optional[str] = None
    items: List[OrderItem] = field(default_factory=list)
    payment: Optional[Payment] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Order":
        created_at = to_utc(row.get('created_at'))
        if created_at is None:
            raise ValueError(f"Order {row.get('id')} has no created_at timestamp")

        items = [
            item if isinstance(item, OrderItem) else OrderItem.from_row(item)
            for item in (row.get('items') or row.get('order_items') or [])
        ]

        payment = row.get('payment')
        if payment is None and row.get('payments'):
            payment = row['payments'][0]
        if payment is not None and not isinstance(payment, Payment):
            payment = Payment.from_row(payment)

        return cls(
            id=str(row.get('id')),
            status=_text(row.get('status'), 'pending').lower(),
            created_at=created_at,
            total=_money(row.get('total')),
            subtotal=_money(row.get('subtotal')),
            discount=_money(row.get('discount')),
            shipping_fee=_money(row.get('shipping_fee')),
            user_id=_text(row.get('user_id')),
            delivery_type=_text(row.get('delivery_type')),
            items=items,
            payment=payment
        )


@dataclass
class Customer:
    """客户模型"""
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    city: Optional[str] = None
    role: str = "customer"
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else "Unknown Customer"

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Customer":
        return cls(
            id=str(row.get('id')),
            email=_text(row.get('email')),
            full_name=_text(row.get('full_name')),
            first_name=_text(row.get('first_name')),
            last_name=_text(row.get('last_name')),
            city=_text(row.get('city')) or _text(row.get('address')),
            role=_text(row.get('role'), "customer"),
            created_at=to_utc(row.get('created_at'))
        )


@dataclass
class ProductStock:
    """商品库存快照"""
    product_id: str
    product_name: str = "Unknown Product"
    current_stock: int = 0
    category: str = "Uncategorized"
    brand: str = "Unbranded"
    sku: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ProductStock":
        return cls(
            product_id=str(row.get('product_id', row.get('id'))),
            product_name=_text(row.get('product_name', row.get('name')), "Unknown Product"),
            current_stock=_count(row.get('current_stock', row.get('stock_quantity'))),
            category=_text(row.get('category'), "Uncategorized"),
            brand=_text(row.get('brand'), "Unbranded"),
            sku=_text(row.get('sku'))
        )
