from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from storefront_analytics.analytics.financial import CostRatios
from storefront_analytics.analytics.periods import PeriodWindow
from storefront_analytics.data.models import Customer, Order, OrderItem, Payment, ProductStock

REFERENCE_NOW = datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _make_item(product_id, quantity=1, unit_price=100.0, name=None, category='Graphics Cards',
               brand='NVIDIA', sku=None):
    return OrderItem(
        product_id=product_id,
        product_name=name or f"Product {product_id}",
        category=category,
        brand=brand,
        sku=sku,
        quantity=quantity,
        unit_price=unit_price
    )


def _make_order(order_id, total=0.0, status='completed', created_at=None, user_id=None,
                items=None, payment_method=None, payment_status='paid'):
    created_at = created_at or utc(2026, 2, 10)
    payment = None
    if payment_method:
        payment = Payment(order_id=order_id, payment_method=payment_method,
                          payment_status=payment_status, amount=total, created_at=created_at)
    return Order(
        id=order_id,
        status=status,
        created_at=created_at,
        total=total,
        subtotal=total,
        user_id=user_id,
        items=items or [],
        payment=payment
    )


@pytest.fixture
def make_item():
    return _make_item


@pytest.fixture
def make_order():
    return _make_order


@pytest.fixture
def now():
    return REFERENCE_NOW


@pytest.fixture
def window():
    """2026-02-01 ~ 2026-02-15，共14天"""
    return PeriodWindow(start=utc(2026, 2, 1), end=utc(2026, 2, 15))


@pytest.fixture
def settings():
    """不读配置文件的测试配置"""
    return Mock(
        cost_ratios=CostRatios(),
        app=Mock(churn_loss_estimate=5000.0, currency_symbol='₱'),
        has_llm=Mock(return_value=False)
    )


@pytest.fixture
def sample_orders():
    """窗口内的一组订单：两笔完成、一笔取消、一笔待处理、一笔退款"""
    return [
        _make_order('O1', 25000.0, 'completed', utc(2026, 2, 2, 10), 'U1',
                    [_make_item('GPU', 1, 19500.0, 'RTX 4060'), _make_item('SSD', 1, 5500.0, 'NVMe SSD', 'Storage', 'Samsung')],
                    payment_method='gcash'),
        _make_order('O2', 12500.0, 'delivered', utc(2026, 2, 9, 15), 'U2',
                    [_make_item('CPU', 1, 12500.0, 'Ryzen 5 7600', 'Processors', 'AMD')],
                    payment_method='card'),
        _make_order('O3', 4000.0, 'cancelled', utc(2026, 2, 3), 'U1',
                    [_make_item('SSD', 1, 4000.0, 'NVMe SSD', 'Storage', 'Samsung')],
                    payment_method='gcash', payment_status='cancelled'),
        _make_order('O4', 8000.0, 'pending', utc(2026, 2, 12), 'U3',
                    [_make_item('RAM', 2, 4000.0, 'DDR5 32GB', 'Memory', 'Kingston')],
                    payment_method='cod', payment_status='pending'),
        _make_order('O5', 6000.0, 'refunded', utc(2026, 2, 5), 'U2',
                    [_make_item('PSU', 1, 6000.0, '650W PSU', 'Power Supplies', 'Seasonic')]),
    ]


@pytest.fixture
def sample_customers():
    return [
        Customer(id='U1', email='ana@example.com', full_name='Ana Cruz', city='Manila', created_at=utc(2025, 12, 1)),
        Customer(id='U2', email='ben@example.com', first_name='Ben', last_name='Reyes', city='Cebu City',
                 created_at=utc(2026, 2, 4)),
        Customer(id='U3', city='Manila', created_at=utc(2026, 2, 11)),
    ]


@pytest.fixture
def sample_stock():
    return [
        ProductStock(product_id='GPU', product_name='RTX 4060', current_stock=3),
        ProductStock(product_id='SSD', product_name='NVMe SSD', current_stock=40),
        ProductStock(product_id='CPU', product_name='Ryzen 5 7600', current_stock=0),
        ProductStock(product_id='FAN', product_name='Case Fan', current_stock=25),
    ]


@pytest.fixture
def repositories(sample_orders, sample_customers, sample_stock):
    """返回固定样例数据的数据仓库"""
    payments = [o.payment for o in sample_orders if o.payment]
    return {
        'order_repo': Mock(get_orders=Mock(return_value=sample_orders)),
        'payment_repo': Mock(get_payments=Mock(return_value=payments)),
        'customer_repo': Mock(get_customers=Mock(return_value=sample_customers)),
        'inventory_repo': Mock(get_stock_levels=Mock(return_value=sample_stock)),
    }


@pytest.fixture
def engine(repositories, settings, now):
    from storefront_analytics.engine.core import ReportEngine
    return ReportEngine(settings=settings, clock=lambda: now, **repositories)
