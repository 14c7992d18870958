from datetime import datetime, timezone

import numpy as np
import pandas as pd
import pytest
from unittest.mock import Mock, patch

from storefront_analytics.data.connectors import ClickHouseConnector
from storefront_analytics.data.models import Order, to_utc
from storefront_analytics.data.repositories import (
    CustomerRepository, InventoryRepository, OrderRepository, PaymentRepository
)

START = datetime(2026, 2, 1, tzinfo=timezone.utc)
END = datetime(2026, 2, 15, tzinfo=timezone.utc)


def route_queries(orders=None, items=None, payments=None):
    """按查询的表名返回不同的DataFrame"""
    def execute_df(query, params=None):
        if 'FROM order_items' in query:
            return pd.DataFrame(items or [])
        if 'FROM payments' in query:
            return pd.DataFrame(payments or [])
        return pd.DataFrame(orders or [])
    return execute_df


@pytest.fixture
def connector():
    with patch('storefront_analytics.data.repositories.ClickHouseConnector') as mock_class:
        yield mock_class.return_value


class TestOrderRepository:
    """测试订单数据仓库"""

    def test_orders_with_items_and_latest_payment(self, connector):
        connector.execute_df.side_effect = route_queries(
            orders=[
                {'id': 'O1', 'status': 'COMPLETED', 'created_at': pd.Timestamp('2026-02-02 10:00'),
                 'total': 25000.0, 'subtotal': 25000.0, 'discount': np.nan, 'shipping_fee': 0.0,
                 'user_id': 'U1', 'delivery_type': 'delivery'},
                {'id': 'O2', 'status': 'pending', 'created_at': pd.Timestamp('2026-02-03 09:00'),
                 'total': 800.0, 'subtotal': 650.0, 'discount': 0.0, 'shipping_fee': 150.0,
                 'user_id': None, 'delivery_type': 'pickup'},
            ],
            items=[
                {'order_id': 'O1', 'product_id': 'GPU', 'product_name': 'RTX 4060', 'category': 'Graphics Cards',
                 'brand': 'NVIDIA', 'sku': None, 'quantity': 1, 'unit_price': 19500.0},
                {'order_id': 'O1', 'product_id': 'SSD', 'product_name': None, 'category': None,
                 'brand': None, 'sku': 'SKU-SSD', 'quantity': 1, 'unit_price': 5500.0},
            ],
            payments=[
                {'order_id': 'O1', 'payment_method': 'GCash', 'payment_status': 'paid', 'amount': 25000.0,
                 'paid_at': pd.Timestamp('2026-02-02 11:00'), 'created_at': pd.Timestamp('2026-02-02 11:00')},
                {'order_id': 'O1', 'payment_method': 'card', 'payment_status': 'failed', 'amount': 25000.0,
                 'paid_at': pd.NaT, 'created_at': pd.Timestamp('2026-02-02 10:30')},
            ]
        )

        orders = OrderRepository().get_orders(START, END)

        assert [o.id for o in orders] == ['O1', 'O2']
        first = orders[0]
        assert first.status == 'completed'
        assert first.discount == 0.0
        assert first.created_at == datetime(2026, 2, 2, 10, tzinfo=timezone.utc)
        assert [i.product_id for i in first.items] == ['GPU', 'SSD']
        assert first.items[1].product_name == 'Unknown Product'
        assert first.items[1].category == 'Uncategorized'
        assert first.payment.payment_method == 'gcash'
        assert first.payment.payment_status == 'paid'
        assert orders[1].items == []
        assert orders[1].payment is None
        assert orders[1].user_id is None

    def test_query_parameters(self, connector):
        connector.execute_df.side_effect = route_queries()

        assert OrderRepository().get_orders(START, END, statuses=['completed'], customers_only=True) == []

        query, params = connector.execute_df.call_args.args
        assert params == {'start': START, 'end': END, 'statuses': ['completed']}
        assert 'status IN {statuses:Array(String)}' in query
        assert 'user_id IS NOT NULL' in query
        # 没有订单时不再查询明细
        assert connector.execute_df.call_count == 1

    def test_query_errors_propagate(self, connector):
        connector.execute_df.side_effect = ConnectionError('down')

        with pytest.raises(ConnectionError):
            OrderRepository().get_orders(START, END)


class TestOtherRepositories:
    """测试支付、客户、库存数据仓库"""

    def test_payments(self, connector):
        connector.execute_df.return_value = pd.DataFrame([
            {'order_id': 'O1', 'payment_method': 'COD', 'payment_status': 'PAID', 'amount': '1200.50',
             'paid_at': None, 'created_at': '2026-02-02T10:00:00Z'},
        ])

        payments = PaymentRepository().get_payments(START, END, status='paid')

        assert payments[0].payment_method == 'cod'
        assert payments[0].amount == 1200.5
        assert connector.execute_df.call_args.args[1]['status'] == 'paid'

    def test_customers(self, connector):
        connector.execute_df.return_value = pd.DataFrame([
            {'id': 'U1', 'email': '', 'full_name': None, 'first_name': 'Ana', 'last_name': 'Cruz',
             'city': 'Manila', 'role': 'customer', 'created_at': pd.Timestamp('2025-12-01')},
        ])

        customer = CustomerRepository().get_customers()[0]

        assert customer.display_name == 'Ana Cruz'
        assert customer.email is None
        assert customer.created_at == datetime(2025, 12, 1, tzinfo=timezone.utc)

    def test_stock_levels(self, connector):
        connector.execute_df.return_value = pd.DataFrame([
            {'product_id': 'GPU', 'product_name': 'RTX 4060', 'current_stock': 3.0,
             'category': 'Graphics Cards', 'brand': 'NVIDIA', 'sku': None},
        ])

        stock = InventoryRepository().get_stock_levels()

        assert stock[0].current_stock == 3
        assert stock[0].sku is None

    def test_empty_results(self, connector):
        connector.execute_df.return_value = pd.DataFrame()
        assert CustomerRepository().get_customers() == []
        assert InventoryRepository().get_stock_levels() == []


class TestModels:
    """测试数据模型转换"""

    @pytest.mark.parametrize("value, expected", [
        ('2026-02-01', datetime(2026, 2, 1, tzinfo=timezone.utc)),
        ('2026-02-01T08:00:00+08:00', datetime(2026, 2, 1, tzinfo=timezone.utc)),
        (datetime(2026, 2, 1, 5), datetime(2026, 2, 1, 5, tzinfo=timezone.utc)),
        (None, None),
        ('', None),
    ])
    def test_to_utc(self, value, expected):
        assert to_utc(value) == expected

    def test_order_requires_timestamp(self):
        with pytest.raises(ValueError):
            Order.from_row({'id': 'X', 'status': 'pending', 'created_at': None})

    def test_item_total_defaults_to_price_times_quantity(self):
        order = Order.from_row({
            'id': 'X', 'status': 'completed', 'created_at': '2026-02-01',
            'items': [{'product_id': 'RAM', 'quantity': '2', 'price': 4000}]
        })
        assert order.items[0].total == 8000.0
        assert order.payment is None


class TestClickHouseConnector:
    """测试ClickHouse连接器"""

    @patch('config.settings.get_settings')
    def test_unconfigured_host(self, mock_settings):
        mock_settings.return_value.clickhouse = Mock(host='')
        db = ClickHouseConnector()

        with pytest.raises(ConnectionError):
            db.client
        with pytest.raises(ConnectionError):
            db.execute('SELECT 1')

    @patch('clickhouse_connect.get_client')
    @patch('config.settings.get_settings')
    def test_query_and_close(self, mock_settings, mock_get_client):
        mock_settings.return_value.clickhouse = Mock(
            host='ch.internal', port=8443, user='default', password='', database='storefront'
        )
        client = mock_get_client.return_value
        client.query_df.return_value = pd.DataFrame({'total': [1.0]})
        client.query.return_value = Mock(result_rows=[(1,)])

        db = ClickHouseConnector()

        assert list(db.execute_df('SELECT total FROM orders', {'x': 1})['total']) == [1.0]
        client.query_df.assert_called_once_with('SELECT total FROM orders', parameters={'x': 1})
        assert db.execute('SELECT 1') == [(1,)]
        assert mock_get_client.call_args.kwargs['secure'] is True

        db.close()
        client.close.assert_called_once_with()
        assert db._client is None
