from datetime import datetime, timedelta, timezone

import numpy as np
import pytest

from storefront_analytics.analytics.customers import (
    RFMRecord, classify_segment, cohort_analysis, compute_rfm, customer_growth, customer_metrics,
    demographics, purchase_journey, retention_churn, rfm_analysis
)
from storefront_analytics.analytics.periods import PeriodWindow
from storefront_analytics.data.models import ORDER_STATUSES


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def record(recency, frequency, monetary=1000.0):
    return RFMRecord(customer_id='C', recency=recency, frequency=frequency, monetary=monetary)


class TestSegmentClassification:
    """测试RFM分群规则及其顺序"""

    def test_champions_take_precedence(self):
        assert classify_segment(record(25, 6)) == 'Champions'

    @pytest.mark.parametrize("recency, frequency, segment", [
        (45, 4, 'Loyal'),
        (10, 3, 'Loyal'),
        (20, 2, 'Potential Loyalist'),
        (5, 1, 'New Customers'),
        (90, 7, 'At Risk'),
        (121, 1, 'Lost'),
        (200, 12, 'Lost'),
    ])
    def test_rules(self, recency, frequency, segment):
        assert classify_segment(record(recency, frequency)) == segment

    @pytest.mark.parametrize("recency, frequency", [(40, 1), (45, 2), (90, 2), (120, 1)])
    def test_unmatched_customers_stay_unclassified(self, recency, frequency):
        assert classify_segment(record(recency, frequency)) is None


class TestRFMAnalysis:
    """测试RFM汇总"""

    @pytest.fixture
    def orders(self, make_order, window):
        end = window.end
        orders = []
        # U1：5单，最近一单在10天前 -> Champions
        for i in range(5):
            orders.append(make_order(f"A{i}", 2000.0, 'completed', end - timedelta(days=10 + i), 'U1'))
        # U2：1单，12天前 -> New Customers
        orders.append(make_order('B0', 1500.0, 'pending', end - timedelta(days=12), 'U2'))
        # U3：2单，最近一单 13.5 天前 -> Potential Loyalist
        orders.append(make_order('C0', 500.0, 'completed', end - timedelta(days=13, hours=12), 'U3'))
        orders.append(make_order('C1', 700.0, 'completed', end - timedelta(days=13, hours=13), 'U3'))
        # 游客订单不参与
        orders.append(make_order('G0', 9999.0, 'completed', end - timedelta(days=1), None))
        return orders

    def test_compute_rfm(self, orders, window):
        records = {r.customer_id: r for r in compute_rfm(orders, window.end)}

        assert set(records) == {'U1', 'U2', 'U3'}
        assert records['U1'].recency == 10
        assert records['U1'].frequency == 5
        assert records['U1'].monetary == 10000.0
        assert records['U3'].recency == 13

    def test_segments(self, orders, window):
        analysis = rfm_analysis(orders, window)
        segments = {s.name: s for s in analysis.segments}

        assert [s.name for s in analysis.segments] == ['Champions', 'Potential Loyalist', 'New Customers']
        assert segments['Champions'].count == 1
        assert segments['Champions'].revenue == 10000.0
        assert segments['Champions'].avg_spend == 10000.0
        assert segments['Champions'].description == 'Best customers - High value, frequent buyers'
        assert analysis.customer_count == 3
        assert analysis.avg_frequency == pytest.approx(2.7)
        assert analysis.avg_recency == 12

    def test_unclassified_customers_are_excluded(self, make_order, window):
        # 只下过一单且已超过30天，不属于任何分群
        orders = [make_order('X', 800.0, 'completed', window.start, 'U9')]

        analysis = rfm_analysis(orders, PeriodWindow(window.start, window.start + timedelta(days=45)))

        assert analysis.segments == []
        assert analysis.unclassified_count == 1
        assert analysis.customer_count == 1

    def test_empty(self, window):
        analysis = rfm_analysis([], window)
        assert analysis.segments == []
        assert analysis.avg_recency == 0
        assert analysis.avg_frequency == 0
        assert analysis.avg_monetary == 0


class TestRetentionChurn:
    """测试留存与流失"""

    def test_rates(self, make_order, now):
        orders = [
            make_order(f"O{days}", 1000.0, 'completed', now - timedelta(days=days), f"U{days}")
            for days in (10, 45, 75, 100, 150)
        ]
        # 未完成订单不计入
        orders.append(make_order('P', 1000.0, 'pending', now - timedelta(days=1), 'U150'))

        summary = retention_churn(orders, now)

        assert summary.total_customers == 5
        assert summary.retention_30 == 20.0
        assert summary.retention_60 == 40.0
        assert summary.retention_90 == 60.0
        assert summary.retention_rate == 40.0
        assert summary.churn_rate == 20.0
        assert summary.at_risk_count == 2
        assert summary.churned_customers == 1
        assert summary.churn_revenue_loss == 5000.0
        assert summary.avg_lifespan == 76
        assert [p['period'] for p in summary.retention_curve] == [
            '0-30 days', '31-60 days', '61-90 days', '90+ days'
        ]
        assert summary.retention_curve[0]['churn_rate'] == 80.0
        assert summary.retention_curve[-1]['churn_rate'] == 20.0

    def test_rates_use_latest_order(self, make_order, now):
        orders = [
            make_order('A', 10.0, 'completed', now - timedelta(days=200), 'U1'),
            make_order('B', 10.0, 'delivered', now - timedelta(days=5), 'U1'),
        ]
        assert retention_churn(orders, now).retention_rate == 100.0

    @pytest.mark.parametrize("seed", [3, 11, 99])
    def test_retention_is_monotonic(self, make_order, now, seed):
        rng = np.random.default_rng(seed)
        orders = [
            make_order(f"O{i}", 100.0, str(rng.choice(ORDER_STATUSES)),
                       now - timedelta(days=int(rng.integers(0, 200))), f"U{int(rng.integers(0, 25))}")
            for i in range(80)
        ]
        summary = retention_churn(orders, now)
        assert summary.retention_30 <= summary.retention_60 <= summary.retention_90

    def test_empty(self, now):
        summary = retention_churn([], now)
        assert summary.retention_rate == 0
        assert summary.churn_rate == 0
        assert summary.retention_30 == summary.retention_60 == summary.retention_90 == 0
        assert all(p['churn_rate'] == 0 for p in summary.retention_curve)


class TestCohortAnalysis:
    """测试同期群"""

    def test_cohorts(self, make_order):
        orders = [
            make_order('A1', 1000.0, 'completed', utc(2026, 1, 5), 'A'),
            make_order('A2', 1000.0, 'completed', utc(2026, 2, 5), 'A'),
            make_order('A3', 1000.0, 'completed', utc(2026, 4, 5), 'A'),
            make_order('B1', 500.0, 'completed', utc(2026, 1, 20), 'B'),
            make_order('C1', 800.0, 'delivered', utc(2026, 2, 2), 'C'),
            make_order('D1', 800.0, 'cancelled', utc(2026, 3, 2), 'D'),
        ]

        analysis = cohort_analysis(orders)

        assert [c.cohort for c in analysis.cohorts] == ['Feb 2026', 'Jan 2026']
        january = analysis.cohorts[1]
        assert january.customers == 2
        assert january.revenue == 3500.0
        assert january.retention_1 == 50.0
        assert january.retention_2 == 0.0
        assert january.retention_3 == 50.0
        assert january.retention_6 == 0.0
        assert analysis.best_cohort == {'cohort': 'Jan 2026', 'retention': 50.0}
        assert analysis.avg_cohort_size == 1.5
        assert analysis.avg_retention_3_month == 25.0

    def test_empty(self):
        analysis = cohort_analysis([])
        assert analysis.cohorts == []
        assert analysis.best_cohort is None


class TestCustomerViews:
    """测试客户总览、增长、画像和购买旅程"""

    def test_customer_metrics(self, sample_orders, sample_customers):
        metrics = customer_metrics(sample_orders, sample_customers)

        assert metrics.total_customers == 3
        assert metrics.active_customers == 3
        assert metrics.new_customers == 1
        assert metrics.returning_customers == 2
        top = metrics.top_customers[0]
        assert (top.rank, top.name, top.email, top.orders) == (1, 'Ana Cruz', 'ana@example.com', 2)
        assert top.total_spent == 29000.0
        assert metrics.top_customers[1].name == 'Ben Reyes'
        assert metrics.top_customers[2].email == 'No Email'

    def test_customer_growth(self, sample_orders, sample_customers, window):
        points = customer_growth(sample_orders, sample_customers, window)

        assert [p.period_label for p in points] == ['Week 1', 'Week 2']
        assert [p.new_customers for p in points] == [1, 1]
        assert [p.total_customers for p in points] == [2, 3]
        assert [p.active_customers for p in points] == [2, 2]

    def test_demographics(self, sample_orders, sample_customers):
        result = demographics(sample_orders, sample_customers)

        assert result.top_location == 'Manila'
        assert result.top_location_percentage == pytest.approx(66.7)
        assert result.top_payment_method == 'gcash'
        assert [band['orders'] for band in result.order_size_distribution] == [1, 3, 1, 0]
        assert result.order_size_distribution[0]['range'] == 'Under ₱5,000'
        assert sum(band['percentage'] for band in result.order_size_distribution) == pytest.approx(100.0)

    def test_purchase_journey(self, make_order, now):
        orders = [
            make_order('A1', 100.0, 'completed', now - timedelta(days=30), 'A'),
            make_order('A2', 100.0, 'completed', now - timedelta(days=20), 'A'),
            make_order('A3', 100.0, 'completed', now - timedelta(days=10), 'A'),
            make_order('B1', 100.0, 'completed', now - timedelta(days=4), 'B'),
        ]

        journey = purchase_journey(orders, now)

        assert journey.avg_days_between_orders == 10.0
        assert journey.avg_days_since_last_order == 7.0
        counts = {band['label']: band['count'] for band in journey.purchase_frequency}
        assert counts == {'Once': 1, '2-3 times': 1, '4-6 times': 0, '7+ times': 0}

    def test_empty_views(self, window, now):
        assert customer_metrics([], []).top_customers == []
        assert demographics([], []).top_location == 'N/A'
        assert purchase_journey([], now).avg_days_between_orders == 0
        assert all(p.new_customers == 0 for p in customer_growth([], [], window))
