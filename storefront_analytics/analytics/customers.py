"""客户分析：RFM分群、留存/流失、同期群以及客户画像"""
import math
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from ..data.models import Customer, Order
from .frames import completed_only, items_frame, orders_frame, percentage, safe_divide, within
from .periods import PeriodWindow, iter_buckets

logger = logging.getLogger(__name__)

ACTIVE_DAYS = 60
CHURN_DAYS = 120
RETENTION_HORIZONS = (30, 60, 90)
COHORT_OFFSETS = (1, 2, 3, 6)
TOP_CUSTOMERS = 10
TOP_LOCATIONS = 10
DEFAULT_CHURN_LOSS = 5000.0

# 按顺序匹配，命中第一条即停止；条件之间有重叠，顺序不能调整
SEGMENT_RULES: Tuple[Tuple[str, str, Callable[[int, int], bool]], ...] = (
    ('Champions', 'Best customers - High value, frequent buyers',
     lambda r, f: r <= 30 and f >= 5),
    ('Loyal', 'Regular buyers, good potential',
     lambda r, f: r <= 60 and 3 <= f < 5),
    ('Potential Loyalist', 'Recent repeat buyers',
     lambda r, f: r <= 30 and f == 2),
    ('New Customers', 'First-time buyers',
     lambda r, f: f == 1 and r <= 30),
    ('At Risk', 'Were loyal, now inactive',
     lambda r, f: 60 < r <= 120 and f >= 3),
    ('Lost', "Haven't purchased in 4+ months",
     lambda r, f: r > 120),
)

ORDER_SIZE_BANDS = (
    (None, 5000), (5000, 15000), (15000, 30000), (30000, None)
)

FREQUENCY_BANDS = (
    ('Once', 1, 1), ('2-3 times', 2, 3), ('4-6 times', 4, 6), ('7+ times', 7, None)
)


def _days_between(later: datetime, earlier: datetime) -> int:
    """整天数，向下取整，不小于0"""
    return max(0, (later - earlier).days)


def _customer_orders(orders: List[Order]) -> pd.DataFrame:
    df = orders_frame(orders)
    return df[df['user_id'].notna()]


# ---------------------------------------------------------------------------
# 客户总览
# ---------------------------------------------------------------------------

@dataclass
class TopCustomer:
    rank: int
    customer_id: str
    name: str
    email: str
    orders: int
    total_spent: float
    avg_order_value: float


@dataclass
class CustomerMetrics:
    total_customers: int
    active_customers: int
    new_customers: int
    returning_customers: int
    top_customers: List[TopCustomer] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def customer_metrics(orders: List[Order], customers: List[Customer]) -> CustomerMetrics:
    """活跃/新客/回头客数量以及消费最高的客户"""
    df = _customer_orders(orders)
    per_customer = df.groupby('user_id', sort=False).agg(
        total_spent=('total', 'sum'),
        order_count=('order_id', 'count')
    ).sort_values('total_spent', ascending=False, kind='mergesort')

    profiles = {c.id: c for c in customers}
    top = []
    for rank, (user_id, row) in enumerate(per_customer.head(TOP_CUSTOMERS).iterrows(), start=1):
        profile = profiles.get(str(user_id))
        count = int(row['order_count'])
        spent = float(row['total_spent'])
        top.append(TopCustomer(
            rank=rank,
            customer_id=str(user_id),
            name=profile.display_name if profile else 'Unknown Customer',
            email=(profile.email if profile and profile.email else 'No Email'),
            orders=count,
            total_spent=spent,
            avg_order_value=safe_divide(spent, count)
        ))

    return CustomerMetrics(
        total_customers=len(customers),
        active_customers=int(len(per_customer)),
        new_customers=int((per_customer['order_count'] == 1).sum()),
        returning_customers=int((per_customer['order_count'] > 1).sum()),
        top_customers=top
    )


# ---------------------------------------------------------------------------
# RFM
# ---------------------------------------------------------------------------

@dataclass
class RFMRecord:
    """单个客户的RFM指标"""
    customer_id: str
    recency: int
    frequency: int
    monetary: float
    last_order_at: Optional[datetime] = None


@dataclass
class SegmentSummary:
    name: str
    count: int
    revenue: float
    avg_spend: float
    description: str


@dataclass
class RFMAnalysis:
    avg_recency: int
    avg_frequency: float
    avg_monetary: float
    customer_count: int
    unclassified_count: int
    segments: List[SegmentSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_rfm(orders: List[Order], reference: datetime) -> List[RFMRecord]:
    """按客户计算最近一次购买距今天数、下单次数和消费金额"""
    df = _customer_orders(orders)
    grouped = df.groupby('user_id', sort=False).agg(
        last_order_at=('created_at', 'max'),
        frequency=('order_id', 'count'),
        monetary=('total', 'sum')
    )

    records = []
    for user_id, row in grouped.iterrows():
        last_order_at = row['last_order_at'].to_pydatetime()
        records.append(RFMRecord(
            customer_id=str(user_id),
            recency=_days_between(reference, last_order_at),
            frequency=int(row['frequency']),
            monetary=float(row['monetary']),
            last_order_at=last_order_at
        ))
    return records


def classify_segment(record: RFMRecord) -> Optional[str]:
    """返回第一条命中的分群；都不命中时返回None（例如只下过一单且超过30天）"""
    for name, _, rule in SEGMENT_RULES:
        if rule(record.recency, record.frequency):
            return name
    return None


def rfm_analysis(orders: List[Order], window: PeriodWindow) -> RFMAnalysis:
    """RFM分群汇总，以窗口结束时间为参照日"""
    in_window = [o for o in orders if o.user_id is not None and window.contains(o.created_at)]
    records = compute_rfm(in_window, window.end)

    totals = {name: {'count': 0, 'revenue': 0.0} for name, _, _ in SEGMENT_RULES}
    unclassified = 0
    for record in records:
        segment = classify_segment(record)
        if segment is None:
            unclassified += 1
            continue
        totals[segment]['count'] += 1
        totals[segment]['revenue'] += record.monetary

    if unclassified:
        logger.debug(f"{unclassified} customers matched no RFM segment")

    segments = [
        SegmentSummary(
            name=name,
            count=totals[name]['count'],
            revenue=totals[name]['revenue'],
            avg_spend=safe_divide(totals[name]['revenue'], totals[name]['count']),
            description=description
        )
        for name, description, _ in SEGMENT_RULES
        if totals[name]['count'] > 0
    ]

    n = len(records)
    return RFMAnalysis(
        avg_recency=int(math.floor(safe_divide(sum(r.recency for r in records), n) + 0.5)),
        avg_frequency=round(safe_divide(sum(r.frequency for r in records), n), 1),
        avg_monetary=safe_divide(sum(r.monetary for r in records), n),
        customer_count=n,
        unclassified_count=unclassified,
        segments=segments
    )


# ---------------------------------------------------------------------------
# 留存与流失
# ---------------------------------------------------------------------------

@dataclass
class RetentionSummary:
    total_customers: int
    retention_rate: float
    churn_rate: float
    at_risk_count: int
    churned_customers: int
    churn_revenue_loss: float
    avg_lifespan: int
    retention_30: float
    retention_60: float
    retention_90: float
    retention_curve: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _rate(count: int, total: int) -> float:
    return round(percentage(count, total), 1)


def retention_churn(
        orders: List[Order],
        as_of: datetime,
        churn_loss_per_customer: float = DEFAULT_CHURN_LOSS
) -> RetentionSummary:
    """基于已完成订单计算留存率、流失率和风险客户数"""
    df = completed_only(_customer_orders(orders))
    last_orders = df.groupby('user_id')['created_at'].max()
    days = [_days_between(as_of, ts.to_pydatetime()) for ts in last_orders]
    total = len(days)

    active = sum(1 for d in days if d <= ACTIVE_DAYS)
    churned = sum(1 for d in days if d > CHURN_DAYS)
    at_risk = sum(1 for d in days if ACTIVE_DAYS < d <= CHURN_DAYS)
    within_horizon = {n: _rate(sum(1 for d in days if d <= n), total) for n in RETENTION_HORIZONS}

    retention_rate = _rate(active, total)
    churn_rate = _rate(churned, total)

    def curve_point(label: str, retained: float, churn: Optional[float] = None) -> Dict[str, Any]:
        if churn is None:
            churn = round(100 - retained, 1) if total else 0.0
        return {'period': label, 'retention_rate': retained, 'churn_rate': churn}

    retention_curve = [
        curve_point('0-30 days', within_horizon[30]),
        curve_point('31-60 days', within_horizon[60]),
        curve_point('61-90 days', within_horizon[90]),
        curve_point('90+ days', retention_rate, churn_rate),
    ]

    return RetentionSummary(
        total_customers=total,
        retention_rate=retention_rate,
        churn_rate=churn_rate,
        at_risk_count=at_risk,
        churned_customers=churned,
        churn_revenue_loss=churned * float(churn_loss_per_customer),
        avg_lifespan=int(math.floor(safe_divide(sum(days), total) + 0.5)),
        retention_30=within_horizon[30],
        retention_60=within_horizon[60],
        retention_90=within_horizon[90],
        retention_curve=retention_curve
    )


# ---------------------------------------------------------------------------
# 同期群
# ---------------------------------------------------------------------------

@dataclass
class CohortRow:
    cohort: str
    customers: int
    revenue: float
    retention_1: float
    retention_2: float
    retention_3: float
    retention_6: float


@dataclass
class CohortAnalysis:
    cohorts: List[CohortRow]
    best_cohort: Optional[Dict[str, Any]]
    avg_cohort_size: float
    avg_retention_3_month: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def cohort_analysis(orders: List[Order]) -> CohortAnalysis:
    """按首单月份划分同期群，统计第1/2/3/6个月的复购比例"""
    df = completed_only(_customer_orders(orders)).copy()
    if df.empty:
        return CohortAnalysis(cohorts=[], best_cohort=None, avg_cohort_size=0.0, avg_retention_3_month=0.0)

    df['month_index'] = df['created_at'].dt.year * 12 + df['created_at'].dt.month - 1
    df['cohort_index'] = df.groupby('user_id')['month_index'].transform('min')

    active_months = df.groupby('user_id')['month_index'].apply(set).to_dict()

    rows = []
    for cohort_index, group in df.groupby('cohort_index'):
        members = group['user_id'].unique()
        size = len(members)
        retention = {}
        for offset in COHORT_OFFSETS:
            returned = sum(1 for uid in members if cohort_index + offset in active_months[uid])
            retention[offset] = _rate(returned, size)

        year, month = divmod(int(cohort_index), 12)
        rows.append(CohortRow(
            cohort=datetime(year, month + 1, 1).strftime('%b %Y'),
            customers=int(size),
            revenue=float(group['total'].sum()),
            retention_1=retention[1],
            retention_2=retention[2],
            retention_3=retention[3],
            retention_6=retention[6]
        ))

    # 最新的同期群在前
    rows.reverse()

    best = max(rows, key=lambda r: r.retention_3)
    return CohortAnalysis(
        cohorts=rows,
        best_cohort={'cohort': best.cohort, 'retention': best.retention_3},
        avg_cohort_size=round(sum(r.customers for r in rows) / len(rows), 1),
        avg_retention_3_month=round(sum(r.retention_3 for r in rows) / len(rows), 1)
    )


# ---------------------------------------------------------------------------
# 客户增长、画像与购买旅程
# ---------------------------------------------------------------------------

@dataclass
class GrowthPoint:
    period_label: str
    new_customers: int
    active_customers: int
    total_customers: int


def customer_growth(orders: List[Order], customers: List[Customer], window: PeriodWindow) -> List[GrowthPoint]:
    """按时间桶统计新注册客户、下单客户和累计客户数"""
    df = _customer_orders(orders)

    points = []
    for bucket in iter_buckets(window):
        registered = [c for c in customers if c.created_at is not None and bucket.start <= c.created_at < bucket.end]
        total = sum(1 for c in customers if c.created_at is None or c.created_at < bucket.end)
        points.append(GrowthPoint(
            period_label=bucket.label,
            new_customers=len(registered),
            active_customers=int(within(df, bucket)['user_id'].nunique()),
            total_customers=total
        ))
    return points


@dataclass
class Demographics:
    locations: List[Dict[str, Any]]
    payment_methods: List[Dict[str, Any]]
    categories: List[Dict[str, Any]]
    order_size_distribution: List[Dict[str, Any]]
    top_location: str
    top_location_percentage: float
    top_payment_method: str
    top_payment_percentage: float
    top_category: str
    top_category_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _band_label(low: Optional[float], high: Optional[float], currency: str) -> str:
    if low is None:
        return f"Under {currency}{high:,.0f}"
    if high is None:
        return f"Over {currency}{low:,.0f}"
    return f"{currency}{low:,.0f}-{currency}{high:,.0f}"


def _counts(values: pd.Series, name_key: str, value_key: str) -> List[Dict[str, Any]]:
    counts = values.value_counts(sort=True)
    return [{name_key: str(name), value_key: int(count)} for name, count in counts.items()]


def demographics(orders: List[Order], customers: List[Customer], currency: str = "₱") -> Demographics:
    """地区、支付方式、品类偏好与订单金额分布"""
    df = orders_frame(orders)
    items = items_frame(orders)
    total_orders = len(df)

    cities = pd.Series([c.city or 'Unknown' for c in customers], dtype=object)
    locations = _counts(cities, 'city', 'customers')[:TOP_LOCATIONS]
    payment_methods = _counts(df['payment_method'].fillna('unknown'), 'name', 'value')
    categories = _counts(items['category'], 'name', 'value')

    distribution = []
    for low, high in ORDER_SIZE_BANDS:
        mask = pd.Series(True, index=df.index)
        if low is not None:
            mask &= df['total'] >= low
        if high is not None:
            mask &= df['total'] < high
        count = int(mask.sum())
        distribution.append({
            'range': _band_label(low, high, currency),
            'orders': count,
            'percentage': _rate(count, total_orders)
        })

    return Demographics(
        locations=locations,
        payment_methods=payment_methods,
        categories=categories,
        order_size_distribution=distribution,
        top_location=locations[0]['city'] if locations else 'N/A',
        top_location_percentage=_rate(locations[0]['customers'], len(customers)) if locations else 0.0,
        top_payment_method=payment_methods[0]['name'] if payment_methods else 'N/A',
        top_payment_percentage=_rate(payment_methods[0]['value'], total_orders) if payment_methods else 0.0,
        top_category=categories[0]['name'] if categories else 'N/A',
        top_category_percentage=_rate(categories[0]['value'], len(items)) if categories else 0.0
    )


@dataclass
class JourneyMetrics:
    avg_days_between_orders: float
    avg_days_since_last_order: float
    purchase_frequency: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def purchase_journey(orders: List[Order], as_of: datetime) -> JourneyMetrics:
    """复购间隔与购买频次分布"""
    df = _customer_orders(orders)
    grouped = df.groupby('user_id').agg(
        first_order_at=('created_at', 'min'),
        last_order_at=('created_at', 'max'),
        order_count=('order_id', 'count')
    )
    total = len(grouped)

    gaps = [
        (row['last_order_at'] - row['first_order_at']).total_seconds() / 86400 / (row['order_count'] - 1)
        for _, row in grouped.iterrows() if row['order_count'] > 1
    ]
    since_last = [_days_between(as_of, ts.to_pydatetime()) for ts in grouped['last_order_at']]

    frequency = []
    for label, low, high in FREQUENCY_BANDS:
        mask = grouped['order_count'] >= low
        if high is not None:
            mask &= grouped['order_count'] <= high
        count = int(mask.sum())
        frequency.append({'label': label, 'count': count, 'percentage': _rate(count, total)})

    return JourneyMetrics(
        avg_days_between_orders=round(safe_divide(sum(gaps), len(gaps)), 1),
        avg_days_since_last_order=round(safe_divide(sum(since_last), len(since_last)), 1),
        purchase_frequency=frequency
    )
