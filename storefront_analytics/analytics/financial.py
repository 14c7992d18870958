"""财务分析：利润瀑布、现金流、税费、支付方式与经营指标

成本项按毛营收的固定比例估算，比例集中在 CostRatios 中，可通过配置覆盖。
"""
import logging
from dataclasses import dataclass, asdict, field, fields
from typing import Any, Dict, List, Mapping, Optional

from ..data.models import Order, Payment
from .frames import (
    completed_only, items_frame, orders_frame, payments_frame, percent_change, percentage,
    safe_divide, within
)
from .periods import PeriodWindow, iter_buckets

logger = logging.getLogger(__name__)

TOP_PROFITABLE_PRODUCTS = 10
OUTSTANDING_STATUSES = ('pending', 'processing')


@dataclass(frozen=True)
class CostRatios:
    """各项成本占毛营收的比例"""
    cogs: float = 0.40
    shipping: float = 0.08
    payment_fees: float = 0.035
    marketing: float = 0.10
    operations: float = 0.12
    discounts: float = 0.05
    vat: float = 0.12
    withholding: float = 0.02
    expected_collection: float = 0.85

    @property
    def operating_expenses(self) -> float:
        return self.shipping + self.payment_fees + self.marketing + self.operations

    @property
    def outflow(self) -> float:
        """现金流出占比（COGS + 运营费用）"""
        return self.cogs + self.operating_expenses

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "CostRatios":
        """从配置字典构建，未给出的比例使用默认值"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown cost ratios: {', '.join(unknown)}")

        parsed = {}
        for name, value in values.items():
            ratio = float(value)
            if ratio < 0:
                raise ValueError(f"Cost ratio '{name}' must not be negative, got {ratio}")
            parsed[name] = ratio
        return cls(**parsed)


DEFAULT_COST_RATIOS = CostRatios()


@dataclass
class ProfitWaterfall:
    """从毛营收到净利润的逐级拆解"""
    gross_revenue: float
    refunds: float
    discounts: float
    net_revenue: float
    cogs: float
    gross_profit: float
    shipping_costs: float
    payment_fees: float
    marketing_costs: float
    operational_expenses: float
    total_operating_expenses: float
    net_profit: float
    # 以下百分比均相对净营收
    cogs_pct: float = 0.0
    gross_margin: float = 0.0
    shipping_pct: float = 0.0
    payment_fees_pct: float = 0.0
    marketing_pct: float = 0.0
    operations_pct: float = 0.0
    operating_expenses_pct: float = 0.0
    net_margin: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def profit_waterfall(
        gross_revenue: float,
        refunds: float = 0.0,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> ProfitWaterfall:
    gross_revenue = float(gross_revenue)
    discounts = gross_revenue * ratios.discounts
    net_revenue = gross_revenue - float(refunds) - discounts

    cogs = gross_revenue * ratios.cogs
    gross_profit = net_revenue - cogs
    shipping = gross_revenue * ratios.shipping
    payment_fees = gross_revenue * ratios.payment_fees
    marketing = gross_revenue * ratios.marketing
    operations = gross_revenue * ratios.operations
    operating_total = shipping + payment_fees + marketing + operations
    net_profit = gross_profit - operating_total

    def pct(amount: float) -> float:
        return percentage(amount, net_revenue)

    return ProfitWaterfall(
        gross_revenue=gross_revenue,
        refunds=float(refunds),
        discounts=discounts,
        net_revenue=net_revenue,
        cogs=cogs,
        gross_profit=gross_profit,
        shipping_costs=shipping,
        payment_fees=payment_fees,
        marketing_costs=marketing,
        operational_expenses=operations,
        total_operating_expenses=operating_total,
        net_profit=net_profit,
        cogs_pct=pct(cogs),
        gross_margin=pct(gross_profit),
        shipping_pct=pct(shipping),
        payment_fees_pct=pct(payment_fees),
        marketing_pct=pct(marketing),
        operations_pct=pct(operations),
        operating_expenses_pct=pct(operating_total),
        net_margin=pct(net_profit)
    )


@dataclass
class RevenueBreakdown:
    gross_revenue: float
    net_revenue: float
    refunds: float
    discounts: float
    cancelled: float
    avg_order_value: float
    total_orders: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _status_total(df, status: str) -> float:
    return float(df.loc[df['status'] == status, 'total'].sum())


def revenue_breakdown(
        orders: List[Order],
        window: PeriodWindow,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> RevenueBreakdown:
    """毛营收、退款、取消金额与净营收"""
    df = within(orders_frame(orders), window)
    completed = completed_only(df)

    gross = float(completed['total'].sum())
    refunds = _status_total(df, 'refunded')
    discounts = gross * ratios.discounts

    return RevenueBreakdown(
        gross_revenue=gross,
        net_revenue=gross - refunds - discounts,
        refunds=refunds,
        discounts=discounts,
        cancelled=_status_total(df, 'cancelled'),
        avg_order_value=safe_divide(gross, len(completed)),
        total_orders=int(len(completed))
    )


@dataclass
class CashFlow:
    inflow: float
    outflow: float
    net_cash_flow: float
    pending_orders: int
    pending_amount: float
    processing_orders: int
    processing_amount: float
    paid_orders: int
    paid_amount: float
    total_outstanding_orders: int
    total_outstanding_amount: float
    expected_collection: float
    dso: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def cash_flow(
        orders: List[Order],
        window: PeriodWindow,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> CashFlow:
    """现金流入/流出以及待回款金额

    DSO 按 待回款 / 毛营收 × 窗口天数 估算。
    """
    df = within(orders_frame(orders), window)
    completed = completed_only(df)

    paid_amount = float(completed['total'].sum())
    outflow = paid_amount * ratios.outflow

    pending = df[df['status'] == 'pending']
    processing = df[df['status'] == 'processing']
    pending_amount = float(pending['total'].sum())
    processing_amount = float(processing['total'].sum())
    outstanding = pending_amount + processing_amount

    return CashFlow(
        inflow=paid_amount,
        outflow=outflow,
        net_cash_flow=paid_amount - outflow,
        pending_orders=int(len(pending)),
        pending_amount=pending_amount,
        processing_orders=int(len(processing)),
        processing_amount=processing_amount,
        paid_orders=int(len(completed)),
        paid_amount=paid_amount,
        total_outstanding_orders=int(len(pending) + len(processing)),
        total_outstanding_amount=outstanding,
        expected_collection=outstanding * ratios.expected_collection,
        dso=round(safe_divide(outstanding, paid_amount) * window.days, 1)
    )


@dataclass
class TaxSummary:
    vat_collected: float
    processing_fees: float
    withholding_tax: float
    total_tax_obligation: float
    payment_fees: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def payment_methods(payments: List[Payment]) -> List[Dict[str, Any]]:
    """已支付款项按支付方式汇总，按金额降序"""
    df = payments_frame(payments)
    paid = df[df['payment_status'] == 'paid']
    total = float(paid['amount'].sum())

    grouped = paid.groupby('payment_method', sort=False).agg(
        count=('order_id', 'count'),
        amount=('amount', 'sum')
    ).sort_values('amount', ascending=False, kind='mergesort')

    return [{
        'method': str(method).upper(),
        'count': int(row['count']),
        'amount': float(row['amount']),
        'percentage': percentage(row['amount'], total)
    } for method, row in grouped.iterrows()]


def tax_summary(
        gross_revenue: float,
        ratios: CostRatios = DEFAULT_COST_RATIOS,
        methods: Optional[List[Dict[str, Any]]] = None
) -> TaxSummary:
    """增值税、代扣税和支付手续费"""
    cogs = gross_revenue * ratios.cogs
    vat = gross_revenue * ratios.vat
    withholding = cogs * ratios.withholding

    fees = [{
        'method': m['method'],
        'transactions': m['count'],
        'amount': m['amount'],
        'fees': m['amount'] * ratios.payment_fees,
        'fee_percentage': round(ratios.payment_fees * 100, 2)
    } for m in (methods or [])]

    return TaxSummary(
        vat_collected=vat,
        processing_fees=gross_revenue * ratios.payment_fees,
        withholding_tax=withholding,
        total_tax_obligation=vat + withholding,
        payment_fees=fees
    )


def order_status_summary(orders: List[Order]) -> List[Dict[str, Any]]:
    """按订单状态统计数量和金额，保持首次出现的顺序"""
    df = orders_frame(orders)
    grouped = df.groupby(df['status'].fillna('unknown'), sort=False).agg(
        count=('order_id', 'count'),
        total=('total', 'sum')
    )
    return [{
        'status': str(status).capitalize(),
        'count': int(row['count']),
        'total': float(row['total'])
    } for status, row in grouped.iterrows()]


def product_profitability(
        orders: List[Order],
        window: PeriodWindow,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> Dict[str, List[Dict[str, Any]]]:
    """商品和品类的估算毛利"""
    items = within(completed_only(items_frame(orders)), window)
    margin = (1 - ratios.cogs) * 100

    def profit_row(name: str, revenue: float, units: int) -> Dict[str, Any]:
        cogs = revenue * ratios.cogs
        return {
            'name': name,
            'units_sold': units,
            'revenue': revenue,
            'cogs': cogs,
            'profit': revenue - cogs,
            'margin': margin if revenue > 0 else 0.0
        }

    per_product = items.groupby('product_id', sort=False).agg(
        name=('product_name', 'first'),
        units=('quantity', 'sum'),
        revenue=('total', 'sum')
    ).sort_values('revenue', ascending=False, kind='mergesort')

    per_category = items.groupby('category', sort=False).agg(
        units=('quantity', 'sum'),
        revenue=('total', 'sum')
    ).sort_values('revenue', ascending=False, kind='mergesort')

    return {
        'top_products': [
            profit_row(str(row['name']), float(row['revenue']), int(row['units']))
            for _, row in per_product.head(TOP_PROFITABLE_PRODUCTS).iterrows()
        ],
        'categories': [
            profit_row(str(name), float(row['revenue']), int(row['units']))
            for name, row in per_category.iterrows()
        ]
    }


@dataclass
class PeriodSnapshot:
    revenue: float
    avg_order_value: float
    total_orders: int
    gross_profit: float
    net_profit: float
    profit_margin: float


@dataclass
class PerformanceMetrics:
    current: PeriodSnapshot
    previous: PeriodSnapshot
    growth_rate: float
    cac: float
    roas: float
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def growth_summary(growth_rate: float) -> str:
    if growth_rate > 10:
        return 'Strong growth! Revenue is significantly up compared to previous period.'
    if growth_rate > 0:
        return 'Positive growth. Revenue is moderately increasing.'
    if growth_rate > -10:
        return 'Slight decline. Consider reviewing marketing strategies.'
    return 'Significant decline. Immediate attention required.'


def _snapshot(orders: List[Order], window: PeriodWindow, ratios: CostRatios) -> PeriodSnapshot:
    breakdown = revenue_breakdown(orders, window, ratios)
    waterfall = profit_waterfall(breakdown.gross_revenue, breakdown.refunds, ratios)
    return PeriodSnapshot(
        revenue=breakdown.gross_revenue,
        avg_order_value=breakdown.avg_order_value,
        total_orders=breakdown.total_orders,
        gross_profit=waterfall.gross_profit,
        net_profit=waterfall.net_profit,
        profit_margin=waterfall.net_margin
    )


def performance_metrics(
        orders: List[Order],
        previous_orders: List[Order],
        window: PeriodWindow,
        previous_window: Optional[PeriodWindow] = None,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> PerformanceMetrics:
    """本期与上期对比：增长率、获客成本、广告回报率"""
    previous_window = previous_window or window.previous()
    current = _snapshot(orders, window, ratios)
    previous = _snapshot(previous_orders, previous_window, ratios)

    marketing = current.revenue * ratios.marketing
    growth_rate = percent_change(current.revenue, previous.revenue)

    return PerformanceMetrics(
        current=current,
        previous=previous,
        growth_rate=growth_rate,
        cac=marketing / (current.total_orders or 1),
        roas=safe_divide(current.revenue, marketing),
        summary=growth_summary(growth_rate)
    )


def cash_flow_trend(
        orders: List[Order],
        window: PeriodWindow,
        ratios: CostRatios = DEFAULT_COST_RATIOS
) -> List[Dict[str, Any]]:
    """按时间桶统计现金流入、流出和净额，空桶补0"""
    df = completed_only(orders_frame(orders))

    points = []
    for bucket in iter_buckets(window):
        inflow = float(within(df, bucket)['total'].sum())
        outflow = inflow * ratios.outflow
        points.append({
            'period_label': bucket.label,
            'inflow': inflow,
            'outflow': outflow,
            'net': inflow - outflow
        })
    return points
