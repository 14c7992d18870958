import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..analytics import customers as customer_analytics
from ..analytics import dashboard as dashboard_analytics
from ..analytics import financial as financial_analytics
from ..analytics import sales as sales_analytics
from ..analytics.inventory import inventory_recommendations
from ..analytics.periods import PeriodWindow, period_label, resolve_period

logger = logging.getLogger(__name__)

REPORT_KINDS = ('sales', 'customers', 'financial', 'dashboard')


def get_repository(repo_class, mock_class):
    """获取数据仓库（如果连接失败则使用模拟）"""
    try:
        repo = repo_class()
        # 测试连接
        if hasattr(repo, 'db') and repo.db:
            repo.db.client  # 触发连接
        return repo
    except Exception as e:
        logger.warning(f"Failed to connect to database, using mock data: {e}")
        return mock_class()


def _rows(items) -> List[Dict[str, Any]]:
    return [asdict(item) for item in items]


class ReportEngine:
    """报表引擎：解析时间窗口 -> 并发拉取数据 -> 汇总计算"""

    def __init__(self, order_repo=None, payment_repo=None, customer_repo=None,
                 inventory_repo=None, settings=None,
                 clock: Optional[Callable[[], datetime]] = None, max_workers: int = 4):
        if settings is None:
            from config.settings import get_settings
            settings = get_settings()
        self.settings = settings
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_workers = max_workers

        # 数据层 - 添加容错，如果数据库连接失败则使用模拟数据
        from ..data.repositories import (
            OrderRepository, PaymentRepository, CustomerRepository, InventoryRepository
        )
        from ..data.mock_repository import (
            MockOrderRepository, MockPaymentRepository, MockCustomerRepository, MockInventoryRepository
        )
        self.order_repo = order_repo or get_repository(OrderRepository, MockOrderRepository)
        self.payment_repo = payment_repo or get_repository(PaymentRepository, MockPaymentRepository)
        self.customer_repo = customer_repo or get_repository(CustomerRepository, MockCustomerRepository)
        self.inventory_repo = inventory_repo or get_repository(InventoryRepository, MockInventoryRepository)

    @property
    def cost_ratios(self) -> financial_analytics.CostRatios:
        return self.settings.cost_ratios

    def resolve(self, period: str = 'month', start_date: Any = None, end_date: Any = None) -> PeriodWindow:
        return resolve_period(period, start_date, end_date, now=self.clock())

    def _fetch(self, name: str, fetch: Callable[..., list], *args) -> Tuple[list, Optional[str]]:
        """拉取单个数据源，失败时记录日志并返回空列表和错误信息"""
        try:
            return list(fetch(*args)), None
        except Exception as e:
            logger.error(f"Failed to fetch {name}: {e}")
            return [], str(e) or type(e).__name__

    def _fetch_all(self, jobs: Dict[str, Tuple[Callable[..., list], tuple]]
                   ) -> Tuple[Dict[str, list], List[Dict[str, str]]]:
        """并发拉取，全部完成后一起返回；失败的数据源记入warnings"""
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                name: pool.submit(self._fetch, name, fetch, *args)
                for name, (fetch, args) in jobs.items()
            }
            data, warnings = {}, []
            for name, future in futures.items():
                rows, error = future.result()
                data[name] = rows
                if error is not None:
                    warnings.append({'source': name, 'message': error})
            return data, warnings

    def _envelope(self, period: str, window: PeriodWindow,
                  warnings: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
        return {
            'period': period,
            'period_label': period_label(period),
            'window': window.to_dict(),
            'previous_window': window.previous().to_dict(),
            'generated_at': self.clock().isoformat(),
            'warnings': list(warnings or []),
        }

    def sales_report(self, period: str = 'month', start_date: Any = None, end_date: Any = None) -> Dict[str, Any]:
        """销售报表：概览、商品表现、趋势、品类/品牌、库存建议"""
        window = self.resolve(period, start_date, end_date)
        previous = window.previous()
        logger.info(f"Building sales report for {window.start} - {window.end}")

        data, warnings = self._fetch_all({
            'orders': (self.order_repo.get_orders, (window.start, window.end)),
            'previous_orders': (self.order_repo.get_orders, (previous.start, previous.end)),
            'stock': (self.inventory_repo.get_stock_levels, ()),
        })
        orders = data['orders']

        report = self._envelope(period, window, warnings)
        report.update({
            'overview': sales_analytics.sales_overview(orders, window).to_dict(),
            'products': _rows(sales_analytics.product_performance(
                orders, data['previous_orders'], window, stock=data['stock'], previous_window=previous
            )),
            'trend': _rows(sales_analytics.sales_trend(orders, window)),
            'categories': _rows(sales_analytics.category_performance(orders, window)),
            'brands': _rows(sales_analytics.brand_performance(orders, window)),
            'inventory': _rows(inventory_recommendations(orders, data['stock'], window)),
        })
        return report

    def customer_report(self, period: str = 'month', start_date: Any = None, end_date: Any = None) -> Dict[str, Any]:
        """客户报表：客户总览、RFM、留存流失、同期群、增长、画像、购买旅程"""
        window = self.resolve(period, start_date, end_date)
        as_of = self.clock()
        logger.info(f"Building customer report for {window.start} - {window.end}")

        data, warnings = self._fetch_all({
            'orders': (self.order_repo.get_orders, (window.start, window.end, None, True)),
            'customers': (self.customer_repo.get_customers, ()),
        })
        orders, profiles = data['orders'], data['customers']

        report = self._envelope(period, window, warnings)
        report.update({
            'metrics': customer_analytics.customer_metrics(orders, profiles).to_dict(),
            'rfm': customer_analytics.rfm_analysis(orders, window).to_dict(),
            'retention': customer_analytics.retention_churn(
                orders, as_of, self.settings.app.churn_loss_estimate
            ).to_dict(),
            'cohorts': customer_analytics.cohort_analysis(orders).to_dict(),
            'growth': _rows(customer_analytics.customer_growth(orders, profiles, window)),
            'demographics': customer_analytics.demographics(
                orders, profiles, self.settings.app.currency_symbol
            ).to_dict(),
            'journey': customer_analytics.purchase_journey(orders, as_of).to_dict(),
        })
        return report

    def financial_report(self, period: str = 'month', start_date: Any = None, end_date: Any = None) -> Dict[str, Any]:
        """财务报表：营收拆解、利润瀑布、现金流、税费、支付方式、经营指标"""
        window = self.resolve(period, start_date, end_date)
        previous = window.previous()
        ratios = self.cost_ratios
        logger.info(f"Building financial report for {window.start} - {window.end}")

        data, warnings = self._fetch_all({
            'orders': (self.order_repo.get_orders, (window.start, window.end)),
            'previous_orders': (self.order_repo.get_orders, (previous.start, previous.end)),
            'payments': (self.payment_repo.get_payments, (window.start, window.end)),
        })
        orders = data['orders']

        revenue = financial_analytics.revenue_breakdown(orders, window, ratios)
        methods = financial_analytics.payment_methods(data['payments'])

        report = self._envelope(period, window, warnings)
        report.update({
            'revenue': revenue.to_dict(),
            'profit': financial_analytics.profit_waterfall(revenue.gross_revenue, revenue.refunds, ratios).to_dict(),
            'cash_flow': financial_analytics.cash_flow(orders, window, ratios).to_dict(),
            'tax': financial_analytics.tax_summary(revenue.gross_revenue, ratios, methods).to_dict(),
            'payment_methods': methods,
            'order_status': financial_analytics.order_status_summary(orders),
            'product_profitability': financial_analytics.product_profitability(orders, window, ratios),
            'performance': financial_analytics.performance_metrics(
                orders, data['previous_orders'], window, previous, ratios
            ).to_dict(),
            'cash_flow_trend': financial_analytics.cash_flow_trend(orders, window, ratios),
        })
        return report

    def dashboard_report(self, period: str = 'month', start_date: Any = None, end_date: Any = None) -> Dict[str, Any]:
        """运营看板：销售额/订单数环比、发货与支付状态、库存分布、近30天订单概览"""
        window = self.resolve(period, start_date, end_date)
        previous = window.previous()
        recent = dashboard_analytics.overview_window(window)
        logger.info(f"Building dashboard for {window.start} - {window.end}")

        data, warnings = self._fetch_all({
            'orders': (self.order_repo.get_orders, (window.start, window.end)),
            'previous_orders': (self.order_repo.get_orders, (previous.start, previous.end)),
            'recent_orders': (self.order_repo.get_orders, (recent.start, recent.end)),
            'payments': (self.payment_repo.get_payments, (window.start, window.end)),
            'stock': (self.inventory_repo.get_stock_levels, ()),
        })
        orders = data['orders']

        report = self._envelope(period, window, warnings)
        report.update({
            'total_sales': dashboard_analytics.total_sales(
                orders, data['previous_orders'], window, previous
            ).to_dict(),
            'total_orders': dashboard_analytics.total_orders(
                orders, data['previous_orders'], window, previous
            ).to_dict(),
            'shipping': dashboard_analytics.shipping_stats(orders, window).to_dict(),
            'order_counts': dashboard_analytics.order_counts(orders, window),
            'payment_status': dashboard_analytics.payment_status_counts(data['payments']),
            'stock': dashboard_analytics.stock_bands(data['stock']).to_dict(),
            'orders_overview': {
                'window': recent.to_dict(),
                'counts': dashboard_analytics.orders_overview(data['recent_orders'], recent),
            },
        })
        return report

    def build(self, kind: str, period: str = 'month', start_date: Any = None, end_date: Any = None) -> Dict[str, Any]:
        builders = {
            'sales': self.sales_report,
            'customers': self.customer_report,
            'financial': self.financial_report,
            'dashboard': self.dashboard_report,
        }
        if kind not in builders:
            raise ValueError(f"Unknown report kind: {kind}")
        return builders[kind](period, start_date, end_date)


class GenerationGuard:
    """按报表类型递增的刷新代数，只接受最新一次刷新的结果"""

    def __init__(self):
        self._lock = threading.Lock()
        self._generations: Dict[str, int] = {}

    def begin(self, key: str) -> int:
        with self._lock:
            token = self._generations.get(key, 0) + 1
            self._generations[key] = token
            return token

    def is_current(self, key: str, token: int) -> bool:
        with self._lock:
            return self._generations.get(key) == token

    def current(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, 0)


class ReportSession:
    """保存每类报表的最新结果，过期的刷新结果直接丢弃"""

    def __init__(self, engine: ReportEngine, guard: Optional[GenerationGuard] = None):
        self.engine = engine
        self.guard = guard or GenerationGuard()
        self._lock = threading.Lock()
        self._results: Dict[str, Dict[str, Any]] = {}

    def commit(self, kind: str, token: int, result: Dict[str, Any]) -> bool:
        """只有代数仍是最新时才保存结果"""
        with self._lock:
            if not self.guard.is_current(kind, token):
                logger.info(f"Discarding stale {kind} report (generation {token}, "
                            f"current {self.guard.current(kind)})")
                return False
            self._results[kind] = result
            return True

    def refresh(self, kind: str, period: str = 'month', start_date: Any = None,
                end_date: Any = None) -> Optional[Dict[str, Any]]:
        """重新生成报表；如果期间有更新的刷新开始，返回None"""
        token = self.guard.begin(kind)
        result = self.engine.build(kind, period, start_date, end_date)
        return result if self.commit(kind, token, result) else None

    def latest(self, kind: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._results.get(kind)
