"""AI洞察：把报表数据打包成LLM输入，并把返回文本解析为结构化建议

LLM返回的文本预期是JSON（可能包在Markdown代码块里）。解析或校验失败时
返回降级结构：原文放在 executiveSummary，数组留空，不影响报表本身。
"""
import re
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..analytics.periods import period_label

logger = logging.getLogger(__name__)

INSIGHT_DOMAINS = ('sales', 'customers', 'financial')

# 每个领域返回的分析段落字段
ANALYSIS_FIELDS = {
    'sales': ('productAnalysis',),
    'customers': ('behavioralAnalysis', 'churnRiskAnalysis'),
    'financial': ('profitabilityAnalysis', 'cashFlowAnalysis'),
}

FENCED_JSON = re.compile(r"```json\s*\n(.*?)\n\s*```", re.DOTALL)
FENCED_ANY = re.compile(r"```\s*\n(.*?)\n\s*```", re.DOTALL)


class InsightServiceUnavailable(RuntimeError):
    """LLM服务未配置"""


class Recommendation(BaseModel):
    """单条建议"""
    priority: str = Field(default="medium", description="优先级：high/medium/low")
    title: str
    description: str = ""
    expectedImpact: str = ""
    category: Optional[str] = None

    @field_validator('priority', mode='before')
    @classmethod
    def normalize_priority(cls, value: Any) -> str:
        priority = str(value or "medium").strip().lower()
        if priority not in ('high', 'medium', 'low'):
            raise ValueError(f"priority must be high, medium or low, got '{value}'")
        return priority


class InsightReport(BaseModel):
    """LLM返回的洞察报告，额外的 ...Analysis 字段原样保留"""
    model_config = ConfigDict(extra='allow')

    executiveSummary: str
    keyFindings: List[str] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)


def _extract_json_text(text: str) -> str:
    """去掉Markdown代码块标记"""
    match = FENCED_JSON.search(text) or FENCED_ANY.search(text)
    return (match.group(1) if match else text).strip()


def fallback_report(raw_text: str, domain: Optional[str] = None) -> Dict[str, Any]:
    """降级结构"""
    report = {
        'executiveSummary': raw_text,
        'keyFindings': [],
        'recommendations': [],
    }
    for name in ANALYSIS_FIELDS.get(domain, ()):
        report[name] = ''
    return report


def parse_insight_response(text: Optional[str], domain: Optional[str] = None) -> Dict[str, Any]:
    """解析LLM返回文本，任何失败都返回降级结构而不是抛异常"""
    text = text or ''
    try:
        data = json.loads(_extract_json_text(text))
        report = InsightReport.model_validate(data)
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        logger.warning(f"Could not parse insight response, using raw text: {e}")
        return fallback_report(text, domain)

    result = report.model_dump()
    for name in ANALYSIS_FIELDS.get(domain, ()):
        result.setdefault(name, '')
    return result


# ---------------------------------------------------------------------------
# 报表数据 -> LLM输入
# ---------------------------------------------------------------------------

def _first(items: List[Dict[str, Any]], key: str, default: Any = 'Unknown') -> Any:
    return items[0][key] if items else default


def sales_insight_payload(report: Dict[str, Any]) -> Dict[str, Any]:
    overview = report['overview']
    top_product = overview.get('top_product')
    return {
        'overview': {
            'totalRevenue': overview['total_revenue'],
            'totalOrders': overview['total_orders'],
            'avgOrderValue': overview['avg_order_value'],
            'topProduct': top_product['name'] if top_product else 'None',
        },
        'topProducts': [{
            'name': p['name'],
            'unitsSold': p['units_sold'],
            'revenue': p['revenue'],
            'trend': p['trend'],
        } for p in report['products'][:5]],
        'salesTrend': [{
            'date': t['period_label'],
            'revenue': t['revenue'],
            'orders': t['order_count'],
        } for t in report['trend']],
        'brands': [{
            'name': b['name'], 'revenue': b['revenue'], 'units': b['units_sold']
        } for b in report['brands'][:3]],
        'categories': [{
            'name': c['name'], 'revenue': c['revenue'], 'units': c['units_sold']
        } for c in report['categories'][:3]],
        'timeRange': report['period'],
    }


def customer_insight_payload(report: Dict[str, Any]) -> Dict[str, Any]:
    metrics = report['metrics']
    rfm = report['rfm']
    retention = report['retention']
    demographics = report['demographics']
    journey = report['journey']
    return {
        'customerBase': {
            'totalCustomers': metrics['total_customers'],
            'activeCustomers': metrics['active_customers'],
            'newCustomers': metrics['new_customers'],
            'returningCustomers': metrics['returning_customers'],
        },
        'rfm': {
            'avgRecency': rfm['avg_recency'],
            'avgFrequency': rfm['avg_frequency'],
            'avgMonetary': rfm['avg_monetary'],
            'topSegment': _first(rfm['segments'], 'name'),
        },
        'retention': {
            'retentionRate': retention['retention_rate'],
            'churnRate': retention['churn_rate'],
            'atRiskCount': retention['at_risk_count'],
            'avgLifespan': retention['avg_lifespan'],
        },
        'demographics': {
            'topLocation': demographics['top_location'],
            'topCategory': demographics['top_category'],
            'topPaymentMethod': demographics['top_payment_method'],
        },
        'journey': {
            'avgTimeBetweenOrders': journey['avg_days_between_orders'],
            'avgDaysSinceLastOrder': journey['avg_days_since_last_order'],
        },
        'timeRange': report['period'],
    }


def financial_insight_payload(report: Dict[str, Any]) -> Dict[str, Any]:
    revenue = report['revenue']
    profit = report['profit']
    flow = report['cash_flow']
    performance = report['performance']
    return {
        'overview': {
            'grossRevenue': revenue['gross_revenue'],
            'netRevenue': revenue['net_revenue'],
            'refunds': revenue['refunds'],
            'discounts': revenue['discounts'],
            'avgOrderValue': revenue['avg_order_value'],
            'totalOrders': revenue['total_orders'],
        },
        'profitability': {
            'grossProfit': profit['gross_profit'],
            'netProfit': profit['net_profit'],
            'cogs': profit['cogs'],
            'grossMargin': round(profit['gross_margin'], 1),
            'netMargin': round(profit['net_margin'], 1),
            'operatingExpenses': profit['total_operating_expenses'],
        },
        'cashFlow': {
            'inflow': flow['inflow'],
            'outflow': flow['outflow'],
            'netCashFlow': flow['net_cash_flow'],
            'outstandingAmount': flow['total_outstanding_amount'],
            'dso': flow['dso'],
        },
        'performance': {
            'growthRate': performance['growth_rate'],
            'cac': performance['cac'],
            'roas': performance['roas'],
            'previousRevenue': performance['previous']['revenue'],
            'currentRevenue': performance['current']['revenue'],
        },
        'topProducts': [{
            'name': p['name'],
            'revenue': p['revenue'],
            'profit': p['profit'],
            'margin': p['margin'],
        } for p in report['product_profitability']['top_products'][:5]],
        'timeRange': report['period'],
    }


PAYLOAD_BUILDERS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    'sales': sales_insight_payload,
    'customers': customer_insight_payload,
    'financial': financial_insight_payload,
}


class InsightGenerator:
    """调用LLM生成报表洞察"""

    def __init__(self, client=None, currency: Optional[str] = None):
        from config.settings import get_settings
        settings = get_settings()
        self.currency = currency or settings.app.currency_symbol
        self._client = client
        self._configured = client is not None or settings.has_llm()

    @property
    def client(self):
        if self._client is None:
            if not self._configured:
                raise InsightServiceUnavailable(
                    "AI service not configured. Set LLM_API_KEY and LLM_ENDPOINT."
                )
            from .azure_client import AzureOpenAIClient
            self._client = AzureOpenAIClient()
        return self._client

    def generate(self, domain: str, report: Dict[str, Any]) -> Dict[str, Any]:
        """根据报表生成洞察；LLM调用失败的异常向上抛出"""
        if domain not in PAYLOAD_BUILDERS:
            raise ValueError(f"Unknown insight domain: {domain}")

        from .prompts import PromptManager

        payload = PAYLOAD_BUILDERS[domain](report)
        prompt = PromptManager.get_chat_prompt(domain)
        messages = prompt.format_messages(
            period_label=period_label(report.get('period')),
            data=json.dumps(payload, indent=2, ensure_ascii=False, default=str),
            currency=self.currency
        )
        logger.debug(f"Insight payload for {domain}: {payload}")

        raw = self.client.chat(messages)
        insights = parse_insight_response(raw, domain)
        insights['data'] = payload
        insights['generatedAt'] = datetime.now(timezone.utc).isoformat()
        logger.info(f"Generated {domain} insights with {len(insights['recommendations'])} recommendations")
        return insights
