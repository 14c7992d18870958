"""销售报表CSV导出"""
from datetime import datetime
from typing import Any, Dict, List, Optional


def _quote(text: Any) -> str:
    """自由文本字段用双引号包裹，内部双引号转义为两个"""
    return '"' + str(text).replace('"', '""') + '"'


def _line(*values: Any) -> str:
    return ','.join(str(v) for v in values)


def sales_report_csv(report: Dict[str, Any], generated_at: Optional[datetime] = None) -> str:
    """把销售报表转换为带分段标题的CSV文本"""
    generated_at = generated_at or datetime.now()
    overview = report['overview']
    top_product = overview.get('top_product')
    window = report['window']

    lines: List[str] = [
        'SALES ANALYTICS REPORT',
        f"Report Period: {window['start_date'][:10]} to {window['end_date'][:10]}",
        f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}",
        '',
        'SALES OVERVIEW',
        _line('Total Revenue', overview['total_revenue']),
        _line('Total Orders', overview['total_orders']),
        _line('Average Order Value', overview['avg_order_value']),
        _line('Top Product', _quote(top_product['name']) if top_product else 'N/A'),
        '',
        'PRODUCT PERFORMANCE',
        'Rank,Product,SKU,Units Sold,Revenue,Avg Price,Trend %,Current Stock',
    ]

    for rank, product in enumerate(report['products'], start=1):
        lines.append(_line(
            rank, _quote(product['name']), product['sku'] or '', product['units_sold'],
            product['revenue'], round(product['avg_price'], 2), product['trend'], product['stock']
        ))

    lines += ['', 'CATEGORY PERFORMANCE', 'Category,Total Sales,Revenue']
    for category in report['categories']:
        lines.append(_line(_quote(category['name']), category['units_sold'], category['revenue']))

    lines += [
        '',
        'INVENTORY RECOMMENDATIONS',
        'Product,Current Stock,Avg Daily Sales,Days Until Stockout,Priority,Recommendation',
    ]
    for rec in report['inventory']:
        lines.append(_line(
            _quote(rec['product_name']), rec['current_stock'], f"{rec['avg_daily_sales']:.2f}",
            rec['days_until_stockout'], rec['priority'], _quote(rec['recommendation'])
        ))

    return '\n'.join(lines) + '\n'
