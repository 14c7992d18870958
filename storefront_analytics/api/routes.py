from fastapi import APIRouter, Query, HTTPException, Depends
from fastapi.responses import Response
from typing import Optional
import logging

from storefront_analytics.api.schemas import InsightRequest, InsightResponse, ReportResponse
from storefront_analytics.api.dependencies import get_engine, get_session, get_insight_generator
from storefront_analytics.analytics.periods import ValidationError
from storefront_analytics.engine.core import REPORT_KINDS, ReportEngine, ReportSession
from storefront_analytics.engine.export import sales_report_csv
from storefront_analytics.llm.insights import INSIGHT_DOMAINS, InsightGenerator, InsightServiceUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_kind(kind: str):
    if kind not in REPORT_KINDS:
        raise HTTPException(status_code=404, detail=f"Unknown report: {kind}")


def _build(engine: ReportEngine, kind: str, period: str, start_date, end_date):
    try:
        return engine.build(kind, period, start_date, end_date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/reports/sales/export")
async def export_sales_report(
        period: str = Query("month", description="时间范围"),
        start_date: Optional[str] = Query(None),
        end_date: Optional[str] = Query(None),
        engine: ReportEngine = Depends(get_engine)
):
    """导出销售报表CSV"""
    report = _build(engine, 'sales', period, start_date, end_date)
    start, end = report['window']['start_date'][:10], report['window']['end_date'][:10]
    return Response(
        content=sales_report_csv(report),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="sales_analytics_{start}_to_{end}.csv"'}
    )


@router.get("/reports/{kind}", response_model=ReportResponse)
async def get_report(
        kind: str,
        period: str = Query("month", description="时间范围：day/week/month/year/custom"),
        start_date: Optional[str] = Query(None, description="custom时的开始时间"),
        end_date: Optional[str] = Query(None, description="custom时的结束时间"),
        engine: ReportEngine = Depends(get_engine)
):
    """生成报表"""
    _check_kind(kind)
    return _build(engine, kind, period, start_date, end_date)


@router.post("/reports/{kind}/refresh", response_model=ReportResponse)
def refresh_report(
        kind: str,
        period: str = Query("month"),
        start_date: Optional[str] = Query(None),
        end_date: Optional[str] = Query(None),
        session: ReportSession = Depends(get_session)
):
    """刷新看板上的报表；期间如果有更新的刷新请求，本次结果作废"""
    _check_kind(kind)
    try:
        report = session.refresh(kind, period, start_date, end_date)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if report is None:
        raise HTTPException(status_code=409, detail=f"{kind} report was superseded by a newer refresh")
    return report


@router.get("/reports/{kind}/latest", response_model=ReportResponse)
async def get_latest_report(kind: str, session: ReportSession = Depends(get_session)):
    """看板上最近一次成功刷新的报表"""
    _check_kind(kind)
    report = session.latest(kind)
    if report is None:
        raise HTTPException(status_code=404, detail=f"No {kind} report has been generated yet")
    return report


@router.post("/insights/{domain}", response_model=InsightResponse)
def generate_insights(
        domain: str,
        request: InsightRequest,
        engine: ReportEngine = Depends(get_engine),
        generator: InsightGenerator = Depends(get_insight_generator)
):
    """生成AI洞察"""
    if domain not in INSIGHT_DOMAINS:
        raise HTTPException(status_code=404, detail=f"Unknown insight domain: {domain}")

    report = _build(engine, domain, request.period, request.start_date, request.end_date)

    try:
        return generator.generate(domain, report)
    except InsightServiceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Insight generation failed: {e}")
        raise HTTPException(status_code=502, detail=f"AI service error: {e}")
