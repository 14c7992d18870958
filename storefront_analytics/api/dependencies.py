"""API依赖项"""
import logging
from fastapi import HTTPException

logger = logging.getLogger(__name__)

# 全局实例（由app.py在启动时设置）
_engine = None
_session = None
_insight_generator = None


def set_engine(engine, session=None):
    """设置引擎实例（由app.py在启动时调用）"""
    global _engine, _session
    _engine = engine
    if session is None and engine is not None:
        from storefront_analytics.engine.core import ReportSession
        session = ReportSession(engine)
    _session = session


def set_insight_generator(generator):
    global _insight_generator
    _insight_generator = generator


def get_engine():
    """获取引擎实例的依赖函数"""
    if not _engine:
        logger.error("Engine not initialized")
        raise HTTPException(status_code=503, detail="Engine not available")
    return _engine


def get_session():
    if not _session:
        logger.error("Report session not initialized")
        raise HTTPException(status_code=503, detail="Engine not available")
    return _session


def get_insight_generator():
    """获取AI洞察生成器（懒加载）"""
    global _insight_generator
    if _insight_generator is None:
        from storefront_analytics.llm.insights import InsightGenerator
        _insight_generator = InsightGenerator()
    return _insight_generator
