import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uvicorn

from storefront_analytics.api import dependencies
from storefront_analytics.api.schemas import HealthResponse

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("Starting Storefront Analytics API")

    if dependencies._engine is None:
        try:
            from storefront_analytics.engine.core import ReportEngine
            dependencies.set_engine(ReportEngine())
            logger.info("Engine initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize engine: {e}")

    yield

    logger.info("Shutting down Storefront Analytics API")


# 创建FastAPI应用
app = FastAPI(
    title="Storefront Analytics API",
    description="电商销售、客户与财务分析API",
    version=VERSION,
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 导入路由
from storefront_analytics.api.routes import router

app.include_router(router, prefix="/api/v1")


# 未处理异常统一返回JSON 500
@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "message": str(exc)})


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """健康检查端点"""
    from config.settings import get_settings

    engine = dependencies._engine
    health = HealthResponse(
        status="healthy" if engine else "degraded",
        version=VERSION,
        engine_status="running" if engine else "not initialized",
        llm_configured=get_settings().has_llm()
    )
    if engine is None:
        health.message = "Engine not initialized"
    return health


if __name__ == "__main__":
    import os

    uvicorn.run(
        "storefront_analytics.api.app:app",
        host=os.getenv("STOREFRONT_API_HOST", "0.0.0.0"),
        port=int(os.getenv("STOREFRONT_API_PORT", 8000)),
        log_level="info"
    )
