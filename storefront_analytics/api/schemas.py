from pydantic import BaseModel, ConfigDict, Field
from typing import List, Dict, Any, Optional
from datetime import datetime


# 请求模型
class InsightRequest(BaseModel):
    """洞察请求"""
    period: str = Field("month", description="时间范围：day/week/month/year/custom")
    start_date: Optional[datetime] = Field(None, description="custom时的开始时间")
    end_date: Optional[datetime] = Field(None, description="custom时的结束时间")


# 响应模型
class HealthResponse(BaseModel):
    """健康检查响应"""
    status: str
    version: str
    engine_status: str
    llm_configured: bool
    message: Optional[str] = None


class WindowSchema(BaseModel):
    start_date: datetime
    end_date: datetime


class ReportResponse(BaseModel):
    """报表响应，具体内容随报表类型变化"""
    model_config = ConfigDict(extra='allow')

    period: str
    period_label: str
    window: WindowSchema
    previous_window: WindowSchema
    generated_at: datetime
    warnings: List[Dict[str, str]] = Field(default_factory=list, description="拉取失败的数据源")


class RecommendationSchema(BaseModel):
    priority: str
    title: str
    description: str = ""
    expectedImpact: str = ""
    category: Optional[str] = None


class InsightResponse(BaseModel):
    """AI洞察响应，...Analysis 段落随领域变化"""
    model_config = ConfigDict(extra='allow')

    executiveSummary: str
    keyFindings: List[str] = Field(default_factory=list)
    recommendations: List[RecommendationSchema] = Field(default_factory=list)
    data: Dict[str, Any] = Field(default_factory=dict)
    generatedAt: datetime
