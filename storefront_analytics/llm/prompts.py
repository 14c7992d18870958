from langchain_core.prompts import (
    PromptTemplate, ChatPromptTemplate, SystemMessagePromptTemplate, HumanMessagePromptTemplate
)

# 所有报告共用的输出结构说明（花括号需要转义）
RESPONSE_FORMAT = """
**Format your response as JSON with this exact structure:**
{{{{
  "executiveSummary": "string (use {currency} for all amounts)",
  "keyFindings": ["string", "string", ...],
{analysis_fields}
  "recommendations": [
    {{{{
      "priority": "high|medium|low",
      "title": "string",
      "description": "string (specific and actionable)",
      "expectedImpact": "string (quantify in {currency} or %)",
      "category": "{categories}"
    }}}}
  ]
}}}}
"""

BUSINESS_CONTEXT = """
**Context:**
- Philippine e-commerce business (computer hardware, gaming peripherals)
- Target customers: PC builders, gamers, tech enthusiasts
- All currency amounts are in {currency}; always format numbers with commas
"""


def _response_format(analysis_fields: str, categories: str) -> str:
    # 第一次format只填入字段说明，{currency} 保留给模板渲染
    return RESPONSE_FORMAT.format(
        analysis_fields=analysis_fields,
        categories=categories,
        currency="{currency}"
    )


class PromptManager:
    """Prompt模板管理器"""
    # 系统提示词
    SYSTEM_PROMPTS = {
        "sales": "You are an expert e-commerce business analyst specializing in retail technology. "
                 "Provide clear, actionable insights based on sales data. Always respond with valid JSON only.",
        "customers": "You are an expert Customer Success strategist and CRM analyst. "
                     "Provide clear, actionable customer insights. Always respond with valid JSON only.",
        "financial": "You are an expert CFO and financial analyst specializing in e-commerce business "
                     "financial analysis. Provide clear, strategic financial insights. "
                     "Always respond with valid JSON only.",
    }

    # 分析提示词模板
    INSIGHT_PROMPTS = {
        "sales": PromptTemplate(
            input_variables=["period_label", "data", "currency"],
            template="""
Analyze the following sales data and provide detailed, actionable insights.

**Sales Data for {period_label}:**
{data}
""" + BUSINESS_CONTEXT + """
**Your task:**
1. **Executive Summary** (2-3 sentences): overall performance with specific revenue figures and key drivers.
2. **Key Findings** (4-6 bullet points): revenue trends, best-selling categories and brands, unusual patterns, inventory concerns.
3. **Product Performance Analysis** (2-3 sentences): top products with specific sales figures, cross-sell opportunities.
4. **Strategic Recommendations** (4-6 items): promotions, inventory, pricing and product mix.
""" + _response_format('  "productAnalysis": "string",', "revenue|inventory|marketing|pricing")
        ),

        "customers": PromptTemplate(
            input_variables=["period_label", "data", "currency"],
            template="""
Analyze the following customer data and provide strategic, actionable insights.

**Customer Data for {period_label}:**
{data}
""" + BUSINESS_CONTEXT + """
**Your task:**
1. **Customer Health Summary** (2-3 sentences): retention, churn and engagement levels.
2. **Critical Customer Insights** (5-7 bullet points): acquisition, retention, RFM distribution, purchase frequency, at-risk customers.
3. **Behavioral Analysis** (2-3 sentences): purchase behavior and journey patterns.
4. **Churn Risk Analysis** (2-3 sentences): warning signs and customers needing immediate attention.
5. **Strategic Customer Recommendations** (6-8 items): retention, re-activation, loyalty and segment marketing.
""" + _response_format(
                '  "behavioralAnalysis": "string",\n  "churnRiskAnalysis": "string",',
                "retention|acquisition|engagement|loyalty"
            )
        ),

        "financial": PromptTemplate(
            input_variables=["period_label", "data", "currency"],
            template="""
Analyze the following financial data and provide strategic, actionable insights.

**Financial Data for {period_label}:**
{data}
""" + BUSINESS_CONTEXT + """
**Your task:**
1. **Financial Health Summary** (2-3 sentences): revenue, profit margins and cash position.
2. **Critical Financial Findings** (4-6 bullet points): revenue quality, profitability, cash flow, cost structure, growth, CAC vs AOV.
3. **Profitability Analysis** (2-3 sentences): margin health and which costs consume profit.
4. **Cash Flow Analysis** (2-3 sentences): liquidity and outstanding receivables.
5. **Strategic Financial Recommendations** (5-7 items): cost reduction, margin improvement, collections.
""" + _response_format(
                '  "profitabilityAnalysis": "string",\n  "cashFlowAnalysis": "string",',
                "cost|revenue|cashflow|efficiency"
            )
        ),
    }

    @classmethod
    def get_chat_prompt(cls, prompt_type: str) -> ChatPromptTemplate:
        """获取聊天提示词模板"""
        system_prompt = cls.SYSTEM_PROMPTS.get(prompt_type)
        human_prompt = cls.INSIGHT_PROMPTS.get(prompt_type)

        if not human_prompt or not system_prompt:
            raise ValueError(f"Unknown prompt type: {prompt_type}")

        return ChatPromptTemplate.from_messages([
            SystemMessagePromptTemplate.from_template(system_prompt),
            HumanMessagePromptTemplate(prompt=human_prompt)
        ])
