import json

import pytest
from unittest.mock import Mock, patch

from storefront_analytics.llm.azure_client import AzureOpenAIClient
from storefront_analytics.llm.insights import (
    ANALYSIS_FIELDS, InsightGenerator, InsightServiceUnavailable, customer_insight_payload,
    fallback_report, financial_insight_payload, parse_insight_response, sales_insight_payload
)
from storefront_analytics.llm.prompts import PromptManager

VALID_RESPONSE = {
    'executiveSummary': 'Revenue grew on GPU demand.',
    'keyFindings': ['GPUs lead revenue', 'Cebu orders are rising'],
    'productAnalysis': 'RTX 4060 is the top seller.',
    'recommendations': [{
        'priority': 'HIGH',
        'title': 'Restock GPUs',
        'description': 'Only 3 units left.',
        'expectedImpact': '₱50,000 protected revenue',
        'category': 'inventory'
    }]
}


def fenced(data) -> str:
    return f"Here you go:\n```json\n{json.dumps(data)}\n```\n"


class TestParseInsightResponse:
    """测试LLM返回文本解析"""

    def test_fenced_json(self):
        result = parse_insight_response(fenced(VALID_RESPONSE), 'sales')

        assert result['executiveSummary'] == 'Revenue grew on GPU demand.'
        assert result['productAnalysis'] == 'RTX 4060 is the top seller.'
        assert result['recommendations'][0]['priority'] == 'high'
        assert result['recommendations'][0]['title'] == 'Restock GPUs'

    def test_plain_json(self):
        result = parse_insight_response(json.dumps(VALID_RESPONSE), 'sales')
        assert result['keyFindings'] == VALID_RESPONSE['keyFindings']

    def test_fence_without_language(self):
        text = f"```\n{json.dumps(VALID_RESPONSE)}\n```"
        assert parse_insight_response(text)['executiveSummary'] == 'Revenue grew on GPU demand.'

    def test_missing_analysis_fields_default_to_empty(self):
        data = {'executiveSummary': 'ok'}
        result = parse_insight_response(json.dumps(data), 'customers')

        assert result['behavioralAnalysis'] == ''
        assert result['churnRiskAnalysis'] == ''
        assert result['keyFindings'] == []
        assert result['recommendations'] == []

    def test_invalid_json_falls_back_to_raw_text(self):
        text = 'Revenue is up, but I could not format this as JSON.'
        result = parse_insight_response(text, 'financial')

        assert result == fallback_report(text, 'financial')
        assert result['executiveSummary'] == text
        assert result['profitabilityAnalysis'] == ''
        assert result['cashFlowAnalysis'] == ''

    @pytest.mark.parametrize("data", [
        {'keyFindings': ['no summary']},
        {'executiveSummary': 'x', 'recommendations': [{'priority': 'urgent', 'title': 't'}]},
        {'executiveSummary': 'x', 'recommendations': [{'priority': 'low'}]},
        [1, 2, 3],
    ])
    def test_schema_violations_fall_back(self, data):
        text = json.dumps(data)
        result = parse_insight_response(text, 'sales')
        assert result['executiveSummary'] == text
        assert result['recommendations'] == []

    def test_empty_response(self):
        result = parse_insight_response(None, 'sales')
        assert result['executiveSummary'] == ''
        assert set(ANALYSIS_FIELDS['sales']) <= set(result)


class TestInsightPayloads:
    """测试报表 -> LLM输入数据"""

    def test_sales_payload(self, engine):
        payload = sales_insight_payload(engine.sales_report())

        assert payload['overview']['totalRevenue'] == 37500.0
        assert payload['overview']['totalOrders'] == 2
        assert payload['overview']['topProduct'] == 'RTX 4060'
        assert len(payload['topProducts']) == 3
        assert payload['timeRange'] == 'month'

    def test_customer_payload(self, engine):
        payload = customer_insight_payload(engine.customer_report())

        assert payload['customerBase']['totalCustomers'] == 3
        assert set(payload) == {'customerBase', 'rfm', 'retention', 'demographics', 'journey', 'timeRange'}
        assert payload['demographics']['topLocation'] == 'Manila'

    def test_financial_payload(self, engine):
        payload = financial_insight_payload(engine.financial_report())

        assert payload['overview']['grossRevenue'] == 37500.0
        assert payload['overview']['refunds'] == 6000.0
        assert payload['performance']['currentRevenue'] == 37500.0
        assert payload['topProducts'][0]['name'] == 'RTX 4060'

    def test_payload_is_json_serializable(self, engine):
        json.dumps(financial_insight_payload(engine.financial_report()))


class TestPromptManager:
    """测试Prompt模板"""

    @pytest.mark.parametrize("domain", ['sales', 'customers', 'financial'])
    def test_prompt_renders(self, domain):
        messages = PromptManager.get_chat_prompt(domain).format_messages(
            period_label='This Month', data='{"a": 1}', currency='₱'
        )

        assert len(messages) == 2
        assert '{"a": 1}' in messages[1].content
        assert '"executiveSummary"' in messages[1].content
        assert '{currency}' not in messages[1].content

    def test_unknown_prompt(self):
        with pytest.raises(ValueError):
            PromptManager.get_chat_prompt('marketing')


class TestInsightGenerator:
    """测试洞察生成"""

    @pytest.fixture(autouse=True)
    def mock_settings(self):
        with patch('config.settings.get_settings') as mock_get:
            mock_get.return_value.app.currency_symbol = '₱'
            mock_get.return_value.has_llm.return_value = False
            yield mock_get

    def test_generate(self, engine):
        client = Mock()
        client.chat.return_value = fenced(VALID_RESPONSE)
        generator = InsightGenerator(client=client)

        insights = generator.generate('sales', engine.sales_report())

        assert insights['executiveSummary'] == 'Revenue grew on GPU demand.'
        assert insights['data']['overview']['totalRevenue'] == 37500.0
        assert insights['generatedAt'].endswith('+00:00')
        messages = client.chat.call_args[0][0]
        assert 'This Month' in messages[1].content

    def test_unparseable_response_still_returns_report(self, engine):
        client = Mock()
        client.chat.return_value = 'Sorry, no JSON today.'

        insights = InsightGenerator(client=client).generate('customers', engine.customer_report())

        assert insights['executiveSummary'] == 'Sorry, no JSON today.'
        assert insights['churnRiskAnalysis'] == ''
        assert insights['data']['customerBase']['totalCustomers'] == 3

    def test_llm_errors_propagate(self, engine):
        client = Mock()
        client.chat.side_effect = RuntimeError('timeout')

        with pytest.raises(RuntimeError):
            InsightGenerator(client=client).generate('financial', engine.financial_report())

    def test_not_configured(self, engine):
        generator = InsightGenerator()

        with pytest.raises(InsightServiceUnavailable):
            generator.generate('sales', engine.sales_report())

    def test_unknown_domain(self):
        with pytest.raises(ValueError):
            InsightGenerator(client=Mock()).generate('marketing', {})


class TestAzureOpenAIClient:
    """测试Azure OpenAI客户端"""

    @pytest.fixture
    def llm_settings(self):
        return Mock(
            api_key='test-key',
            endpoint='https://test.openai.azure.com/',
            deployment='gpt-4o',
            api_version='2024-02-15-preview',
            temperature=0.3
        )

    @patch('storefront_analytics.llm.azure_client.get_settings')
    def test_client_initialization(self, mock_settings, llm_settings):
        """测试客户端初始化"""
        mock_settings.return_value.llm = llm_settings

        assert AzureOpenAIClient().temperature == 0.3
        client = AzureOpenAIClient(temperature=0.5)
        assert client.temperature == 0.5
        assert client._llm is None  # 懒加载

    @patch('storefront_analytics.llm.azure_client.AzureChatOpenAI')
    @patch('storefront_analytics.llm.azure_client.get_settings')
    def test_chat(self, mock_settings, mock_llm_class, llm_settings):
        mock_settings.return_value.llm = llm_settings
        mock_llm = Mock()
        mock_llm.invoke.return_value = Mock(content='{"executiveSummary": "ok"}')
        mock_llm_class.return_value = mock_llm

        client = AzureOpenAIClient()
        result = client.chat(['message'])

        assert result == '{"executiveSummary": "ok"}'
        mock_llm.invoke.assert_called_once_with(['message'])
        assert mock_llm_class.call_args.kwargs['azure_deployment'] == 'gpt-4o'

    @patch('storefront_analytics.llm.azure_client.AzureChatOpenAI')
    @patch('storefront_analytics.llm.azure_client.get_settings')
    def test_chat_errors_propagate(self, mock_settings, mock_llm_class, llm_settings):
        mock_settings.return_value.llm = llm_settings
        mock_llm_class.return_value.invoke.side_effect = ConnectionError('down')

        with pytest.raises(ConnectionError):
            AzureOpenAIClient().chat(['message'])
