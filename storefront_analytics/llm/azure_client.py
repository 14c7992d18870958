import logging
from typing import Optional, List, Dict, Any
from langchain_openai import AzureChatOpenAI
from langchain_core.callbacks import BaseCallbackHandler
from langchain_core.messages import BaseMessage

from config.settings import get_settings

logger = logging.getLogger(__name__)


class LoggingCallbackHandler(BaseCallbackHandler):
    """LLM调用日志回调处理器"""

    def on_chat_model_start(self, serialized: Dict[str, Any], messages: List[List[BaseMessage]], **kwargs):
        logger.debug(f"LLM Start - {sum(len(m) for m in messages)} messages")

    def on_llm_end(self, response, **kwargs):
        logger.debug(f"LLM End - Response: {str(response)[:100]}...")

    def on_llm_error(self, error: BaseException, **kwargs):
        logger.error(f"LLM Error: {error}")


class AzureOpenAIClient:
    """Azure OpenAI客户端封装"""

    def __init__(self, temperature: Optional[float] = None):
        self.settings = get_settings().llm
        self.temperature = self.settings.temperature if temperature is None else temperature
        self._llm = None

    @property
    def llm(self) -> AzureChatOpenAI:
        """获取LLM实例（懒加载）"""
        if self._llm is None:
            self._llm = AzureChatOpenAI(
                azure_deployment=self.settings.deployment,
                api_key=self.settings.api_key,
                api_version=self.settings.api_version,
                azure_endpoint=self.settings.endpoint,
                temperature=self.temperature,
                callbacks=[LoggingCallbackHandler()]
            )
            logger.info(f"Azure OpenAI client initialized with deployment: {self.settings.deployment}")
        return self._llm

    def chat(self, messages: List[BaseMessage]) -> str:
        """发送聊天消息"""
        try:
            response = self.llm.invoke(messages)
            return response.content
        except Exception as e:
            logger.error(f"Chat failed: {e}")
            raise
