import logging
from typing import List, Dict, Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)

# 8443 是 ClickHouse Cloud 的 HTTPS 端口
SECURE_PORTS = (443, 8443)


class ClickHouseConnector:
    """ClickHouse连接（clickhouse-connect HTTP客户端，首次查询时才建立连接）"""

    def __init__(self):
        from config.settings import get_settings
        self.settings = get_settings().clickhouse
        self._client = None
        self._failed: Optional[str] = None

    @property
    def client(self):
        if self._client is not None:
            return self._client
        if self._failed:
            raise ConnectionError(f"ClickHouse unavailable: {self._failed}")
        if not self.settings.host:
            self._failed = "host is not configured"
            raise ConnectionError(f"ClickHouse unavailable: {self._failed}")

        import clickhouse_connect
        try:
            self._client = clickhouse_connect.get_client(
                host=self.settings.host,
                port=self.settings.port,
                username=self.settings.user,
                password=self.settings.password,
                database=self.settings.database,
                secure=self.settings.port in SECURE_PORTS
            )
        except Exception as e:
            self._failed = str(e)
            logger.error(f"ClickHouse connection to {self.settings.host}:{self.settings.port} failed: {e}")
            raise ConnectionError(f"ClickHouse unavailable: {e}") from e

        logger.info(f"Connected to ClickHouse at {self.settings.host}:{self.settings.port}")
        return self._client

    def execute(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[tuple]:
        """执行查询，返回行元组"""
        logger.debug(f"ClickHouse query: {query.strip()[:120]}")
        return self.client.query(query, parameters=params or {}).result_rows

    def execute_df(self, query: str, params: Optional[Dict[str, Any]] = None) -> pd.DataFrame:
        """执行查询，返回DataFrame"""
        logger.debug(f"ClickHouse query: {query.strip()[:120]}")
        return self.client.query_df(query, parameters=params or {})

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("ClickHouse connection closed")
        self._failed = None
