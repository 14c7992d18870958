# config/settings.py
import os
import json
import logging
from typing import Dict, Any, Optional
from pathlib import Path
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "STOREFRONT_CONFIG_PATH"
CONFIG_FILENAME = "config.json"

# 配置文件缺失的键使用这里的默认值；同名环境变量优先级最高
DEFAULTS: Dict[str, Any] = {
    "LLM_API_KEY": "",
    "LLM_ENDPOINT": "",
    "LLM_DEPLOYMENT": "gpt-4o",
    "LLM_API_VERSION": "2024-06-01",
    "LLM_TEMPERATURE": 0.7,
    "CLICKHOUSE_HOST": "",
    "CLICKHOUSE_PORT": 8443,
    "CLICKHOUSE_DATABASE": "storefront",
    "CLICKHOUSE_USER": "default",
    "CLICKHOUSE_PASSWORD": "",
    "LOG_LEVEL": "INFO",
    "LOG_FILE": "logs/storefront_analytics.log",
    "CURRENCY_SYMBOL": "₱",
    "CHURN_LOSS_ESTIMATE": 5000,
    "COST_RATIOS": {},
}

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class LLMConfig:
    """洞察生成模型配置"""
    api_key: str
    endpoint: str
    deployment: str
    api_version: str
    temperature: float


@dataclass
class ClickHouseConfig:
    """ClickHouse连接配置"""
    host: str
    port: int
    database: str
    user: str
    password: str


@dataclass
class AppConfig:
    """报表服务自身的配置"""
    log_level: str
    log_file: str
    currency_symbol: str
    churn_loss_estimate: float


def _candidate_paths() -> list:
    here = Path(__file__).parent
    return [
        here / CONFIG_FILENAME,
        here.parent / "config" / CONFIG_FILENAME,
        Path.cwd() / "config" / CONFIG_FILENAME,
        Path.home() / ".storefront" / CONFIG_FILENAME,
    ]


class Settings:
    """配置：JSON文件 + 默认值 + 环境变量覆盖"""

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path or self._find_config_file()
        self._config = self._load_config()

        self.llm = LLMConfig(
            api_key=self._value("LLM_API_KEY"),
            endpoint=self._value("LLM_ENDPOINT"),
            deployment=self._value("LLM_DEPLOYMENT"),
            api_version=self._value("LLM_API_VERSION"),
            temperature=self._value("LLM_TEMPERATURE", float),
        )
        self.clickhouse = ClickHouseConfig(
            host=self._value("CLICKHOUSE_HOST"),
            port=self._value("CLICKHOUSE_PORT", int),
            database=self._value("CLICKHOUSE_DATABASE"),
            user=self._value("CLICKHOUSE_USER"),
            password=self._value("CLICKHOUSE_PASSWORD"),
        )
        self.app = AppConfig(
            log_level=self._value("LOG_LEVEL"),
            log_file=self._value("LOG_FILE"),
            currency_symbol=self._value("CURRENCY_SYMBOL"),
            churn_loss_estimate=self._value("CHURN_LOSS_ESTIMATE", float),
        )
        self.cost_ratios = self._build_cost_ratios()

        self._configure_logging()

    @staticmethod
    def _find_config_file() -> str:
        env_path = os.getenv(CONFIG_ENV_VAR)
        if env_path and os.path.exists(env_path):
            return env_path

        candidates = _candidate_paths()
        for path in candidates:
            if path.exists():
                return str(path)

        logger.warning(f"No {CONFIG_FILENAME} found, running on defaults (looked in {candidates[1]})")
        return str(candidates[1])

    def _load_config(self) -> Dict[str, Any]:
        """读取配置文件并与默认值合并；文件不可用时只用默认值"""
        try:
            with open(self._config_path, encoding="utf-8") as f:
                file_config = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Config file {self._config_path} does not exist, using defaults")
            return dict(DEFAULTS)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Could not read config file {self._config_path}: {e}")
            return dict(DEFAULTS)

        logger.info(f"Loaded config from {self._config_path}")
        return {**DEFAULTS, **file_config}

    def _value(self, key: str, cast=str) -> Any:
        """环境变量 > 配置文件 > 默认值"""
        raw = os.getenv(key) or self._config.get(key, DEFAULTS[key])
        try:
            return cast(raw)
        except (TypeError, ValueError):
            logger.warning(f"Invalid value for {key}: {raw!r}, using default {DEFAULTS[key]!r}")
            return cast(DEFAULTS[key])

    def _build_cost_ratios(self):
        """COST_RATIOS 中给出的比例覆盖默认成本比例"""
        from storefront_analytics.analytics.financial import CostRatios

        overrides = self._config.get("COST_RATIOS") or {}
        if not isinstance(overrides, dict):
            logger.warning("COST_RATIOS must be an object, using default ratios")
            return CostRatios()

        try:
            return CostRatios.from_mapping(overrides)
        except (TypeError, ValueError) as e:
            logger.error(f"Invalid COST_RATIOS, using default ratios: {e}")
            return CostRatios()

    def _configure_logging(self):
        log_file = Path(self.app.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper(), logging.INFO),
            format=LOG_FORMAT,
            handlers=[logging.FileHandler(log_file, encoding='utf-8'), logging.StreamHandler()]
        )

    def has_llm(self) -> bool:
        return bool(self.llm.api_key and self.llm.endpoint)

    def has_clickhouse(self) -> bool:
        return bool(self.clickhouse.host)


_settings = None


def get_settings() -> Settings:
    """全局配置单例"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
