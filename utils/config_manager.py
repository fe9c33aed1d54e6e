"""
报价引擎配置模块
合并 config/ 目录下的 json 文件，并提供日志、数据库、报价三类类型化配置
"""

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Dict, TypeVar
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import ConfigurationError, ErrorCodes
from .path_utils import CONFIG_DIR

config_logger = logging.getLogger("Config")

T = TypeVar('T')

PERIOD_GRANULARITIES = ('year', 'month')


# ============================================================================
# 类型化配置
# ============================================================================

@dataclass
class LoggingModuleConfig:
    level: str = "INFO"
    enabled: bool = True


@dataclass
class FileLoggingConfig:
    enabled: bool = True
    directory: str = "log"
    filename: str = "quotes.log"
    rotation: Optional[Dict[str, Any]] = None


@dataclass
class ConsoleLoggingConfig:
    enabled: bool = True


@dataclass
class LoggingConfig:
    """logging_config 段"""
    level: str = "INFO"
    format: str = "[%(levelname)s][%(asctime)s][%(name)s] - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_config: FileLoggingConfig = field(default_factory=FileLoggingConfig)
    console_config: ConsoleLoggingConfig = field(default_factory=ConsoleLoggingConfig)
    modules: Dict[str, LoggingModuleConfig] = field(default_factory=dict)


@dataclass
class DatabaseConfig:
    """database_config 段，url 优先于 db_path"""
    db_path: str = "data/quotes.db"
    url: Optional[str] = None
    echo: bool = False


@dataclass
class NumberingConfig:
    """报价编号：周期粒度、序号位数、插入重试次数与退避上限"""
    period: str = "year"
    sequence_width: int = 3
    max_attempts: int = 3
    retry_backoff_ms: int = 5


@dataclass
class QuoteConfig:
    """quote_config 段"""
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    default_tax_rate: Decimal = Decimal("17")
    default_validity_days: int = 30
    default_notes: str = ""
    currency_symbol: str = "₪"
    timezone: str = "Asia/Jerusalem"


def _invalid(message: str) -> ConfigurationError:
    return ConfigurationError(message, ErrorCodes.CONFIG_INVALID_VALUE)


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    file_data = data.get('file_config', {})
    return LoggingConfig(
        level=data.get('level', 'INFO'),
        format=data.get('format', LoggingConfig.format),
        date_format=data.get('date_format', LoggingConfig.date_format),
        file_config=FileLoggingConfig(
            enabled=file_data.get('enabled', True),
            directory=file_data.get('directory', 'log'),
            filename=file_data.get('filename', 'quotes.log'),
            rotation=file_data.get('rotation'),
        ),
        console_config=ConsoleLoggingConfig(
            enabled=data.get('console_config', {}).get('enabled', True)
        ),
        modules={
            name: LoggingModuleConfig(level=module.get('level', 'INFO'),
                                      enabled=module.get('enabled', True))
            for name, module in data.get('modules', {}).items()
        },
    )


def _parse_numbering(data: Dict[str, Any]) -> NumberingConfig:
    numbering = NumberingConfig(**{
        key: data[key] for key in ('period', 'sequence_width', 'max_attempts', 'retry_backoff_ms')
        if key in data
    })
    if numbering.period not in PERIOD_GRANULARITIES:
        raise _invalid(f"quote_config.numbering.period must be one of "
                       f"{PERIOD_GRANULARITIES}, got {numbering.period!r}")
    for key in ('sequence_width', 'max_attempts'):
        value = getattr(numbering, key)
        if not isinstance(value, int) or value < 1:
            raise _invalid(f"quote_config.numbering.{key} must be a positive integer, got {value!r}")
    return numbering


def _parse_quote(data: Dict[str, Any]) -> QuoteConfig:
    raw_rate = data.get('default_tax_rate', 17)
    try:
        tax_rate = Decimal(str(raw_rate))
    except InvalidOperation as e:
        raise _invalid(f"quote_config.default_tax_rate is not a number: {raw_rate!r}") from e
    if not Decimal(0) <= tax_rate <= Decimal(100):
        raise _invalid(f"quote_config.default_tax_rate must be within [0, 100], got {tax_rate}")

    return QuoteConfig(
        numbering=_parse_numbering(data.get('numbering', {})),
        default_tax_rate=tax_rate,
        default_validity_days=int(data.get('default_validity_days', 30)),
        default_notes=data.get('default_notes', ''),
        currency_symbol=data.get('currency_symbol', '₪'),
        timezone=data.get('timezone', 'Asia/Jerusalem'),
    )


# ============================================================================
# 配置管理器
# ============================================================================

class UnifiedConfigManager:
    """
    配置管理器

    目录下的 json 文件按文件名顺序合并到同一个字典，顶层键后者覆盖前者。
    类型化配置按段缓存，修改对应段时失效。
    """

    def __init__(self, config_dir: str = str(CONFIG_DIR)):
        self._config_dir = Path(config_dir)
        self._config_data: Dict[str, Any] = {}
        self._typed_cache: Dict[str, Any] = {}
        self._load_config()

    def _read_file(self, path: Path) -> Dict[str, Any]:
        try:
            data = json.loads(path.read_text(encoding='utf-8'))
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in configuration file {path.name}: {e}",
                ErrorCodes.CONFIG_INVALID_FORMAT
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {path.name} must contain a JSON object",
                ErrorCodes.CONFIG_INVALID_FORMAT
            )
        return data

    def _load_config(self) -> None:
        if not self._config_dir.is_dir():
            raise ConfigurationError(
                f"Configuration path is not a directory: {self._config_dir}",
                ErrorCodes.CONFIG_NOT_FOUND
            )

        files = sorted(self._config_dir.glob("*.json"))
        if not files:
            raise ConfigurationError(
                f"No configuration files (.json) found in: {self._config_dir}",
                ErrorCodes.CONFIG_NOT_FOUND
            )

        merged: Dict[str, Any] = {}
        for path in files:
            merged.update(self._read_file(path))
            config_logger.debug(f"Merged configuration file {path.name}")

        self._config_data = merged
        self._typed_cache.clear()
        config_logger.info(f"Loaded {len(files)} configuration files from {self._config_dir}")

    # ========================================================================
    # 原始访问
    # ========================================================================

    def get(self, key: str, default: Optional[T] = None) -> Optional[T]:
        return self._config_data.get(key, default)

    def get_nested(self, path: str, default: Optional[T] = None) -> Optional[T]:
        """点分隔路径取值，任一层缺失返回 default"""
        node: Any = self._config_data
        for key in path.split('.'):
            if not isinstance(node, dict) or key not in node:
                return default
            node = node[key]
        return node

    def set(self, key: str, value: Any) -> None:
        self._config_data[key] = value
        self._typed_cache.pop(key, None)

    def set_nested(self, path: str, value: Any) -> None:
        *parents, leaf = path.split('.')
        node = self._config_data
        for key in parents:
            node = node.setdefault(key, {})
        node[leaf] = value
        self._typed_cache.pop(path.split('.', 1)[0], None)

    def update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        self._config_data.update(config_dict)
        self._typed_cache.clear()
        config_logger.info(f"Configuration sections replaced: {sorted(config_dict)}")

    def __contains__(self, key: str) -> bool:
        return key in self._config_data

    def __getitem__(self, key: str) -> Any:
        return self._config_data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    # ========================================================================
    # 类型化访问
    # ========================================================================

    def _typed(self, section: str, parser):
        if section not in self._typed_cache:
            self._typed_cache[section] = parser(self.get_nested(section, {}))
        return self._typed_cache[section]

    def get_logging_config(self) -> LoggingConfig:
        """日志段格式错误时退回默认值，不阻断启动"""
        try:
            return self._typed('logging_config', _parse_logging)
        except (AttributeError, TypeError) as e:
            config_logger.error(f"Failed to parse logging config: {e}")
            self._typed_cache['logging_config'] = LoggingConfig()
            return self._typed_cache['logging_config']

    def get_database_config(self) -> DatabaseConfig:
        return self._typed('database_config', lambda data: DatabaseConfig(
            db_path=data.get('db_path', 'data/quotes.db'),
            url=data.get('url'),
            echo=bool(data.get('echo', False)),
        ))

    def get_quote_config(self) -> QuoteConfig:
        """报价段的非法值直接抛出 ConfigurationError"""
        return self._typed('quote_config', _parse_quote)


config_manager = UnifiedConfigManager()
