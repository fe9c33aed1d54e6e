"""
工具模块包
提供报价引擎所需的配置、日志、异常和日期工具
"""

from .config_manager import (
    config_manager,
    UnifiedConfigManager,
    LoggingConfig,
    DatabaseConfig,
    QuoteConfig,
    NumberingConfig
)
from .exceptions import (
    QuoteSystemError,
    ConfigurationError,
    ValidationError,
    ForbiddenTransition,
    QuoteAccessDenied,
    QuoteNotFound,
    StorageError,
    StorageUnavailable,
    UniquenessViolation,
    DatabaseError,
    AllocationExhausted,
    ErrorCodes,
    create_error_response
)
from .logging_manager import (
    LogContext,
    log_execution,
    MetricsLogger,
    logging_manager,
    logger,
    numbering_metrics,
    quote_metrics,
    activity_metrics,
    LogConfig,
    initialize_logging,
    ModuleLoggers,
    quote_logger,
    numbering_logger,
    lifecycle_logger,
    money_logger,
    db_logger,
    activity_logger,
    config_logger
)
from .date_utils import get_local_time, get_utc_time, today, ensure_date, add_days
from .path_utils import BASE_DIR, CONFIG_DIR, LOG_DIR

__version__ = "1.0.0"

__all__ = [
    # 配置管理
    "config_manager",
    "UnifiedConfigManager",
    "LoggingConfig",
    "DatabaseConfig",
    "QuoteConfig",
    "NumberingConfig",

    # 异常处理
    "QuoteSystemError",
    "ConfigurationError",
    "ValidationError",
    "ForbiddenTransition",
    "QuoteAccessDenied",
    "QuoteNotFound",
    "StorageError",
    "StorageUnavailable",
    "UniquenessViolation",
    "DatabaseError",
    "AllocationExhausted",
    "ErrorCodes",
    "create_error_response",

    # 日志工具
    "LogContext",
    "log_execution",
    "MetricsLogger",
    "logging_manager",
    "logger",
    "numbering_metrics",
    "quote_metrics",
    "activity_metrics",
    "LogConfig",
    "initialize_logging",
    "ModuleLoggers",
    "quote_logger",
    "numbering_logger",
    "lifecycle_logger",
    "money_logger",
    "db_logger",
    "activity_logger",
    "config_logger",

    # 日期工具
    "get_local_time",
    "get_utc_time",
    "today",
    "ensure_date",
    "add_days",

    # 路径工具
    "BASE_DIR",
    "CONFIG_DIR",
    "LOG_DIR",
]
