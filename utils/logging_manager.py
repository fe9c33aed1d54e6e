"""
报价引擎日志模块
负责根日志器的处理器装配、按模块的日志级别，以及操作级的上下文日志和计数
"""

import inspect
import logging
import sys
import os
import time
import functools
import traceback
import threading
from pathlib import Path
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass
from collections import defaultdict, deque

from .exceptions import QuoteSystemError, ErrorCodes
from .config_manager import config_manager
from .path_utils import BASE_DIR, LOG_DIR

DEFAULT_LOGGER_NAME = "quoteengine"


@dataclass
class LogConfig:
    """根日志器的处理器设置"""
    level: str = "INFO"
    format: str = "[%(levelname)s][%(asctime)s][%(name)s] - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_max_bytes: int = 10 * 1024 * 1024
    file_backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = True
    log_directory: Optional[str] = None
    log_filename: str = "quotes.log"
    rotation_type: str = "size"  # size | time


class LoggingManager:
    """进程内唯一的日志管理器，同时保存各操作的累计计数"""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._setup()
        return cls._instance

    def _setup(self):
        self._loggers: Dict[str, logging.Logger] = {}
        self._counters: Dict[str, int] = defaultdict(int)
        self.settings = LogConfig()

    # ------------------------------------------------------------------
    # 处理器装配
    # ------------------------------------------------------------------

    def configure(self, settings: LogConfig = None):
        """按 settings 重建根日志器的处理器"""
        if settings is not None:
            self.settings = settings
        if self.settings.log_directory is None:
            self.settings.log_directory = str(LOG_DIR)

        root = logging.getLogger()
        root.setLevel(self._level(self.settings.level))
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(self.settings.format, datefmt=self.settings.date_format)
        for handler in self._build_handlers():
            handler.setFormatter(formatter)
            root.addHandler(handler)

    def _build_handlers(self):
        settings = self.settings
        if settings.enable_console:
            yield logging.StreamHandler(sys.stdout)
        if not settings.enable_file:
            return

        directory = Path(settings.log_directory)
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / settings.log_filename
        if settings.rotation_type == "time":
            yield TimedRotatingFileHandler(target, when="midnight",
                                           backupCount=settings.file_backup_count,
                                           encoding="utf-8")
        else:
            yield RotatingFileHandler(target, maxBytes=settings.file_max_bytes,
                                      backupCount=settings.file_backup_count,
                                      encoding="utf-8")

    def configure_from_config_file(self):
        """读取 logging.json 并装配处理器和模块级别"""
        try:
            section = config_manager.get_logging_config()
            file_section = section.file_config
            rotation = file_section.rotation or {}

            directory = file_section.directory
            if not os.path.isabs(directory):
                directory = str(BASE_DIR / directory)

            self.configure(LogConfig(
                level=section.level,
                format=section.format,
                date_format=section.date_format,
                file_max_bytes=int(rotation.get('max_bytes_mb', 10) * 1024 * 1024),
                file_backup_count=rotation.get('backup_count', 5),
                enable_console=section.console_config.enabled,
                enable_file=file_section.enabled,
                log_directory=directory,
                log_filename=file_section.filename,
                rotation_type=rotation.get('type', 'size'),
            ))

            # 关闭的模块只保留 CRITICAL
            for name, module in section.modules.items():
                level = self._level(module.level) if module.enabled else logging.CRITICAL
                self.get_logger(name).setLevel(level)
            return section

        except (OSError, AttributeError, ValueError) as e:
            raise QuoteSystemError(
                f"Failed to configure logging from config file: {e}",
                ErrorCodes.CONFIG_INVALID_FORMAT
            ) from e

    @staticmethod
    def _level(name: str) -> int:
        return getattr(logging, str(name).upper(), logging.INFO)

    # ------------------------------------------------------------------
    # 日志器与计数
    # ------------------------------------------------------------------

    def get_logger(self, name: str = None) -> logging.Logger:
        name = name or DEFAULT_LOGGER_NAME
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]

    def count(self, key: str, value: int = 1) -> int:
        self._counters[key] += value
        return self._counters[key]

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._counters)


class LogContext:
    """
    操作日志上下文

    进入时记 debug，正常退出记耗时，异常退出时客户端错误 (http_status < 500)
    记 warning，其余记 error 并附带堆栈。不吞异常。
    """

    def __init__(self, module: str, operation: str = None,
                 owner_id: str = None, quote_id: str = None,
                 extra_context: Dict[str, Any] = None):
        self.module = module
        self.operation = operation
        self.logger = logging_manager.get_logger(module)
        self.label = self._label(owner_id, quote_id, extra_context or {})
        self.started = 0.0

    def _label(self, owner_id, quote_id, extra: Dict[str, Any]) -> str:
        parts = [self.module, self.operation]
        if owner_id:
            parts.append(f"Owner:{owner_id}")
        if quote_id:
            parts.append(f"Quote:{quote_id}")
        parts.extend(f"{key}:{value}" for key, value in extra.items() if not key.startswith('_'))
        return ".".join(part for part in parts if part)

    def _count(self, outcome: str):
        logging_manager.count(f"{self.module}.{self.operation}_{outcome}")

    def __enter__(self):
        self.started = time.time()
        self.logger.debug(f"[{self.label}] Starting operation")
        self._count("started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.started
        if exc_type is None:
            self.logger.info(f"[{self.label}] Operation completed in {elapsed:.3f}s")
            self._count("completed")
            return False

        message = f"[{self.label}] Operation failed in {elapsed:.3f}s: {exc_val}"
        if isinstance(exc_val, QuoteSystemError) and exc_val.http_status < 500:
            self.logger.warning(message)
        else:
            self.logger.error(message)
            self.logger.debug(f"[{self.label}] Traceback: {''.join(traceback.format_tb(exc_tb))}")
        self._count("failed")
        return False


def log_execution(module: str, operation: str = None):
    """用 LogContext 包裹函数调用，owner_id / quote_id 从关键字参数中取"""
    def decorator(func: Callable) -> Callable:
        name = operation or func.__name__

        def context(kwargs) -> LogContext:
            return LogContext(module, name,
                              owner_id=kwargs.get('owner_id'), quote_id=kwargs.get('quote_id'))

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with context(kwargs):
                    return await func(*args, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with context(kwargs):
                return func(*args, **kwargs)
        return sync_wrapper

    return decorator


class MetricsLogger:
    """按模块记录计数和耗时，计数同时累加到 logging_manager"""

    def __init__(self, module: str, window: int = 1000):
        self.module = module
        self.samples = defaultdict(lambda: deque(maxlen=window))

    def increment(self, metric_name: str, value: int = 1):
        key = f"{self.module}.{metric_name}"
        self.samples[key].append(value)
        total = logging_manager.count(key, value)
        logging_manager.get_logger(self.module).debug(f"[Metrics] {key}: {total}")

    def timing(self, metric_name: str, duration: float):
        key = f"{self.module}.{metric_name}_duration"
        self.samples[key].append(duration)
        logging_manager.get_logger(self.module).debug(f"[Metrics] {key}: {duration:.3f}s")

    def get_metrics(self) -> dict:
        return {
            key: {'count': len(values), 'latest': values[-1], 'sum': sum(values)}
            for key, values in self.samples.items() if values
        }

    def reset(self):
        self.samples.clear()


logging_manager = LoggingManager()
logger = logging_manager.get_logger()

numbering_metrics = MetricsLogger("Numbering")
quote_metrics = MetricsLogger("Quote")
activity_metrics = MetricsLogger("ActivityLog")


class ModuleLoggers:
    """各业务模块的日志器"""

    Quote = logging_manager.get_logger("Quote")
    Numbering = logging_manager.get_logger("Numbering")
    Lifecycle = logging_manager.get_logger("Lifecycle")
    Money = logging_manager.get_logger("Money")
    Database = logging_manager.get_logger("Database")
    ActivityLog = logging_manager.get_logger("ActivityLog")
    Config = logging_manager.get_logger("Config")


quote_logger = ModuleLoggers.Quote
numbering_logger = ModuleLoggers.Numbering
lifecycle_logger = ModuleLoggers.Lifecycle
money_logger = ModuleLoggers.Money
db_logger = ModuleLoggers.Database
activity_logger = ModuleLoggers.ActivityLog
config_logger = ModuleLoggers.Config


def initialize_logging(use_config_file: bool = True) -> bool:
    """装配日志系统，配置文件无效时退回到仅控制台输出"""
    if not use_config_file:
        logging_manager.configure()
        logger.info("Logging system initialized with defaults")
        return True

    try:
        logging_manager.configure_from_config_file()
        logger.info("Logging system initialized from config file")
    except QuoteSystemError as e:
        logging_manager.configure(LogConfig(enable_file=False))
        logger.warning(f"Logging config invalid ({e.message}), using console-only fallback")
    return True


initialize_logging(use_config_file=True)
