"""
Date and time utilities for the quote engine.
Provides timezone-aware "now"/"today" and date arithmetic helpers.
"""

from datetime import datetime, date, timedelta, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config_manager import config_manager
from .exceptions import ConfigurationError, ErrorCodes


def get_timezone():
    """获取配置的业务时区"""
    tz_name = config_manager.get_quote_config().timezone
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as e:
        raise ConfigurationError(
            f"Unknown timezone in quote_config.timezone: {tz_name}",
            ErrorCodes.CONFIG_INVALID_VALUE
        ) from e


def get_local_time() -> datetime:
    """获取业务时区当前时间"""
    return datetime.now(get_timezone())


def get_utc_time() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    """获取业务时区的今天"""
    return get_local_time().date()


def ensure_date(dt: Optional[Union[date, datetime]]) -> Optional[date]:
    """确保日期为 date 类型"""
    if dt is None:
        return None
    return dt.date() if isinstance(dt, datetime) else dt


def add_days(start: date, days: int) -> date:
    return start + timedelta(days=days)

