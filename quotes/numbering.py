"""
Quote number allocation.

Numbers look like ``2025-001`` (yearly periods) or ``2025-06-001`` (monthly
periods) and are sequential per owner and period. Allocation is optimistic:
read the current maximum, try to insert the next number, and let the storage
uniqueness constraint on ``(owner_id, quote_number)`` reject collisions.
"""

import asyncio
import random
import re
import secrets
import time
from datetime import date
from typing import Any, Awaitable, Callable, Iterable, Optional

from utils import (
    config_manager, NumberingConfig, numbering_logger, numbering_metrics,
    UniquenessViolation, AllocationExhausted, ConfigurationError, ErrorCodes
)
from utils.config_manager import PERIOD_GRANULARITIES

from .storage import QuoteStorage

InsertCallback = Callable[[str], Awaitable[Any]]

# 兜底后缀：4 位微秒片段 + 6 位随机十六进制
SUFFIX_LENGTH = 10


def period_prefix(on: date, granularity: str = "year") -> str:
    """期间前缀：year -> "2025"，month -> "2025-06" """
    if granularity == "year":
        return f"{on.year:04d}"
    if granularity == "month":
        return f"{on.year:04d}-{on.month:02d}"
    raise ConfigurationError(
        f"Unknown numbering period {granularity!r}, expected one of {PERIOD_GRANULARITIES}",
        ErrorCodes.CONFIG_INVALID_VALUE
    )


def format_quote_number(prefix: str, sequence: int, width: int = 3) -> str:
    return f"{prefix}-{sequence:0{width}d}"


def parse_sequence(quote_number: Optional[str], prefix: str) -> int:
    """
    Extract the sequence from a quote number of the given period.

    Tolerates numbers wider than the pad width (``2025-1000``) and numbers
    carrying a fallback suffix (``2025-004-5821a9c3f1``). Anything that does not
    belong to the period counts as 0.
    """
    if not quote_number:
        return 0
    match = re.match(
        rf"^{re.escape(prefix)}-(\d+)(?:-[0-9a-fA-F]{{{SUFFIX_LENGTH}}})?$", quote_number
    )
    if not match:
        return 0
    return int(match.group(1))


def highest_quote_number(numbers: Iterable[str], prefix: str) -> Optional[str]:
    """按序号数值取 prefix 期间内最大的编号，不属于该期间的编号忽略"""
    ranked = [(parse_sequence(number, prefix), number) for number in numbers]
    ranked = [entry for entry in ranked if entry[0] > 0]
    if not ranked:
        return None
    return max(ranked)[1]


def disambiguating_suffix() -> str:
    """微秒时间片段 + 随机十六进制，用于重试耗尽后的最后一次尝试"""
    micros = (time.time_ns() // 1000) % 10000
    return f"{micros:04d}{secrets.token_hex(3)}"


class QuoteNumberAllocator:
    """报价编号分配器（乐观重试，唯一约束作为唯一仲裁者）"""

    def __init__(self, storage: QuoteStorage, config: Optional[NumberingConfig] = None):
        self.storage = storage
        self.config = config or config_manager.get_quote_config().numbering

    def period_for(self, on: date) -> str:
        return period_prefix(on, self.config.period)

    async def next_candidate(self, owner_id: str, period: str) -> str:
        current_max = await self.storage.get_max_quote_number(owner_id, period)
        sequence = parse_sequence(current_max, period) + 1
        return format_quote_number(period, sequence, self.config.sequence_width)

    async def allocate(self, owner_id: str, period: str, insert: InsertCallback) -> str:
        """
        Allocate a number for ``owner_id`` in ``period`` and persist with it.

        ``insert`` is the caller's atomic insert of the complete quote row for a
        candidate number; it must raise ``UniquenessViolation`` when the number
        is taken. Other storage errors propagate unchanged and are not retried.

        Returns the assigned quote number.
        """
        attempts = self.config.max_attempts

        for attempt in range(attempts):
            candidate = await self.next_candidate(owner_id, period)
            try:
                await insert(candidate)
            except UniquenessViolation:
                numbering_metrics.increment("collisions")
                numbering_logger.warning(
                    f"[Numbering] Collision on {candidate} for owner {owner_id} "
                    f"(attempt {attempt + 1}/{attempts})"
                )
                if attempt < attempts - 1:
                    await asyncio.sleep(random.uniform(0, self.config.retry_backoff_ms) / 1000)
                continue

            numbering_metrics.increment("allocated")
            numbering_logger.debug(f"[Numbering] Allocated {candidate} for owner {owner_id}")
            return candidate

        candidate = f"{await self.next_candidate(owner_id, period)}-{disambiguating_suffix()}"
        numbering_metrics.increment("fallback")
        numbering_logger.warning(
            f"[Numbering] Retries exhausted for owner {owner_id}, trying suffixed number {candidate}"
        )
        try:
            await insert(candidate)
        except UniquenessViolation as e:
            numbering_metrics.increment("exhausted")
            numbering_logger.error(f"[Numbering] Suffixed number {candidate} collided too")
            raise AllocationExhausted(
                f"Could not allocate a quote number for owner {owner_id} in period {period}",
                ErrorCodes.NUMBER_ALLOCATION_EXHAUSTED,
                {'owner_id': owner_id, 'period': period, 'attempts': attempts + 1}
            ) from e

        numbering_metrics.increment("allocated")
        return candidate
