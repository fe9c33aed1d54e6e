"""
Domain events and activity-log delivery.

Events are delivered fire-and-forget: a failing or slow activity sink never
blocks or fails the quote mutation that produced the event.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from utils import activity_logger, activity_metrics, get_utc_time


@dataclass(frozen=True)
class QuoteEvent:
    """报价事件基类"""
    quote_id: str
    owner_id: str
    actor_id: str
    quote_number: str
    occurred_at: datetime = field(default_factory=get_utc_time)

    action = "quote_event"

    def details(self) -> Dict[str, Any]:
        return {'quote_number': self.quote_number, 'owner_id': self.owner_id}

    def to_record(self) -> Dict[str, Any]:
        """活动日志记录（对应 activity_log 表的列）"""
        return {
            'user_id': self.actor_id,
            'action': self.action,
            'entity_type': 'quote',
            'entity_id': self.quote_id,
            'details': self.details(),
            'created_at': self.occurred_at,
        }


@dataclass(frozen=True)
class QuoteCreated(QuoteEvent):
    action = "create"


@dataclass(frozen=True)
class QuoteUpdated(QuoteEvent):
    changed_fields: List[str] = field(default_factory=list)

    action = "update"

    def details(self) -> Dict[str, Any]:
        details = super().details()
        details['changed_fields'] = list(self.changed_fields)
        return details


@dataclass(frozen=True)
class QuoteStatusChanged(QuoteEvent):
    from_status: str = ""
    to_status: str = ""

    action = "status_change"

    def details(self) -> Dict[str, Any]:
        details = super().details()
        details.update({'from_status': self.from_status, 'to_status': self.to_status})
        return details


class ActivityLogSink(ABC):
    """活动日志协作方"""

    @abstractmethod
    async def record(self, event: QuoteEvent) -> None:
        pass


class LoggingActivitySink(ActivityLogSink):
    """将事件写入模块日志"""

    async def record(self, event: QuoteEvent) -> None:
        record = event.to_record()
        activity_logger.info(
            f"[ActivityLog] {record['action']} quote {event.quote_number} "
            f"by {event.actor_id}: {record['details']}"
        )


class EventPublisher:
    """把事件投递给各个 sink，每次投递是一个后台任务"""

    def __init__(self, sinks: Optional[List[ActivityLogSink]] = None):
        self.sinks: List[ActivityLogSink] = list(sinks or [])
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def publish(self, event: QuoteEvent) -> None:
        """调度投递后立即返回，不等待 sink"""
        for sink in self.sinks:
            task = asyncio.create_task(sink.record(event))
            self._pending.add(task)
            task.add_done_callback(self._delivery_done(sink, event))
        activity_metrics.increment(f"published.{event.action}")

    def _delivery_done(self, sink: ActivityLogSink, event: QuoteEvent):
        def callback(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if task.cancelled():
                activity_logger.warning(
                    f"[ActivityLog] Delivery of {event.action} for quote {event.quote_id} "
                    f"to {type(sink).__name__} was cancelled"
                )
                return
            error = task.exception()
            if error is not None:
                activity_metrics.increment("delivery_failed")
                activity_logger.error(
                    f"[ActivityLog] {type(sink).__name__} failed to record {event.action} "
                    f"for quote {event.quote_id}: {error}"
                )
        return callback

    async def flush(self) -> None:
        """等待所有未完成的投递（关闭或测试时使用）"""
        while self._pending:
            tasks = list(self._pending)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._pending.difference_update(tasks)
