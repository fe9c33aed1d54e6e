"""
报价引擎
Quote identity, lifecycle and financial computation.
"""

from .money import (
    Totals,
    to_decimal,
    round_money,
    line_total,
    compute_subtotal,
    compute_tax,
    compute_total,
    compute_totals,
    format_amount
)
from .models import (
    QuoteStatus,
    Actor,
    ServiceItem,
    Customer,
    BusinessSnapshot,
    Quote,
    QuoteInput,
    QuotePatch,
    QuoteTemplate
)
from .numbering import (
    QuoteNumberAllocator,
    period_prefix,
    format_quote_number,
    parse_sequence,
    highest_quote_number
)
from .lifecycle import QuoteLifecycle, OWNER_TRANSITIONS
from .events import (
    QuoteEvent,
    QuoteCreated,
    QuoteUpdated,
    QuoteStatusChanged,
    ActivityLogSink,
    LoggingActivitySink,
    EventPublisher
)
from .storage import QuoteStorage
from .aggregate import QuoteAggregate

__all__ = [
    # 金额计算
    "Totals",
    "to_decimal",
    "round_money",
    "line_total",
    "compute_subtotal",
    "compute_tax",
    "compute_total",
    "compute_totals",
    "format_amount",

    # 模型
    "QuoteStatus",
    "Actor",
    "ServiceItem",
    "Customer",
    "BusinessSnapshot",
    "Quote",
    "QuoteInput",
    "QuotePatch",
    "QuoteTemplate",

    # 编号
    "QuoteNumberAllocator",
    "period_prefix",
    "format_quote_number",
    "parse_sequence",
    "highest_quote_number",

    # 状态机
    "QuoteLifecycle",
    "OWNER_TRANSITIONS",

    # 事件
    "QuoteEvent",
    "QuoteCreated",
    "QuoteUpdated",
    "QuoteStatusChanged",
    "ActivityLogSink",
    "LoggingActivitySink",
    "EventPublisher",

    # 存储与聚合
    "QuoteStorage",
    "QuoteAggregate",
]
