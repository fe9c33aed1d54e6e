"""
Quote aggregate: the only entry point that constructs or mutates a quote.

Creation allocates a quote number while inserting the row, updates route status
changes through the lifecycle, and both publish activity events without waiting
for their delivery.
"""

import uuid
from datetime import date
from typing import Any, Callable, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from utils import (
    config_manager, QuoteConfig, quote_logger, quote_metrics, LogContext, log_execution,
    get_utc_time, today, add_days,
    ValidationError, QuoteAccessDenied, QuoteNotFound, ErrorCodes
)

from .events import EventPublisher, QuoteCreated, QuoteUpdated, QuoteStatusChanged
from .lifecycle import QuoteLifecycle
from .models import (
    Actor, BusinessSnapshot, Quote, QuoteInput, QuotePatch, QuoteStatus, QuoteTemplate,
    ServiceItem, empty_customer, validation_error_from_pydantic
)
from .numbering import QuoteNumberAllocator
from .storage import QuoteStorage

# 补丁中这些字段会被忽略并记录警告
IMMUTABLE_FIELDS = ('id', 'owner_id', 'quote_number', 'issue_date', 'created_at', 'updated_at')
DERIVED_FIELDS = ('subtotal', 'tax_amount', 'total')


def _with_fresh_ids(items: Iterable[ServiceItem]) -> List[ServiceItem]:
    return [item.model_copy(update={'id': str(uuid.uuid4())}) for item in items]


class QuoteAggregate:
    """报价聚合根"""

    def __init__(self, storage: QuoteStorage,
                 publisher: Optional[EventPublisher] = None,
                 allocator: Optional[QuoteNumberAllocator] = None,
                 lifecycle: Optional[QuoteLifecycle] = None,
                 clock: Callable[[], date] = today,
                 config: Optional[QuoteConfig] = None):
        self.storage = storage
        self.config = config or config_manager.get_quote_config()
        self.publisher = publisher or EventPublisher()
        self.allocator = allocator or QuoteNumberAllocator(storage, self.config.numbering)
        self.lifecycle = lifecycle or QuoteLifecycle()
        self.clock = clock

    # ========================================================================
    # 访问控制
    # ========================================================================

    @staticmethod
    def _check_access(quote: Quote, actor: Actor) -> None:
        if actor.is_admin or actor.actor_id == quote.owner_id:
            return
        raise QuoteAccessDenied(
            f"Actor {actor.actor_id} may not access quote {quote.id}",
            ErrorCodes.QUOTE_ACCESS_DENIED,
            {'quote_id': quote.id, 'actor_id': actor.actor_id}
        )

    # ========================================================================
    # 创建
    # ========================================================================

    async def create(self, owner_id: str,
                     business_snapshot: Union[BusinessSnapshot, Mapping[str, Any], None],
                     customer: Any,
                     items: Optional[Iterable[Any]],
                     notes: str,
                     tax_rate_percent: Any,
                     valid_until: Any,
                     actor: Optional[Actor] = None) -> Quote:
        """
        Create a draft quote with a freshly allocated quote number.

        The number is allocated while inserting the complete row, so a quote is
        never persisted without a number and a number never without its quote.
        """
        actor = actor or Actor(owner_id)
        if not actor.is_admin and actor.actor_id != owner_id:
            raise QuoteAccessDenied(
                f"Actor {actor.actor_id} may not create quotes for owner {owner_id}",
                ErrorCodes.QUOTE_ACCESS_DENIED,
                {'owner_id': owner_id, 'actor_id': actor.actor_id}
            )

        with LogContext("Quote", "create", owner_id=owner_id):
            try:
                data = QuoteInput.model_validate({
                    'business_snapshot': business_snapshot or BusinessSnapshot(),
                    'customer': customer,
                    'items': list(items or []),
                    'notes': notes or '',
                    'tax_rate': tax_rate_percent,
                    'valid_until': valid_until,
                })
            except PydanticValidationError as e:
                raise validation_error_from_pydantic(e) from None

            issue_date = self.clock()
            if data.valid_until < issue_date:
                raise ValidationError(
                    f"valid_until: {data.valid_until} precedes issue date {issue_date}",
                    ErrorCodes.VALIDATION_INVALID_DATE,
                    {'errors': [{'field': 'valid_until', 'message': 'must not precede issue_date'}]}
                )

            quote_id = str(uuid.uuid4())
            items = _with_fresh_ids(data.items)
            now = get_utc_time()
            persisted: List[Quote] = []

            async def insert(candidate: str) -> None:
                quote = Quote(
                    id=quote_id,
                    owner_id=owner_id,
                    quote_number=candidate,
                    business_snapshot=data.business_snapshot,
                    customer=data.customer,
                    items=items,
                    notes=data.notes,
                    issue_date=issue_date,
                    valid_until=data.valid_until,
                    tax_rate=data.tax_rate,
                    status=QuoteStatus.DRAFT,
                    created_at=now,
                    updated_at=now,
                )
                persisted.append(await self.storage.insert_quote(quote))

            period = self.allocator.period_for(issue_date)
            await self.allocator.allocate(owner_id, period, insert)
            quote = persisted[-1]

        quote_metrics.increment("created")
        quote_logger.info(f"[Quote] Created {quote.quote_number} ({quote.id}) for owner {owner_id}")
        self.publisher.publish(QuoteCreated(
            quote_id=quote.id, owner_id=owner_id, actor_id=actor.actor_id,
            quote_number=quote.quote_number
        ))
        return quote

    # ========================================================================
    # 更新
    # ========================================================================

    def _parse_patch(self, quote: Quote, patch: Union[QuotePatch, Mapping[str, Any]]) -> QuotePatch:
        if isinstance(patch, QuotePatch):
            return patch

        ignored = [key for key in patch if key in IMMUTABLE_FIELDS or key in DERIVED_FIELDS]
        unknown = [key for key in patch
                   if key not in ignored and key not in QuotePatch.model_fields]
        if ignored:
            quote_logger.warning(
                f"[Quote] Ignoring read-only fields {ignored} in patch for quote {quote.id}"
            )
        if unknown:
            quote_logger.warning(
                f"[Quote] Ignoring unknown fields {unknown} in patch for quote {quote.id}"
            )

        allowed = {key: value for key, value in patch.items() if key in QuotePatch.model_fields}
        try:
            return QuotePatch.model_validate(allowed)
        except PydanticValidationError as e:
            raise validation_error_from_pydantic(e, "patch") from None

    async def update(self, quote: Quote, actor: Actor,
                     patch: Union[QuotePatch, Mapping[str, Any]]) -> Quote:
        """
        Apply ``patch`` to ``quote`` on behalf of ``actor``.

        Fields present in the patch replace the stored values wholesale; items
        are replaced as a whole and receive fresh ids. Identity fields and
        totals in the patch are ignored. Concurrent edits are last-write-wins.
        """
        self._check_access(quote, actor)

        with LogContext("Quote", "update", owner_id=quote.owner_id, quote_id=quote.id):
            fields = self._parse_patch(quote, patch).provided()

            current = quote
            status_change = None
            target = fields.pop('status', None)
            if target is not None and target != quote.status:
                current = self.lifecycle.transition(quote, actor, target)
                status_change = (quote.status, current.status)

            if 'items' in fields:
                fields['items'] = _with_fresh_ids(fields['items'])

            if not fields and status_change is None:
                quote_logger.debug(f"[Quote] Empty patch for quote {quote.id}, nothing to persist")
                return quote

            data = current.model_dump(exclude=set(DERIVED_FIELDS))
            data.update(fields)
            data['updated_at'] = get_utc_time()
            try:
                updated = Quote.model_validate(data)
            except PydanticValidationError as e:
                raise validation_error_from_pydantic(e) from None

            saved = await self.storage.update_quote(updated, replace_items='items' in fields)

        changed = sorted(fields)
        if status_change is not None:
            changed.append('status')
        quote_metrics.increment("updated")
        quote_logger.info(f"[Quote] Updated {saved.quote_number}: {changed}")

        self.publisher.publish(QuoteUpdated(
            quote_id=saved.id, owner_id=saved.owner_id, actor_id=actor.actor_id,
            quote_number=saved.quote_number, changed_fields=changed
        ))
        if status_change is not None:
            self.publisher.publish(QuoteStatusChanged(
                quote_id=saved.id, owner_id=saved.owner_id, actor_id=actor.actor_id,
                quote_number=saved.quote_number,
                from_status=status_change[0].value, to_status=status_change[1].value
            ))
        return saved

    # ========================================================================
    # 查询与模板
    # ========================================================================

    def new_quote_template(self, owner_id: str,
                           business_snapshot: Union[BusinessSnapshot, Mapping[str, Any], None] = None
                           ) -> QuoteTemplate:
        """新报价表单的预填内容，不分配编号"""
        if business_snapshot is None:
            business_snapshot = BusinessSnapshot()
        elif not isinstance(business_snapshot, BusinessSnapshot):
            try:
                business_snapshot = BusinessSnapshot.model_validate(business_snapshot)
            except PydanticValidationError as e:
                raise validation_error_from_pydantic(e, "business_snapshot") from None

        issue_date = self.clock()
        return QuoteTemplate(
            owner_id=owner_id,
            business_snapshot=business_snapshot,
            customer=empty_customer(),
            items=[],
            notes=self.config.default_notes,
            issue_date=issue_date,
            valid_until=add_days(issue_date, self.config.default_validity_days),
            tax_rate=self.config.default_tax_rate,
        )

    @log_execution("Quote", "get")
    async def get(self, quote_id: str, actor: Actor) -> Quote:
        quote = await self.storage.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFound(
                f"Quote {quote_id} not found",
                ErrorCodes.QUOTE_NOT_FOUND,
                {'quote_id': quote_id}
            )
        self._check_access(quote, actor)
        return quote

    @log_execution("Quote", "list_quotes")
    async def list_quotes(self, actor: Actor) -> List[Quote]:
        """管理员看到所有租户的报价，其他人只看到自己的，按创建时间倒序"""
        owner_id = None if actor.is_admin else actor.actor_id
        return await self.storage.list_quotes(owner_id)

    async def flush(self) -> None:
        await self.publisher.flush()
