"""
database operations for the quote engine.
SQL implementations of the quote storage and activity-log collaborators.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, desc
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.future import select

from quotes.events import ActivityLogSink, QuoteEvent
from quotes.models import BusinessSnapshot, Customer, Quote, ServiceItem
from quotes.numbering import highest_quote_number
from quotes.storage import QuoteStorage
from utils import (
    db_logger, activity_logger,
    DatabaseError, StorageUnavailable, UniquenessViolation, QuoteNotFound, ErrorCodes
)

from .connection import DatabaseManager
from .models import QuoteDB, ServiceItemDB, ActivityLogDB

UNIQUE_CONSTRAINT = 'uq_quotes_owner_number'


def _is_number_conflict(error: IntegrityError) -> bool:
    message = str(error.orig).lower()
    return UNIQUE_CONSTRAINT in message or 'quote_number' in message


class _SQLOperations:
    """SQL 操作公共部分：会话与异常映射"""

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.db_logger = db_logger

    @asynccontextmanager
    async def _session(self, operation: str):
        """事务会话，把 SQLAlchemy 异常映射为存储层异常"""
        self.db.initialize()
        try:
            async with self.db.session_scope() as session:
                yield session
        except IntegrityError as e:
            if _is_number_conflict(e):
                raise UniquenessViolation(
                    f"Quote number already taken during {operation}",
                    ErrorCodes.DB_UNIQUE_VIOLATION,
                    {'operation': operation}
                ) from e
            self.db_logger.error(f"[Database] Integrity error during {operation}: {e.orig}")
            raise DatabaseError(
                f"Integrity error during {operation}: {e.orig}",
                ErrorCodes.DB_INTEGRITY_ERROR,
                {'operation': operation}
            ) from e
        except (OperationalError, DBAPIError) as e:
            self.db_logger.error(f"[Database] Storage unavailable during {operation}: {e}")
            raise StorageUnavailable(
                f"Storage unavailable during {operation}: {e}",
                ErrorCodes.DB_CONNECTION_FAILED,
                {'operation': operation}
            ) from e
        except SQLAlchemyError as e:
            self.db_logger.error(f"[Database] Query failed during {operation}: {e}")
            raise DatabaseError(
                f"Query failed during {operation}: {e}",
                ErrorCodes.DB_QUERY_FAILED,
                {'operation': operation}
            ) from e


class SQLQuoteStorage(_SQLOperations, QuoteStorage):
    """基于 SQLAlchemy 异步会话的报价存储"""

    # === Mapping ===

    def _items_to_rows(self, quote: Quote) -> List[ServiceItemDB]:
        return [
            ServiceItemDB(
                id=item.id,
                quote_id=quote.id,
                position=position,
                description=item.description,
                quantity=str(item.quantity),
                unit_price=str(item.unit_price),
            )
            for position, item in enumerate(quote.items)
        ]

    def _apply_fields(self, row: QuoteDB, quote: Quote) -> None:
        """写入可变字段和按当前服务项计算的金额"""
        business, customer = quote.business_snapshot, quote.customer
        row.business_name = business.name
        row.business_email = business.email
        row.business_phone = business.phone
        row.business_address = business.address
        row.business_logo_url = business.logo_url
        row.customer_name = customer.name
        row.customer_email = customer.email
        row.customer_phone = customer.phone
        row.customer_address = customer.address
        row.notes = quote.notes
        row.valid_until = quote.valid_until
        row.tax_rate = str(quote.tax_rate)
        row.status = quote.status.value

        totals = quote.totals
        row.subtotal = totals.subtotal
        row.tax_amount = totals.tax_amount
        row.total = totals.total
        if quote.updated_at is not None:
            row.updated_at = quote.updated_at

    def _to_row(self, quote: Quote) -> QuoteDB:
        row = QuoteDB(
            id=quote.id,
            owner_id=quote.owner_id,
            quote_number=quote.quote_number,
            issue_date=quote.issue_date,
        )
        if quote.created_at is not None:
            row.created_at = quote.created_at
        self._apply_fields(row, quote)
        row.items = self._items_to_rows(quote)
        return row

    @staticmethod
    def _to_domain(row: QuoteDB) -> Quote:
        # 金额列不读回，由模型按服务项重新计算
        return Quote(
            id=row.id,
            owner_id=row.owner_id,
            quote_number=row.quote_number,
            business_snapshot=BusinessSnapshot(
                name=row.business_name,
                email=row.business_email,
                phone=row.business_phone,
                address=row.business_address,
                logo_url=row.business_logo_url,
            ),
            customer=Customer(
                name=row.customer_name,
                email=row.customer_email,
                phone=row.customer_phone,
                address=row.customer_address,
            ),
            items=[
                ServiceItem(
                    id=item.id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in row.items
            ],
            notes=row.notes,
            issue_date=row.issue_date,
            valid_until=row.valid_until,
            tax_rate=row.tax_rate,
            status=row.status,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    # === Quote Operations ===

    async def get_max_quote_number(self, owner_id: str, period: str) -> Optional[str]:
        """按给定期间前缀筛选编号，再按序号数值取最大值"""
        async with self._session("get_max_quote_number") as session:
            stmt = select(QuoteDB.quote_number).filter(
                QuoteDB.owner_id == owner_id,
                QuoteDB.quote_number.startswith(f"{period}-", autoescape=True),
            )
            result = await session.execute(stmt)
            return highest_quote_number(result.scalars().all(), period)

    async def insert_quote(self, quote: Quote) -> Quote:
        """插入报价行及全部服务项（同一事务）"""
        async with self._session("insert_quote") as session:
            session.add(self._to_row(quote))
            await session.flush()

        self.db_logger.debug(f"[Database] Inserted quote {quote.quote_number} ({quote.id})")
        return quote

    async def update_quote(self, quote: Quote, replace_items: bool = False) -> Quote:
        """按ID更新报价；replace_items 时先删除全部服务项再插入新的"""
        async with self._session("update_quote") as session:
            if replace_items:
                await session.execute(delete(ServiceItemDB).where(ServiceItemDB.quote_id == quote.id))

            result = await session.execute(select(QuoteDB).filter(QuoteDB.id == quote.id))
            row = result.scalar_one_or_none()
            if row is None:
                raise QuoteNotFound(
                    f"Quote {quote.id} not found",
                    ErrorCodes.QUOTE_NOT_FOUND,
                    {'quote_id': quote.id}
                )

            self._apply_fields(row, quote)
            if replace_items:
                row.items = self._items_to_rows(quote)

        self.db_logger.debug(
            f"[Database] Updated quote {quote.quote_number} (items replaced: {replace_items})"
        )
        return quote

    async def get_quote(self, quote_id: str) -> Optional[Quote]:
        async with self._session("get_quote") as session:
            result = await session.execute(select(QuoteDB).filter(QuoteDB.id == quote_id))
            row = result.scalar_one_or_none()
            return self._to_domain(row) if row is not None else None

    async def list_quotes(self, owner_id: Optional[str] = None) -> List[Quote]:
        """按创建时间倒序列出报价"""
        async with self._session("list_quotes") as session:
            stmt = select(QuoteDB)
            if owner_id is not None:
                stmt = stmt.filter(QuoteDB.owner_id == owner_id)
            stmt = stmt.order_by(desc(QuoteDB.created_at), desc(QuoteDB.quote_number))
            result = await session.execute(stmt)
            return [self._to_domain(row) for row in result.scalars().all()]


class SQLActivityLog(_SQLOperations, ActivityLogSink):
    """把报价事件写入 activity_log 表"""

    async def record(self, event: QuoteEvent) -> None:
        async with self._session("record_activity") as session:
            session.add(ActivityLogDB(**event.to_record()))

        activity_logger.debug(f"[ActivityLog] Recorded {event.action} for quote {event.quote_id}")

    async def recent(self, limit: int = 50, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """最近的活动记录（时间倒序）"""
        async with self._session("recent_activity") as session:
            stmt = select(ActivityLogDB)
            if entity_id is not None:
                stmt = stmt.filter(ActivityLogDB.entity_id == entity_id)
            stmt = stmt.order_by(desc(ActivityLogDB.created_at), desc(ActivityLogDB.id)).limit(limit)
            result = await session.execute(stmt)
            return [
                {
                    'id': entry.id,
                    'user_id': entry.user_id,
                    'action': entry.action,
                    'entity_type': entry.entity_type,
                    'entity_id': entry.entity_id,
                    'details': entry.details,
                    'created_at': entry.created_at,
                }
                for entry in result.scalars().all()
            ]
