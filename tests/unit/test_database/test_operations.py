"""
Unit tests for database operations
"""

from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from database.connection import DatabaseManager
from database.models import QuoteDB, ServiceItemDB
from database.operations import SQLQuoteStorage, _is_number_conflict
from quotes import QuoteAggregate, QuoteCreated, QuoteNumberAllocator, QuoteStatus, ServiceItem
from utils.exceptions import DatabaseError, QuoteNotFound, StorageUnavailable, UniquenessViolation

from tests.factories import CustomerFactory, ItemFactory, QuoteFactory


@pytest.mark.unit
class TestSQLQuoteStorage:
    """Test cases for SQLQuoteStorage"""

    @pytest.mark.asyncio
    async def test_insert_and_get_roundtrip(self, sql_storage):
        quote = QuoteFactory.create_quote(items=[
            ServiceItem(id="i-1", description="Design", quantity="2.5", unit_price="0.10"),
            ServiceItem(id="i-2", description="Build", quantity="1", unit_price="1999.99"),
        ])
        await sql_storage.insert_quote(quote)

        stored = await sql_storage.get_quote(quote.id)
        assert stored.quote_number == quote.quote_number
        assert stored.customer == quote.customer
        assert stored.business_snapshot == quote.business_snapshot
        assert [item.id for item in stored.items] == ["i-1", "i-2"]
        assert stored.items[0].quantity == Decimal("2.5")
        assert stored.items[0].unit_price == Decimal("0.10")
        assert stored.tax_rate == Decimal("17")
        assert stored.total == quote.total

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, sql_storage):
        assert await sql_storage.get_quote("missing") is None

    @pytest.mark.asyncio
    async def test_duplicate_number_raises_uniqueness_violation(self, sql_storage):
        await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number="2025-001"))

        with pytest.raises(UniquenessViolation):
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number="2025-001"))

    @pytest.mark.asyncio
    async def test_failed_insert_leaves_no_items(self, sql_storage, test_database):
        await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number="2025-001", item_count=1))
        with pytest.raises(UniquenessViolation):
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number="2025-001", item_count=3))

        async with test_database.session_scope() as session:
            items = (await session.execute(select(ServiceItemDB))).scalars().all()
        assert len(items) == 1

    @pytest.mark.asyncio
    async def test_max_quote_number_is_numeric(self, sql_storage):
        for number in ["2025-002", "2025-1000", "2025-999", "2025-010-1234abcdef"]:
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number=number, item_count=0))
        await sql_storage.insert_quote(QuoteFactory.create_quote(
            quote_number="2024-5000", issue_date=date(2024, 5, 1), item_count=0
        ))

        assert await sql_storage.get_max_quote_number("owner-1", "2025") == "2025-1000"
        assert await sql_storage.get_max_quote_number("owner-1", "2024") == "2024-5000"
        assert await sql_storage.get_max_quote_number("owner-2", "2025") is None

    @pytest.mark.asyncio
    async def test_max_quote_number_matches_given_prefix(self, sql_storage):
        for number in ["2025-003", "2025-03-001", "2025-03-002"]:
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number=number, item_count=0))

        assert await sql_storage.get_max_quote_number("owner-1", "2025") == "2025-003"
        assert await sql_storage.get_max_quote_number("owner-1", "2025-03") == "2025-03-002"
        assert await sql_storage.get_max_quote_number("owner-1", "2025-04") is None

    @pytest.mark.asyncio
    async def test_monthly_numbering_stays_sequential(self, sql_storage, clock, quote_config):
        monthly = replace(quote_config, numbering=replace(quote_config.numbering, period="month"))
        engine = QuoteAggregate(sql_storage, clock=clock, config=monthly)

        numbers = []
        for _ in range(3):
            quote = await engine.create(
                "owner-1", None, CustomerFactory.create_customer(),
                [ItemFactory.create_item()], "", 17, date(2025, 4, 13)
            )
            numbers.append(quote.quote_number)
        await engine.flush()

        assert numbers == ["2025-03-001", "2025-03-002", "2025-03-003"]

    @pytest.mark.asyncio
    async def test_update_replaces_items(self, sql_storage, test_database):
        quote = QuoteFactory.create_quote(item_count=3)
        await sql_storage.insert_quote(quote)

        updated = quote.model_copy(update={
            'items': [ServiceItem(id="new-1", description="Only", quantity=1, unit_price=5)],
            'notes': "revised",
            'status': QuoteStatus.SENT,
        })
        await sql_storage.update_quote(updated, replace_items=True)

        stored = await sql_storage.get_quote(quote.id)
        assert [item.id for item in stored.items] == ["new-1"]
        assert stored.notes == "revised"
        assert stored.status == QuoteStatus.SENT

        async with test_database.session_scope() as session:
            row = (await session.execute(select(QuoteDB).filter(QuoteDB.id == quote.id))).scalar_one()
            count = len((await session.execute(select(ServiceItemDB))).scalars().all())
        assert count == 1
        assert row.total == Decimal("5.85")

    @pytest.mark.asyncio
    async def test_update_without_replacing_items(self, sql_storage):
        quote = QuoteFactory.create_quote(item_count=2)
        await sql_storage.insert_quote(quote)

        await sql_storage.update_quote(quote.model_copy(update={'notes': "n"}), replace_items=False)

        stored = await sql_storage.get_quote(quote.id)
        assert [item.id for item in stored.items] == [item.id for item in quote.items]
        assert stored.notes == "n"

    @pytest.mark.asyncio
    async def test_update_missing_quote(self, sql_storage):
        with pytest.raises(QuoteNotFound):
            await sql_storage.update_quote(QuoteFactory.create_quote())

    @pytest.mark.asyncio
    async def test_list_quotes_filters_and_orders(self, sql_storage):
        older = QuoteFactory.create_quote(quote_number="2025-001")
        newer = QuoteFactory.create_quote(quote_number="2025-002")
        other = QuoteFactory.create_quote(owner_id="owner-2", quote_number="2025-001")
        base = datetime(2025, 3, 14, 9, 0, 0)
        for offset, quote in enumerate([older, newer, other]):
            await sql_storage.insert_quote(quote.model_copy(update={
                'created_at': base + timedelta(minutes=offset),
                'updated_at': base + timedelta(minutes=offset),
            }))

        mine = await sql_storage.list_quotes("owner-1")
        assert [quote.id for quote in mine] == [newer.id, older.id]
        assert len(await sql_storage.list_quotes()) == 3

    @pytest.mark.asyncio
    async def test_allocator_over_sql_storage(self, sql_storage, numbering_config):
        allocator = QuoteNumberAllocator(sql_storage, numbering_config)

        async def insert(candidate):
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number=candidate, item_count=1))

        numbers = [await allocator.allocate("owner-1", "2025", insert) for _ in range(3)]
        assert numbers == ["2025-001", "2025-002", "2025-003"]

    @pytest.mark.asyncio
    async def test_allocator_retries_on_real_constraint(self, sql_storage, numbering_config):
        await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number="2025-001", item_count=0))
        allocator = QuoteNumberAllocator(sql_storage, numbering_config)
        attempts = []
        stale = iter(["2025-001"])

        async def insert(candidate):
            # 第一次模拟读到过期的最大值，撞上已存在的编号
            candidate = next(stale, candidate)
            attempts.append(candidate)
            await sql_storage.insert_quote(QuoteFactory.create_quote(quote_number=candidate, item_count=0))

        await allocator.allocate("owner-1", "2025", insert)
        assert attempts == ["2025-001", "2025-002"]

    @pytest.mark.asyncio
    async def test_operational_error_maps_to_storage_unavailable(self, temp_dir):
        db = DatabaseManager(f"sqlite+aiosqlite:///{temp_dir}/empty.db")
        storage = SQLQuoteStorage(db)
        try:
            with pytest.raises(StorageUnavailable):
                await storage.get_quote("q-1")  # 表尚未创建
        finally:
            await db.close()


@pytest.mark.unit
class TestErrorMapping:
    """Test cases for IntegrityError classification"""

    def test_unique_constraint_message(self):
        error = IntegrityError("INSERT", {}, Exception(
            "UNIQUE constraint failed: quotes.owner_id, quotes.quote_number"
        ))
        assert _is_number_conflict(error)

    def test_other_integrity_error(self):
        error = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: quotes.customer_name"))
        assert not _is_number_conflict(error)

    @pytest.mark.asyncio
    async def test_not_null_violation_maps_to_database_error(self, test_database):
        storage = SQLQuoteStorage(test_database)
        with pytest.raises(DatabaseError) as exc_info:
            async with storage._session("insert_quote") as session:
                session.add(ServiceItemDB(id="i-1", quote_id="missing", position=0,
                                          description=None, quantity="1", unit_price="1"))
        assert not isinstance(exc_info.value, UniquenessViolation)


@pytest.mark.unit
class TestSQLActivityLog:
    """Test cases for SQLActivityLog"""

    @pytest.mark.asyncio
    async def test_record_and_read_back(self, sql_activity_log):
        event = QuoteCreated(quote_id="q-1", owner_id="owner-1", actor_id="owner-1", quote_number="2025-001")
        await sql_activity_log.record(event)

        entries = await sql_activity_log.recent()
        assert len(entries) == 1
        entry = entries[0]
        assert entry['action'] == "create"
        assert entry['entity_type'] == "quote"
        assert entry['entity_id'] == "q-1"
        assert entry['details']['quote_number'] == "2025-001"

    @pytest.mark.asyncio
    async def test_recent_filters_by_entity(self, sql_activity_log):
        for quote_id in ["q-1", "q-2", "q-1"]:
            await sql_activity_log.record(QuoteCreated(
                quote_id=quote_id, owner_id="owner-1", actor_id="owner-1", quote_number="2025-001"
            ))

        assert len(await sql_activity_log.recent(entity_id="q-1")) == 2
        assert len(await sql_activity_log.recent(limit=1)) == 1
