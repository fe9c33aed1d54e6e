"""
database models for the quote engine.
Quotes, their service items and the activity log.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime, Text, JSON,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from utils import get_utc_time

Base = declarative_base()


class QuoteDB(Base):
    """database model for quotes"""
    __tablename__ = 'quotes'

    # Identity
    id = Column(String(36), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    quote_number = Column(String(64), nullable=False)

    # Business snapshot
    business_name = Column(String(255), nullable=False, default='')
    business_email = Column(String(255), nullable=False, default='')
    business_phone = Column(String(32), nullable=False, default='')
    business_address = Column(String(500), nullable=False, default='')
    business_logo_url = Column(Text, nullable=True)

    # Customer snapshot
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False, default='')
    customer_phone = Column(String(32), nullable=False, default='')
    customer_address = Column(String(500), nullable=False, default='')

    notes = Column(Text, nullable=False, default='')
    issue_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False)
    tax_rate = Column(String(16), nullable=False)  # 精确十进制文本
    status = Column(String(16), nullable=False, default='draft', index=True)

    # 持久化时按当前服务项重新计算，仅供报表查询，读取时不使用
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    # Metadata
    created_at = Column(DateTime, default=get_utc_time)
    updated_at = Column(DateTime, default=get_utc_time, onupdate=get_utc_time)

    # Relationships
    items = relationship(
        "ServiceItemDB",
        back_populates="quote",
        order_by="ServiceItemDB.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint('owner_id', 'quote_number', name='uq_quotes_owner_number'),
        Index('idx_quotes_created_at', 'created_at'),
    )


class ServiceItemDB(Base):
    """database model for quote service items"""
    __tablename__ = 'service_items'

    id = Column(String(36), primary_key=True)
    quote_id = Column(String(36), ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # 显示顺序
    description = Column(String(500), nullable=False)
    quantity = Column(String(32), nullable=False)
    unit_price = Column(String(32), nullable=False)

    quote = relationship("QuoteDB", back_populates="items")

    __table_args__ = (
        Index('idx_service_items_quote_position', 'quote_id', 'position'),
    )


class ActivityLogDB(Base):
    """activity log entries written for quote events"""
    __tablename__ = 'activity_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    action = Column(String(32), nullable=False)
    entity_type = Column(String(32), nullable=True)
    entity_id = Column(String(36), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=get_utc_time, index=True)
