"""
Domain models for the quote engine.
Pydantic value models for quotes, their items and the customer/business
snapshots copied into them.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from utils import ValidationError, ErrorCodes

from .money import MAX_QUANTITY, MAX_UNIT_PRICE, Totals, compute_totals, to_decimal


class QuoteStatus(str, Enum):
    """报价状态"""
    DRAFT = "draft"
    SENT = "sent"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Actor:
    """由身份协作方提供的操作者（引擎完全信任该信息）"""
    actor_id: str
    is_admin: bool = False


def _decimal_field(value: Any, info) -> Decimal:
    # 转为 pydantic 可聚合的 ValueError
    try:
        return to_decimal(value, info.field_name)
    except ValidationError as e:
        raise ValueError(e.message) from None


def _checked_totals(items, tax_rate) -> Totals:
    try:
        return compute_totals(items, tax_rate)
    except ValidationError as e:
        raise ValueError(e.message) from None


class ServiceItem(BaseModel):
    """报价服务项"""
    id: Optional[str] = Field(None, description="服务项ID，新项为空")
    description: str = Field(..., min_length=1, max_length=500, description="描述")
    quantity: Decimal = Field(..., gt=0, le=MAX_QUANTITY, description="数量")
    unit_price: Decimal = Field(..., ge=0, le=MAX_UNIT_PRICE, description="单价")

    @field_validator('quantity', 'unit_price', mode='before')
    @classmethod
    def coerce_decimal(cls, value, info):
        return _decimal_field(value, info)

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class Customer(BaseModel):
    """客户信息快照"""
    name: str = Field(..., min_length=1, max_length=255, description="客户名称")
    email: str = Field('', max_length=255, description="邮箱")
    phone: str = Field('', max_length=32, description="电话")
    address: str = Field('', max_length=500, description="地址")

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class BusinessSnapshot(BaseModel):
    """开票商家信息快照（不随商家资料后续修改而变化）"""
    name: str = Field('', max_length=255, description="商家名称")
    email: str = Field('', max_length=255, description="邮箱")
    phone: str = Field('', max_length=32, description="电话")
    address: str = Field('', max_length=500, description="地址")
    logo_url: Optional[str] = Field(None, description="Logo 引用")

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class Quote(BaseModel):
    """
    Quote aggregate state.

    ``subtotal``, ``tax_amount`` and ``total`` are computed from ``items`` and
    ``tax_rate`` on every access; values supplied for them on construction are
    ignored.
    """
    id: str = Field(..., description="报价ID")
    owner_id: str = Field(..., description="所属租户")
    quote_number: str = Field(..., description="报价编号")
    business_snapshot: BusinessSnapshot = Field(default_factory=BusinessSnapshot)
    customer: Customer
    items: List[ServiceItem] = Field(default_factory=list)
    notes: str = Field('', max_length=1000)
    issue_date: date
    valid_until: date
    tax_rate: Decimal = Field(..., ge=0, le=100, description="税率百分比")
    status: QuoteStatus = QuoteStatus.DRAFT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('tax_rate', mode='before')
    @classmethod
    def coerce_tax_rate(cls, value, info):
        return _decimal_field(value, info)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def check_dates(self):
        if self.valid_until < self.issue_date:
            raise ValueError("valid_until must not precede issue_date")
        return self

    @model_validator(mode='after')
    def check_totals(self):
        _checked_totals(self.items, self.tax_rate)
        return self

    @property
    def totals(self) -> Totals:
        return compute_totals(self.items, self.tax_rate)

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @computed_field
    @property
    def tax_amount(self) -> Decimal:
        return self.totals.tax_amount

    @computed_field
    @property
    def total(self) -> Decimal:
        return self.totals.total


class QuoteInput(BaseModel):
    """创建报价时的输入"""
    business_snapshot: BusinessSnapshot = Field(default_factory=BusinessSnapshot)
    customer: Customer
    items: List[ServiceItem] = Field(default_factory=list)
    notes: str = Field('', max_length=1000)
    tax_rate: Decimal = Field(..., ge=0, le=100)
    valid_until: date

    @field_validator('tax_rate', mode='before')
    @classmethod
    def coerce_tax_rate(cls, value, info):
        return _decimal_field(value, info)

    @model_validator(mode='after')
    def check_totals(self):
        _checked_totals(self.items, self.tax_rate)
        return self


class QuotePatch(BaseModel):
    """更新报价的补丁，出现的字段整体替换"""
    business_snapshot: Optional[BusinessSnapshot] = None
    customer: Optional[Customer] = None
    items: Optional[List[ServiceItem]] = None
    notes: Optional[str] = Field(None, max_length=1000)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    valid_until: Optional[date] = None
    status: Optional[QuoteStatus] = None

    @field_validator('tax_rate', mode='before')
    @classmethod
    def coerce_tax_rate(cls, value, info):
        if value is None:
            return None
        return _decimal_field(value, info)

    def provided(self) -> Dict[str, Any]:
        """返回调用方显式提供且非空的字段"""
        return {name: getattr(self, name) for name in self.model_fields_set
                if getattr(self, name) is not None}


class QuoteTemplate(BaseModel):
    """未保存的新报价表单预填内容（不分配编号）"""
    owner_id: str
    business_snapshot: BusinessSnapshot
    customer: Customer
    items: List[ServiceItem] = Field(default_factory=list)
    notes: str = ''
    issue_date: date
    valid_until: date
    tax_rate: Decimal
    status: QuoteStatus = QuoteStatus.DRAFT


def empty_customer() -> Customer:
    """空白客户（仅用于表单预填，不经过校验）"""
    return Customer.model_construct(name='', email='', phone='', address='')


def validation_error_from_pydantic(exc: PydanticValidationError, what: str = "quote") -> ValidationError:
    """将 pydantic 校验错误转换为引擎的 ValidationError，保留字段路径"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get('loc', ())) or what
        errors.append({'field': field, 'message': error.get('msg', 'invalid value')})

    summary = "; ".join(f"{e['field']}: {e['message']}" for e in errors)
    return ValidationError(
        f"Invalid {what} input: {summary}",
        ErrorCodes.VALIDATION_INVALID_FIELD,
        {'errors': errors}
    )
