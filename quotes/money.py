"""
Money computation for quotes.
Exact decimal arithmetic over service items; every consumer (form, list view,
PDF, invoice) goes through compute_totals so the figures are identical.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, DecimalException, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from utils import config_manager, money_logger, ValidationError, ErrorCodes

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")

# 金额上限与 Numeric(12, 2) 金额列一致
MAX_AMOUNT = Decimal("9999999999.99")
MAX_QUANTITY = Decimal("1000000")
MAX_UNIT_PRICE = Decimal("1000000000")


@dataclass(frozen=True)
class Totals:
    """报价金额汇总（已按两位小数四舍五入）"""
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


def _invalid(field: str, message: str) -> ValidationError:
    return ValidationError(
        f"{field}: {message}",
        ErrorCodes.VALIDATION_INVALID_AMOUNT,
        {'errors': [{'field': field, 'message': message}]}
    )


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """将输入转换为精确的 Decimal，拒绝布尔值、NaN、无穷大和无法解析的字符串"""
    if isinstance(value, bool):
        raise _invalid(field, "must be a number, not a boolean")

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise _invalid(field, "must be a finite number")
        # 使用最短的十进制表示，避免二进制浮点误差进入金额
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except DecimalException:
            raise _invalid(field, f"is not a number: {value!r}") from None
    else:
        raise _invalid(field, f"unsupported type {type(value).__name__}")

    if not result.is_finite():
        raise _invalid(field, "must be a finite number")
    return result


def round_money(amount: Decimal) -> Decimal:
    """四舍五入（ROUND_HALF_UP）到两位小数，超出十进制精度时按校验错误处理"""
    try:
        return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    except DecimalException:
        raise _invalid("amount", "is too large to round to cents") from None


def validate_tax_rate(tax_rate_percent: Any, field: str = "tax_rate") -> Decimal:
    rate = to_decimal(tax_rate_percent, field)
    if rate < ZERO:
        raise _invalid(field, "must not be negative")
    if rate > HUNDRED:
        raise _invalid(field, "must not exceed 100")
    return rate


def line_total(item: Any, index: Optional[int] = None) -> Decimal:
    """单项金额 quantity × unit_price（精确值，不做舍入）"""
    prefix = f"items[{index}]." if index is not None else ""
    quantity = to_decimal(item.quantity, f"{prefix}quantity")
    unit_price = to_decimal(item.unit_price, f"{prefix}unit_price")
    if quantity < ZERO:
        raise _invalid(f"{prefix}quantity", "must not be negative")
    if unit_price < ZERO:
        raise _invalid(f"{prefix}unit_price", "must not be negative")
    try:
        return quantity * unit_price
    except DecimalException:
        raise _invalid(f"{prefix}quantity", "line total is out of range") from None


def compute_subtotal(items: Iterable[Any]) -> Decimal:
    """Σ(quantity × unit_price)，空列表返回 0"""
    subtotal = ZERO
    for index, item in enumerate(items):
        try:
            subtotal += line_total(item, index)
        except DecimalException:
            raise _invalid("subtotal", "is out of range") from None
    return subtotal


def compute_tax(subtotal: Decimal, tax_rate_percent: Any) -> Decimal:
    """subtotal × rate / 100"""
    subtotal = to_decimal(subtotal, "subtotal")
    if subtotal < ZERO:
        raise _invalid("subtotal", "must not be negative")
    return subtotal * validate_tax_rate(tax_rate_percent) / HUNDRED


def compute_total(subtotal: Decimal, tax_amount: Decimal) -> Decimal:
    return to_decimal(subtotal, "subtotal") + to_decimal(tax_amount, "tax_amount")


def compute_totals(items: Iterable[Any], tax_rate_percent: Any) -> Totals:
    """
    Canonical totals for a quote.

    The subtotal is rounded first, tax is computed from the rounded subtotal and
    rounded, and the total is the sum of the two rounded figures, so
    ``total == subtotal + tax_amount`` holds exactly on the stored amounts.
    """
    subtotal = round_money(compute_subtotal(items))
    tax_amount = round_money(compute_tax(subtotal, tax_rate_percent))
    total = compute_total(subtotal, tax_amount)
    if total > MAX_AMOUNT:
        raise _invalid("total", f"must not exceed {MAX_AMOUNT}")
    money_logger.debug(f"[Money] subtotal={subtotal} tax={tax_amount} total={total}")
    return Totals(subtotal=subtotal, tax_amount=tax_amount, total=total)


def format_amount(amount: Any, currency_symbol: Optional[str] = None) -> str:
    """展示用金额格式：货币符号 + 千分位 + 两位小数，例如 ₪1,234.50"""
    if currency_symbol is None:
        currency_symbol = config_manager.get_quote_config().currency_symbol
    rounded = round_money(to_decimal(amount))
    return f"{currency_symbol}{rounded:,.2f}"
