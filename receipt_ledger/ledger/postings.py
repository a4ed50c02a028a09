"""
Postings builder.

Turns a normalized receipt into postings: one per item (mapped to an
account), an optional tax line, and the payment posting that carries
the total. Items are mapped concurrently since they are independent.

Entry types decide the signs: expense, asset, liability and transfer
entries debit the items and credit the payment account, income entries
do the reverse. An asset entry whose items describe an opening balance
skips item mapping and books the total against equity.
"""

import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Union

from receipt_ledger.ledger.currency import round2
from receipt_ledger.models.ledger import (
    EntryType,
    MappingResult,
    Posting,
    is_account_path,
    normalize_business_name,
)
from receipt_ledger.models.receipt import ReceiptShape

# map_account(description, vendor=..., business=..., account_type=..., user_id=...)
MapAccount = Callable[..., Awaitable[Union[MappingResult, str]]]

DEFAULT_PAYMENT_ACCOUNT = "Assets:Cash"
ASSET_PURCHASE_PAYMENT_ACCOUNT = "Liabilities:Personal:Debt:CreditCard"
TAX_DESCRIPTION = "tax"

OPENING_BALANCE_WORDS = ("opening", "initial", "starting")


def resolve_payment_account(method: Optional[str], business: Optional[str] = "Personal") -> str:
    """
    Resolve a payment method or account path to an account.

    Account paths pass through. Otherwise keywords decide: credit/card go
    to the business credit card liability, bank names to a bank asset,
    anything else to cash.
    """
    if not method:
        return DEFAULT_PAYMENT_ACCOUNT
    value = method.strip()
    if ":" in value and is_account_path(value):
        return value

    business = normalize_business_name(business)
    lowered = value.lower()
    if "credit" in lowered or "card" in lowered:
        return f"Liabilities:{business}:Debt:CreditCard"
    if "kasikorn" in lowered or "kbank" in lowered:
        return f"Assets:Bank:Kasikorn:{business}"
    if any(word in lowered for word in ("bank", "transfer", "promptpay", "scb")):
        return f"Assets:Bank:Bank:{business}"
    return DEFAULT_PAYMENT_ACCOUNT


def is_opening_balance(receipt: ReceiptShape) -> bool:
    """True when an item reads like 'Opening balance' or 'Initial deposit'."""
    return any(
        word in item.description.lower()
        for item in receipt.items
        for word in OPENING_BALANCE_WORDS
    )


def default_payment_account(
    entry_type: EntryType,
    receipt: ReceiptShape,
    fallback: str = DEFAULT_PAYMENT_ACCOUNT,
) -> str:
    """Asset purchases go on the credit card; everything else uses the fallback."""
    if entry_type == EntryType.ASSET and not is_opening_balance(receipt):
        return ASSET_PURCHASE_PAYMENT_ACCOUNT
    return fallback


def _entry_type(value: Union[EntryType, str]) -> EntryType:
    raw = getattr(value, "value", value)
    try:
        return EntryType(raw)
    except ValueError:
        raise ValueError(f"Unsupported entry type: {raw}")


def _receipt_total(receipt: ReceiptShape, fallback: Decimal) -> Decimal:
    if receipt.total is not None:
        return receipt.total
    if receipt.subtotal is not None:
        return receipt.subtotal
    return fallback


def _account_of(result: Union[MappingResult, str]) -> tuple[str, Optional[MappingResult]]:
    if isinstance(result, MappingResult):
        return result.account, result
    return result, None


def opening_balance_postings(
    receipt: ReceiptShape,
    payment_account: str,
    business: Optional[str],
    currency: str,
) -> list[Posting]:
    """The funded account against `Equity:{Business}:OpeningBalances`."""
    total = round2(_receipt_total(receipt, receipt.items_sum))
    return [
        Posting(account=payment_account, amount=total, currency=currency),
        Posting(
            account=f"Equity:{normalize_business_name(business)}:OpeningBalances",
            amount=-total,
            currency=currency,
        ),
    ]


async def build_postings_detailed(
    receipt: ReceiptShape,
    map_account: MapAccount,
    currency: str = "THB",
    payment_account: Optional[str] = None,
    include_tax_line: bool = True,
    vendor: Optional[str] = None,
    business: Optional[str] = None,
    entry_type: Union[EntryType, str] = EntryType.EXPENSE,
    user_id: Optional[str] = None,
) -> tuple[list[Posting], list[MappingResult]]:
    """
    Build postings and return them with the mapping results behind them.

    Without a payment account, asset purchases are credited to the
    personal credit card and everything else to cash.

    Raises:
        ValueError: entry_type is not an EntryType value
    """
    entry_type = _entry_type(entry_type)
    payment_account = payment_account or default_payment_account(entry_type, receipt)

    if entry_type == EntryType.ASSET and is_opening_balance(receipt):
        return opening_balance_postings(receipt, payment_account, business, currency), []

    sign = Decimal("-1") if entry_type == EntryType.INCOME else Decimal("1")

    async def map_one(description: str, item_vendor: Optional[str]) -> Union[MappingResult, str]:
        return await map_account(
            description,
            vendor=item_vendor,
            business=business,
            account_type=entry_type.account_type,
            user_id=user_id,
        )

    requests = [(item.description, vendor) for item in receipt.items]
    tax = receipt.tax if receipt.tax is not None else Decimal("0")
    with_tax = include_tax_line and tax > 0
    if with_tax:
        # The store does not decide where tax goes
        requests.append((TAX_DESCRIPTION, None))

    results = await asyncio.gather(*(map_one(d, v) for d, v in requests))

    postings: list[Posting] = []
    mappings: list[MappingResult] = []
    amounts = [item.price for item in receipt.items]
    if with_tax:
        amounts.append(tax)

    for result, amount in zip(results, amounts):
        account, mapping = _account_of(result)
        if mapping is not None:
            mappings.append(mapping)
        postings.append(Posting(
            account=account,
            amount=round2(amount) * sign,
            currency=currency,
        ))

    posted = sum((abs(p.amount) for p in postings), Decimal("0"))
    postings.append(Posting(
        account=payment_account,
        amount=-round2(_receipt_total(receipt, posted)) * sign,
        currency=currency,
    ))
    return postings, mappings


async def build_postings(
    receipt: ReceiptShape,
    map_account: MapAccount,
    currency: str = "THB",
    payment_account: Optional[str] = None,
    include_tax_line: bool = True,
    vendor: Optional[str] = None,
    business: Optional[str] = None,
    entry_type: Union[EntryType, str] = EntryType.EXPENSE,
    user_id: Optional[str] = None,
) -> list[Posting]:
    """Build the postings for a receipt (see build_postings_detailed)."""
    postings, _ = await build_postings_detailed(
        receipt,
        map_account,
        currency=currency,
        payment_account=payment_account,
        include_tax_line=include_tax_line,
        vendor=vendor,
        business=business,
        entry_type=entry_type,
        user_id=user_id,
    )
    return postings
