from __future__ import annotations
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

AMOUNT_EPSILON = Decimal("0.01")
# amounts are stored as Numeric(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")


def _parse(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return None


def to_decimal(value: Any) -> Decimal:
    """Coerce a JSON number/string to Decimal without float noise; junk, NaN and infinity become 0."""
    d = _parse(value)
    if d is None or not d.is_finite():
        return Decimal("0")
    return d


def out_of_range(value: Any) -> bool:
    """True for amounts that can never be stored: NaN, infinity or more than ten integer digits."""
    d = _parse(value)
    if d is None:
        return False
    return not d.is_finite() or abs(d) > MAX_AMOUNT


def _entry_amount(entry: Any) -> Any:
    if isinstance(entry, dict):
        return entry.get("amount")
    return getattr(entry, "amount", None)


@dataclass
class AmountValidation:
    is_valid: bool
    total_amount: Decimal
    invoice_amount: Decimal
    difference: Decimal
    entry_count: int
    message: str

    def as_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        for k in ("total_amount", "invoice_amount", "difference"):
            out[k] = float(out[k])
        return out


def validate_amounts(entries: Iterable[Any], invoice_amount: Any) -> AmountValidation:
    """Check that GL-coding lines add up to the invoice total within one cent."""
    items: List[Any] = list(entries)
    total = sum((to_decimal(_entry_amount(e)) for e in items), Decimal("0"))
    invoice = to_decimal(invoice_amount)
    difference = total - invoice
    ok = abs(difference) < AMOUNT_EPSILON
    if ok:
        message = "Amounts match correctly"
    else:
        message = f"Total GL amount (${total:.2f}) does not match invoice amount (${invoice:.2f})"
    return AmountValidation(
        is_valid=ok,
        total_amount=total,
        invoice_amount=invoice,
        difference=difference,
        entry_count=len(items),
        message=message,
    )


def range_errors(entries: Iterable[Any]) -> List[str]:
    """Lines whose amount is not finite or too large to store (1-based)."""
    return [
        f"Entry {i}: Amount must be a finite number no larger than {MAX_AMOUNT}"
        for i, e in enumerate(entries, start=1)
        if out_of_range(_entry_amount(e))
    ]


def validate_entries(entries: Iterable[Any]) -> List[str]:
    """Per-line required-field checks; returns human readable errors (1-based lines)."""
    errors: List[str] = []
    for i, e in enumerate(entries, start=1):
        get = e.get if isinstance(e, dict) else (lambda k, _e=e: getattr(_e, k, None))
        if not (get("account_code") or "").strip():
            errors.append(f"Entry {i}: Account code is required")
        if not (get("facility_code") or "").strip():
            errors.append(f"Entry {i}: Facility code is required")
        amount = get("amount")
        if out_of_range(amount):
            errors.append(f"Entry {i}: Amount must be a finite number no larger than {MAX_AMOUNT}")
        elif to_decimal(amount) <= 0:
            errors.append(f"Entry {i}: Valid amount is required")
    return errors
