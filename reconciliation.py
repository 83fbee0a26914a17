# reconciliation.py
"""
Post-extraction validation and correction.

`reconcile` is total: it always returns a record. Anything it cannot repair,
including its own internal failures, is reported as an unresolved
CorrectionNote on the record instead of an exception.
"""

import re
from typing import List, Optional

import pandas as pd

from classifier import canonical_supplier_name, supplier_profile
from config import (
    ARITHMETIC_TOLERANCE, DEFAULT_PAYMENT_TERMS_DAYS, EXCHANGE_RATE_TOLERANCE, JOB_CODE_PATTERNS,
    PAYMENT_TERMS_DAYS, PROJECT_CODE_PATTERNS, UOM_TOKENS
)
from schemas import BankPaymentRecord, ClientInvoiceRecord, CorrectionNote, LineItem, ProformaInvoiceRecord
from utils import log, parse_number

_NUMERIC_LINE = re.compile(r"^[\d,.\s]+$")
_NUMBER_TOKEN = re.compile(r"^\d[\d,]*(?:\.\d+)?$")
_PROJECT_CODE_RES = [re.compile(pattern) for pattern in PROJECT_CODE_PATTERNS]
_JOB_CODE_RES = [re.compile(pattern) for pattern in JOB_CODE_PATTERNS]

# How far below the product-code line a product name may sit.
NAME_LOOKAHEAD_LINES = 3
PROJECT_CODE_LOOKAHEAD_LINES = 2
# Quantity, unit price, total and at most one extra column (discount, tax).
NUMERIC_COLUMNS = 4


def _deviation(quantity: float, unit_price: float, total: float) -> Optional[float]:
    if not total:
        return None
    return abs(quantity * unit_price - total) / abs(total)


def _close(a: float, b: float) -> bool:
    return abs(a - b) <= 0.005 * max(1.0, abs(b))


def _find_code_line(product_code: str, lines: List[str]) -> Optional[int]:
    if not product_code:
        return None
    wanted = product_code.upper()
    for index, line in enumerate(lines):
        if wanted in line.upper():
            return index
    return None


def fix_arithmetic(item: LineItem, lines: List[str]) -> Optional[CorrectionNote]:
    """Swap-and-recheck: reassigns (quantity, unit price, total) when their product is off by more than the tolerance."""
    q, u, t = item.quantity, item.unit_price, item.total_price
    if q is None or u is None or t is None:
        return None
    deviation = _deviation(q, u, t)
    if deviation is None or deviation <= ARITHMETIC_TOLERANCE:
        return None

    # Quantity/unit-price swaps leave the product unchanged, so only reassignments involving the total are tried.
    candidates = [(q, t, u), (t, u, q), (u, t, q), (t, q, u)]
    best = None
    for candidate in candidates:
        candidate_deviation = _deviation(*candidate)
        if candidate_deviation is not None and (best is None or candidate_deviation < best[0]):
            best = (candidate_deviation, candidate)

    if best is not None and best[0] <= ARITHMETIC_TOLERANCE:
        item.quantity, item.unit_price, item.total_price = best[1]
        return CorrectionNote(
            step="arithmetic",
            line_number=item.line_number,
            message=f"Reassigned quantity/unitPrice/totalPrice from {(q, u, t)} to {best[1]}",
        )
    return CorrectionNote(
        step="arithmetic",
        line_number=item.line_number,
        message=f"quantity x unitPrice deviates {deviation:.0%} from totalPrice and no reassignment fits",
        resolved=False,
    )


def fix_column_order(item: LineItem, lines: List[str]) -> Optional[CorrectionNote]:
    """On the item's source line quantity precedes unit price; a reversed reading is swapped back."""
    q, u = item.quantity, item.unit_price
    if q is None or u is None or _close(q, u):
        return None
    index = _find_code_line(item.product_code, lines)
    if index is None:
        return None

    line = lines[index]
    after_code = line[line.upper().index(item.product_code.upper()) + len(item.product_code):]
    # Only whole numeric tokens in the trailing columns; "100MM" in a description is not a quantity.
    numeric = [token for token in after_code.split() if _NUMBER_TOKEN.match(token)]
    values = [float(token.replace(",", "")) for token in numeric[-NUMERIC_COLUMNS:]]
    quantity_at = next((i for i, value in enumerate(values) if _close(value, q)), None)
    unit_price_at = next((i for i, value in enumerate(values) if _close(value, u) and i != quantity_at), None)
    if quantity_at is None or unit_price_at is None or unit_price_at > quantity_at:
        return None

    item.quantity, item.unit_price = u, q
    return CorrectionNote(
        step="column_order",
        line_number=item.line_number,
        message=f"Swapped quantity ({q}) and unitPrice ({u}) to match the column order of the source line",
    )


def fix_uom_product_name(item: LineItem, lines: List[str]) -> Optional[CorrectionNote]:
    """A unit of measure is never a product name; the real name sits below the product-code line."""
    token = item.product_name.strip().upper()
    if token not in UOM_TOKENS:
        return None
    if not item.unit:
        item.unit = token

    index = _find_code_line(item.product_code, lines)
    if index is not None:
        for candidate in lines[index + 1:index + 1 + NAME_LOOKAHEAD_LINES]:
            text = candidate.strip()
            if not text or _NUMERIC_LINE.match(text) or text.upper() in UOM_TOKENS or len(text) <= 2:
                continue
            item.product_name = text
            return CorrectionNote(
                step="uom_guard",
                line_number=item.line_number,
                message=f"Replaced unit-of-measure product name '{token}' with '{text}'",
            )
    return CorrectionNote(
        step="uom_guard",
        line_number=item.line_number,
        message=f"Product name is the unit of measure '{token}' and no replacement was found",
        resolved=False,
    )


def _match_code(text: str, patterns) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text or "")
        if match:
            return (match.group(1) if match.groups() else match.group(0)).upper()
    return None


def recover_project_code(item: LineItem, lines: List[str]) -> Optional[CorrectionNote]:
    if item.project_code:
        return None
    own_text = [item.product_name, item.description]
    own_text += [value for value in (item.model_extra or {}).values() if isinstance(value, str)]
    code = next((found for found in (_match_code(text, _PROJECT_CODE_RES) for text in own_text) if found), None)

    if code is None:
        index = _find_code_line(item.product_code, lines)
        if index is not None:
            for line in lines[index:index + 1 + PROJECT_CODE_LOOKAHEAD_LINES]:
                # The product code itself may look like a project code.
                code = _match_code(re.sub(re.escape(item.product_code), " ", line, flags=re.IGNORECASE),
                                   _PROJECT_CODE_RES)
                if code:
                    break

    if code is None:
        return None
    item.project_code = code
    return CorrectionNote(step="project_code", line_number=item.line_number, message=f"Recovered project code {code}")


ITEM_STEPS = [
    ("arithmetic", fix_arithmetic),
    ("column_order", fix_column_order),
    ("uom_guard", fix_uom_product_name),
    ("project_code", recover_project_code),
]


def canonicalize_supplier(record, supplier_hint: Optional[str]) -> Optional[CorrectionNote]:
    supplier = getattr(record, "supplier", None)
    if supplier is None:
        return None
    profile = supplier_profile(supplier_hint)
    canonical = profile["canonical_name"] if profile else canonical_supplier_name(supplier.name)
    if not canonical or canonical == supplier.name:
        return None
    previous = supplier.name
    supplier.name = canonical
    return CorrectionNote(step="supplier", message=f"Canonicalized supplier name '{previous}' to '{canonical}'")


def reconcile_header(record) -> Optional[CorrectionNote]:
    if record.total_amount is not None:
        return None
    if isinstance(record, ProformaInvoiceRecord):
        for key in ("grandTotal", "totalCost", "total"):
            total = parse_number(record.totals.get(key))
            if total is not None:
                record.total_amount = total
                return CorrectionNote(step="header", message=f"Took totalAmount from totals.{key}")
    totals = [item.total_price for item in record.items if item.total_price is not None]
    if not totals:
        return None
    record.total_amount = round(sum(totals), 2)
    return CorrectionNote(step="header", message=f"Derived totalAmount {record.total_amount} from {len(totals)} line item(s)")


def reconcile_bank_payment(record: BankPaymentRecord) -> List[CorrectionNote]:
    """The remitted amount is always smaller than the home-currency debit."""
    notes = []
    if record.payment_amount is not None and record.debit_amount is not None \
            and record.payment_amount > record.debit_amount:
        record.payment_amount, record.debit_amount = record.debit_amount, record.payment_amount
        notes.append(CorrectionNote(
            step="bank_amounts",
            message=f"Swapped payment ({record.debit_amount}) and debit ({record.payment_amount}) amounts",
        ))

    if record.payment_amount and record.debit_amount:
        expected = round(record.debit_amount / record.payment_amount, 4)
        rate = record.exchange_rate
        if rate is None or abs(rate * record.payment_amount - record.debit_amount) / record.debit_amount \
                > EXCHANGE_RATE_TOLERANCE:
            record.exchange_rate = expected
            notes.append(CorrectionNote(step="exchange_rate", message=f"Exchange rate set to {expected} (was {rate})"))
    return notes


def payment_terms_days(terms: str) -> int:
    lowered = (terms or "").lower()
    match = re.search(r"(\d+)\s*days?", lowered) or re.search(r"net\s*(\d+)", lowered)
    if match:
        return int(match.group(1))
    for key, days in PAYMENT_TERMS_DAYS.items():
        if key in lowered:
            return days
    return DEFAULT_PAYMENT_TERMS_DAYS


def reconcile_client_invoice(record: ClientInvoiceRecord) -> List[CorrectionNote]:
    notes = []
    job_codes = []
    for item in record.items:
        if not item.project_code:
            item.project_code = _match_code((item.description or item.product_name).upper(), _JOB_CODE_RES) or ""
        if item.project_code:
            job_codes.append(item.project_code.upper())
    for text in (record.remark, record.our_reference):
        code = _match_code(text.upper(), _JOB_CODE_RES)
        if code:
            job_codes.append(code)
    record.job_codes = list(dict.fromkeys(job_codes))

    if record.payment_terms_days is None:
        record.payment_terms_days = payment_terms_days(record.payment_terms)
    if not record.due_date and record.date:
        issued = pd.to_datetime(record.date, dayfirst=True, errors="coerce")
        if pd.isna(issued):
            notes.append(CorrectionNote(step="due_date", message=f"Unreadable invoice date '{record.date}'", resolved=False))
        else:
            record.due_date = (issued + pd.Timedelta(days=record.payment_terms_days)).strftime("%Y-%m-%d")
            notes.append(CorrectionNote(
                step="due_date", message=f"Due date {record.due_date} from {record.payment_terms_days}-day terms"
            ))
    return notes


def reconcile(record, source_text: str = "", supplier_hint: Optional[str] = None):
    """Returns a corrected copy of the record annotated with what was changed or left unresolved."""
    record = record.model_copy(deep=True)
    lines = (source_text or "").splitlines()
    notes: List[CorrectionNote] = []

    for item in record.items:
        for step, fix in ITEM_STEPS:
            try:
                note = fix(item, lines)
            except Exception as e:
                log.exception(f"[reconcile] Step '{step}' failed on line {item.line_number}: {e}")
                note = CorrectionNote(step=step, line_number=item.line_number, message=f"Check failed: {e}", resolved=False)
            if note:
                notes.append(note)

    record_steps = [("supplier", lambda: [canonicalize_supplier(record, supplier_hint)])]
    if isinstance(record, BankPaymentRecord):
        record_steps.append(("bank_payment", lambda: reconcile_bank_payment(record)))
    if isinstance(record, ClientInvoiceRecord):
        record_steps.append(("client_invoice", lambda: reconcile_client_invoice(record)))
    record_steps.append(("header", lambda: [reconcile_header(record)]))

    for step, run in record_steps:
        try:
            notes.extend(note for note in run() if note)
        except Exception as e:
            log.exception(f"[reconcile] Step '{step}' failed: {e}")
            notes.append(CorrectionNote(step=step, message=f"Check failed: {e}", resolved=False))

    for note in notes:
        level = log.info if note.resolved else log.warning
        level(f"[reconcile] {note.step} (line {note.line_number}): {note.message}")
    record.corrections.extend(notes)
    return record
