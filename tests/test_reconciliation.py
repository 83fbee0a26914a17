from reconciliation import payment_terms_days, reconcile
from schemas import (
    BankPaymentRecord, ClientInvoiceRecord, LineItem, ProformaInvoiceRecord, PurchaseOrderRecord
)


def po(*items, **header):
    return PurchaseOrderRecord(items=[LineItem(**item) for item in items], **header)


def test_consistent_items_are_untouched_and_idempotent():
    record = po(
        {"lineNumber": 1, "productCode": "AB100", "productName": "BEARING", "quantity": 10, "unitPrice": 5.5,
         "totalPrice": 55, "projectCode": "FS-S3798"},
        total_amount=55,
    )
    source = "1 AB100 BEARING 10 PCS 5.50 55.00"

    once = reconcile(record, source)
    twice = reconcile(once, source)

    assert once.items == record.items
    assert twice.items == once.items
    assert once.corrections == []


def test_column_order_swaps_quantity_and_unit_price():
    record = po({"lineNumber": 1, "productCode": "ABC123", "productName": "VALVE",
                 "quantity": 2200.00, "unitPrice": 100, "totalPrice": 220000})
    fixed = reconcile(record, "1 ABC123 100 PCS 2,200.00 220,000.00")

    item = fixed.items[0]
    assert (item.quantity, item.unit_price, item.total_price) == (100, 2200.0, 220000)
    assert [note.step for note in fixed.corrections if note.step != "header"] == ["column_order"]


def test_arithmetic_reassignment_when_total_is_misplaced():
    record = po({"lineNumber": 1, "productCode": "ABC123", "productName": "VALVE",
                 "quantity": 100, "unitPrice": 220000, "totalPrice": 2200})
    fixed = reconcile(record, "1 ABC123 100 PCS 2,200.00 220,000.00")

    item = fixed.items[0]
    assert (item.quantity, item.unit_price, item.total_price) == (100, 2200, 220000)
    assert fixed.corrections[0].step == "arithmetic"
    assert fixed.corrections[0].resolved


def test_unfixable_arithmetic_is_reported_not_raised():
    record = po({"lineNumber": 3, "productCode": "Z9", "productName": "PUMP",
                 "quantity": 3, "unitPrice": 7, "totalPrice": 1000})
    fixed = reconcile(record, "")

    note = fixed.corrections[0]
    assert note.step == "arithmetic"
    assert note.line_number == 3
    assert not note.resolved
    assert (fixed.items[0].quantity, fixed.items[0].unit_price) == (3, 7)


def test_uom_guard_takes_name_from_following_line():
    source = "Line  Part Number\n1     400QCR1068    1.00 PCS 20,500.00\n      THRUSTER\n"
    record = po({"lineNumber": 1, "productCode": "400QCR1068", "productName": "PCS",
                 "quantity": 1, "unitPrice": 20500, "totalPrice": 20500})

    item = reconcile(record, source).items[0]

    assert item.product_name == "THRUSTER"
    assert item.unit == "PCS"


def test_uom_guard_skips_numeric_and_uom_lines():
    source = "2 B247K18x12x1000 10.00 UNI 325,000.00\n   325,000.00\n   UNI\n   RUBBER HOSE\n"
    record = po({"lineNumber": 2, "productCode": "B247K18x12x1000", "productName": "UNI", "unit": "UNI",
                 "quantity": 10, "unitPrice": 32500, "totalPrice": 325000})

    assert reconcile(record, source).items[0].product_name == "RUBBER HOSE"


def test_uom_guard_without_replacement_is_unresolved():
    record = po({"lineNumber": 1, "productCode": "Q1", "productName": "SET",
                 "quantity": 1, "unitPrice": 5, "totalPrice": 5})
    fixed = reconcile(record, "")
    assert any(note.step == "uom_guard" and not note.resolved for note in fixed.corrections)


def test_project_code_recovered_from_nearby_lines():
    source = "1 AB100 10 PCS 5.50 55.00\n  BEARING\n  Ref: FS-S3798\n"
    record = po({"lineNumber": 1, "productCode": "AB100", "productName": "BEARING",
                 "quantity": 10, "unitPrice": 5.5, "totalPrice": 55})

    assert reconcile(record, source).items[0].project_code == "FS-S3798"


def test_project_code_prefers_item_text():
    record = po({"lineNumber": 1, "productCode": "AB100", "productName": "BEARING for BWS-S1046",
                 "quantity": 1, "unitPrice": 1, "totalPrice": 1})
    source = "1 AB100 1 PCS 1.00 1.00\nFS-S3798"
    assert reconcile(record, source).items[0].project_code == "BWS-S1046"


def test_supplier_canonicalized_from_hint():
    record = po({"productCode": "A", "quantity": 1, "unitPrice": 1, "totalPrice": 1},
                supplier={"name": "PT Perintis"})
    fixed = reconcile(record, "", supplier_hint="PTP")
    assert fixed.supplier.name == "PT. PERINTIS TEKNOLOGI PERDANA"


def test_missing_total_amount_is_summed():
    record = po(
        {"productCode": "A", "quantity": 2, "unitPrice": 5, "totalPrice": 10},
        {"productCode": "B", "quantity": 1, "unitPrice": 2.5, "totalPrice": 2.5},
    )
    assert reconcile(record, "").total_amount == 12.5


def test_proforma_total_taken_from_totals():
    record = ProformaInvoiceRecord(totals={"grandTotal": "1,900.00"})
    assert reconcile(record, "").total_amount == 1900.0


def test_reconcile_returns_a_copy():
    record = po({"productCode": "X", "productName": "PCS", "quantity": 1, "unitPrice": 1, "totalPrice": 1})
    reconcile(record, "1 X 1 PCS 1.00\nWIDGET")
    assert record.items[0].product_name == "PCS"
    assert record.corrections == []


def test_bank_payment_amounts_swapped_and_rate_recomputed():
    record = BankPaymentRecord(payment_amount=2866.38, debit_amount=673.0, exchange_rate=None)
    fixed = reconcile(record, "")

    assert fixed.payment_amount == 673.0
    assert fixed.debit_amount == 2866.38
    assert fixed.exchange_rate == round(2866.38 / 673.0, 4)


def test_bank_payment_consistent_rate_kept():
    record = BankPaymentRecord(payment_amount=100, debit_amount=425, exchange_rate=4.26)
    fixed = reconcile(record, "")
    assert fixed.exchange_rate == 4.26
    assert fixed.corrections == []


def test_client_invoice_job_codes_and_due_date():
    record = ClientInvoiceRecord(
        date="15/07/2024",
        payment_terms="60 Days",
        remark="FS-S3798",
        our_reference="Ref BWS-1046",
        items=[LineItem(description="Supply of valve for EMIT-2231", quantity=1, unit_price=10, total_price=10)],
    )
    fixed = reconcile(record, "")

    assert fixed.job_codes == ["EMIT-2231", "FS-S3798", "BWS-1046"]
    assert fixed.payment_terms_days == 60
    assert fixed.due_date == "2024-09-13"


def test_payment_terms_days():
    assert payment_terms_days("Net 90") == 90
    assert payment_terms_days("COD") == 0
    assert payment_terms_days("") == 30


def test_column_order_ignores_numbers_inside_the_description():
    record = po({"lineNumber": 1, "productCode": "AB100", "productName": "GATE VALVE",
                 "quantity": 5, "unitPrice": 100, "totalPrice": 500})
    fixed = reconcile(record, "1 AB100 GATE VALVE 100MM 5 PCS 100.00 500.00")

    item = fixed.items[0]
    assert (item.quantity, item.unit_price) == (5, 100)
    assert all(note.step != "column_order" for note in fixed.corrections)


def test_quantity_printed_first_is_restored():
    record = po({"lineNumber": 1, "productCode": "ABC123", "productName": "VALVE",
                 "quantity": 100, "unitPrice": 2200.00, "totalPrice": 220000})
    fixed = reconcile(record, "1 ABC123 2,200.00 PCS 100.00 220,000.00")

    item = fixed.items[0]
    assert (item.quantity, item.unit_price, item.total_price) == (2200.0, 100, 220000)
    assert fixed.corrections[0].step == "column_order"


def test_supplier_alias_hint_forces_canonical_name():
    record = po({"productCode": "A", "quantity": 1, "unitPrice": 1, "totalPrice": 1},
                supplier={"name": "Perintis Tech"})
    fixed = reconcile(record, "", supplier_hint="PT PERINTIS TEKNOLOGI PERDANA")
    assert fixed.supplier.name == "PT. PERINTIS TEKNOLOGI PERDANA"


def test_unknown_supplier_hint_keeps_extracted_name():
    record = po({"productCode": "A", "quantity": 1, "unitPrice": 1, "totalPrice": 1},
                supplier={"name": "Acme Industrial"})
    assert reconcile(record, "", supplier_hint="ACME").supplier.name == "Acme Industrial"


def test_product_code_is_not_its_own_project_code_regardless_of_case():
    record = po({"lineNumber": 1, "productCode": "bws-s1046", "productName": "SEAL",
                 "quantity": 2, "unitPrice": 5, "totalPrice": 10})
    fixed = reconcile(record, "1 BWS-S1046 SEAL 2 PCS 5.00 10.00")
    assert fixed.items[0].project_code == ""
