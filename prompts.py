# prompts.py

from schemas import DocumentType, Template

SYSTEM_MESSAGE = "You are a data extraction expert. Always return valid JSON."

VISION_INSTRUCTION = """
This document is a scanned image. Read every table row carefully, keep the
column order exactly as printed, and do not invent values you cannot see.
"""

PURCHASE_ORDER_SCHEMA = """
{
  "purchase_order": {
    "poNumber": "string",
    "dateIssued": "string",
    "supplier": { "name": "string", "address": "string", "contact": "string" },
    "items": [
      {
        "lineNumber": number,
        "productCode": "string",
        "productName": "string (NOT UOM)",
        "quantity": number,
        "unit": "string",
        "unitPrice": number,
        "totalPrice": number,
        "projectCode": "string (e.g., FS-S3798, BWS-S1046)"
      }
    ],
    "totalAmount": number,
    "currency": "string",
    "deliveryDate": "string",
    "paymentTerms": "string"
  }
}
"""

PROFORMA_INVOICE_SCHEMA = """
{
  "proforma_invoice": {
    "piNumber": "string",
    "date": "string",
    "validityPeriod": "string",
    "supplier": { "name": "string", "contact": "string", "email": "string", "phone": "string", "address": "string" },
    "buyer": { "name": "string", "contact": "string", "email": "string", "phone": "string", "address": "string" },
    "items": [
      {
        "lineNumber": number,
        "productCode": "string",
        "productName": "string",
        "brand": "string",
        "quantity": number,
        "unit": "string",
        "unitPrice": number,
        "totalPrice": number,
        "projectCode": "string (optional)"
      }
    ],
    "totals": { "subtotal": number, "freight": number, "totalCost": number, "currency": "string" },
    "terms": { "payment": "string", "delivery": "string", "packaging": "string" }
  }
}
"""

BANK_PAYMENT_SCHEMA = """
{
  "bank_payment": {
    "reference_number": "string",
    "payment_date": "string",
    "payment_amount": number,
    "paid_currency": "string",
    "debit_amount": number,
    "debit_currency": "string",
    "exchange_rate": number,
    "bank_name": "string",
    "account_number": "string",
    "account_name": "string",
    "beneficiary_name": "string",
    "beneficiary_bank": "string",
    "beneficiary_country": "string",
    "payment_details": "string",
    "bank_charges": number,
    "status": "string"
  }
}
"""

CLIENT_INVOICE_SCHEMA = """
{
  "client_invoice": {
    "invoiceNumber": "string",
    "date": "string",
    "dueDate": "string",
    "deliveryOrderNo": "string",
    "yourOrderNo": "string",
    "paymentTerms": "string",
    "client": { "name": "string", "address": "string" },
    "remark": "string",
    "ourReference": "string",
    "items": [
      {
        "lineNumber": number,
        "productCode": "string",
        "description": "string",
        "quantity": number,
        "unit": "string",
        "unitPrice": number,
        "totalPrice": number,
        "jobCode": "string"
      }
    ],
    "subtotal": number,
    "tax": number,
    "totalAmount": number,
    "currency": "string"
  }
}
"""

GENERIC_SCHEMA = """
{
  "documentNumber": "string",
  "date": "string",
  "supplier": { "name": "string", "address": "string" },
  "buyer": { "name": "string", "address": "string" },
  "items": [
    {
      "lineNumber": number,
      "productCode": "string",
      "productName": "string",
      "quantity": number,
      "unit": "string",
      "unitPrice": number,
      "totalPrice": number
    }
  ],
  "totalAmount": number,
  "currency": "string"
}
"""

RESPONSE_SCHEMAS = {
    DocumentType.PURCHASE_ORDER: PURCHASE_ORDER_SCHEMA,
    DocumentType.PROFORMA_INVOICE: PROFORMA_INVOICE_SCHEMA,
    DocumentType.BANK_PAYMENT: BANK_PAYMENT_SCHEMA,
    DocumentType.CLIENT_INVOICE: CLIENT_INVOICE_SCHEMA,
    DocumentType.UNKNOWN: GENERIC_SCHEMA,
}


BASE_PO_PROMPT = """
Extract purchase order information with PRECISE table column identification.

CRITICAL TABLE PARSING RULES:
1. ALWAYS identify exact column order from the table header.
   Common pattern: Line | Part Number | Description | Delivery Date | Quantity | UOM | Unit Price | Amount
2. QUANTITY vs UNIT PRICE:
   - Quantity: usually smaller numbers (1-10,000 range)
   - Unit Price: usually larger monetary values with decimals ("100.00", "2,200.00")
3. VALIDATION: quantity x unitPrice should be close to totalPrice.
   If the mismatch is over 10%, SWAP the values and re-check.
4. PROJECT CODES: look near each line item for codes such as FS-S3798 or BWS-S1046
   and extract one per item when visible.
"""

PTP_PO_PROMPT = """
Extract purchase order information from this PT. PERINTIS TEKNOLOGI PERDANA document.

CRITICAL PTP-SPECIFIC RULES:
1. This supplier uses a multi-line format where product names appear BELOW the part number line.
2. The format is: Line Number | Part Number | Quantity | UOM | Price
3. The product description/name is on the NEXT LINE below, indented.
4. NEVER use UOM values (PCS, UNI, SET, EA, etc.) as the product name.
5. Look for descriptive text on the line following the part number.

Example PTP Format:
Line  Part Number
1     400QCR1068                     1.00   PCS   20,500.00
      THRUSTER                       <-- This is the product name
2     B247K18x12x1000                10.00  UNI   325,000.00
      RUBBER HOSE                    <-- This is the product name
"""

CHINESE_PI_PROMPT = """
Extract proforma invoice information from this supplier quotation.

RULES:
1. The PI number may appear as "PI NUMBER", "QUOTE NO" or "INVOICE NO".
2. Look for SHIPPER (supplier) and RECEIVER (buyer) sections.
3. Items are in the format: BEARING 32222 SKF 100 $13.00 $1,300.00
4. Currency is usually USD with a $ symbol.
5. Extract freight costs and total costs separately.

Example PI Format:
Sr NO ITEMS NAME MODEL BRAND QUANTITY UNIT PRICE TOTAL PRICE
1     BEARING    32222 SKF   100      $ 13.00    $ 1,300.00
2     BEARING    HM518445/10 SKF 100  $ 6.00     $ 600.00
"""

BANK_PAYMENT_PROMPT = """
Extract the foreign telegraphic transfer details from this bank payment slip.

CRITICAL AMOUNT RULES:
1. payment_amount is the SMALLER amount sent to the beneficiary, in the paid currency (e.g. USD).
2. debit_amount is the LARGER amount debited from the sender account (e.g. MYR).
3. exchange_rate = debit_amount / payment_amount.
4. payment_amount x exchange_rate should match debit_amount within 5%.
"""

CLIENT_INVOICE_PROMPT = """
Extract the sales invoice issued by our company to a client.

FIELDS TO LOOK FOR:
- invoiceNumber, date, deliveryOrderNo (DO number), yourOrderNo (client's PO number)
- paymentTerms (e.g. "30 Days", "Net 60", "COD")
- remark and ourReference, which may contain a job code such as FS-S3798
- every line item with its description, quantity, unit price and amount
- jobCode per item when one appears in the description
"""

GENERIC_PROMPT = """
Extract the document number, date, parties, line items and totals from this
business document. Keep numbers as plain numbers without currency symbols.
"""


def _builtin(template_id, name, category, body_text, version="1.0.0", suppliers=("ALL",), accuracy=0.0) -> Template:
    return Template(
        id=template_id,
        name=name,
        category=category,
        version=version,
        suppliers=set(suppliers),
        body_text=body_text.strip(),
        performance={"accuracy_percent": accuracy},
        source="builtin",
    )


# Legacy pool and catalog fallback. Every DocumentType keeps at least one active "ALL" entry.
BUILTIN_TEMPLATES = [
    _builtin("legacy_base_extraction", "Base Purchase Order Template", DocumentType.PURCHASE_ORDER,
             BASE_PO_PROMPT, version="1.0.0", accuracy=85),
    _builtin("legacy_ptp_specific", "PTP Purchase Order Template", DocumentType.PURCHASE_ORDER,
             PTP_PO_PROMPT, version="1.1.0", suppliers=("PTP",), accuracy=92),
    _builtin("legacy_pi_specific", "Proforma Invoice Chinese Supplier Template", DocumentType.PROFORMA_INVOICE,
             CHINESE_PI_PROMPT, version="1.2.0", accuracy=88),
    _builtin("legacy_bank_payment", "Bank Payment Slip Template", DocumentType.BANK_PAYMENT,
             BANK_PAYMENT_PROMPT, version="1.0.0", accuracy=90),
    _builtin("legacy_client_invoice", "Client Invoice Template", DocumentType.CLIENT_INVOICE,
             CLIENT_INVOICE_PROMPT, version="1.0.0", accuracy=85),
    _builtin("legacy_generic", "Generic Document Template", DocumentType.UNKNOWN,
             GENERIC_PROMPT, version="1.0.0", accuracy=70),
]
