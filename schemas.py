# schemas.py

from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Set, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from config import DEFAULT_MAX_TOKENS, DEFAULT_PROVIDER, DEFAULT_TEMPERATURE
from utils import parse_number


class DocumentType(str, Enum):
    """Closed set of business-document categories driving template and schema selection."""
    PURCHASE_ORDER = "purchase_order"
    PROFORMA_INVOICE = "proforma_invoice"
    BANK_PAYMENT = "bank_payment"
    CLIENT_INVOICE = "client_invoice"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "DocumentType":
        """Rejects free-form category strings at the boundary."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        normalized = {"bank_payment_slip": "bank_payment"}.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown document type: {value!r}") from None

    @property
    def is_known(self) -> bool:
        return self is not DocumentType.UNKNOWN


# --- Request-scoped inputs ---

class Document(BaseModel):
    """Transient unit of work; discarded once the response is produced."""
    raw_text: str = ""
    is_scanned: bool = False
    source_filename: str = ""
    mime_type: str = "application/octet-stream"
    size_bytes: int = 0
    content: Optional[bytes] = Field(default=None, repr=False)


class UserContext(BaseModel):
    model_config = ConfigDict(frozen=True)
    email: str = "anonymous"
    role: str = "user"


class ExtractionOptions(BaseModel):
    explicit_prompt_override: Optional[Literal["legacy", "managed"]] = None
    test_mode: bool = False


class ExtractionContext(BaseModel):
    model_config = ConfigDict(frozen=True)
    document_type: DocumentType = DocumentType.UNKNOWN
    supplier_name: Optional[str] = None
    user: UserContext = Field(default_factory=UserContext)
    explicit_prompt_override: Optional[Literal["legacy", "managed"]] = None
    test_mode: bool = False


# --- Templates ---

class TemplatePerformance(BaseModel):
    model_config = ConfigDict(extra="ignore")
    accuracy_percent: float = Field(
        default=0.0, validation_alias=AliasChoices("accuracy_percent", "accuracyPercent", "accuracy")
    )
    avg_latency_seconds: float = Field(
        default=0.0, validation_alias=AliasChoices("avg_latency_seconds", "avgLatencySeconds", "speed")
    )

    @field_validator("accuracy_percent", "avg_latency_seconds", mode="before")
    @classmethod
    def _coerce_number(cls, value):
        number = parse_number(value)
        return 0.0 if number is None else number


class Template(BaseModel):
    """A versioned, categorized instruction bundle ("prompt") configuring one extraction."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    category: DocumentType
    version: str = "1.0.0"
    suppliers: Set[str] = Field(default_factory=lambda: {"ALL"})
    target_users: Set[str] = Field(
        default_factory=set, validation_alias=AliasChoices("target_users", "targetUsers")
    )
    target_roles: Set[str] = Field(
        default_factory=set, validation_alias=AliasChoices("target_roles", "targetRoles")
    )
    provider_preference: str = Field(
        default=DEFAULT_PROVIDER,
        validation_alias=AliasChoices("provider_preference", "providerPreference", "aiProvider"),
    )
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = Field(
        default=DEFAULT_MAX_TOKENS,
        validation_alias=AliasChoices("max_output_tokens", "maxOutputTokens", "maxTokens"),
    )
    body_text: str = Field(validation_alias=AliasChoices("body_text", "bodyText", "prompt"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))
    performance: TemplatePerformance = Field(default_factory=TemplatePerformance)
    source: Literal["catalog", "builtin"] = "catalog"

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return value if value is None else str(value)

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return DocumentType.parse(value)

    @field_validator("version", mode="before")
    @classmethod
    def _version_to_str(cls, value):
        return "1.0.0" if value in (None, "") else str(value)

    @field_validator("suppliers", "target_users", "target_roles", mode="before")
    @classmethod
    def _coerce_set(cls, value):
        if value is None:
            return set()
        if isinstance(value, str):
            return {value}
        return set(value)

    @field_validator("provider_preference", mode="before")
    @classmethod
    def _default_provider(cls, value):
        return value or DEFAULT_PROVIDER

    @field_validator("temperature", mode="before")
    @classmethod
    def _default_temperature(cls, value):
        number = parse_number(value)
        return DEFAULT_TEMPERATURE if number is None else number

    @field_validator("max_output_tokens", mode="before")
    @classmethod
    def _default_max_tokens(cls, value):
        number = parse_number(value)
        return DEFAULT_MAX_TOKENS if number is None else int(number)

    @field_validator("performance", mode="before")
    @classmethod
    def _default_performance(cls, value):
        return value or {}


class SelectionResult(BaseModel):
    template: Template
    score: float
    rejection_reasons: List[str] = Field(default_factory=list)
    breakdown: Dict[str, float] = Field(default_factory=dict)


class ProviderHandle(BaseModel):
    name: str
    is_configured: bool
    supports_vision: bool = False


# --- Extracted records ---

class _WireModel(BaseModel):
    """camelCase on the wire, tolerant of the key variants models tend to emit."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    key_synonyms: ClassVar[Dict[str, str]] = {}

    @model_validator(mode="before")
    @classmethod
    def _apply_key_synonyms(cls, data):
        if isinstance(data, dict) and cls.key_synonyms:
            data = dict(data)
            for source, target in cls.key_synonyms.items():
                if source in data and target not in data:
                    data[target] = data.pop(source)
        return data


def _text(value) -> str:
    return "" if value is None else str(value).strip()


class Party(_WireModel):
    name: str = ""
    address: str = ""
    contact: str = ""
    email: str = ""
    phone: str = ""

    @model_validator(mode="before")
    @classmethod
    def _from_plain_name(cls, data):
        if isinstance(data, str):
            return {"name": data}
        return data

    @field_validator("name", "address", "contact", "email", "phone", mode="before")
    @classmethod
    def _strip(cls, value):
        return _text(value)


class LineItem(_WireModel):
    key_synonyms: ClassVar[Dict[str, str]] = {
        "partNumber": "productCode",
        "part_number": "productCode",
        "itemCode": "productCode",
        "qty": "quantity",
        "price": "unitPrice",
        "amount": "totalPrice",
        "total": "totalPrice",
        "uom": "unit",
        "itemNumber": "lineNumber",
        "jobCode": "projectCode",
    }

    line_number: Optional[int] = None
    product_code: str = ""
    product_name: str = ""
    quantity: Optional[float] = None
    unit: str = ""
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    project_code: str = ""
    description: str = ""

    @field_validator("quantity", "unit_price", "total_price", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        return parse_number(value)

    @field_validator("line_number", mode="before")
    @classmethod
    def _parse_line_number(cls, value):
        number = parse_number(value)
        return None if number is None else int(number)

    @field_validator("product_code", "product_name", "unit", "project_code", "description", mode="before")
    @classmethod
    def _strip(cls, value):
        return _text(value)


class CorrectionNote(BaseModel):
    step: str
    line_number: Optional[int] = None
    message: str
    resolved: bool = True


class RecordBase(_WireModel):
    items: List[LineItem] = Field(default_factory=list)
    currency: str = ""
    total_amount: Optional[float] = None
    confidence: Optional[float] = None
    corrections: List[CorrectionNote] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def _items_list(cls, value):
        return value or []

    @field_validator("total_amount", "confidence", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        return parse_number(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _strip(cls, value):
        return _text(value)


class PurchaseOrderRecord(RecordBase):
    key_synonyms: ClassVar[Dict[str, str]] = {
        "orderNumber": "poNumber",
        "po_number": "poNumber",
        "date": "dateIssued",
        "orderDate": "dateIssued",
        "lineItems": "items",
    }

    document_type: Literal[DocumentType.PURCHASE_ORDER] = DocumentType.PURCHASE_ORDER
    po_number: str = ""
    date_issued: str = ""
    supplier: Party = Field(default_factory=Party)
    buyer: Optional[Party] = None
    delivery_date: str = ""
    payment_terms: str = ""

    @field_validator("po_number", "date_issued", "delivery_date", "payment_terms", mode="before")
    @classmethod
    def _strip_header(cls, value):
        return _text(value)

    @field_validator("supplier", mode="before")
    @classmethod
    def _default_supplier(cls, value):
        return value or {}


class ProformaInvoiceRecord(RecordBase):
    key_synonyms: ClassVar[Dict[str, str]] = {
        "pi_number": "piNumber",
        "invoiceNumber": "piNumber",
        "quoteNumber": "piNumber",
        "lineItems": "items",
    }

    document_type: Literal[DocumentType.PROFORMA_INVOICE] = DocumentType.PROFORMA_INVOICE
    pi_number: str = ""
    date: str = ""
    validity_period: str = ""
    supplier: Party = Field(default_factory=Party)
    buyer: Optional[Party] = None
    totals: Dict[str, Any] = Field(default_factory=dict)
    terms: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("pi_number", "date", "validity_period", mode="before")
    @classmethod
    def _strip_header(cls, value):
        return _text(value)

    @field_validator("supplier", "totals", "terms", mode="before")
    @classmethod
    def _default_mapping(cls, value):
        return value or {}


class BankPaymentRecord(RecordBase):
    document_type: Literal[DocumentType.BANK_PAYMENT] = DocumentType.BANK_PAYMENT
    reference_number: str = ""
    payment_date: str = ""
    payment_amount: Optional[float] = None
    paid_currency: str = ""
    debit_amount: Optional[float] = None
    debit_currency: str = ""
    exchange_rate: Optional[float] = None
    bank_name: str = ""
    account_number: str = ""
    account_name: str = ""
    beneficiary_name: str = ""
    beneficiary_bank: str = ""
    beneficiary_country: str = ""
    payment_details: str = ""
    bank_charges: Optional[float] = None
    status: str = ""

    @field_validator("payment_amount", "debit_amount", "exchange_rate", "bank_charges", mode="before")
    @classmethod
    def _parse_bank_amount(cls, value):
        return parse_number(value)

    @field_validator(
        "reference_number", "payment_date", "paid_currency", "debit_currency", "bank_name",
        "account_number", "account_name", "beneficiary_name", "beneficiary_bank",
        "beneficiary_country", "payment_details", "status", mode="before",
    )
    @classmethod
    def _strip_header(cls, value):
        return _text(value)


class ClientInvoiceRecord(RecordBase):
    key_synonyms: ClassVar[Dict[str, str]] = {
        "invoice_number": "invoiceNumber",
        "invoiceNo": "invoiceNumber",
        "invoiceDate": "date",
        "yourOrderNo": "clientPoNumber",
        "terms": "paymentTerms",
        "soldTo": "client",
        "customer": "client",
        "clientName": "client",
        "total": "totalAmount",
        "lineItems": "items",
    }

    document_type: Literal[DocumentType.CLIENT_INVOICE] = DocumentType.CLIENT_INVOICE
    invoice_number: str = ""
    date: str = ""
    due_date: str = ""
    delivery_order_no: str = ""
    client_po_number: str = ""
    payment_terms: str = ""
    payment_terms_days: Optional[int] = None
    client: Party = Field(default_factory=Party)
    remark: str = ""
    our_reference: str = ""
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    company_format: str = ""
    company_name: str = ""
    job_codes: List[str] = Field(default_factory=list)

    @field_validator(
        "invoice_number", "date", "due_date", "delivery_order_no", "client_po_number",
        "payment_terms", "remark", "our_reference", "company_format", "company_name", mode="before",
    )
    @classmethod
    def _strip_header(cls, value):
        return _text(value)

    @field_validator("subtotal", "tax", mode="before")
    @classmethod
    def _parse_invoice_amount(cls, value):
        return parse_number(value)

    @field_validator("client", mode="before")
    @classmethod
    def _default_client(cls, value):
        return value or {}


class GenericRecord(RecordBase):
    key_synonyms: ClassVar[Dict[str, str]] = {
        "poNumber": "documentNumber",
        "invoiceNumber": "documentNumber",
        "dateIssued": "date",
    }

    document_type: Literal[DocumentType.UNKNOWN] = DocumentType.UNKNOWN
    document_number: str = ""
    date: str = ""
    supplier: Party = Field(default_factory=Party)
    buyer: Optional[Party] = None

    @field_validator("document_number", "date", mode="before")
    @classmethod
    def _strip_header(cls, value):
        return _text(value)

    @field_validator("supplier", mode="before")
    @classmethod
    def _default_supplier(cls, value):
        return value or {}


ExtractedRecord = Annotated[
    Union[PurchaseOrderRecord, ProformaInvoiceRecord, BankPaymentRecord, ClientInvoiceRecord, GenericRecord],
    Field(discriminator="document_type"),
]

RECORD_MODELS = {
    DocumentType.PURCHASE_ORDER: PurchaseOrderRecord,
    DocumentType.PROFORMA_INVOICE: ProformaInvoiceRecord,
    DocumentType.BANK_PAYMENT: BankPaymentRecord,
    DocumentType.CLIENT_INVOICE: ClientInvoiceRecord,
    DocumentType.UNKNOWN: GenericRecord,
}


# --- Responses ---

class ExtractionMetadata(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    document_type: DocumentType
    template_id: str
    template_name: str
    template_version: str
    provider_used: str
    processing_time_ms: int
    confidence: float
    supplier_detected: Optional[str] = None
    prompt_system: str = ""
    providers_attempted: List[str] = Field(default_factory=list)
    corrections_applied: int = 0


class ExtractionResponse(BaseModel):
    success: bool = True
    data: ExtractedRecord
    extraction_metadata: ExtractionMetadata


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    code: str
    stack: Optional[str] = None


class BatchItemResult(BaseModel):
    index: int
    filename: str
    success: bool
    code: Optional[str] = None
    message: Optional[str] = None
    response: Optional[ExtractionResponse] = None


class JobStatus(BaseModel):
    """Defines the schema for a batch job's status response."""
    job_id: str
    status: str
    details: str
    total_documents: int = 0
    documents_processed: int = 0
    documents_failed: int = 0
    progress_percent: float = 0.0
    result_path: Optional[str] = None
    results: List[BatchItemResult] = Field(default_factory=list)
