# config.py

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# --- Runtime ---
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_FILE = os.getenv("LOG_FILE", "app_log.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
TEMP_DIR = os.getenv("TEMP_DIR", "temp_processing")

# --- Provider Configuration ---
# Ordered failover chain; a template's preferred provider is tried first and
# the walk continues from there, wrapping around the chain.
PROVIDER_CHAIN = _env_list("PROVIDER_CHAIN", "deepseek,openai,anthropic,google")

DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
DEEPSEEK_BASE_URL = os.getenv("DEEPSEEK_BASE_URL", "https://api.deepseek.com/v1")
DEEPSEEK_MODEL = os.getenv("DEEPSEEK_MODEL", "deepseek-chat")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")  # None -> SDK default
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4-turbo")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-opus-20240229")

GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY")
GOOGLE_AI_MODEL = os.getenv("GOOGLE_AI_MODEL", "gemini-2.5-flash")

DEFAULT_PROVIDER = os.getenv("DEFAULT_PROVIDER", "deepseek")
PROVIDER_TIMEOUT = float(os.getenv("PROVIDER_TIMEOUT", 120))  # seconds, text extraction
LIGHTWEIGHT_TIMEOUT = float(os.getenv("LIGHTWEIGHT_TIMEOUT", 30))  # seconds, health checks
API_CONCURRENCY_LIMIT = int(os.getenv("API_CONCURRENCY_LIMIT", 10))
API_VERIFY_SSL = _env_bool("API_VERIFY_SSL", True)
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 2000
DEFAULT_CONFIDENCE = 0.85

# --- Template Catalog ---
CATALOG_BASE_URL = os.getenv("CATALOG_BASE_URL", "http://localhost:3001")
CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", 10))
CATALOG_USAGE_TIMEOUT = float(os.getenv("CATALOG_USAGE_TIMEOUT", 5))
CATALOG_CACHE_TTL = float(os.getenv("CATALOG_CACHE_TTL", 300))  # 5 minutes
CATALOG_MAX_RETRIES = int(os.getenv("CATALOG_MAX_RETRIES", 3))
CATALOG_BACKOFF_SECONDS = float(os.getenv("CATALOG_BACKOFF_SECONDS", 0.5))
USAGE_QUEUE_SIZE = int(os.getenv("USAGE_QUEUE_SIZE", 1000))

# --- Prompt System Selection (A/B cohorts) ---
PROMPT_SYSTEM_DEFAULT = os.getenv("PROMPT_SYSTEM_DEFAULT", "legacy")
AB_TEST_ENABLED = _env_bool("AB_TEST_ENABLED", True)
AB_TEST_PERCENTAGE = int(os.getenv("AB_TEST_PERCENTAGE", 5))
AB_TEST_USERS = _env_list("AB_TEST_USERS", "")

# --- Upload / Batch ---
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 10 * 1024 * 1024))  # 10MB
SCANNED_TEXT_THRESHOLD = int(os.getenv("SCANNED_TEXT_THRESHOLD", 100))  # chars
BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", 2))
BATCH_ITEM_DELAY = float(os.getenv("BATCH_ITEM_DELAY", 0.5))  # seconds

SUPPORTED_MIME_TYPES = {
    "application/pdf": "PDF",
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "XLSX",
    "application/vnd.ms-excel": "XLS",
    "text/plain": "TXT",
    "message/rfc822": "EML",
}

SUPPORTED_FILE_EXTENSIONS = [".pdf", ".png", ".jpg", ".jpeg", ".xlsx", ".xls", ".txt", ".eml"]

# --- Document Classification ---
PI_INDICATORS = [
    "PROFORMA INVOICE",
    "COMMERCIAL PROFORMA INVOICE",
    "QUOTE NO",
    "QUOTE NUMBER",
    "PI NUMBER",
    "SHIPPER",
    "RECEIVER",
    "PORT OF LOADING",
    "FREIGHT",
    "DDP",
    "EXW UNIT PRICE",
]

PO_INDICATORS = [
    "PURCHASE ORDER",
    "PO NUMBER",
    "ORDER NUMBER",
    "DELIVERY TO",
    "BILL TO",
]

# Only consulted on the bank-payment endpoint; slips are routed, not inferred.
BANK_PAYMENT_INDICATORS = [
    "PAYMENT SLIP",
    "TELEGRAPHIC TRANSFER",
    "FOREIGN TELEGRAPHIC",
    "BENEFICIARY BANK",
    "BENEFICIARY NAME",
    "DEBIT AMOUNT",
    "EXCHANGE RATE",
    "SWIFT",
    "REMITTANCE",
]

# Keywords corroborating a template's category from its own name.
# The first entry of each list is the full phrase, the rest are abbreviations.
CATEGORY_NAME_KEYWORDS = {
    "purchase_order": ["purchase order", "po"],
    "proforma_invoice": ["proforma invoice", "pi", "proforma"],
    "bank_payment": ["bank payment", "payment slip", "bank"],
    "client_invoice": ["client invoice", "sales invoice", "invoice"],
}

# --- Reconciliation ---
ARITHMETIC_TOLERANCE = 0.10
UOM_TOKENS = {"PCS", "PC", "SET", "SETS", "EA", "EACH", "UNI", "UNIT", "UNITS", "NOS", "LOT", "PAIR", "ROLL", "BOX", "M", "KG"}

PROJECT_CODE_PATTERNS = [
    r"FS-S\d+",
    r"BWS-S\d+",
    r"\b[A-Z]{2,3}-[A-Z]\d+\b",
    r"Project\s*Code[:\s]+([A-Z0-9-]+)",
    r"Job\s*No[:\s]+([A-Z0-9-]+)",
    r"Ref[:\s]+([A-Z0-9-]+)",
]

JOB_CODE_PATTERNS = [
    r"\b(FS-[A-Z]?\d{3,5})\b",
    r"\b(BWS-[A-Z]?\d{3,5})\b",
    r"\b(EMIT-[A-Z]?\d{3,5})\b",
    r"\b(EMI-[A-Z]?\d{3,5})\b",
    r"\b(HGF-[A-Z]?\d{3,5})\b",
    r"\b([A-Z]{2,4}-[A-Z]?\d{3,5})\b",
]

PAYMENT_TERMS_DAYS = {
    "cod": 0, "cash": 0, "net 30": 30, "net 60": 60, "net 90": 90,
    "30 days": 30, "60 days": 60, "90 days": 90, "120 days": 120,
}
DEFAULT_PAYMENT_TERMS_DAYS = 30

# Bank slips in this deployment are foreign-currency remittances debited in MYR.
EXCHANGE_RATE_TOLERANCE = 0.05

# --- Supplier Profiles ---
# Known out-of-band; the canonical legal name overrides whatever the model extracted.
SUPPLIER_PROFILES = {
    "PTP": {
        "canonical_name": "PT. PERINTIS TEKNOLOGI PERDANA",
        "patterns": [
            "PT. PERINTIS TEKNOLOGI PERDANA",
            "PT PERINTIS TEKNOLOGI",
            "Kawasan Industri Pulogadung",
            "PERINTIS TEKNOLOGI",
        ],
        "aliases": ["PTP", "PT. PERINTIS TEKNOLOGI PERDANA", "PT PERINTIS TEKNOLOGI PERDANA", "PERINTIS TEKNOLOGI"],
    },
}

CLIENT_INVOICE_COMPANIES = {
    "FLOW_SOLUTION": "Flow Solution Sdn Bhd",
    "BROADWATER": "Broadwater Solution Sdn Bhd",
    "EMI_TECHNOLOGY": "EMI Technology Sdn Bhd",
    "EMI_AUTOMATION": "EMI Automation Sdn Bhd",
}

# --- Batch CSV Column Order ---
CSV_COLUMN_ORDER = [
    "FILE_Name",
    "DOCUMENT_Type",
    "TEMPLATE_Id",
    "PROVIDER_Used",
    "DOCUMENT_Number",
    "SUPPLIER_Name",
    "ITEM_LineNumber",
    "ITEM_ProductCode",
    "ITEM_ProductName",
    "ITEM_Quantity",
    "ITEM_Unit",
    "ITEM_UnitPrice",
    "ITEM_TotalPrice",
    "ITEM_ProjectCode",
    "Processing_Status",
]
