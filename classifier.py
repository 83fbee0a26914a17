# classifier.py
"""Rule-based document classification and supplier identification.

Everything here is pure and deterministic: same text in, same answer out.
"""

from dataclasses import dataclass
from typing import Optional

from config import (
    BANK_PAYMENT_INDICATORS, PI_INDICATORS, PO_INDICATORS, SUPPLIER_PROFILES
)
from exceptions import ClassificationAmbiguous
from schemas import DocumentType


def _count_hits(upper_text: str, indicators) -> int:
    return sum(1 for indicator in indicators if indicator in upper_text)


def detect(text: str) -> DocumentType:
    """
    Decides between proforma invoice and purchase order by indicator counts.
    Raises ClassificationAmbiguous when no indicator is present.
    """
    upper_text = (text or "").upper()
    pi_score = _count_hits(upper_text, PI_INDICATORS)
    po_score = _count_hits(upper_text, PO_INDICATORS)

    if pi_score > po_score:
        return DocumentType.PROFORMA_INVOICE
    if po_score > 0:
        return DocumentType.PURCHASE_ORDER
    raise ClassificationAmbiguous(f"No document indicators found (pi={pi_score}, po={po_score})")


def classify(text: str) -> DocumentType:
    try:
        return detect(text)
    except ClassificationAmbiguous:
        return DocumentType.UNKNOWN


def bank_payment_score(text: str) -> int:
    return _count_hits((text or "").upper(), BANK_PAYMENT_INDICATORS)


def classify_bank_payment(text: str) -> DocumentType:
    """Only consulted when the caller routed the upload to the bank-payment path."""
    if bank_payment_score(text) > 0:
        return DocumentType.BANK_PAYMENT
    return DocumentType.UNKNOWN


@dataclass(frozen=True)
class SupplierMatch:
    key: str
    canonical_name: str
    confidence: float

    @property
    def is_generic(self) -> bool:
        return self.key == "GENERIC"


GENERIC_SUPPLIER = SupplierMatch(key="GENERIC", canonical_name="", confidence=0.0)


def identify_supplier(text: str) -> SupplierMatch:
    """Returns the supplier profile with the most pattern hits, or GENERIC."""
    upper_text = (text or "").upper()
    best = GENERIC_SUPPLIER
    best_hits = 0
    for key, profile in SUPPLIER_PROFILES.items():
        patterns = profile["patterns"]
        hits = sum(1 for pattern in patterns if pattern.upper() in upper_text)
        if hits > best_hits:
            best_hits = hits
            best = SupplierMatch(
                key=key,
                canonical_name=profile["canonical_name"],
                confidence=round(hits / len(patterns), 2),
            )
    return best


def supplier_profile(name: Optional[str]) -> Optional[dict]:
    """The profile whose key or alias set contains the name, if any."""
    normalized = (name or "").strip().upper()
    if not normalized:
        return None
    for key, profile in SUPPLIER_PROFILES.items():
        aliases = [key] + profile.get("aliases", [])
        if any(normalized == alias.upper() for alias in aliases):
            return profile
    return None


def canonical_supplier_name(name: str) -> str:
    """Maps a known alias to its profile's canonical legal name; unknown names pass through."""
    profile = supplier_profile(name)
    return profile["canonical_name"] if profile else name


def detect_company_format(filename: str) -> str:
    """Client invoices are laid out per issuing company; the filename tells which."""
    lowered = (filename or "").lower()
    if "bws" in lowered or "broadwater" in lowered:
        return "BROADWATER"
    if "emit-" in lowered or "emi_technology" in lowered:
        return "EMI_TECHNOLOGY"
    if "emi-inv" in lowered or "emi_automation" in lowered:
        return "EMI_AUTOMATION"
    return "FLOW_SOLUTION"
