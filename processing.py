# processing.py

import asyncio
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pandas as pd

from catalog import TemplateCatalog, TemplateFilter, fallback_templates
from classifier import bank_payment_score, detect, detect_company_format, identify_supplier
from config import (
    BATCH_CONCURRENCY, BATCH_ITEM_DELAY, CLIENT_INVOICE_COMPANIES, CSV_COLUMN_ORDER, DEFAULT_CONFIDENCE,
    MAX_FILE_SIZE, SUPPORTED_FILE_EXTENSIONS, SUPPORTED_MIME_TYPES, TEMP_DIR
)
from events import UsageEvent, UsageEventQueue
from exceptions import (
    ClassificationAmbiguous, ExtractionError, FileTooLargeError, NoFileError, NoTemplateSelected
)
from executor import ExtractionExecutor
from reconciliation import reconcile
from router import ProviderRouter
from schemas import (
    BatchItemResult, ClientInvoiceRecord, Document, DocumentType, ExtractionContext, ExtractionMetadata,
    ExtractionOptions, ExtractionResponse, JobStatus, SelectionResult, UserContext
)
from selector import DEFAULT_WEIGHTS, ScoringWeights, select, select_prompt_system
from text_extraction import extract_text
from utils import get_mime_type, log

UNRESOLVED_PENALTY = 0.05
CONFIDENCE_FLOOR = 0.5


@dataclass
class BatchEntry:
    filename: str
    data: bytes
    document_type: Optional[DocumentType] = None


def load_document(data: bytes, filename: str, mime_type: Optional[str] = None) -> Document:
    """Validates an upload and runs text extraction over it."""
    if not data:
        raise NoFileError(f"Uploaded file '{filename}' is empty" if filename else "No file uploaded")
    if len(data) > MAX_FILE_SIZE:
        raise FileTooLargeError(
            f"File '{filename}' is {len(data) / (1024 * 1024):.1f}MB; the limit is {MAX_FILE_SIZE // (1024 * 1024)}MB"
        )

    detected = get_mime_type(filename)
    if detected not in SUPPORTED_MIME_TYPES and mime_type in SUPPORTED_MIME_TYPES:
        detected = mime_type
    extracted = extract_text(data, filename, detected)
    return Document(
        raw_text=extracted.text,
        is_scanned=extracted.is_scanned,
        source_filename=filename,
        mime_type=detected,
        size_bytes=len(data),
        content=data if extracted.is_scanned else None,
    )


def score_confidence(reported: Optional[float], corrections) -> float:
    """Model-reported confidence (or the default), lowered for every unresolved correction."""
    base = DEFAULT_CONFIDENCE if reported is None else reported
    if base > 1:
        base = base / 100
    unresolved = sum(1 for note in corrections if not note.resolved)
    return round(max(base - UNRESOLVED_PENALTY * unresolved, min(base, CONFIDENCE_FLOOR)), 2)


class ExtractionEngine:
    """
    Runs one document through classification, template selection, provider
    routing, execution and reconciliation.
    """

    def __init__(self, catalog: TemplateCatalog, router: ProviderRouter,
                 events: Optional[UsageEventQueue] = None, weights: ScoringWeights = DEFAULT_WEIGHTS):
        self.catalog = catalog
        self.router = router
        self.executor = ExtractionExecutor(router)
        self.events = events
        self.weights = weights

    def resolve_document_type(self, text: str, requested=None, context: str = "") -> DocumentType:
        if requested is not None:
            document_type = DocumentType.parse(requested)
            if document_type is DocumentType.BANK_PAYMENT and bank_payment_score(text) == 0:
                log.warning(f"[{context}] Routed as bank payment but no bank-slip indicators were found.")
            return document_type
        try:
            return detect(text)
        except ClassificationAmbiguous as e:
            log.warning(f"[{context}] {e.message}; defaulting to 'unknown'.")
            return DocumentType.UNKNOWN

    async def select_template(self, ctx: ExtractionContext, prompt_system: str,
                              context: str = "") -> Tuple[SelectionResult, str]:
        """Managed pool first when assigned, then the built-in legacy pool."""
        tiers = ["managed", "legacy"] if prompt_system == "managed" else ["legacy"]
        for tier in tiers:
            if tier == "managed":
                pool = await self.catalog.get_templates(TemplateFilter(category=ctx.document_type))
            else:
                pool = fallback_templates(ctx.document_type)
            selection = select(pool, ctx, self.weights)
            if selection is not None:
                return selection, tier
            log.warning(f"[{context}] No {tier} template scored above zero for '{ctx.document_type.value}'.")
        raise NoTemplateSelected(f"No extraction template available for '{ctx.document_type.value}'")

    def _publish_usage(self, selection: SelectionResult, ctx: ExtractionContext, prompt_system: str):
        if self.events is None or selection.template.source != "catalog":
            return
        self.events.publish(UsageEvent(
            template_id=selection.template.id,
            document_type=ctx.document_type.value,
            user_email=ctx.user.email,
            supplier=ctx.supplier_name,
            prompt_system=prompt_system,
        ))

    async def extract(self, document: Document, user: Optional[UserContext] = None,
                      options: Optional[ExtractionOptions] = None, document_type=None,
                      supplier_name: Optional[str] = None) -> ExtractionResponse:
        start_time = time.perf_counter()
        user = user or UserContext()
        options = options or ExtractionOptions()
        context = f"File:'{document.source_filename}'|User:{user.email}"

        resolved_type = self.resolve_document_type(document.raw_text, document_type, context)
        supplier = identify_supplier(document.raw_text)
        supplier_key = supplier_name or (None if supplier.is_generic else supplier.key)
        log.info(f"[{context}] Type '{resolved_type.value}', supplier '{supplier.key}' "
                 f"(confidence {supplier.confidence}).")

        ctx = ExtractionContext(
            document_type=resolved_type,
            supplier_name=supplier_key,
            user=user,
            explicit_prompt_override=options.explicit_prompt_override,
            test_mode=options.test_mode,
        )
        prompt_system = select_prompt_system(user, options)
        selection, tier = await self.select_template(ctx, prompt_system, context)
        template = selection.template
        log.info(f"[{context}] Prompt system '{prompt_system}' (pool '{tier}'), "
                 f"template '{template.name}' v{template.version}, score {selection.score}.")
        self._publish_usage(selection, ctx, prompt_system)

        execution = await self.executor.execute(template, document, resolved_type)
        record = reconcile(execution.record, document.raw_text, supplier_key)
        if isinstance(record, ClientInvoiceRecord):
            record.company_format = detect_company_format(document.source_filename)
            record.company_name = CLIENT_INVOICE_COMPANIES.get(record.company_format, "")

        metadata = ExtractionMetadata(
            document_type=resolved_type,
            template_id=template.id,
            template_name=template.name,
            template_version=template.version,
            provider_used=execution.provider,
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
            confidence=score_confidence(execution.confidence, record.corrections),
            supplier_detected=supplier.canonical_name or supplier_name,
            prompt_system=prompt_system,
            providers_attempted=execution.attempts,
            corrections_applied=sum(1 for note in record.corrections if note.resolved),
        )
        log.info(f"[{context}] Extracted {len(record.items)} item(s) via '{execution.provider}' "
                 f"in {metadata.processing_time_ms}ms (confidence {metadata.confidence}).")
        return ExtractionResponse(data=record, extraction_metadata=metadata)

    async def process_batch(
        self,
        entries: List[BatchEntry],
        user: Optional[UserContext] = None,
        options: Optional[ExtractionOptions] = None,
        concurrency: int = BATCH_CONCURRENCY,
        delay: float = BATCH_ITEM_DELAY,
        on_result: Optional[Callable[[BatchItemResult], None]] = None,
    ) -> List[BatchItemResult]:
        """Bounded-parallel extraction; one item's failure never affects the others."""
        semaphore = asyncio.Semaphore(max(1, concurrency))

        async def run(index: int, entry: BatchEntry) -> BatchItemResult:
            async with semaphore:
                try:
                    document = await asyncio.to_thread(load_document, entry.data, entry.filename)
                    response = await self.extract(document, user, options, document_type=entry.document_type)
                    result = BatchItemResult(index=index, filename=entry.filename, success=True, response=response)
                except ExtractionError as e:
                    log.error(f"[Batch] '{entry.filename}' failed: {e}")
                    result = BatchItemResult(index=index, filename=entry.filename, success=False,
                                             code=e.code, message=e.message)
                except Exception as e:
                    log.exception(f"[Batch] '{entry.filename}' failed unexpectedly: {e}")
                    result = BatchItemResult(index=index, filename=entry.filename, success=False,
                                             code="EXTRACTION_FAILED", message=str(e))
                if delay:
                    await asyncio.sleep(delay)
            if on_result is not None:
                try:
                    on_result(result)
                except Exception as e:
                    log.exception(f"[Batch] Result handler failed for '{entry.filename}': {e}")
                    result.message = f"{result.message or 'Extracted'}; result handler failed: {e}"
            return result

        return list(await asyncio.gather(*(run(index, entry) for index, entry in enumerate(entries))))


def _rows_for_result(result: BatchItemResult) -> List[Dict]:
    """Flattens one batch outcome into CSV rows, one per line item."""
    base = {"FILE_Name": result.filename}
    if not result.success:
        return [{**base, "Processing_Status": f"Failed: {result.code}: {result.message}"}]

    record = result.response.data
    metadata = result.response.extraction_metadata
    supplier = getattr(record, "supplier", None)
    base.update({
        "DOCUMENT_Type": metadata.document_type.value,
        "TEMPLATE_Id": metadata.template_id,
        "PROVIDER_Used": metadata.provider_used,
        "DOCUMENT_Number": next(
            (getattr(record, field) for field in ("po_number", "pi_number", "invoice_number",
                                                   "reference_number", "document_number")
             if getattr(record, field, None)), None),
        "SUPPLIER_Name": supplier.name if supplier else getattr(record, "beneficiary_name", None),
        "Processing_Status": "Success",
    })
    if not record.items:
        return [base]
    return [{
        **base,
        "ITEM_LineNumber": item.line_number,
        "ITEM_ProductCode": item.product_code,
        "ITEM_ProductName": item.product_name or item.description,
        "ITEM_Quantity": item.quantity,
        "ITEM_Unit": item.unit,
        "ITEM_UnitPrice": item.unit_price,
        "ITEM_TotalPrice": item.total_price,
        "ITEM_ProjectCode": item.project_code,
    } for item in record.items]


def _append_to_csv(results_list: List[Dict], output_path: Path, column_order: List[str]):
    if not results_list: return
    df = pd.DataFrame(results_list)
    for col in column_order:
        if col not in df.columns: df[col] = None
    df = df[column_order]
    df.to_csv(output_path, mode='a', header=not output_path.exists(), index=False, encoding='utf-8')
    log.info(f"Appended {len(results_list)} row(s) to {output_path}")


def _collect_archive_entries(zip_file_path: str) -> List[BatchEntry]:
    entries = []
    with tempfile.TemporaryDirectory(prefix="doc_batch_", dir=TEMP_DIR) as temp_dir_str:
        temp_dir = Path(temp_dir_str)
        with zipfile.ZipFile(zip_file_path, 'r') as zip_ref: zip_ref.extractall(temp_dir)
        files = sorted(
            p for p in temp_dir.rglob("*")
            if p.is_file() and p.suffix.lower() in SUPPORTED_FILE_EXTENSIONS and '__MACOSX' not in str(p)
        )
        for file_path in files:
            entries.append(BatchEntry(filename=str(file_path.relative_to(temp_dir)), data=file_path.read_bytes()))
    return entries


async def process_zip_file_async(job_id: str, zip_file_path: str, job_statuses: Dict[str, JobStatus],
                                 engine: ExtractionEngine, user: Optional[UserContext] = None,
                                 options: Optional[ExtractionOptions] = None) -> str:
    job = job_statuses[job_id]
    output_csv_path = Path(TEMP_DIR) / f"{job_id}_output.csv"
    if output_csv_path.exists(): output_csv_path.unlink()
    try:
        entries = await asyncio.to_thread(_collect_archive_entries, zip_file_path)
        if not entries: raise ValueError("No processable document files found in the zip.")

        job.status, job.total_documents = "Processing", len(entries)
        job.details = f"Found {job.total_documents} documents to process."
        log.info(f"Job {job_id}: {job.details}")

        def on_result(result: BatchItemResult):
            _append_to_csv(_rows_for_result(result), output_csv_path, CSV_COLUMN_ORDER)
            job.documents_processed += 1
            if not result.success:
                job.documents_failed += 1
            job.progress_percent = (job.documents_processed / job.total_documents) * 100
            job.details = f"Processed {job.documents_processed}/{job.total_documents}: '{result.filename}'"
            log.info(f"Job {job_id}: {job.details} - Progress: {job.progress_percent:.2f}%")

        job.results = await engine.process_batch(entries, user, options, on_result=on_result)
    except Exception as e:
        log.exception(f"Job {job_id} failed: {e}")
        job.status, job.details = "Failed", str(e)
        raise
    if not output_csv_path.exists():
        pd.DataFrame([{"Status": "No data processed."}]).to_csv(output_csv_path, index=False)
    return str(output_csv_path)
