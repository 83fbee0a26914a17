# main.py

import os
import shutil
import tempfile
import traceback
import uuid
import asyncio
import logging
from queue import Queue
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, File, Form, UploadFile, HTTPException, BackgroundTasks, Depends, status, Request
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware

from api_client import build_provider_clients
from catalog import CatalogClient, TemplateCatalog
from config import (
    AB_TEST_ENABLED, AB_TEST_PERCENTAGE, AB_TEST_USERS, ENVIRONMENT, PROMPT_SYSTEM_DEFAULT, TEMP_DIR
)
from events import UsageEventQueue
from exceptions import ExtractionError, InputError, NoFileError
from processing import ExtractionEngine, load_document, process_zip_file_async
from router import ProviderRouter
from schemas import DocumentType, ErrorResponse, ExtractionOptions, JobStatus, UserContext
from selector import select_prompt_system
from utils import log, setup_logger

# --- Real-time Logging Setup ---
# A thread-safe queue to hold log records
log_queue = Queue()

job_statuses: dict[str, JobStatus] = {}

class EndpointFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Exclude logs from uvicorn.access for paths that start with /status
        return record.getMessage().find("/status/") == -1

logging.getLogger("uvicorn.access").addFilter(EndpointFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the engine and its collaborators; tears them down on shutdown."""
    os.makedirs(TEMP_DIR, exist_ok=True)
    setup_logger(log_queue)
    log.info("Application starting up...")

    catalog_client = CatalogClient()
    router = ProviderRouter(build_provider_clients())
    events = UsageEventQueue(sink=catalog_client.record_usage)
    events.start()
    app.state.engine = ExtractionEngine(TemplateCatalog(catalog_client), router, events)
    yield
    log.info("Application shutting down: closing clients...")
    await events.stop()
    await router.close()
    await catalog_client.close()

app = FastAPI(
    title="Document Extraction Service",
    version="2.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_engine(request: Request) -> ExtractionEngine:
    return request.app.state.engine


# --- Error envelope ---

def _error_response(status_code: int, code: str, message: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(message=message, code=code)
    if ENVIRONMENT != "production":
        body.stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))

@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    log.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(exc.status_code, exc.code, exc.message, exc)

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception(f"{request.method} {request.url.path} failed unexpectedly: {exc}")
    return _error_response(500, "EXTRACTION_FAILED", f"Extraction failed: {exc}", exc)


async def log_streamer():
    """Yields log records from the queue as they become available."""
    while True:
        try:
            record = await asyncio.to_thread(log_queue.get)
            yield f"data: {record}\n\n"
        except Exception:
            break

@app.get("/stream-logs")
async def stream_logs(request: Request):
    """Streams log data using Server-Sent Events (SSE)."""
    return StreamingResponse(log_streamer(), media_type="text/event-stream")


# --- Single-document extraction ---

def _request_context(user_email: Optional[str], user_role: Optional[str], use_new_prompts: Optional[str],
                     test_mode: Optional[bool]):
    user = UserContext(email=user_email or "anonymous", role=user_role or "user")
    override = None
    if use_new_prompts not in (None, ""):
        override = "managed" if use_new_prompts.strip().lower() in ("1", "true", "yes", "on") else "legacy"
    return user, ExtractionOptions(explicit_prompt_override=override, test_mode=bool(test_mode))

async def _read_upload(file: Optional[UploadFile]):
    if file is None or not file.filename:
        raise NoFileError()
    try:
        data = await file.read()
    finally:
        await file.close()
    return await asyncio.to_thread(load_document, data, file.filename, file.content_type)

def _parse_document_type(value: Optional[str]) -> Optional[DocumentType]:
    if not value:
        return None
    try:
        return DocumentType.parse(value)
    except ValueError as e:
        raise InputError(str(e), code="EXTRACTION_FAILED")

async def _run_extraction(engine: ExtractionEngine, file, user_email, user_role, use_new_prompts, test_mode,
                          supplier, document_type):
    document = await _read_upload(file)
    user, options = _request_context(user_email, user_role, use_new_prompts, test_mode)
    log.info(f"Extraction requested for '{document.source_filename}' ({document.size_bytes} bytes) by {user.email}.")
    response = await engine.extract(document, user, options, document_type=document_type, supplier_name=supplier)
    return JSONResponse(content=response.model_dump(mode="json", by_alias=True))

@app.post("/extract")
async def extract_document(
    file: Optional[UploadFile] = File(None),
    user_email: Optional[str] = Form(None, alias="userEmail"),
    user_role: Optional[str] = Form(None, alias="userRole"),
    use_new_prompts: Optional[str] = Form(None, alias="useNewPrompts"),
    test_mode: Optional[bool] = Form(False, alias="testMode"),
    supplier: Optional[str] = Form(None),
    document_type: Optional[str] = Form(None, alias="documentType"),
    engine: ExtractionEngine = Depends(get_engine),
):
    """Extracts a purchase order, proforma invoice or other document; the type is classified unless given."""
    return await _run_extraction(engine, file, user_email, user_role, use_new_prompts, test_mode,
                                 supplier, _parse_document_type(document_type))

@app.post("/extract-bank-payment")
async def extract_bank_payment(
    file: Optional[UploadFile] = File(None),
    user_email: Optional[str] = Form(None, alias="userEmail"),
    user_role: Optional[str] = Form(None, alias="userRole"),
    use_new_prompts: Optional[str] = Form(None, alias="useNewPrompts"),
    test_mode: Optional[bool] = Form(False, alias="testMode"),
    engine: ExtractionEngine = Depends(get_engine),
):
    return await _run_extraction(engine, file, user_email, user_role, use_new_prompts, test_mode,
                                 None, DocumentType.BANK_PAYMENT)

@app.post("/extract-invoice")
async def extract_client_invoice(
    file: Optional[UploadFile] = File(None),
    user_email: Optional[str] = Form(None, alias="userEmail"),
    user_role: Optional[str] = Form(None, alias="userRole"),
    use_new_prompts: Optional[str] = Form(None, alias="useNewPrompts"),
    test_mode: Optional[bool] = Form(False, alias="testMode"),
    engine: ExtractionEngine = Depends(get_engine),
):
    return await _run_extraction(engine, file, user_email, user_role, use_new_prompts, test_mode,
                                 None, DocumentType.CLIENT_INVOICE)


# --- Batch jobs ---

def cleanup_file(file_path: str):
    """Background task to delete a temporary file."""
    try:
        if file_path and os.path.exists(file_path):
            os.remove(file_path)
            log.info(f"Cleaned up temporary file: {file_path}")
    except OSError as e:
        log.error(f"Error cleaning up file {file_path}: {e}")

async def run_processing_job(job_id: str, temp_zip_path: str, engine: ExtractionEngine,
                             user: UserContext, options: ExtractionOptions):
    """A wrapper to run the batch and update job status."""
    try:
        output_csv_path = await process_zip_file_async(job_id, temp_zip_path, job_statuses, engine, user, options)
        job = job_statuses[job_id]
        job.status = "Completed"
        job.details = (f"Processing finished: {job.documents_processed - job.documents_failed} succeeded, "
                       f"{job.documents_failed} failed.")
        job.progress_percent = 100.0
        job.result_path = output_csv_path
        log.info(f"Job {job_id} completed. Output at {output_csv_path}")
    except Exception as e:
        log.exception(f"Job {job_id} failed with a critical error.")
        job_statuses[job_id].status = "Failed"
        job_statuses[job_id].details = f"A critical error occurred: {str(e)}"
    finally:
        cleanup_file(temp_zip_path)

@app.post("/batch-extract", status_code=status.HTTP_202_ACCEPTED)
async def batch_extract(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    user_email: Optional[str] = Form(None, alias="userEmail"),
    user_role: Optional[str] = Form(None, alias="userRole"),
    use_new_prompts: Optional[str] = Form(None, alias="useNewPrompts"),
    test_mode: Optional[bool] = Form(False, alias="testMode"),
    engine: ExtractionEngine = Depends(get_engine),
):
    """Accepts a ZIP of documents, starts a background job, and returns a job ID."""
    if file is None or not file.filename:
        raise NoFileError()
    if not file.filename.lower().endswith(".zip"):
        raise InputError("Invalid file type. Please upload a ZIP file.", code="EXTRACTION_FAILED")

    os.makedirs(TEMP_DIR, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".zip", dir=TEMP_DIR) as temp_zip:
            shutil.copyfileobj(file.file, temp_zip)
            temp_zip_path = temp_zip.name
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Could not save file: {e}")
    finally:
        await file.close()

    job_id = str(uuid.uuid4())
    job_statuses[job_id] = JobStatus(
        job_id=job_id, status="Queued", details="Job has been queued for processing."
    )
    user, options = _request_context(user_email, user_role, use_new_prompts, test_mode)
    background_tasks.add_task(run_processing_job, job_id, temp_zip_path, engine, user, options)

    log.info(f"Job {job_id} started for file {file.filename}.")
    return {"success": True, "message": "Job started successfully.", "job_id": job_id}

@app.get("/status/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    """Retrieves the status of a processing job by its ID."""
    job = job_statuses.get(job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job ID not found.")
    return job

@app.get("/download/{job_id}")
async def download_results(job_id: str):
    job = job_statuses.get(job_id)
    if not job:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job ID not found.")
    if job.status != "Completed" or not job.result_path or not os.path.exists(job.result_path):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Job is {job.status}; no results yet.")
    return FileResponse(job.result_path, media_type="text/csv", filename=f"{job_id}_output.csv")


# --- Introspection ---

@app.get("/prompt-system-status")
async def prompt_system_status(email: Optional[str] = None, engine: ExtractionEngine = Depends(get_engine)):
    payload = {
        "defaultSystem": PROMPT_SYSTEM_DEFAULT,
        "abTestEnabled": AB_TEST_ENABLED,
        "abTestPercentage": AB_TEST_PERCENTAGE,
        "testUserCount": len(AB_TEST_USERS),
        "catalogCacheEntries": len(engine.catalog.cache),
    }
    if email:
        payload["assignedSystem"] = select_prompt_system(UserContext(email=email))
    return payload

@app.get("/providers")
async def list_providers(engine: ExtractionEngine = Depends(get_engine)):
    return {"chain": engine.router.chain, "providers": engine.router.status()}

@app.get("/providers/health")
async def providers_health(engine: ExtractionEngine = Depends(get_engine)):
    results = await engine.router.health_check()
    return {"healthy": any(result["healthy"] for result in results), "providers": results}

@app.get("/")
async def root():
    return {
        "message": "Welcome to the Document Extraction API",
        "version": app.version,
        "docs_url": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
