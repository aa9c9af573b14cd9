from fastapi import FastAPI, File, UploadFile, HTTPException, Form, Request, BackgroundTasks
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from collections import defaultdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import logging
import time

from analysis import build_dashboard
from bank_statement_service import process_bank_statement
from config import APP_PORT, LOG_FILE, MAX_FILE_SIZE, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW, get_api_key
from exceptions import (
    StatementAnalyzerError,
    analyzer_error_response,
    analyzer_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from models import Transaction
from session_manager import session_manager

# Configure logging
Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred while processing the PDF."

# Initialize FastAPI app
app = FastAPI(
    title="Bank Statement Analyzer",
    description="API for extracting transactions from bank statement PDFs with GPT",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StatementAnalyzerError, analyzer_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Simple rate limiting
request_counts = defaultdict(list)


def check_rate_limit(client_ip: str) -> bool:
    """Check if client has exceeded rate limit"""
    current_time = time.time()
    # Remove old requests outside the window
    request_counts[client_ip] = [req_time for req_time in request_counts[client_ip]
                                 if current_time - req_time < RATE_LIMIT_WINDOW]

    if len(request_counts[client_ip]) >= RATE_LIMIT_MAX_REQUESTS:
        return False

    request_counts[client_ip].append(current_time)
    return True


def enforce_rate_limit(request: Request):
    if request.client and not check_rate_limit(request.client.host):
        raise HTTPException(status_code=429, detail="Rate limit exceeded. Please try again later.")


async def read_pdf_uploads(files: List[UploadFile]) -> List[Tuple[str, bytes]]:
    """Read uploads, keeping only PDFs. Content is checked later by the PDF loader."""
    pdf_files = [f for f in files
                 if f.content_type == "application/pdf" or (f.filename or "").lower().endswith('.pdf')]
    if not pdf_files:
        raise HTTPException(status_code=400, detail="Only PDF files are allowed")

    uploads = []
    for file in pdf_files:
        content = await file.read()
        if len(content) > MAX_FILE_SIZE:
            raise HTTPException(
                status_code=400,
                detail=f"File size too large. Maximum allowed size is {MAX_FILE_SIZE // (1024 * 1024)}MB"
            )
        uploads.append((file.filename or "statement.pdf", content))
    return uploads


def session_payload(session_id: str) -> Dict:
    return session_manager.get_session(session_id).model_dump(mode="json", by_alias=True)


async def run_session_pipeline(session_id: str, uploads: List[Tuple[str, bytes]], password: Optional[str]):
    """
    Drive one session through processing to success or error.
    The error message is stored on the session and the error is re-raised.
    """
    try:
        data = await process_bank_statement(uploads, password=password, session_id=session_id)
    except StatementAnalyzerError as e:
        session_manager.mark_error(session_id, str(e))
        await session_manager.update_progress(session_id, 100, str(e))
        raise
    except Exception as e:
        logger.exception(f"Session {session_id} failed: {e}")
        session_manager.mark_error(session_id, UNEXPECTED_ERROR_MESSAGE)
        await session_manager.update_progress(session_id, 100, UNEXPECTED_ERROR_MESSAGE)
        raise

    session_manager.mark_success(session_id, data)
    await session_manager.update_progress(
        session_id,
        progress=100,
        message="Processing complete!",
        data={"transactions_count": len(data.transactions)}
    )
    return data


async def background_process(session_id: str, uploads: List[Tuple[str, bytes]], password: Optional[str]):
    try:
        await run_session_pipeline(session_id, uploads, password)
    except StatementAnalyzerError as e:
        logger.warning(f"Session {session_id} ended with error: {str(e)}")


@app.get("/")
async def home() -> Dict:
    """
    Root endpoint that provides API information and available endpoints.
    """
    return {
        "status": "success",
        "data": {
            "api_status": "online",
            "message": "Welcome to Bank Statement Analyzer API",
            "endpoints": {
                "home": "GET /",
                "health": "GET /health",
                "analyze_statement": "POST /api/analyze-bank-statement",
                "process_statement": "POST /api/process-statement",
                "progress_stream": "GET /api/progress-stream/{task_id}",
                "session": "GET|DELETE /api/sessions/{task_id}",
                "dashboard": "GET /api/sessions/{task_id}/dashboard",
                "transactions": "POST /api/sessions/{task_id}/transactions",
                "transaction": "PUT|DELETE /api/sessions/{task_id}/transactions/{index}",
                "docs": "GET /docs",
            }
        }
    }


@app.get("/health")
async def health_check() -> Dict:
    """
    Health check endpoint for monitoring.
    """
    api_key_configured = bool(get_api_key())
    return {
        "status": "healthy" if api_key_configured else "degraded",
        "message": "All services are operational" if api_key_configured else "OPENAI_API_KEY is not configured",
        "timestamp": time.time(),
        "services": {
            "openai": "configured" if api_key_configured else "missing_api_key"
        }
    }


@app.post("/api/analyze-bank-statement")
async def analyze_statement(
    request: Request,
    files: List[UploadFile] = File(...),
    password: Optional[str] = Form(None),
) -> Dict:
    """
    Extract transactions from one or more bank statement PDFs and wait for the result.
    The returned task_id can be used to edit rows and read the dashboard, and is
    also returned with extraction errors so the failed session can be inspected.
    """
    enforce_rate_limit(request)
    uploads = await read_pdf_uploads(files)

    session = session_manager.create_session()
    session_manager.start_processing(session.session_id, [name for name, _ in uploads])
    try:
        await run_session_pipeline(session.session_id, uploads, password)
    except StatementAnalyzerError as e:
        return analyzer_error_response(e, data={
            "task_id": session.session_id,
            **session_payload(session.session_id)
        })

    return {
        "status": "success",
        "message": "Bank statement processed",
        "data": {
            "task_id": session.session_id,
            **session_payload(session.session_id)
        }
    }


@app.post("/api/process-statement")
async def process_statement(
    request: Request,
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    password: Optional[str] = Form(None),
) -> Dict:
    """
    Background processing with progress streaming.
    """
    enforce_rate_limit(request)
    uploads = await read_pdf_uploads(files)

    session = session_manager.create_session()
    session_manager.start_processing(session.session_id, [name for name, _ in uploads])
    background_tasks.add_task(background_process, session.session_id, uploads, password)

    return {
        "status": "success",
        "message": f"Processing started. Listen on /api/progress-stream/{session.session_id}",
        "data": {"task_id": session.session_id, "state": "PROCESSING"}
    }


@app.get("/api/progress-stream/{task_id}")
async def progress_stream(task_id: str):
    return StreamingResponse(session_manager.listen(task_id), media_type="text/event-stream")


@app.get("/api/sessions/{task_id}")
async def get_session(task_id: str) -> Dict:
    return {"status": "success", "message": None, "data": session_payload(task_id)}


@app.delete("/api/sessions/{task_id}")
async def reset_session(task_id: str) -> Dict:
    session_manager.reset(task_id)
    return {"status": "success", "message": "Session reset", "data": session_payload(task_id)}


@app.get("/api/sessions/{task_id}/dashboard")
async def get_dashboard(task_id: str, search: Optional[str] = None,
                        category: Optional[str] = None, kind: Optional[str] = None) -> Dict:
    session = session_manager.get_session(task_id)
    if session.data is None:
        raise HTTPException(status_code=409, detail=f"No extracted data available (session is {session.state.value})")

    try:
        view = build_dashboard(session.data, search=search, category=category, kind=kind)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"status": "success", "message": None, "data": view.model_dump(mode="json", by_alias=True)}


@app.post("/api/sessions/{task_id}/transactions")
async def add_transaction(task_id: str, transaction: Transaction) -> Dict:
    data = session_manager.add_transaction(task_id, transaction)
    return {"status": "success", "message": "Transaction added", "data": data.model_dump(mode="json", by_alias=True)}


@app.put("/api/sessions/{task_id}/transactions/{index}")
async def update_transaction(task_id: str, index: int, transaction: Transaction) -> Dict:
    data = session_manager.update_transaction(task_id, index, transaction)
    return {"status": "success", "message": "Transaction updated", "data": data.model_dump(mode="json", by_alias=True)}


@app.delete("/api/sessions/{task_id}/transactions/{index}")
async def delete_transaction(task_id: str, index: int) -> Dict:
    data = session_manager.delete_transaction(task_id, index)
    return {"status": "success", "message": "Transaction deleted", "data": data.model_dump(mode="json", by_alias=True)}


# Run the app
if __name__ == '__main__':
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=APP_PORT)
