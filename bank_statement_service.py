import logging
from typing import List, Optional, Sequence, Tuple

from config import CHUNK_SIZE, UNIDENTIFIED_LABEL, require_api_key, validate_chunk_size
from gpt_service import extract_chunks
from models import ChunkExtraction, ExtractedData, Transaction
from pdf_service import get_page_count, process_pdf_file, split_pdf_into_chunks
from session_manager import session_manager

logger = logging.getLogger(__name__)


def _first_present(values: Sequence[Optional[str]]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value
    return None


def merge_extractions(results: List[ChunkExtraction], placeholder: str = UNIDENTIFIED_LABEL) -> ExtractedData:
    """
    Merge chunk results, given in submission order, into one ledger.

    Transactions are concatenated chunk by chunk without deduplication or
    re-sorting. Bank name and account holder are each taken from the first
    chunk that supplies a non-empty value, falling back to the placeholder.
    """
    transactions: List[Transaction] = []
    for result in results:
        transactions.extend(result.to_transactions())

    bank_name = _first_present([result.bank_name for result in results])
    account_holder = _first_present([result.account_holder for result in results])

    return ExtractedData(
        transactions=transactions,
        bank_name=bank_name or placeholder,
        account_holder=account_holder or placeholder,
    )


async def analyze_bank_statement(documents: List[bytes], chunk_size: int = CHUNK_SIZE, client=None) -> ExtractedData:
    """
    Split already-loaded documents into chunks, extract them all concurrently and merge.

    Chunks keep (document, page) order across the whole document set.
    """
    validate_chunk_size(chunk_size)

    chunks: List[bytes] = []
    for document in documents:
        chunks.extend(split_pdf_into_chunks(document, chunk_size))

    results = await extract_chunks(chunks, client=client)
    data = merge_extractions(results)
    logger.info(f"Merged {len(results)} chunks into {len(data.transactions)} transactions")
    return data


async def process_bank_statement(files: List[Tuple[str, bytes]], password: Optional[str] = None,
                                 session_id: Optional[str] = None, chunk_size: int = CHUNK_SIZE,
                                 client=None) -> ExtractedData:
    """
    Run the whole pipeline over one or more uploaded PDFs.

    Args:
        files: (filename, content) pairs in upload order
        password: Password applied to any protected document
        session_id: Session receiving progress updates, if any
        chunk_size: Pages per extraction request
        client: Optional extraction client override

    Returns:
        ExtractedData: The merged ledger

    Raises:
        ConfigurationError: If the API key is missing (checked before any work)
        PDFProcessingError: If any document cannot be loaded
        ExtractionError: If any chunk fails
    """
    if client is None:
        require_api_key()
    validate_chunk_size(chunk_size)

    await session_manager.update_progress(session_id, 10, "Loading documents...")
    documents = []
    for filename, content in files:
        logger.info(f"Loading {filename} ({len(content)} bytes)")
        documents.append(process_pdf_file(content, password))

    await session_manager.update_progress(session_id, 30, "Extracting transactions...",
                                          {"documents": len(documents),
                                           "pages": sum(get_page_count(d) for d in documents)})
    data = await analyze_bank_statement(documents, chunk_size=chunk_size, client=client)

    await session_manager.update_progress(session_id, 90, "Merged extraction results",
                                          {"transactions_count": len(data.transactions)})
    return data
