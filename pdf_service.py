import PyPDF2
import logging
from io import BytesIO
from typing import List, Tuple, Optional

from config import validate_chunk_size
from exceptions import PDFPasswordError, PDFProcessingError

logger = logging.getLogger(__name__)


def _open_reader(file_content: bytes) -> PyPDF2.PdfReader:
    try:
        return PyPDF2.PdfReader(BytesIO(file_content))
    except Exception as e:
        raise PDFProcessingError(f"Invalid PDF file: {str(e)}")


def _encode_pages(pages) -> bytes:
    pdf_writer = PyPDF2.PdfWriter()
    for page in pages:
        pdf_writer.add_page(page)
    output_buffer = BytesIO()
    pdf_writer.write(output_buffer)
    return output_buffer.getvalue()


def check_pdf_password_protection(file_content: bytes) -> bool:
    try:
        return _open_reader(file_content).is_encrypted
    except PDFProcessingError:
        # Unreadable files are reported by validate_pdf_file
        return False


def unlock_pdf_with_password(file_content: bytes, password: str) -> bytes:
    """Return an unencrypted copy of the document; PDFPasswordError on a wrong password."""
    pdf_reader = _open_reader(file_content)
    if not pdf_reader.is_encrypted:
        return file_content

    try:
        decrypted = pdf_reader.decrypt(password)
        if decrypted:
            return _encode_pages(pdf_reader.pages)
    except Exception as e:
        raise PDFProcessingError(f"Failed to unlock PDF: {str(e)}")

    raise PDFPasswordError("Incorrect password provided")


def validate_pdf_file(file_content: bytes) -> Tuple[bool, Optional[str]]:
    """Returns (is_valid, error_message)."""
    try:
        pdf_reader = _open_reader(file_content)
        if pdf_reader.is_encrypted:
            return False, "PDF is password protected. Please provide the password."
        if get_page_count(file_content, pdf_reader) == 0:
            return False, "PDF appears to be empty or corrupted."
        return True, None
    except PDFProcessingError as e:
        return False, str(e)


def process_pdf_file(file_content: bytes, password: Optional[str] = None) -> bytes:
    """
    Load an uploaded PDF, unlocking it when a password is given.

    Raises:
        PDFPasswordError: If the document is protected and the password is missing or wrong
        PDFProcessingError: If the document cannot be loaded
    """
    if not file_content:
        raise PDFProcessingError("Empty file content")

    if check_pdf_password_protection(file_content):
        if password is None:
            raise PDFPasswordError("PDF is password protected. Please provide a password.")
        file_content = unlock_pdf_with_password(file_content, password)

    is_valid, error_message = validate_pdf_file(file_content)
    if not is_valid:
        raise PDFProcessingError(error_message)

    return file_content


def get_page_count(file_content: bytes, pdf_reader: Optional[PyPDF2.PdfReader] = None) -> int:
    if pdf_reader is None:
        pdf_reader = _open_reader(file_content)
    try:
        return len(pdf_reader.pages)
    except Exception as e:
        raise PDFProcessingError(f"Invalid PDF file: {str(e)}")


def split_pdf_into_chunks(file_content: bytes, chunk_size: int) -> List[bytes]:
    """
    Split a PDF into contiguous page chunks, each a standalone PDF document.

    A document with no more pages than chunk_size is returned as a single
    chunk holding the original bytes.

    Returns:
        List[bytes]: ceil(pages / chunk_size) encoded documents in page order

    Raises:
        PDFProcessingError: If the document cannot be loaded
    """
    validate_chunk_size(chunk_size)
    pdf_reader = _open_reader(file_content)
    total_pages = get_page_count(file_content, pdf_reader)

    if total_pages == 0:
        raise PDFProcessingError("PDF appears to be empty or corrupted.")

    if total_pages <= chunk_size:
        logger.info(f"Document has {total_pages} pages, sending as a single chunk")
        return [file_content]

    chunks = [
        _encode_pages(pdf_reader.pages[i] for i in range(start, min(start + chunk_size, total_pages)))
        for start in range(0, total_pages, chunk_size)
    ]

    logger.info(f"Split {total_pages} pages into {len(chunks)} chunks of up to {chunk_size} pages")
    return chunks
