import asyncio
import json
import logging
import re
import time
from typing import List, Optional

from pydantic import ValidationError

from exceptions import EmptyResponseError, ExtractionError, ResponseParseError, StatementAnalyzerError
from gpt_client import run_structured_extraction
from models import ChunkExtraction
from prompts import get_extraction_prompt

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if present."""
    match = _FENCE_PATTERN.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_extraction_response(text: Optional[str], chunk_num: int) -> ChunkExtraction:
    """
    Parse one chunk's raw response text into a ChunkExtraction.

    Raises:
        EmptyResponseError: If the service returned no text
        ResponseParseError: If the text is not JSON matching the schema
    """
    if not text or not text.strip():
        raise EmptyResponseError(f"Could not extract data from the PDF (chunk {chunk_num} returned an empty response).", chunk_num)

    payload = strip_code_fences(text)
    try:
        return ChunkExtraction.model_validate(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.error(f"[CHUNK {chunk_num}] Failed to parse response: {str(e)}")
        raise ResponseParseError(chunk_num, detail=str(e))


async def extract_chunk(chunk_bytes: bytes, chunk_num: int, total_chunks: int, client=None) -> ChunkExtraction:
    """
    Run the extraction call for a single chunk.

    Args:
        chunk_bytes: Standalone PDF document for this chunk
        chunk_num: 1-based chunk number for logging and the prompt
        total_chunks: Number of chunks in the whole operation
        client: Optional client override, mainly for tests

    Returns:
        ChunkExtraction: The validated result for this chunk
    """
    start_time = time.time()
    logger.info(f"[CHUNK {chunk_num}] Sending to extraction service ({len(chunk_bytes)} bytes)...")

    try:
        text = await run_structured_extraction(
            chunk_bytes,
            get_extraction_prompt(chunk_num, total_chunks),
            filename=f"chunk_{chunk_num}.pdf",
            client=client,
        )
    except StatementAnalyzerError:
        raise
    except Exception as e:
        logger.error(f"[CHUNK {chunk_num}] Request failed: {str(e)}")
        raise ExtractionError(f"Extraction request for chunk {chunk_num} failed: {str(e)}", chunk_num)

    result = parse_extraction_response(text, chunk_num)

    elapsed = time.time() - start_time
    logger.info(f"[CHUNK {chunk_num}] Completed in {elapsed:.1f}s - Found {len(result.transactions)} transactions")
    return result


async def extract_chunks(chunks: List[bytes], client=None) -> List[ChunkExtraction]:
    """
    Extract all chunks concurrently.

    Every call is issued before any is awaited. The first failure propagates
    to the caller and no results are returned; calls already in flight are
    left to finish on their own.

    Returns:
        List[ChunkExtraction]: Results in the same order as chunks
    """
    total_chunks = len(chunks)
    start_time = time.time()
    logger.info(f"Starting parallel extraction of {total_chunks} chunks at {time.strftime('%H:%M:%S')}...")

    results = await asyncio.gather(
        *[extract_chunk(chunk, chunk_num, total_chunks, client)
          for chunk_num, chunk in enumerate(chunks, start=1)]
    )

    total_time = time.time() - start_time
    logger.info(f"All {total_chunks} chunks completed in {total_time:.1f}s")
    return list(results)
