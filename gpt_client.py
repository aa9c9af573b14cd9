import base64
import logging
from typing import Optional

from openai import AsyncOpenAI

from config import OPENAI_MODEL, require_api_key
from prompts import SYSTEM_PROMPT, RESPONSE_FORMAT

logger = logging.getLogger(__name__)

_openai_client: Optional[AsyncOpenAI] = None


def get_openai_client() -> AsyncOpenAI:
    """
    Return the shared OpenAI client, creating it on first use.

    Raises:
        ConfigurationError: If OPENAI_API_KEY is not set
    """
    global _openai_client
    if _openai_client is None:
        _openai_client = AsyncOpenAI(api_key=require_api_key())
    return _openai_client


def build_pdf_part(pdf_bytes: bytes, filename: str) -> dict:
    encoded = base64.b64encode(pdf_bytes).decode("utf-8")
    return {
        "type": "file",
        "file": {
            "filename": filename,
            "file_data": f"data:application/pdf;base64,{encoded}",
        },
    }


async def run_structured_extraction(pdf_bytes: bytes, prompt: str, filename: str = 'chunk.pdf',
                                    client=None, model: str = OPENAI_MODEL) -> Optional[str]:
    """
    Send one PDF document to the model and return the raw response text.

    Args:
        pdf_bytes (bytes): Standalone PDF document sent inline
        prompt (str): The extraction instruction
        filename (str): Name attached to the inline file part
        client: Client exposing chat.completions.create; defaults to the shared OpenAI client
        model (str): The OpenAI model to use

    Returns:
        Optional[str]: The message content, which may be empty
    """
    client = client or get_openai_client()

    response = await client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    build_pdf_part(pdf_bytes, filename),
                    {"type": "text", "text": prompt},
                ],
            },
        ],
        response_format=RESPONSE_FORMAT,
        temperature=0.0,  # Use deterministic output
        top_p=0.1,
    )

    if not response.choices:
        return None
    return response.choices[0].message.content
