import asyncio
import base64
import json
import os
import tempfile
from io import BytesIO
from types import SimpleNamespace

import PyPDF2
import pytest

os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "bank_statement_analyzer_test.log"))


def make_pdf(widths, password=None) -> bytes:
    """Build a PDF with one blank page per width, so pages can be told apart."""
    writer = PyPDF2.PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=200)
    if password is not None:
        writer.encrypt(password)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_widths(pdf_bytes: bytes):
    reader = PyPDF2.PdfReader(BytesIO(pdf_bytes))
    return [int(float(page.mediabox.width)) for page in reader.pages]


def pdf_from_request(kwargs) -> bytes:
    file_part = kwargs["messages"][1]["content"][0]
    data_url = file_part["file"]["file_data"]
    return base64.b64decode(data_url.split(",", 1)[1])


def chunk_num_from_request(kwargs) -> int:
    filename = kwargs["messages"][1]["content"][0]["file"]["filename"]
    return int(filename[len("chunk_"):-len(".pdf")])


def make_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def page_transactions_payload(pdf_bytes: bytes, bank=None, holder=None) -> str:
    """One transaction per page; the description names the page width."""
    tx = [
        {"d": "2024-01-%02d" % (i + 1), "t": f"page-{width}", "v": -10.0, "c": "Test"}
        for i, width in enumerate(page_widths(pdf_bytes))
    ]
    return json.dumps({"b": bank, "h": holder, "tx": tx})


class FakeCompletions:
    """Stands in for client.chat.completions; `responder` builds the reply for each call."""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.responder(kwargs)
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return make_response(result)


class FakeClient:
    def __init__(self, responder):
        self.completions = FakeCompletions(responder)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self):
        return self.completions.calls


@pytest.fixture
def fake_client_factory():
    return FakeClient


@pytest.fixture
def page_echo_client():
    return FakeClient(lambda kwargs: page_transactions_payload(pdf_from_request(kwargs)))


@pytest.fixture(autouse=True)
def fresh_sessions():
    from session_manager import session_manager
    session_manager.sessions.clear()
    session_manager.listeners.clear()
    session_manager.last_touched.clear()
    yield
