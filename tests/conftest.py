"""Test fixtures and utilities."""

import mailbox
from collections.abc import Iterator
from datetime import datetime, timezone
from email.message import EmailMessage
from io import BytesIO
from pathlib import Path
from typing import Optional

import pytest

from legacy_import.archive import ArchiveMessage, ArchiveReader, AttachmentRef
from legacy_import.config import Config, ExtractionConfig, ObjectStoreConfig
from legacy_import.errors import ArchiveOpenError, AttachmentReadError
from legacy_import.object_store import LocalObjectStore
from legacy_import.state_store import ImportStore, SessionStatus, document_id_for

# Long enough to pass the scanned heuristic and free of admin/legal terms
SAMPLE_LETTER_TEXT = """
Stimate domnule avocat,

Vă scriu în legătură cu moștenirea bunicii mele și doresc să aflu care sunt
pașii necesari pentru dezbaterea succesiunii. Familia noastră are mai multe
întrebări despre împărțirea casei de la țară și a terenului agricol.

Cu stimă,
Ion Popescu
"""

SAMPLE_INVOICE_TEXT = """
FACTURA FISCALA seria ABC nr. 12345
Furnizor: Exemplu Servicii SRL, CUI: RO1234567, J40/1234/2015
Cumparator: Cabinet Avocat
Cota TVA 19%
Total de plata: 1.190,00 RON
Termen de plata: 30 zile
"""

SAMPLE_COURT_INVOICE_TEXT = SAMPLE_INVOICE_TEXT + """
Onorariu pentru reprezentare în dosarul nr. 1234/3/2020 pe rolul Tribunalului București.
"""


def utc(year: int, month: int, day: int = 1, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class FakeArchiveReader(ArchiveReader):
    """In-memory archive with deterministic traversal."""

    def __init__(self, messages: list[ArchiveMessage], fail_open: bool = False):
        super().__init__("memory://archive")
        self.messages = messages
        self.fail_open = fail_open
        self.reads = 0

    @property
    def format_name(self) -> str:
        return "memory"

    def open(self) -> None:
        if self.fail_open:
            raise ArchiveOpenError("Corrupt archive header")

    def close(self) -> None:
        pass

    def iter_messages(self) -> Iterator[ArchiveMessage]:
        yield from self.messages


def make_message(
    key: str,
    attachments: dict[str, Optional[bytes]],
    folder_path: str = "Inbox",
    sent_at: Optional[datetime] = None,
    subject: str = "Documents",
    reader: Optional[FakeArchiveReader] = None,
) -> ArchiveMessage:
    """Build a message; a None payload makes the attachment unreadable."""
    refs = []
    for index, (name, payload) in enumerate(attachments.items()):

        def load(payload=payload, name=name) -> bytes:
            if payload is None:
                raise AttachmentReadError(f"Corrupt attachment {name}")
            if reader is not None:
                reader.reads += 1
            return payload

        refs.append(AttachmentRef(file_name=name, index=index, loader=load))
    return ArchiveMessage(
        message_key=key, folder_path=folder_path, subject=subject, sent_at=sent_at, attachments=refs
    )


def make_pdf(text: str) -> bytes:
    """Render text into a one-page PDF with a real text layer."""
    from reportlab.lib.pagesizes import A4
    from reportlab.pdfgen import canvas

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    y = 800
    for line in text.splitlines():
        pdf.drawString(40, y, line)
        y -= 14
    pdf.save()
    return buffer.getvalue()


def make_docx(paragraphs: list[str]) -> bytes:
    from docx import Document

    doc = Document()
    for paragraph in paragraphs:
        doc.add_paragraph(paragraph)
    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def write_mbox(path, messages) -> None:
    """Write (subject, date, [(file_name, payload)]) tuples as an mbox file."""
    box = mailbox.mbox(str(path))
    try:
        for subject, date, attachments in messages:
            msg = EmailMessage()
            msg["Subject"] = subject
            msg["From"] = "client@example.com"
            msg["To"] = "office@example.com"
            if date:
                msg["Date"] = date
            msg.set_content("See attached.")
            for name, payload in attachments:
                msg.add_attachment(
                    payload, maintype="application", subtype="octet-stream", filename=name
                )
            box.add(msg)
        box.flush()
    finally:
        box.close()


def add_document(
    store: ImportStore,
    session_id: str,
    ordinal: int,
    month: str = "2021-03",
    text: Optional[str] = SAMPLE_LETTER_TEXT,
    extension: str = "pdf",
    text_error: Optional[str] = None,
) -> str:
    """Insert an extracted document directly (bypassing the extractor)."""
    source_key = f"Inbox|m{ordinal}|0"
    document_id = document_id_for(session_id, source_key)
    with store.transaction() as conn:
        batch_id = store.get_or_create_batch(conn, session_id, month)
        inserted = store.insert_document(
            conn,
            session_id=session_id,
            batch_id=batch_id,
            source_key=source_key,
            ordinal=ordinal,
            file_name=f"doc{ordinal}.{extension}",
            file_extension=extension,
            storage_key=f"documents/{session_id}/{document_id}.{extension}",
            folder_path="Inbox",
            is_sent=False,
        )
        assert inserted
        store.bump_batch_counters(conn, batch_id, documents=1)
        store.bump_session_counters(conn, session_id, total=1)
        if text is not None:
            store.set_document_text(conn, document_id, text, None, text_error)
    return document_id


def finish_extraction(store: ImportStore, session_id: str) -> None:
    """Mark a hand-built session as fully extracted."""
    session = store.require_session(session_id)
    with store.transaction() as conn:
        store.update_session(
            conn,
            session_id,
            total_in_archive=session.total_documents,
            extracted_count=session.total_documents,
            extraction_complete=True,
            status=SessionStatus.IN_PROGRESS,
        )


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> ImportStore:
    return ImportStore(temp_db)


@pytest.fixture
def object_store(tmp_path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        object_store=ObjectStoreConfig(root=tmp_path / "objects"),
        extraction=ExtractionConfig(batch_size=100, time_budget_seconds=None),
        state_db_path=tmp_path / "test_state.db",
    )


@pytest.fixture
def session(store):
    return store.create_session("memory://archive", uploaded_by="admin", categorizer_count=3)
