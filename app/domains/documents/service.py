"""Document ingestion: PDF text extraction, chunking and indexing."""

import asyncio
import io
import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from langchain_text_splitters import RecursiveCharacterTextSplitter
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.domains.chat.history import HistoryStore
from app.domains.chat.retriever import DocumentChunk, RetrievalScope, VectorRetriever
from app.exceptions.chat import ChatNotFoundError
from app.exceptions.document import DocumentTooLargeError, InvalidDocumentError
from app.schemas.document import DocumentUploadResponse
from models.base import utcnow


logger = logging.getLogger(__name__)

PDF_MAGIC_BYTES = b"%PDF"


@dataclass(frozen=True)
class ParsedPage:
    number: int
    text: str


def validate_pdf(file_name: str, content: bytes, max_size: int | None = None) -> None:
    """Check extension, size and PDF header.

    Raises:
        InvalidDocumentError: Not a PDF or empty.
        DocumentTooLargeError: Larger than ``max_size`` bytes.
    """
    max_size = max_size or settings.max_upload_size
    if not file_name or not file_name.lower().endswith(".pdf"):
        raise InvalidDocumentError("Only PDF files are accepted")
    if not content:
        raise InvalidDocumentError("Empty file provided")
    if len(content) > max_size:
        size_mb = len(content) / (1024 * 1024)
        raise DocumentTooLargeError(f"File size ({size_mb:.1f}MB) exceeds limit ({max_size // (1024 * 1024)}MB)")
    if not content.lstrip()[:10].startswith(PDF_MAGIC_BYTES):
        raise InvalidDocumentError("Invalid PDF: file does not start with a PDF header")


def parse_pdf(content: bytes) -> list[ParsedPage]:
    """Extract text per page; pages without text are skipped."""
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = []
        for number, page in enumerate(reader.pages, start=1):
            text = (page.extract_text() or "").strip()
            if text:
                pages.append(ParsedPage(number=number, text=text))
    except PdfReadError as e:
        raise InvalidDocumentError(f"Invalid or corrupted PDF: {str(e)}") from e

    if not pages:
        raise InvalidDocumentError("The PDF contains no extractable text")
    return pages


def split_pages(
    pages: list[ParsedPage],
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[DocumentChunk]:
    """Split page texts into overlapping chunks, keeping the page number."""
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size or settings.chunk_size,
        chunk_overlap=settings.chunk_overlap if chunk_overlap is None else chunk_overlap,
        length_function=len,
        is_separator_regex=False,
    )
    documents = splitter.create_documents(
        [page.text for page in pages],
        metadatas=[{"page": page.number} for page in pages],
    )
    return [DocumentChunk(text=doc.page_content, page=doc.metadata.get("page")) for doc in documents]


class DocumentService:
    """Indexes uploaded PDFs for one chat."""

    def __init__(self, db: AsyncSession, retriever: VectorRetriever):
        self.db = db
        self.store = HistoryStore(db)
        self.retriever = retriever

    async def ingest(
        self,
        user_id: UUID,
        file_name: str,
        content: bytes,
        chat_id: UUID | None = None,
    ) -> DocumentUploadResponse:
        """Validate, parse, split and index a PDF under ``(chat_id, user_id)``.

        The chat is created on first upload, titled after the file. The file
        reference is recorded in the chat's ``documents`` metadata.
        """
        validate_pdf(file_name, content)

        chat = await self.store.find_chat(chat_id) if chat_id else None
        if chat is not None and chat.user_id != user_id:
            raise ChatNotFoundError()

        loop = asyncio.get_running_loop()
        pages = await loop.run_in_executor(None, lambda: parse_pdf(content))
        chunks = split_pages(pages)

        if chat is None:
            new_id = chat_id or uuid4()
            chat = await self.store.create_chat(
                user_id=user_id,
                title=file_name[: settings.chat_title_length],
                metadata={"share_path": f"/chat/{new_id}"},
                chat_id=new_id,
            )

        indexed = await self.retriever.add_chunks(
            chunks, RetrievalScope(chat_id=chat.id, user_id=user_id), file_name
        )

        # A re-upload replaces the earlier entry for the same file name
        documents = [
            doc
            for doc in (chat.chat_metadata or {}).get("documents", [])
            if doc.get("file_name") != file_name
        ]
        documents.append(
            {
                "file_name": file_name,
                "pages": len(pages),
                "chunks": indexed,
                "uploaded_at": utcnow().isoformat(),
            }
        )
        await self.store.update_chat(chat, metadata={"documents": documents})

        logger.info(f"Ingested {file_name} into chat {chat.id}: {len(pages)} pages, {indexed} chunks")
        return DocumentUploadResponse(chat_id=chat.id, file_name=file_name, pages=len(pages), chunks=indexed)
