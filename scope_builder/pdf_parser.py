"""Document ingestion using PyMuPDF, pdfplumber, and pdf2image"""
import base64
import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import pdfplumber
import structlog
from pdf2image import convert_from_bytes
from PIL import Image

from .errors import ErrorCode, InputError

logger = structlog.get_logger(__name__)


ALLOWED_CONTENT_TYPES = [
    "application/pdf",
    "image/png",
    "image/jpeg",
    "image/jpg",
    "image/gif",
    "image/webp",
]


@dataclass
class IngestedDocument:
    """Plain text (and page images for scanned documents) ready for the LLM"""
    text: str = ""
    images: List[str] = field(default_factory=list)
    file_type: str = "text"
    filename: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.images


def detect_file_type(file_bytes: bytes, filename: str) -> str:
    """Detect if file is PDF or image"""
    name = (filename or "").lower()
    if name.endswith(".pdf"):
        return "pdf"
    elif name.endswith((".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp")):
        return "image"
    # Check magic bytes
    if file_bytes.startswith(b"%PDF"):
        return "pdf"
    elif file_bytes.startswith(b"\x89PNG"):
        return "image"
    elif file_bytes.startswith(b"\xff\xd8\xff"):
        return "image"
    return "unknown"


def extract_text(pdf_bytes: bytes) -> List[str]:
    """Extract text from PDF using PyMuPDF (fast)"""
    doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        return [page.get_text() for page in doc]
    finally:
        doc.close()


def extract_tables(pdf_bytes: bytes) -> List[Dict[str, Any]]:
    """Extract tables from PDF using pdfplumber"""
    tables = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for page_num, page in enumerate(pdf.pages):
            for table in page.extract_tables():
                tables.append({
                    "page": page_num + 1,
                    "table": table
                })
    return tables


def tables_to_text(tables: List[Dict[str, Any]]) -> str:
    """Flatten extracted tables into pipe-delimited rows.

    Insurance estimates keep quantity, description and RCV in columns that
    PyMuPDF's text order tends to scramble, so the rows are appended to the
    page text for the LLM.
    """
    blocks = []
    for entry in tables:
        rows = []
        for row in entry["table"]:
            cells = [(cell or "").replace("\n", " ").strip() for cell in row]
            if any(cells):
                rows.append(" | ".join(cells))
        if rows:
            blocks.append(f"[Table, page {entry['page']}]\n" + "\n".join(rows))
    return "\n\n".join(blocks)


def pdf_to_images(pdf_bytes: bytes, dpi: int = 200) -> List[Image.Image]:
    """Convert PDF pages to PIL Images for vision LLM processing"""
    try:
        return convert_from_bytes(pdf_bytes, dpi=dpi)
    except Exception as e:
        raise ValueError(f"Failed to convert PDF to images: {e}")


def image_to_base64(image: Image.Image) -> str:
    """Convert PIL Image to base64 string"""
    buffered = io.BytesIO()
    image.save(buffered, format="PNG")
    return base64.b64encode(buffered.getvalue()).decode("utf-8")


def parse_pdf(pdf_bytes: bytes, filename: str) -> IngestedDocument:
    """Text plus tables; scanned PDFs without a text layer fall back to page images"""
    pages_text = extract_text(pdf_bytes)
    text = "\n".join(pages_text).strip()

    try:
        table_text = tables_to_text(extract_tables(pdf_bytes))
    except Exception as e:
        logger.warning("table_extraction_failed", filename=filename, error=str(e))
        table_text = ""
    if table_text:
        text = f"{text}\n\n{table_text}" if text else table_text

    document = IngestedDocument(text=text, file_type="pdf", filename=filename)
    if not text:
        logger.info("pdf_has_no_text_layer", filename=filename)
        document.images = [image_to_base64(img) for img in pdf_to_images(pdf_bytes)]
    return document


def ingest(
    file_bytes: Optional[bytes] = None,
    filename: Optional[str] = None,
    text: Optional[str] = None,
    content_type: Optional[str] = None,
    max_bytes: Optional[int] = None,
) -> IngestedDocument:
    """
    Turn an uploaded document or pasted text into LLM-ready content

    Args:
        file_bytes: Raw uploaded file, takes precedence over text
        filename: Original filename
        text: Pasted text
        content_type: Upload MIME type, validated when given
        max_bytes: Upload size limit

    Returns:
        IngestedDocument with text and/or base64 page images

    Raises:
        InputError: missing, oversized, unsupported or empty input
    """
    if file_bytes:
        if content_type and content_type not in ALLOWED_CONTENT_TYPES:
            raise InputError(
                f"Unsupported file type: {content_type}",
                code=ErrorCode.UNSUPPORTED_FILE_TYPE,
            )
        if max_bytes is not None and len(file_bytes) > max_bytes:
            limit_mb = max_bytes // (1024 * 1024)
            raise InputError(
                f"File size exceeds {limit_mb}MB limit",
                code=ErrorCode.FILE_TOO_LARGE,
            )

        file_type = detect_file_type(file_bytes, filename or "")
        if file_type == "unknown":
            raise InputError(
                f"Unsupported file type: {filename}",
                code=ErrorCode.UNSUPPORTED_FILE_TYPE,
            )

        try:
            if file_type == "pdf":
                document = parse_pdf(file_bytes, filename or "document.pdf")
            else:
                document = IngestedDocument(
                    images=[image_to_base64(Image.open(io.BytesIO(file_bytes)))],
                    file_type="image",
                    filename=filename,
                )
        except Exception as e:
            logger.warning("document_unreadable", filename=filename, file_type=file_type, error=str(e))
            raise InputError(
                f"Could not read {file_type} file: {filename}",
                code=ErrorCode.UNSUPPORTED_FILE_TYPE,
                details={"error": str(e)},
            )
    elif text:
        document = IngestedDocument(text=text.strip())
    else:
        raise InputError("Either a file or text input is required", code=ErrorCode.INPUT_REQUIRED)

    if document.is_empty:
        raise InputError("No text could be extracted from the input", code=ErrorCode.EMPTY_INPUT)

    logger.info(
        "document_ingested",
        file_type=document.file_type,
        filename=document.filename,
        chars=len(document.text),
        images=len(document.images),
    )
    return document
