# Document loader: raw upload bytes -> plain text, by extension.
# Supports .pdf, .docx, .csv, .pptx, .txt, .md. No chunking here.

import io
import logging
from pathlib import Path

import pandas as pd
from docling.datamodel.base_models import DocumentStream, InputFormat
from docling.document_converter import DocumentConverter
from pypdf import PdfReader

logger = logging.getLogger(__name__)

_converter: DocumentConverter | None = None


def bytes_to_text(raw: bytes, filename: str) -> str:
    """
    Convert raw file bytes to text by extension. Single source of truth for
    parsing; used by the default ingestion agent.
    """
    ext = Path(filename).suffix.lower() if filename else ""
    if ext in (".txt", ".md") or not ext:
        return raw.decode("utf-8", errors="replace")
    if ext == ".pdf":
        return _read_pdf(raw)
    if ext == ".csv":
        return _read_csv(raw)
    if ext in (".docx", ".pptx"):
        return _read_office(raw, filename)
    return raw.decode("utf-8", errors="replace")


def _read_pdf(raw: bytes) -> str:
    reader = PdfReader(io.BytesIO(raw))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _read_csv(raw: bytes) -> str:
    df = pd.read_csv(io.BytesIO(raw), header=None, dtype=str, keep_default_na=False)
    return df.to_csv(sep=" ", index=False, header=False)


def _get_converter() -> DocumentConverter:
    """Docling converter for Word and PowerPoint, built on first use."""
    global _converter
    if _converter is None:
        logger.info("[loader] initialising docling DocumentConverter")
        _converter = DocumentConverter(allowed_formats=[InputFormat.DOCX, InputFormat.PPTX])
    return _converter


def _read_office(raw: bytes, filename: str) -> str:
    source = DocumentStream(name=Path(filename).name, stream=io.BytesIO(raw))
    result = _get_converter().convert(source, raises_on_error=True)
    return result.document.export_to_markdown()
