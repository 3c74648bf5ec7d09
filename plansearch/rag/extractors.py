"""Document loading and PDF segmentation utilities.

This module turns a file on disk into a ``SourceDocument``: the SHA-256 of
its raw bytes plus per-page text. It also hosts the oversized-PDF gate and
the page-range split planner.

Supported formats:
- PDF (via pypdf with pdfplumber fallback)

A PDF that neither library can read degrades to a single placeholder page
so that indexing still produces a (low quality) catalog entry instead of
halting the batch.
"""

import hashlib
import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel

from plansearch.core.config import PDFSettings, settings
from plansearch.rag.models import PageText, SourceDocument

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = (
    "Could not extract text from this document. The PDF may be corrupt, "
    "password-protected, or in an unsupported format."
)

LARGE_PDF_WARNING = "Large PDF processed with limited content extraction"

# A loader takes a Path and returns the loaded document
DocumentLoader = Callable[[Path], SourceDocument]


# =============================================================================
# HASHING
# =============================================================================


def compute_file_hash(data: bytes) -> str:
    """Lowercase hex SHA-256 of raw file bytes (the catalog dedup key)."""
    return hashlib.sha256(data).hexdigest()


# =============================================================================
# PDF TEXT EXTRACTION
# =============================================================================


def extract_pages_from_pdf(pdf_path: Path) -> list[PageText]:
    """
    Extract per-page text from a PDF file.

    Tries pypdf first (faster), falls back to pdfplumber (more robust)
    if pypdf fails or returns no text.

    Args:
        pdf_path: Path to the PDF file.

    Returns:
        Pages that produced text, numbered from 1.

    Raises:
        FileNotFoundError: If the PDF file doesn't exist.
        ValueError: If text extraction fails with both methods.
    """
    if not pdf_path.exists():
        raise FileNotFoundError(f"PDF file not found: {pdf_path}")

    try:
        pages = _extract_with_pypdf(pdf_path)
        if pages:
            return pages
        logger.warning(f"pypdf returned empty text for {pdf_path.name}, trying pdfplumber...")
    except Exception as e:
        logger.warning(f"pypdf failed for {pdf_path.name}: {e}, trying pdfplumber...")

    try:
        pages = _extract_with_pdfplumber(pdf_path)
        if pages:
            return pages
        raise ValueError(f"No text could be extracted from {pdf_path.name}")
    except Exception as e:
        raise ValueError(f"Failed to extract text from {pdf_path.name}: {e}") from e


def _extract_with_pypdf(pdf_path: Path) -> list[PageText]:
    from pypdf import PdfReader

    reader = PdfReader(pdf_path)
    pages = []
    for page_num, page in enumerate(reader.pages, start=1):
        text = page.extract_text()
        if text and text.strip():
            pages.append(PageText(page=page_num, text=text))
    return pages


def _extract_with_pdfplumber(pdf_path: Path) -> list[PageText]:
    import pdfplumber

    pages = []
    with pdfplumber.open(pdf_path) as pdf:
        for page_num, page in enumerate(pdf.pages, start=1):
            text = page.extract_text()
            if text and text.strip():
                pages.append(PageText(page=page_num, text=text))
    return pages


def get_page_count(pdf_path: Path) -> int:
    """Page count from a metadata-only parse (no text extraction)."""
    from pypdf import PdfReader

    return len(PdfReader(pdf_path).pages)


# =============================================================================
# OVERSIZED PDF GATE
# =============================================================================


def should_split_pdf(pdf_path: Path, pdf_settings: PDFSettings | None = None) -> bool:
    """
    Decide whether a PDF is too large to process in one piece.

    A PDF needs splitting when its size exceeds ``max_size_mb`` OR its page
    count exceeds ``max_pages_per_chunk``. A PDF whose page count cannot be
    read is treated as needing splitting.
    """
    cfg = pdf_settings or settings.pdf

    size_mb = pdf_path.stat().st_size / (1024 * 1024)
    if size_mb > cfg.max_size_mb:
        return True

    try:
        page_count = get_page_count(pdf_path)
    except Exception as e:
        logger.error(f"Error analyzing PDF {pdf_path}: {e}")
        return True

    return page_count > cfg.max_pages_per_chunk


class PageRange(BaseModel):
    """One planned slice of an oversized PDF."""

    path: Path
    start_page: int
    end_page: int
    title: str


class SplitPlan(BaseModel):
    """Planned page-range split of an oversized PDF.

    Only a plan: no split files are written. Oversized documents are still
    indexed whole, with a logged caveat.
    """

    original_path: Path
    chunks: list[PageRange] = []


def plan_page_ranges(page_count: int, pages_per_chunk: int) -> list[tuple[int, int]]:
    """Inclusive 1-based (start, end) page ranges covering the document."""
    if pages_per_chunk < 1:
        raise ValueError("pages_per_chunk must be positive")
    return [
        (start, min(start + pages_per_chunk - 1, page_count))
        for start in range(1, page_count + 1, pages_per_chunk)
    ]


def split_pdf_into_chunks(
    pdf_path: Path,
    output_dir: Path,
    page_count: int | None = None,
    pages_per_chunk: int | None = None,
) -> SplitPlan:
    """Compute page-range split targets for an oversized PDF and log them.

    Returns an empty plan if the page count cannot be determined.
    """
    plan = SplitPlan(original_path=pdf_path)
    per_chunk = pages_per_chunk or settings.pdf.max_pages_per_chunk

    try:
        total = page_count if page_count is not None else get_page_count(pdf_path)
    except Exception as e:
        logger.error(f"Error splitting PDF {pdf_path}: {e}")
        return plan

    split_dir = output_dir / f"{pdf_path.stem}_split"
    for start, end in plan_page_ranges(total, per_chunk):
        chunk_path = split_dir / f"{pdf_path.stem}_{start}-{end}.pdf"
        logger.info(f"Would split {pdf_path} pages {start}-{end} to {chunk_path}")
        plan.chunks.append(
            PageRange(path=chunk_path, start_page=start, end_page=end, title=f"Pages {start}-{end}")
        )
    return plan


# =============================================================================
# LOADING
# =============================================================================


def load_pdf(pdf_path: Path) -> SourceDocument:
    """
    Load a PDF into a ``SourceDocument``.

    Raises only if the file itself cannot be read; parse failures degrade
    to placeholder text.
    """
    pdf_path = pdf_path.resolve()
    data = pdf_path.read_bytes()

    needs_splitting = should_split_pdf(pdf_path)
    if needs_splitting:
        logger.warning(f"Large PDF detected: {pdf_path}. {LARGE_PDF_WARNING}.")

    extraction_error = None
    try:
        pages = extract_pages_from_pdf(pdf_path)
    except Exception as e:
        logger.error(f"Error parsing PDF {pdf_path.name}: {e}")
        extraction_error = str(e)
        pages = [PageText(page=1, text=PLACEHOLDER_TEXT)]

    try:
        page_count = get_page_count(pdf_path)
    except Exception:
        page_count = max(page.page for page in pages)

    return SourceDocument(
        source=str(pdf_path),
        hash=compute_file_hash(data),
        pages=pages,
        page_count=page_count,
        needs_splitting=needs_splitting,
        extraction_error=extraction_error,
    )


# Maps file extensions to their loader functions
LOADERS: dict[str, DocumentLoader] = {
    ".pdf": load_pdf,
}


def get_loader(file_path: Path) -> DocumentLoader:
    """Get the loader for a file based on its extension.

    Raises:
        ValueError: If no loader exists for the file type.
    """
    suffix = file_path.suffix.lower()
    if suffix not in LOADERS:
        supported = ", ".join(LOADERS.keys())
        raise ValueError(f"Unsupported file type: {suffix}. Supported types: {supported}")
    return LOADERS[suffix]


def discover_documents(files_dir: Path) -> list[Path]:
    """All supported files under ``files_dir`` (recursive, sorted)."""
    if not files_dir.exists():
        raise FileNotFoundError(f"Files directory not found: {files_dir}")
    return sorted(
        path for path in files_dir.rglob("*") if path.is_file() and path.suffix.lower() in LOADERS
    )


# =============================================================================
# KEY SECTIONS
# =============================================================================


class PdfSection(BaseModel):
    """A region of a document used for metadata analysis."""

    content: str
    page_number: int
    section_type: str = "full_page"


def extract_key_sections(document: SourceDocument, first_page_only: bool | None = None) -> list[PdfSection]:
    """
    Split a loaded document into page-bounded sections for metadata analysis.

    The first section always comes first: the first page when
    ``first_page_only`` is set, otherwise the whole text (title blocks of
    multi-sheet sets are not always on page 1).
    """
    if first_page_only is None:
        first_page_only = settings.pdf.extract_first_page_only

    if not document.pages:
        return []

    if first_page_only:
        first = document.pages[0]
        sections = [PdfSection(content=first.text, page_number=first.page, section_type="first_page")]
        sections.extend(
            PdfSection(content=page.text, page_number=page.page, section_type="page")
            for page in document.pages[1:]
        )
        return sections

    return [PdfSection(content=document.full_text, page_number=1, section_type="full_page")]
