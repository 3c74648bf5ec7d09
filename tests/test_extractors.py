"""Tests for the extractors module.

Unit tests use mocked PDF libraries to test extraction logic without real PDFs.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from plansearch.core.config import PDFSettings
from plansearch.rag.extractors import (
    LOADERS,
    PLACEHOLDER_TEXT,
    compute_file_hash,
    discover_documents,
    extract_key_sections,
    extract_pages_from_pdf,
    get_loader,
    load_pdf,
    plan_page_ranges,
    should_split_pdf,
    split_pdf_into_chunks,
)
from plansearch.rag.models import PageText, SourceDocument

# =============================================================================
# TEST FIXTURES
# =============================================================================


def create_mock_pypdf_reader(pages: list[str | None]) -> MagicMock:
    """Create a mock PdfReader with the given page texts."""
    mock_reader = MagicMock()
    mock_pages = []
    for text in pages:
        mock_page = MagicMock()
        mock_page.extract_text.return_value = text
        mock_pages.append(mock_page)
    mock_reader.pages = mock_pages
    return mock_reader


def create_mock_pdfplumber_pdf(pages: list[str]) -> MagicMock:
    """Create a mock pdfplumber PDF with the given page texts."""
    mock_pdf = create_mock_pypdf_reader(pages)
    mock_pdf.__enter__ = MagicMock(return_value=mock_pdf)
    mock_pdf.__exit__ = MagicMock(return_value=False)
    return mock_pdf


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "S-46-150.pdf"
    path.write_bytes(b"%PDF-1.4 fake")
    return path


# =============================================================================
# UNIT TESTS - Hashing
# =============================================================================


class TestComputeFileHash:
    """Tests for the catalog dedup key."""

    def test_known_digest(self) -> None:
        assert (
            compute_file_hash(b"abc")
            == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_lowercase_hex(self) -> None:
        digest = compute_file_hash(b"PROJECT: Lift Station")
        assert len(digest) == 64
        assert digest == digest.lower()


# =============================================================================
# UNIT TESTS - Page Extraction
# =============================================================================


class TestExtractPagesFromPdf:
    """Tests for pypdf extraction with pdfplumber fallback."""

    def test_pages_numbered_from_one(self, pdf_file: Path) -> None:
        reader = create_mock_pypdf_reader(["Sheet one", None, "Sheet three"])
        with patch("pypdf.PdfReader", return_value=reader):
            pages = extract_pages_from_pdf(pdf_file)

        assert pages == [PageText(page=1, text="Sheet one"), PageText(page=3, text="Sheet three")]

    def test_falls_back_to_pdfplumber_on_empty_text(self, pdf_file: Path) -> None:
        reader = create_mock_pypdf_reader(["", "   "])
        plumber = create_mock_pdfplumber_pdf(["Recovered text"])
        with (
            patch("pypdf.PdfReader", return_value=reader),
            patch("pdfplumber.open", return_value=plumber),
        ):
            pages = extract_pages_from_pdf(pdf_file)

        assert pages == [PageText(page=1, text="Recovered text")]

    def test_falls_back_to_pdfplumber_on_error(self, pdf_file: Path) -> None:
        plumber = create_mock_pdfplumber_pdf(["Recovered text"])
        with (
            patch("pypdf.PdfReader", side_effect=RuntimeError("bad xref")),
            patch("pdfplumber.open", return_value=plumber),
        ):
            pages = extract_pages_from_pdf(pdf_file)

        assert pages[0].text == "Recovered text"

    def test_both_fail_raises_value_error(self, pdf_file: Path) -> None:
        with (
            patch("pypdf.PdfReader", side_effect=RuntimeError("bad xref")),
            patch("pdfplumber.open", side_effect=RuntimeError("also bad")),
            pytest.raises(ValueError),
        ):
            extract_pages_from_pdf(pdf_file)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            extract_pages_from_pdf(tmp_path / "missing.pdf")


# =============================================================================
# UNIT TESTS - Oversized PDF Gate
# =============================================================================


class TestShouldSplitPdf:
    """Tests for the size OR page-count gate."""

    def test_small_pdf_not_split(self, pdf_file: Path) -> None:
        with patch("plansearch.rag.extractors.get_page_count", return_value=3):
            assert should_split_pdf(pdf_file, PDFSettings()) is False

    def test_too_many_pages(self, pdf_file: Path) -> None:
        with patch("plansearch.rag.extractors.get_page_count", return_value=21):
            assert should_split_pdf(pdf_file, PDFSettings(max_pages_per_chunk=20)) is True

    def test_too_large(self, pdf_file: Path) -> None:
        with patch("plansearch.rag.extractors.get_page_count") as mock_count:
            assert should_split_pdf(pdf_file, PDFSettings(max_size_mb=0.000001)) is True
        mock_count.assert_not_called()

    def test_unreadable_page_count_means_split(self, pdf_file: Path) -> None:
        with patch("plansearch.rag.extractors.get_page_count", side_effect=RuntimeError("corrupt")):
            assert should_split_pdf(pdf_file, PDFSettings()) is True


class TestSplitPlanning:
    """Tests for page-range planning (no files are written)."""

    def test_ranges_cover_document(self) -> None:
        assert plan_page_ranges(45, 20) == [(1, 20), (21, 40), (41, 45)]

    def test_single_range(self) -> None:
        assert plan_page_ranges(5, 20) == [(1, 5)]

    def test_invalid_chunk_size(self) -> None:
        with pytest.raises(ValueError):
            plan_page_ranges(5, 0)

    def test_split_has_no_side_effects(self, pdf_file: Path, tmp_path: Path) -> None:
        output_dir = tmp_path / "temp"
        plan = split_pdf_into_chunks(pdf_file, output_dir, page_count=30, pages_per_chunk=20)

        assert [(r.start_page, r.end_page) for r in plan.chunks] == [(1, 20), (21, 30)]
        assert plan.chunks[0].path.name == "S-46-150_1-20.pdf"
        assert not output_dir.exists()

    def test_unknown_page_count_gives_empty_plan(self, pdf_file: Path, tmp_path: Path) -> None:
        with patch("plansearch.rag.extractors.get_page_count", side_effect=RuntimeError("corrupt")):
            plan = split_pdf_into_chunks(pdf_file, tmp_path)
        assert plan.chunks == []


# =============================================================================
# UNIT TESTS - Loading
# =============================================================================


class TestLoadPdf:
    """Tests for turning a file into a SourceDocument."""

    def test_loads_pages_and_hash(self, pdf_file: Path) -> None:
        with (
            patch("plansearch.rag.extractors.should_split_pdf", return_value=False),
            patch(
                "plansearch.rag.extractors.extract_pages_from_pdf",
                return_value=[PageText(page=1, text="PROJECT: Lift Station")],
            ),
            patch("plansearch.rag.extractors.get_page_count", return_value=1),
        ):
            document = load_pdf(pdf_file)

        assert document.source == str(pdf_file.resolve())
        assert document.hash == compute_file_hash(pdf_file.read_bytes())
        assert document.page_count == 1
        assert document.extraction_error is None

    def test_parse_failure_uses_placeholder(self, pdf_file: Path) -> None:
        """A corrupt PDF still yields a document, with placeholder text."""
        with (
            patch("plansearch.rag.extractors.should_split_pdf", return_value=False),
            patch(
                "plansearch.rag.extractors.extract_pages_from_pdf",
                side_effect=ValueError("no text"),
            ),
            patch("plansearch.rag.extractors.get_page_count", side_effect=RuntimeError("corrupt")),
        ):
            document = load_pdf(pdf_file)

        assert document.pages == [PageText(page=1, text=PLACEHOLDER_TEXT)]
        assert document.page_count == 1
        assert document.extraction_error == "no text"

    def test_oversized_flagged(self, pdf_file: Path) -> None:
        with (
            patch("plansearch.rag.extractors.should_split_pdf", return_value=True),
            patch(
                "plansearch.rag.extractors.extract_pages_from_pdf",
                return_value=[PageText(page=1, text="x")],
            ),
            patch("plansearch.rag.extractors.get_page_count", return_value=40),
        ):
            document = load_pdf(pdf_file)

        assert document.needs_splitting is True


class TestLoaderRegistry:
    """Tests for the loader registry and document discovery."""

    def test_pdf_loader_registered(self) -> None:
        assert get_loader(Path("a.PDF")) is LOADERS[".pdf"]

    def test_unsupported_type(self) -> None:
        with pytest.raises(ValueError, match="Unsupported file type"):
            get_loader(Path("notes.docx"))

    def test_discovers_recursively_and_sorted(self, tmp_path: Path) -> None:
        (tmp_path / "Drawings").mkdir()
        (tmp_path / "TextDocs").mkdir()
        (tmp_path / "TextDocs" / "Division 03.pdf").write_text("x")
        (tmp_path / "Drawings" / "S-1-101.pdf").write_text("x")
        (tmp_path / "Drawings" / "notes.txt").write_text("x")

        found = discover_documents(tmp_path)

        assert [p.name for p in found] == ["S-1-101.pdf", "Division 03.pdf"]

    def test_missing_dir(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            discover_documents(tmp_path / "missing")


# =============================================================================
# UNIT TESTS - Key Sections
# =============================================================================


class TestExtractKeySections:
    """Tests for choosing the metadata section of a document."""

    @pytest.fixture
    def document(self) -> SourceDocument:
        return SourceDocument(
            source="/docs/S-1-101.pdf",
            hash="0" * 64,
            pages=[PageText(page=1, text="TITLE BLOCK"), PageText(page=2, text="NOTES")],
            page_count=2,
        )

    def test_full_text_by_default(self, document: SourceDocument) -> None:
        sections = extract_key_sections(document, first_page_only=False)
        assert len(sections) == 1
        assert sections[0].content == "TITLE BLOCK NOTES"

    def test_first_page_only(self, document: SourceDocument) -> None:
        sections = extract_key_sections(document, first_page_only=True)
        assert sections[0].content == "TITLE BLOCK"
        assert sections[0].section_type == "first_page"
        assert [s.page_number for s in sections] == [1, 2]

    def test_empty_document(self) -> None:
        empty = SourceDocument(source="/docs/x.pdf", hash="0" * 64)
        assert extract_key_sections(empty) == []
