"""Layered metadata extraction for construction documents.

Three sources describe the same fields, in increasing priority:

1. Content: regex rules over the extracted text (title-block labels).
   Weakest signal; keyword matches produce false positives.
2. Path: folder taxonomy and drawing-number conventions
   (``Drawings/S-46-1001.pdf`` -> Structural, area 46, sheet 1001).
3. AI: a prompted model reading the document's first section.

``merge_metadata`` folds them left to right so AI wins every conflict and
the path fills whatever the content extractor missed.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from plansearch.core.config import MetadataSettings, settings
from plansearch.llm.client import TextGenerator
from plansearch.rag.ai_metadata import extract_metadata_with_ai
from plansearch.rag.schema import DocumentMetadata, DocumentType

logger = logging.getLogger(__name__)

# =============================================================================
# PATH-BASED EXTRACTION
# =============================================================================

# First letter of a drawing number -> discipline
DISCIPLINE_CODES: dict[str, str] = {
    "S": "Structural",
    "C": "Civil",
    "A": "Architectural",
    "M": "Mechanical",
    "E": "Electrical",
    "P": "Plumbing",
    "L": "Landscape",
    "G": "General",
    "D": "Demolition",
    "F": "Fire Protection",
    "T": "Telecommunications",
    "I": "Interiors",
}

# Inclusive sheet-number bands -> drawing type
SHEET_NUMBER_BANDS: list[tuple[int, int, str]] = [
    (1, 99, "General"),
    (100, 199, "Plans"),
    (200, 299, "Elevations"),
    (300, 399, "Sections"),
    (400, 499, "Details"),
    (500, 599, "Schedules"),
    (600, 699, "Diagrams"),
]

# CSI MasterFormat division bands -> discipline. Division 9 comes first so
# it is not swallowed by the 1-14 range.
CSI_DIVISION_BANDS: list[tuple[int, int, str]] = [
    (9, 9, "Finishes"),
    (1, 14, "Architectural"),
    (21, 23, "Mechanical"),
    (25, 28, "Electrical"),
    (31, 35, "Civil"),
]

PROJECT_FOLDER_NAMES = {"projects", "project"}

_DIVISION_RE = re.compile(r"^Division\s+(\d+)", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^\d+")


def get_specification_discipline(division_number: str | int) -> str:
    """Map a CSI MasterFormat division number to a discipline."""
    try:
        division = int(division_number)
    except (TypeError, ValueError):
        return "General"

    for low, high, discipline in CSI_DIVISION_BANDS:
        if low <= division <= high:
            return discipline
    return "General"


def drawing_type_for_sheet(sheet_segment: str) -> str | None:
    """Drawing type from the leading numeric value of a sheet segment.

    Out-of-band or non-numeric segments return None.
    """
    match = _LEADING_NUMBER_RE.match(sheet_segment.strip())
    if not match:
        return None
    sheet_num = int(match.group())
    for low, high, drawing_type in SHEET_NUMBER_BANDS:
        if low <= sheet_num <= high:
            return drawing_type
    return None


def _project_from_parts(parts: list[str], root_folder_name: str) -> str | None:
    """Segment following the first ``projects``/``project`` directory.

    Scanning stops at the application's own root folder, which is never a
    project name.
    """
    root_folder = root_folder_name.lower()
    for index, part in enumerate(parts[:-1]):
        lowered = part.lower()
        if lowered == root_folder:
            return None
        if lowered in PROJECT_FOLDER_NAMES:
            return parts[index + 1]
    return None


def extract_metadata_from_path(
    file_path: str,
    metadata_settings: MetadataSettings | None = None,
    use_default_project: bool = True,
) -> DocumentMetadata:
    """
    Derive metadata from a document's location and filename.

    Pure string parsing, no I/O. Expected layout::

        .../InputDocs/Drawings/S-46-1001.pdf
        .../InputDocs/TextDocs/Division 03 - Concrete.pdf
        .../Projects/<project name>/...

    Args:
        file_path: Path of the document (either separator style).
        metadata_settings: Overrides for the default project and root folder.
        use_default_project: Fill ``project`` with the configured fallback
            when the path names none.

    Returns:
        DocumentMetadata with whatever the path reveals.
    """
    cfg = metadata_settings or settings.metadata

    normalized = file_path.replace("\\", "/")
    parts = [part for part in normalized.split("/") if part]
    path = PurePosixPath(normalized)
    filename = path.name
    drawing_number = path.stem

    fields: dict[str, str | None] = {"drawingNumber": drawing_number}

    if "Drawings" in parts[:-1]:
        fields["documentType"] = DocumentType.DRAWING.value
    elif "TextDocs" in parts[:-1]:
        fields["documentType"] = DocumentType.TEXT_DOC.value
        division = _DIVISION_RE.match(filename)
        if filename.startswith("Division"):
            fields["documentType"] = DocumentType.SPECIFICATION.value
            if division:
                fields["discipline"] = get_specification_discipline(division.group(1))

    project = _project_from_parts(parts, cfg.root_folder_name)
    if project:
        fields["project"] = project
    elif use_default_project:
        fields["project"] = cfg.default_project

    if drawing_number and fields.get("documentType") == DocumentType.DRAWING.value:
        code = drawing_number[0].upper()
        fields["discipline"] = DISCIPLINE_CODES.get(code, fields.get("discipline"))

        segments = drawing_number.split("-")
        if len(segments) > 1 and segments[1]:
            fields["buildingArea"] = segments[1]
        if len(segments) > 2 and segments[2]:
            fields["sheetNumber"] = segments[2]
            fields["drawingType"] = drawing_type_for_sheet(segments[2])

    return DocumentMetadata(**fields)


# =============================================================================
# CONTENT-BASED EXTRACTION
# =============================================================================


@dataclass(frozen=True)
class ContentRule:
    """A title-block pattern that fills one metadata field.

    Rules for a field are tried in table order; the first match wins.
    """

    field: str
    pattern: re.Pattern[str]
    group: int = 1
    only_if_unset: bool = False


def _rule(field: str, pattern: str, group: int = 1, only_if_unset: bool = False) -> ContentRule:
    return ContentRule(field, re.compile(pattern, re.IGNORECASE), group, only_if_unset)


CONTENT_RULES: list[ContentRule] = [
    # Project name from the title block
    _rule("project", r"PROJECT\s+NAME:?[ \t]*(.*?)(?:\n|$)"),
    _rule("project", r"PROJ(?:\.|ECT)?\s+TITLE:?[ \t]*(.*?)(?:\n|$)"),
    _rule("project", r"PROJECT:[ \t]*(.*?)(?:\n|$)"),
    # Issue phase
    _rule("phase", r"\bPHASE:[ \t]*(.*?)(?:\n|$)"),
    _rule("phase", r"ISSUED\s+FOR\s+(.*?)(?:\n|$)"),
    _rule("phase", r"\bSTATUS:[ \t]*(.*?)(?:\n|$)"),
    # Revision
    _rule("revision", r"\bREV(?:ISION)?:\s*([A-Z0-9]+)"),
    _rule("revision", r"\bREV\.\s*([A-Z0-9]+)"),
    # Discipline
    _rule("discipline", r"\bDISCIPLINE:[ \t]*(.*?)(?:\n|$)", only_if_unset=True),
    _rule(
        "discipline",
        r"\b(STRUCTURAL|ARCHITECTURAL|MECHANICAL|ELECTRICAL|CIVIL|PLUMBING)\s+DRAWINGS?\b",
        only_if_unset=True,
    ),
    # Drawing type keyword
    _rule("drawingType", r"\b(PLAN|ELEVATION|SECTION|DETAIL|SCHEDULE|DIAGRAM)\b"),
    # Drawing number
    _rule("drawingNumber", r"DWG\.?\s*NO\.?:?\s*([A-Z0-9][A-Z0-9\-.]*)"),
    _rule("drawingNumber", r"DRAWING\s+NUMBER:?\s*([A-Z0-9][A-Z0-9\-.]*)"),
]


def extract_metadata_from_content(
    content: str,
    rules: list[ContentRule] | None = None,
) -> DocumentMetadata:
    """
    Extract title-block fields from document text.

    Args:
        content: Raw extracted text.
        rules: Rule table (default ``CONTENT_RULES``).

    Returns:
        DocumentMetadata with the first non-empty match per field.
    """
    found: dict[str, str] = {}

    for rule in rules if rules is not None else CONTENT_RULES:
        if rule.field in found:
            continue
        try:
            match = rule.pattern.search(content)
        except Exception:
            logger.warning(f"Content rule for {rule.field} failed", exc_info=True)
            continue
        if not match:
            continue
        value = (match.group(rule.group) or "").strip()
        if value:
            found[rule.field] = value

    return DocumentMetadata(**found)


# =============================================================================
# MERGE
# =============================================================================


def merge_metadata(*sources: DocumentMetadata) -> DocumentMetadata:
    """
    Merge metadata sources given lowest to highest priority.

    Later sources overwrite earlier ones, but only with set values, so a
    missing field never erases what a weaker source found.
    """
    merged: dict[str, str] = {}
    for source in sources:
        for key, value in source.to_metadata().items():
            if value:
                merged[key] = value
    return DocumentMetadata(**merged)


def extract_metadata(
    file_path: str,
    content: str | None,
    first_section: str | None,
    generate: TextGenerator | None = None,
) -> DocumentMetadata:
    """
    Run all extractors for one document and merge them.

    Order: content -> path -> AI. The configured fallback project sits below
    all three, so a title-block project name beats the fallback but not a
    ``Projects/<name>`` folder. The AI extractor only runs for PDFs when a
    generator is supplied and AI extraction is enabled; its failures are
    logged and contribute nothing.
    """
    defaults = DocumentMetadata(project=settings.metadata.default_project)
    path_metadata = extract_metadata_from_path(file_path, use_default_project=False)
    logger.debug(f"Path metadata for {file_path}: {path_metadata.to_metadata()}")

    content_metadata = DocumentMetadata()
    if content:
        content_metadata = extract_metadata_from_content(content)
        logger.debug(f"Content metadata for {file_path}: {content_metadata.to_metadata()}")

    ai_metadata = DocumentMetadata()
    if (
        generate is not None
        and first_section
        and settings.metadata.enable_ai_extraction
        and file_path.lower().endswith(".pdf")
    ):
        outcome = extract_metadata_with_ai(first_section, generate)
        ai_metadata = outcome.metadata
        logger.debug(f"AI metadata for {file_path} ({outcome.status}): {ai_metadata.to_metadata()}")

    merged = merge_metadata(defaults, content_metadata, path_metadata, ai_metadata)
    logger.info(f"Merged metadata for {file_path}: {merged.to_metadata()}")
    return merged
