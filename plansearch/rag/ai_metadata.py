"""Model-backed metadata extraction.

The highest-priority metadata source: a prompted model reads the first
section of a document (first page or title-block region) and answers with a
JSON object. This extractor is best effort. It never blocks indexing: every
failure becomes an ``AIExtractionFailed`` outcome that contributes nothing
to the merge, while keeping "the model said nothing" (an empty
``AIExtractionOk``) distinguishable from "the model said something
unparseable".
"""

import json
import logging
import re

from pydantic import BaseModel, Field, ValidationError

from plansearch.core.config import settings
from plansearch.llm.client import TextGenerator, get_llm_client
from plansearch.llm.tracing import observe
from plansearch.rag.models import AIExtractionFailed, AIExtractionOk, AIExtractionResult
from plansearch.rag.schema import DocumentMetadata

logger = logging.getLogger(__name__)

# Keys the model is asked to return
AI_METADATA_KEYS: tuple[str, ...] = (
    "project",
    "discipline",
    "drawingType",
    "phase",
    "drawingNumber",
    "revision",
)

METADATA_PROMPT = """Extract metadata from this construction document.

Document content:
{content}

Please identify the following information:
- Project Name
- Discipline (Structural, Architectural, Civil, Electrical, Mechanical, etc.)
- Drawing Type (Plan, Elevation, Section, Detail, Schedule, etc.)
- Phase (Schematic Design, Design Development, Construction Documents, Bid, etc.)
- Drawing/Document Number
- Revision information

Return the information as a JSON object with these keys:
project, discipline, drawingType, phase, drawingNumber, revision

Only include fields where you have high confidence. If you cannot determine a field, omit it.
Return ONLY the JSON object."""

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def build_metadata_prompt(section_text: str, max_chars: int | None = None) -> str:
    """Fill the extraction prompt with the truncated first section."""
    limit = max_chars or settings.metadata.max_metadata_chars
    return METADATA_PROMPT.format(content=section_text[:limit])


def parse_metadata_response(raw: str) -> AIExtractionResult:
    """
    Parse the model's raw answer into an extraction outcome.

    Markdown code fences around the JSON are tolerated. Anything that is
    not a JSON object is a failure. Unknown keys and non-scalar values
    (lists, objects, booleans) are ignored.
    """
    text = raw.strip()
    fenced = _CODE_FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    if not text:
        return AIExtractionOk()

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        return AIExtractionFailed(reason=f"invalid JSON: {e}", raw_output=raw)

    if not isinstance(data, dict):
        return AIExtractionFailed(
            reason=f"expected a JSON object, got {type(data).__name__}", raw_output=raw
        )

    fields: dict[str, str | int | float] = {}
    for key in AI_METADATA_KEYS:
        value = data.get(key)
        if value is None or value == "":
            continue
        if isinstance(value, bool) or not isinstance(value, str | int | float):
            logger.debug(f"Ignoring non-scalar AI metadata value for {key}: {value!r}")
            continue
        fields[key] = value

    try:
        return AIExtractionOk(metadata=DocumentMetadata(**fields))
    except ValidationError as e:
        return AIExtractionFailed(reason=f"invalid field values: {e}", raw_output=raw)


@observe(name="extract_metadata_with_ai")
def extract_metadata_with_ai(
    section_text: str,
    generate: TextGenerator,
    max_chars: int | None = None,
) -> AIExtractionResult:
    """
    Ask the model for document metadata. Never raises.

    Args:
        section_text: First extracted section of the document.
        generate: Text generation function (prompt -> completion).
        max_chars: Truncation budget (default ``settings.metadata.max_metadata_chars``).

    Returns:
        AIExtractionOk with the parsed fields, or AIExtractionFailed with
        the reason. No retry is attempted.
    """
    prompt = build_metadata_prompt(section_text, max_chars)

    try:
        raw = generate(prompt)
    except Exception as e:
        logger.warning(f"AI metadata extraction call failed: {e}")
        return AIExtractionFailed(reason=f"model call failed: {e}")

    outcome = parse_metadata_response(raw)
    if isinstance(outcome, AIExtractionFailed):
        logger.warning(f"Failed to parse AI metadata extraction result: {outcome.reason}")
    return outcome


# =============================================================================
# SECTION DETECTION
# =============================================================================


class SectionBoundaries(BaseModel):
    """Structured answer for logical section detection."""

    start_pages: list[int] = Field(
        description="1-based page numbers where major new sections begin, ascending"
    )


SECTION_PROMPT = """You are analyzing a construction document that appears to be divided into sections.
Identify the page numbers where major new sections begin.

Document info:
- Total pages: {page_count}
- Sample content:

{sample}"""


@observe(name="detect_logical_sections")
def detect_logical_sections(text: str, page_count: int, max_chars: int | None = None) -> list[int]:
    """
    Ask the section-detection model where logical sections start.

    Used only to plan splits of oversized PDFs. Falls back to ``[1]`` (one
    section) on any failure or on answers outside the document's pages.
    """
    sample = text[: max_chars or settings.metadata.max_metadata_chars]
    try:
        answer = get_llm_client().chat.completions.create(
            model=settings.llm.metadata_model,
            messages=[
                {
                    "role": "user",
                    "content": SECTION_PROMPT.format(page_count=page_count, sample=sample),
                }
            ],
            response_model=SectionBoundaries,
            max_retries=0,
            temperature=0.0,
        )
    except Exception as e:
        logger.warning(f"Section detection failed, using default splitting: {e}")
        return [1]

    pages = sorted({page for page in answer.start_pages if 1 <= page <= page_count})
    if not pages:
        logger.warning("AI returned invalid section boundaries, using default splitting")
        return [1]
    if pages[0] != 1:
        pages.insert(0, 1)
    return pages
