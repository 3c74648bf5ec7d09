"""Tests for the model-backed metadata extractor and section detection.

The model is always mocked: these tests cover prompt building, response
parsing and the guarantee that failures never escape.
"""

from unittest.mock import MagicMock, patch

from plansearch.rag.ai_metadata import (
    SectionBoundaries,
    build_metadata_prompt,
    detect_logical_sections,
    extract_metadata_with_ai,
    parse_metadata_response,
)
from plansearch.rag.models import AIExtractionFailed, AIExtractionOk

# =============================================================================
# PARSING
# =============================================================================


class TestParseMetadataResponse:
    """Tests for turning raw model output into an extraction outcome."""

    def test_plain_json(self) -> None:
        outcome = parse_metadata_response('{"project": "Lift Station", "discipline": "Structural"}')
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.project == "Lift Station"
        assert outcome.metadata.discipline == "Structural"

    def test_code_fenced_json(self) -> None:
        outcome = parse_metadata_response('```json\n{"phase": "Bid"}\n```')
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.phase == "Bid"

    def test_empty_object_is_ok(self) -> None:
        """'Nothing found' is distinct from a failure."""
        outcome = parse_metadata_response("{}")
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.to_metadata() == {}

    def test_empty_text_is_ok(self) -> None:
        assert isinstance(parse_metadata_response("   "), AIExtractionOk)

    def test_invalid_json_fails(self) -> None:
        outcome = parse_metadata_response("The project is Lift Station.")
        assert isinstance(outcome, AIExtractionFailed)
        assert "invalid JSON" in outcome.reason
        assert outcome.raw_output == "The project is Lift Station."
        assert outcome.metadata.to_metadata() == {}

    def test_non_object_fails(self) -> None:
        outcome = parse_metadata_response('["Structural"]')
        assert isinstance(outcome, AIExtractionFailed)

    def test_non_scalar_values_dropped(self) -> None:
        outcome = parse_metadata_response(
            '{"project": ["A", "B"], "discipline": {"name": "Civil"}, "phase": true, "revision": 3}'
        )
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.to_metadata() == {"revision": "3"}

    def test_unknown_keys_ignored(self) -> None:
        outcome = parse_metadata_response('{"revision": "B", "confidence": 0.9, "buildingArea": "7"}')
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.to_metadata() == {"revision": "B"}

    def test_null_and_blank_values_dropped(self) -> None:
        outcome = parse_metadata_response('{"project": null, "phase": "", "discipline": " Civil "}')
        assert outcome.metadata.to_metadata() == {"discipline": "Civil"}


# =============================================================================
# EXTRACTION
# =============================================================================


class TestExtractMetadataWithAI:
    """Tests for the best-effort extraction call."""

    def test_prompt_truncated(self) -> None:
        prompt = build_metadata_prompt("x" * 5000, max_chars=100)
        assert "x" * 100 in prompt
        assert "x" * 101 not in prompt
        assert "JSON" in prompt

    def test_success(self) -> None:
        outcome = extract_metadata_with_ai("title", lambda prompt: '{"drawingNumber": "S-101"}')
        assert isinstance(outcome, AIExtractionOk)
        assert outcome.metadata.drawingNumber == "S-101"

    def test_model_error_becomes_failure(self) -> None:
        def generate(prompt: str) -> str:
            raise TimeoutError("request timed out")

        outcome = extract_metadata_with_ai("title", generate)

        assert isinstance(outcome, AIExtractionFailed)
        assert "timed out" in outcome.reason

    def test_failure_is_logged(self) -> None:
        with patch("plansearch.rag.ai_metadata.logger") as mock_logger:
            extract_metadata_with_ai("title", lambda prompt: "not json")
        mock_logger.warning.assert_called_once()

    def test_single_attempt(self) -> None:
        """No retry on failure."""
        generate = MagicMock(return_value="not json")
        extract_metadata_with_ai("title", generate)
        assert generate.call_count == 1


# =============================================================================
# SECTION DETECTION
# =============================================================================


class TestDetectLogicalSections:
    """Tests for AI section boundary detection."""

    def _mock_client(self, start_pages: list[int]) -> MagicMock:
        client = MagicMock()
        client.chat.completions.create.return_value = SectionBoundaries(start_pages=start_pages)
        return client

    def test_returns_sorted_pages_starting_at_one(self) -> None:
        client = self._mock_client([12, 5])
        with patch("plansearch.rag.ai_metadata.get_llm_client", return_value=client):
            assert detect_logical_sections("text", page_count=20) == [1, 5, 12]

    def test_out_of_range_pages_dropped(self) -> None:
        client = self._mock_client([0, 30, 4])
        with patch("plansearch.rag.ai_metadata.get_llm_client", return_value=client):
            assert detect_logical_sections("text", page_count=20) == [1, 4]

    def test_no_valid_pages_falls_back(self) -> None:
        client = self._mock_client([99])
        with patch("plansearch.rag.ai_metadata.get_llm_client", return_value=client):
            assert detect_logical_sections("text", page_count=20) == [1]

    def test_model_error_falls_back(self) -> None:
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("boom")
        with patch("plansearch.rag.ai_metadata.get_llm_client", return_value=client):
            assert detect_logical_sections("text", page_count=20) == [1]

    def test_requests_structured_output(self) -> None:
        client = self._mock_client([1])
        with patch("plansearch.rag.ai_metadata.get_llm_client", return_value=client):
            detect_logical_sections("text", page_count=3)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_model"] is SectionBoundaries
        assert kwargs["max_retries"] == 0
