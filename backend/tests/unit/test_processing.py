"""
Unit Tests: processing helpers
══════════════════════════════
Confidence heuristic, OCR text shaping and upload validation. Pure
functions, no I/O.
"""

from __future__ import annotations

import pytest

from compliance.core.exceptions import ValidationError
from compliance.processing.confidence import artifact_freedom, length_adequacy, score_confidence
from compliance.processing.text import clean_page_text, format_ocr_text, raw_ocr_text, summarize_for_search
from compliance.processing.validation import (
    DOCX_TYPE,
    PDF_TYPE,
    PNG_TYPE,
    TEXT_TYPE,
    detect_media_type,
    sanitize_filename,
    secure_filename,
    validate_upload,
)
from tests.conftest import make_ocr_result

MB = 1024 * 1024


@pytest.mark.unit
class TestConfidence:

    def test_clean_structured_text_scores_high(self):
        text = ("Operators shall retain records for seven years.\n" * 3)[:150]

        assert score_confidence(text, page_count=1) == pytest.approx(0.98)

    def test_empty_text_scores_structure_and_artifact_terms_only(self):
        # 0.5 * 0 + 0.3 * 1 + 0.2 * 0.5
        assert score_confidence("", page_count=1) == pytest.approx(0.4)

    def test_garbage_scores_lower_than_clean_text(self):
        clean   = "Article 5 requires annual reporting to the regulator.\nSee annex II."
        garbage = "Art#$%&@ 5 req\x01\x02\x03 1234567890123456789012345 ~~~^^^"

        assert score_confidence(garbage, 1) < score_confidence(clean, 1)

    def test_score_is_always_within_bounds(self):
        for text in ("", "x", "@@@@@@@@", "a\n" * 5000):
            score = score_confidence(text, page_count=3)
            assert 0.1 <= score <= 1.0

    def test_length_adequacy_scales_with_pages(self):
        text = "a" * 100
        assert length_adequacy(text, 1) == 1.0
        assert length_adequacy(text, 4) == pytest.approx(0.25)

    def test_whitespace_control_chars_are_not_artifacts(self):
        assert artifact_freedom("line one\r\n\tline two\n") == 1.0


@pytest.mark.unit
class TestOCRText:

    def test_format_adds_page_headers_and_strips_images(self):
        result = make_ocr_result("Intro  text\n![img-0.jpeg](img-0.jpeg)", "Second page")

        assert format_ocr_text(result) == "--- Page 1 ---\nIntro text\n\n--- Page 2 ---\nSecond page"

    def test_raw_text_skips_blank_pages(self):
        result = make_ocr_result("One", "   ", "Three")

        assert raw_ocr_text(result) == "One\n\nThree"

    def test_clean_collapses_blank_lines(self):
        assert clean_page_text("a\n\n\n\n b ") == "a\n\nb"

    def test_summary_is_normalised_prefix(self):
        text = "word\n\n  " * 200

        summary = summarize_for_search(text, limit=500)

        assert "\n" not in summary
        assert "  " not in summary
        assert len(summary) <= 500


@pytest.mark.unit
class TestUploadValidation:

    def test_detects_pdf_from_magic_bytes(self, sample_pdf_bytes):
        assert validate_upload("report.pdf", sample_pdf_bytes, 10 * MB) == PDF_TYPE

    def test_client_extension_does_not_decide_type(self, sample_pdf_bytes):
        assert detect_media_type("scan.png", sample_pdf_bytes) == PDF_TYPE

    def test_png_and_docx(self):
        assert detect_media_type("x.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 16) == PNG_TYPE
        assert detect_media_type("x.docx", b"PK\x03\x04" + b"\x00" * 16) == DOCX_TYPE
        assert detect_media_type("x.zip", b"PK\x03\x04" + b"\x00" * 16) is None

    def test_text_requires_txt_name(self, sample_txt_bytes):
        assert detect_media_type("notes.txt", sample_txt_bytes) == TEXT_TYPE
        assert detect_media_type("notes.csv", sample_txt_bytes) is None

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            validate_upload("a.pdf", b"", 10 * MB)

    def test_oversized_file_rejected(self, sample_pdf_bytes):
        with pytest.raises(ValidationError, match="maximum size"):
            validate_upload("a.pdf", sample_pdf_bytes + b"x" * MB, MB)

    def test_executable_header_rejected(self, exe_bytes):
        with pytest.raises(ValidationError, match="malicious"):
            validate_upload("invoice.pdf", exe_bytes, 10 * MB)

    @pytest.mark.parametrize("name", ["run.exe", "deploy.sh", "x.PHP", "macro.vbs"])
    def test_dangerous_extension_rejected(self, name, sample_txt_bytes):
        with pytest.raises(ValidationError):
            validate_upload(name, sample_txt_bytes, 10 * MB)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported"):
            validate_upload("data.bin", b"\x01\x02\x03\x04binary", 10 * MB)

    def test_sanitize_strips_path_traversal(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("C:\\Users\\me\\my file.pdf") == "my_file.pdf"

    def test_secure_filename_shape(self):
        name = secure_filename("../Quarterly Report.PDF")
        stamp, rest = name.split("-", 1)

        assert stamp.isdigit()
        assert rest.endswith(".pdf")
        assert len(rest) == 32 + len(".pdf")
