import pytest

from conftest import FakeTextExtractor, make_ocr, make_pipeline
from docqa.config import Settings
from docqa.ingest.models import DocumentSource


def test_defaults_match_ingestion_policy(monkeypatch) -> None:
    for name in ("DOCQA_MAX_OCR_PAGES", "DOCQA_MIN_VIABLE_CHARS", "DOCQA_PDF_BACKEND", "OCR_LANG"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.max_ocr_pages == 10
    assert settings.min_viable_chars == 50
    assert settings.min_camera_chars == 30
    assert settings.pdf_backend == "pypdf2"
    assert settings.ocr_language == "eng"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("DOCQA_MAX_OCR_PAGES", "3")
    monkeypatch.setenv("DOCQA_RENDER_SCALE", "1.5")
    monkeypatch.setenv("DOCQA_PDF_BACKEND", " PdfMiner ")
    monkeypatch.setenv("OCR_LANG", "deu")

    settings = Settings.from_env()

    assert settings.max_ocr_pages == 3
    assert settings.render_scale == 1.5
    assert settings.pdf_backend == "pdfminer"
    assert settings.ocr_language == "deu"


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DOCQA_TOP_K", "many")
    monkeypatch.setenv("DOCQA_RENDER_TIMEOUT", "soon")
    monkeypatch.setenv("OCR_LANG", "   ")

    settings = Settings.from_env()

    assert settings.top_k == 4
    assert settings.render_timeout == 10.0
    assert settings.ocr_language == "eng"


def test_overlap_larger_than_chunk_is_corrected(monkeypatch) -> None:
    monkeypatch.setenv("DOCQA_MAX_CHUNK_CHARS", "200")
    monkeypatch.setenv("DOCQA_OVERLAP_CHARS", "500")

    settings = Settings.from_env()

    assert settings.max_chunk_chars == 200
    assert settings.overlap_chars == 20


def test_out_of_range_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DOCQA_MAX_OCR_PAGES", "-1")
    monkeypatch.setenv("DOCQA_MAX_CHUNK_CHARS", "0")
    monkeypatch.setenv("DOCQA_TOP_K", "0")
    monkeypatch.setenv("DOCQA_RENDER_SCALE", "-2")
    monkeypatch.setenv("DOCQA_MIN_CAMERA_CHARS", "-5")

    settings = Settings.from_env()

    assert settings.max_ocr_pages == 10
    assert settings.max_chunk_chars == 1000
    assert settings.top_k == 4
    assert settings.render_scale == 2.0
    assert settings.min_camera_chars == 30


def test_direct_construction_is_validated_too() -> None:
    settings = Settings(max_context_chars=-1, render_timeout=0, min_viable_chars=0)

    assert settings.max_context_chars == 3000
    assert settings.render_timeout == 10.0
    assert settings.min_viable_chars == 0


@pytest.mark.anyio
async def test_negative_page_cap_does_not_break_ingestion(monkeypatch) -> None:
    monkeypatch.setenv("DOCQA_MAX_OCR_PAGES", "-1")
    monkeypatch.setenv("DOCQA_MAX_CHUNK_CHARS", "0")
    pipeline = make_pipeline(
        text_extractor=FakeTextExtractor("", page_count=12, image_based=True),
        ocr=make_ocr(12),
        settings=Settings.from_env(),
    )

    ingested = await pipeline.ingest(DocumentSource(name="scan.pdf", data=b"%PDF", mime_type="application/pdf"))

    assert ingested.document.extraction.pages_processed == 10
    assert ingested.document.truncated is True


def test_logging_and_session_settings(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DOCQA_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("DOCQA_MAX_SESSIONS", "-3")

    settings = Settings.from_env()

    assert settings.log_dir == str(tmp_path)
    assert settings.log_level == "DEBUG"
    assert settings.max_sessions == 256
