import importlib
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLLM, FakeTextExtractor, make_ocr, make_pipeline
from docqa.config import Settings
from docqa.llm_provider import LLMStatus
from docqa.services.qa import DocumentQASession, SessionRegistry, get_session_registry

CONTRACT_TEXT = (
    "The tenant pays rent on the first day of each month. "
    "The landlord is responsible for repairs to the roof."
)


@pytest.fixture
def main_module(tmp_path, monkeypatch):
    monkeypatch.setenv("DOCQA_LOG_DIR", str(tmp_path / "logs"))
    return importlib.import_module("docqa.main")


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM(answer="The landlord repairs the roof.")


@pytest.fixture
def client(main_module, llm):
    registry = SessionRegistry(
        Settings(),
        factory=lambda session_id: DocumentQASession(
            session_id,
            pipeline=make_pipeline(
                text_extractor=FakeTextExtractor(CONTRACT_TEXT, page_count=1),
                ocr=make_ocr(1),
            ),
            llm=llm,
        ),
    )
    main_module.app.dependency_overrides[get_session_registry] = lambda: registry
    try:
        yield TestClient(main_module.app)
    finally:
        main_module.app.dependency_overrides.pop(get_session_registry, None)


def _upload(client: TestClient, session_id: str = "s1", **data):
    return client.post(
        f"/sessions/{session_id}/documents",
        files={"file": ("contract.pdf", b"%PDF-1.7 fake", "application/pdf")},
        data=data,
    )


def test_upload_then_ask_returns_answer_with_page_sources(client: TestClient) -> None:
    upload = _upload(client)
    assert upload.status_code == 200
    summary = upload.json()
    assert summary["source_kind"] == "digital-pdf"
    assert summary["method"] == "structured"
    assert summary["chunk_count"] == 1
    assert summary["keyword_count"] > 0
    assert summary["pages_covered"] == [1]

    response = client.post(
        f"/sessions/s1/documents/{summary['id']}/ask",
        json={"question": "Who repairs the roof?"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["answer"] == "The landlord repairs the roof."
    assert body["sources"] == [{"page": 1, "label": "Page 1"}]
    assert body["fallback"] is False

    conversation = client.get("/sessions/s1/conversation").json()
    assert conversation == [
        {
            "question": "Who repairs the roof?",
            "answer": "The landlord repairs the roof.",
            "cited_pages": [1],
            "document_id": summary["id"],
        }
    ]


def test_pasted_text_and_active_document_lifecycle(client: TestClient) -> None:
    created = client.post("/sessions/s2/documents/text", json={"name": "lease", "text": CONTRACT_TEXT})
    assert created.status_code == 200
    assert created.json()["source_kind"] == "pasted-text"

    active = client.get("/sessions/s2/documents/active")
    assert active.status_code == 200
    assert active.json()["id"] == created.json()["id"]

    deleted = client.delete("/sessions/s2/documents/active")
    assert deleted.status_code == 204
    assert client.get("/sessions/s2/documents/active").status_code == 404


def test_ask_unknown_document_returns_404(client: TestClient) -> None:
    response = client.post("/sessions/s3/documents/nope/ask", json={"question": "rent?"})

    assert response.status_code == 404


def test_unsupported_upload_returns_415(client: TestClient) -> None:
    response = client.post(
        "/sessions/s1/documents",
        files={"file": ("archive.zip", b"PK\x03\x04", "application/zip")},
    )
    assert response.status_code == 415

    response = _upload(client, kind="spreadsheet")
    assert response.status_code == 415


def test_short_text_returns_422(client: TestClient) -> None:
    response = client.post("/sessions/s1/documents/text", json={"name": "tiny", "text": "too short"})

    assert response.status_code == 422
    assert "at least 50" in response.json()["detail"]


def test_model_not_ready_returns_503(client: TestClient, llm: FakeLLM) -> None:
    document_id = _upload(client).json()["id"]
    llm.ready = False

    response = client.post(f"/sessions/s1/documents/{document_id}/ask", json={"question": "rent"})

    assert response.status_code == 503


def test_empty_question_is_rejected(client: TestClient) -> None:
    document_id = _upload(client).json()["id"]

    response = client.post(f"/sessions/s1/documents/{document_id}/ask", json={"question": "   "})

    assert response.status_code == 422


def test_health_endpoints(main_module, monkeypatch) -> None:
    client = TestClient(main_module.app)
    assert client.get("/").text == "ok"

    status = LLMStatus(model_loaded=False, model_name="stub", device="cpu", error="Model not available")
    monkeypatch.setattr(main_module, "get_llm_status", lambda: status)

    health = client.get("/healthz")
    assert health.status_code == 503
    assert health.json()["detail"] == "Model not available"

    payload = client.get("/model_status").json()
    assert payload == {"model_loaded": False, "model_name": "stub", "device": "cpu", "reason": "Model not available"}

    monkeypatch.setattr(
        main_module,
        "get_llm_status",
        lambda: LLMStatus(model_loaded=True, model_name="fake", device="cpu"),
    )
    assert client.get("/healthz").text == "ok"


def test_deleting_a_session_forgets_its_document(client: TestClient) -> None:
    assert client.post("/sessions/s9/documents/text", json={"text": CONTRACT_TEXT}).status_code == 200

    assert client.delete("/sessions/s9").status_code == 204
    assert client.get("/sessions/s9/documents/active").status_code == 404
    assert client.get("/sessions/s9/conversation").json() == []


def test_logging_uses_configured_directory(main_module) -> None:
    log_dir = Path(main_module.SETTINGS.log_dir)

    assert (log_dir / "ingest_audit.log").exists()
