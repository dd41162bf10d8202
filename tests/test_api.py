import json

import pytest
from fastapi.testclient import TestClient

from isha.src.core.task_orchestrator import TaskOrchestrator
from isha.src.main import create_app

from conftest import FAKE_ANSWER, TRIGGER_URL

NOTES = b"Isha answers questions from uploaded documents. The capital of France is Paris, on the Seine."


@pytest.fixture
def tasks(test_settings, mock_http) -> TaskOrchestrator:
    return TaskOrchestrator(settings=test_settings, http_client=mock_http)


@pytest.fixture
def client(test_settings, llm, tasks):
    app = create_app(test_settings, llm=llm, tasks=tasks)
    with TestClient(app) as c:
        yield c


def _upload(client, name="notes.txt", data=NOTES):
    return client.post("/upload", files={"file": (name, data, "text/plain")})


def _sse_events(text: str) -> list[dict]:
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


# ── Health ─────────────────────────────────────────────────────────────

def test_health_reports_components(client):
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["state"] == "ready"
    assert body["availableModels"] == [body["model"]]
    assert body["webhooks"]["n8nUrl"] == TRIGGER_URL


# ── Upload ─────────────────────────────────────────────────────────────

def test_upload_text_file(client):
    response = _upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["fileType"] == "text"
    assert body["fileSize"] == len(NOTES)
    assert body["chunksProcessed"] == body["totalChunks"] >= 1


def test_upload_rejects_unsupported_type(client):
    response = _upload(client, name="virus.exe", data=b"MZ")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Unsupported file type: exe", "kind": "unsupported_file_type"}


def test_upload_rejects_empty_file(client):
    response = _upload(client, name="blank.md", data=b"   \n")

    assert response.status_code == 400
    assert response.json()["kind"] == "empty_input"


def test_upload_rejects_corrupt_pdf(client):
    response = client.post("/upload", files={"file": ("broken.pdf", b"this is not a pdf", "application/pdf")})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["kind"] == "validation_error"
    assert body["error"].startswith("Could not read PDF")


def test_upload_config_lists_types(client):
    body = client.get("/upload").json()

    assert body["maxFileSizeMB"] == 10
    assert {t["extension"] for t in body["supportedTypes"]} >= {".pdf", ".md", ".txt"}


# ── Chat ───────────────────────────────────────────────────────────────

def test_chat_returns_answer_with_sources(client):
    _upload(client)

    body = client.post("/chat", json={"message": "What is the capital of France?"}).json()

    assert body["success"] is True
    assert body["response"] == FAKE_ANSWER
    assert body["sources"][0]["metadata"]["source_file"] == "notes.txt"
    assert body["metadata"]["documentsRetrieved"] == len(body["sources"])


@pytest.mark.parametrize("payload", [{}, {"message": ""}, {"message": "   "}])
def test_chat_requires_message(client, payload):
    response = client.post("/chat", json=payload)

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_chat_stream_emits_chunks_then_complete(client):
    _upload(client)

    response = client.post("/chat", json={"message": "Capital?", "stream": True})

    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    chunks = [e["chunk"] for e in events if e["type"] == "chunk"]
    assert "".join(chunks) == FAKE_ANSWER
    assert events[-1]["type"] == "complete"
    assert events[-1]["metadata"]["documentsRetrieved"] == len(events[-1]["sources"])


def test_long_running_chat_returns_task_id(client, tasks):
    body = client.post("/chat", json={"message": "crunch the numbers", "taskType": "long-running"}).json()

    assert body["success"] is True
    assert body["status"] == "processing"
    assert tasks.get_task(body["taskId"]) is not None

    status = client.get(f"/tasks/{body['taskId']}").json()
    assert status["status"] in {"triggered", "processing"}
    assert status["outcome"] is None

    cancelled = client.delete(f"/tasks/{body['taskId']}").json()
    assert cancelled["cancelled"] is True


def test_unknown_task_is_404(client):
    assert client.get("/tasks/task_missing").status_code == 404
    assert client.delete("/tasks/task_missing").status_code == 404


# ── Documents ──────────────────────────────────────────────────────────

def test_list_and_delete_documents(client):
    _upload(client)

    listing = client.get("/documents").json()
    assert listing["total"] == 1
    assert listing["documents"][0]["filename"] == "notes.txt"
    assert listing["collection"]["name"] == "test_documents"

    deleted = client.request("DELETE", "/documents", json={"filename": "notes.txt"})
    assert deleted.status_code == 200
    assert deleted.json()["deletedCount"] >= 1

    again = client.request("DELETE", "/documents", json={"filename": "notes.txt"})
    assert again.status_code == 404
    assert again.json()["kind"] == "not_found"


def test_delete_requires_filename(client):
    assert client.request("DELETE", "/documents", json={}).status_code == 400


def test_update_document_replaces_text(client):
    _upload(client)

    body = client.put("/documents", json={"filename": "notes.txt", "newText": "Lyon is famous for food.", "newFilename": "lyon.txt"}).json()

    assert body["success"] is True
    assert body["filename"] == "lyon.txt"
    assert body["chunksAdded"] == 1
    assert [d["filename"] for d in client.get("/documents").json()["documents"]] == ["lyon.txt"]


def test_update_unknown_document_is_404(client):
    response = client.put("/documents", json={"filename": "ghost.txt", "newText": "boo"})
    assert response.status_code == 404


# ── Ingest ─────────────────────────────────────────────────────────────

def test_ingest_actions(client):
    added = client.post("/ingest", json={
        "action": "add_documents",
        "data": {"documents": [{"id": "d1", "text": "first pre-chunked text"}, {"id": "d2", "text": "second pre-chunked text", "sourceFile": "api.txt"}]},
    }).json()
    assert added["chunksAdded"] == 2
    assert added["totalChunks"] == 2

    stats = client.post("/ingest", json={"action": "get_stats"}).json()["stats"]
    assert stats["documentCount"] == 2
    assert client.get("/ingest").json()["stats"] == stats

    cleared = client.post("/ingest", json={"action": "clear_knowledge_base"}).json()
    assert cleared["success"] is True
    assert client.get("/ingest").json()["stats"]["documentCount"] == 0


@pytest.mark.parametrize("payload", [
    {"action": "explode"},
    {"action": "add_documents", "data": {"documents": []}},
    {"action": "add_documents", "data": {"documents": [{"id": "d1"}]}},
])
def test_ingest_rejects_bad_requests(client, payload):
    response = client.post("/ingest", json=payload)

    assert response.status_code == 400
    assert response.json()["kind"] == "validation_error"


# ── Workflow webhooks ──────────────────────────────────────────────────

def test_trigger_task_forwards_to_webhook(client, webhook_log):
    body = client.post("/trigger-task", json={"message": "run the report"}).json()

    assert body["success"] is True
    assert body["response"] == {"ok": True}
    assert json.loads(webhook_log[0].content)["taskId"] == body["taskId"]


def test_trigger_task_requires_message(client, webhook_log):
    assert client.post("/trigger-task", json={"priority": "high"}).status_code == 400
    assert webhook_log == []


def test_trigger_task_config(client):
    body = client.get("/trigger-task").json()

    assert body["config"]["n8nUrl"] == TRIGGER_URL
    assert body["health"] == {"n8n": True, "flowise": True}


def test_task_complete_feeds_registry(client, tasks):
    response = client.post("/task-complete", json={"taskId": "task_1", "status": "completed", "data": {"answer": 42}})

    assert response.json() == {"success": True, "message": "Task completion received successfully", "taskId": "task_1"}
    assert "task_1" in tasks.registry


def test_task_complete_requires_task_id(client):
    response = client.post("/task-complete", json={"status": "completed"})
    assert response.status_code == 400


def test_task_complete_describes_payload(client):
    assert "taskId" in client.get("/task-complete").json()["expectedPayload"]
