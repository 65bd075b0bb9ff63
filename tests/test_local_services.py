import json

import pytest
from fastapi.testclient import TestClient

from local_adapter import pipeline_service, qa_service
from stepwise_core.runtime import get_runtime
from stepwise_core.transcription.webhooks import sign_body


@pytest.fixture
def ready_runtime(media_stubs, make_transcriber, segmented_transcript):
    runtime = get_runtime()
    runtime.orchestrator.transcriber = make_transcriber(segmented_transcript)
    return runtime


def _create(client, module_id="m1", **extra):
    payload = {"videoKey": f"videos/{module_id}.mp4", "moduleId": module_id, **extra}
    return client.post("/modules", json=payload)


def test_health_endpoints():
    for module, name in ((pipeline_service, "stepwise-pipeline"), (qa_service, "stepwise-qa")):
        response = TestClient(module.app).get("/health", headers={"x-correlation-id": "abc"})
        assert response.status_code == 200
        assert response.json()["service"] == name
        assert response.headers["x-correlation-id"] == "abc"


def test_upload_runs_pipeline_to_ready(ready_runtime):
    client = TestClient(pipeline_service.app)
    response = _create(client, title="Unboxing")
    assert response.status_code == 201
    body = response.json()
    assert body["id"] == "m1"
    assert body["status"] == "READY"
    assert body["stepsKey"] == "training/m1.json"

    status = client.get("/modules/m1/status").json()
    assert status == {"moduleId": "m1", "status": "READY", "progress": 100, "lastError": None}

    steps = client.get("/modules/m1/steps").json()["steps"]
    assert [(s["order"], s["startTime"], s["endTime"]) for s in steps] == [
        (1, 0.0, 4.0),
        (2, 4.0, 9.0),
        (3, 9.0, 14.0),
    ]


def test_process_and_reprocess(ready_runtime):
    client = TestClient(pipeline_service.app)
    _create(client, autoStart=False)
    assert client.get("/modules/m1/steps").status_code == 404

    started = client.post("/modules/m1/process").json()
    assert started["action"] == "process"
    assert started["status"] == "READY"

    again = client.post("/modules/m1/process").json()
    assert again["action"] == "skip_finished"

    redone = client.post("/modules/m1/reprocess", json={"force": False}).json()
    assert redone["action"] == "process"
    assert redone["status"] == "READY"
    assert len(client.get("/modules/m1/steps").json()["steps"]) == 3


def test_unknown_module_is_404():
    client = TestClient(pipeline_service.app)
    assert client.get("/modules/nope/status").status_code == 404
    assert client.post("/modules/nope/process").status_code == 404


def test_failed_run_reports_error():
    client = TestClient(pipeline_service.app)
    body = _create(client).json()
    assert body["status"] == "FAILED"
    status = client.get("/modules/m1/status").json()
    assert status["progress"] == 0
    assert status["lastError"].startswith("TRANSCRIPTION_FAILED")


def test_reap_endpoint(clock_runtime_stale):
    client = TestClient(pipeline_service.app)
    assert client.post("/admin/reap").json() == {"reaped": ["stuck"]}
    status = client.get("/modules/stuck/status").json()
    assert status["status"] == "FAILED"
    assert "Stale processing lock" in status["lastError"]


@pytest.fixture
def clock_runtime_stale():
    runtime = get_runtime()
    runtime.modules.create(video_key="videos/stuck.mp4", module_id="stuck")
    runtime.modules.begin_processing("stuck")
    with runtime.modules._transaction() as conn:
        conn.execute("UPDATE modules SET updated_at = updated_at - 3600 WHERE id = 'stuck'")
    return runtime


@pytest.fixture
def callback_env(monkeypatch, make_callback_transcriber, segmented_transcript):
    monkeypatch.setenv("TRANSCRIBE_BACKEND", "assemblyai")
    monkeypatch.setenv("ASSEMBLYAI_API_KEY", "key")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://stepwise.example.com")
    monkeypatch.setenv("MEDIA_BASE_URL", "https://media.example.com")
    monkeypatch.setenv("WEBHOOK_TOKEN", "tok")
    monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")
    runtime = get_runtime()
    runtime.orchestrator.callback_transcriber = make_callback_transcriber(segmented_transcript)
    return runtime


def _post_webhook(client, payload, *, token="tok", secret="s3cret", module_id="m1"):
    body = json.dumps(payload).encode("utf-8")
    headers = {"content-type": "application/json"}
    if secret:
        headers["x-stepwise-signature"] = sign_body(secret, body)
    params = {"moduleId": module_id}
    if token:
        params["token"] = token
    return client.post("/webhooks/transcription", params=params, content=body, headers=headers)


def test_webhook_completes_callback_run(callback_env):
    client = TestClient(pipeline_service.app)
    body = _create(client).json()
    assert body["status"] == "PROCESSING"
    assert body["progress"] == 20

    progress = _post_webhook(client, {"status": "processing", "transcript_id": "job-1"})
    assert progress.json() == {"ok": True, "outcome": "progress", "error": None}

    done = _post_webhook(client, {"status": "completed", "transcript_id": "job-1"})
    assert done.json()["outcome"] == "accepted"
    duplicate = _post_webhook(client, {"status": "completed", "transcript_id": "job-1"})
    assert duplicate.json()["outcome"] == "ignored_not_processing"

    assert client.get("/modules/m1/status").json()["status"] == "READY"
    assert len(client.get("/modules/m1/steps").json()["steps"]) == 3


def test_webhook_rejects_bad_token(callback_env):
    client = TestClient(pipeline_service.app)
    _create(client)
    response = _post_webhook(client, {"status": "completed", "transcript_id": "job-1"}, token="bad")
    assert response.status_code == 401
    assert client.get("/modules/m1/status").json()["status"] == "PROCESSING"


def test_webhook_tolerates_malformed_payloads(callback_env):
    client = TestClient(pipeline_service.app)
    _create(client)
    missing_status = _post_webhook(client, {"transcript_id": "job-1"})
    assert missing_status.status_code == 200
    assert missing_status.json()["ok"] is False
    no_module = client.post(
        "/webhooks/transcription",
        params={"token": "tok"},
        content=b"{}",
        headers={"x-stepwise-signature": sign_body("s3cret", b"{}")},
    )
    assert no_module.status_code == 200
    assert no_module.json()["error"] == "missing moduleId"


def test_answers_and_question_management(ready_runtime):
    pipeline = TestClient(pipeline_service.app)
    _create(pipeline)
    client = TestClient(qa_service.app)

    first = client.post("/answers", json={"moduleId": "m1", "question": "How many steps?"})
    assert first.status_code == 200
    body = first.json()
    assert body["answer"] == "There are 3 steps in this training."
    assert body["source"] == "RULE_FALLBACK"
    question_id = body["questionId"]

    again = client.post("/answers", json={"moduleId": "m1", "question": "how many steps?"}).json()
    assert again["source"] == "REUSED"
    assert again["answer"] == body["answer"]

    listed = client.get("/modules/m1/questions").json()["questions"]
    assert len(listed) == 2

    marked = client.put(f"/questions/{question_id}/faq", json={"isFaq": True})
    assert marked.json()["isFaq"] is True
    faqs = client.get("/modules/m1/questions", params={"faq_only": True}).json()["questions"]
    assert [q["id"] for q in faqs] == [question_id]

    assert client.delete(f"/questions/{question_id}").status_code == 204
    assert client.delete(f"/questions/{question_id}").status_code == 404

    metrics = client.get("/metrics").json()
    assert metrics["answers"]["total"] == 2
    assert metrics["counters"]["answers.source.reused"] == 1


def test_answer_validation():
    client = TestClient(qa_service.app)
    assert client.post("/answers", json={"moduleId": "m1", "question": "  "}).status_code == 400
    assert client.post("/answers", json={"moduleId": "nope", "question": "hi"}).status_code == 404
    assert client.post("/answers", json={"question": "hi"}).status_code == 422


def test_duplicate_upload_is_rejected():
    client = TestClient(pipeline_service.app)
    _create(client, autoStart=False)
    assert _create(client, autoStart=False).status_code == 400
