from stepwise_cli import cli
from stepwise_core.runtime import get_runtime


def test_cli_status(monkeypatch, capsys):
    def fake_request(method, url, payload=None, timeout=30):
        return {"status": "ok", "service": url}

    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(
        [
            "status",
            "--pipeline-url",
            "http://localhost:8081",
            "--qa-url",
            "http://localhost:8082/",
        ]
    )
    assert code == 0
    output = capsys.readouterr().out
    assert "pipeline" in output
    assert "http://localhost:8082/health" in output


def test_cli_module_status(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured["url"] = url
        return {"moduleId": "m 1", "status": "READY"}

    monkeypatch.setattr(cli, "_request_json", fake_request)
    assert cli.main(["status", "--module-id", "m 1", "--pipeline-url", "http://p"]) == 0
    assert captured["url"] == "http://p/modules/m%201/status"


def test_cli_reprocess(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured.update(method=method, url=url, payload=payload)
        return {"action": "process"}

    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(["reprocess", "--module-id", "m1", "--force", "--pipeline-url", "http://p"])
    assert code == 0
    assert captured == {
        "method": "POST",
        "url": "http://p/modules/m1/reprocess",
        "payload": {"force": True},
    }
    assert "process" in capsys.readouterr().out


def test_cli_ask(monkeypatch, capsys):
    captured = {}

    def fake_request(method, url, payload=None, timeout=30):
        captured.update(method=method, url=url, payload=payload)
        return {"answer": "Step 1: Open the box", "source": "RULE_FALLBACK"}

    monkeypatch.setenv("STEPWISE_QA_URL", "http://qa")
    monkeypatch.setattr(cli, "_request_json", fake_request)
    code = cli.main(
        ["ask", "--module-id", "m1", "--question", "first step?", "--video-time", "3.5"]
    )
    assert code == 0
    assert captured["url"] == "http://qa/answers"
    assert captured["payload"] == {"moduleId": "m1", "question": "first step?", "videoTime": 3.5}


def test_cli_reap_runs_locally(capsys):
    runtime = get_runtime()
    runtime.modules.create(video_key="v.mp4", module_id="stuck")
    runtime.modules.begin_processing("stuck")
    with runtime.modules._transaction() as conn:
        conn.execute("UPDATE modules SET updated_at = updated_at - 3600 WHERE id = 'stuck'")
    assert cli.main(["reap"]) == 0
    assert '"stuck"' in capsys.readouterr().out
    assert runtime.modules.require("stuck").status == "FAILED"


def test_cli_up_dry_run(capsys):
    assert cli.main(["up", "--dry-run", "--qa-port", "9000"]) == 0
    output = capsys.readouterr().out
    assert "local_adapter.pipeline_service:app" in output
    assert "local_adapter.qa_service:app --host 0.0.0.0 --port 9000" in output


def test_cli_worker_requires_redis(capsys):
    assert cli.main(["worker", "--max-jobs", "1"]) == 1
    assert "QUEUE_BACKEND=redis" in capsys.readouterr().err


def test_cli_errors_return_nonzero(monkeypatch, capsys):
    def failing(method, url, payload=None, timeout=30):
        raise RuntimeError("HTTP 404 not found")

    monkeypatch.setattr(cli, "_request_json", failing)
    assert cli.main(["reprocess", "--module-id", "m1"]) == 1
    assert "HTTP 404" in capsys.readouterr().err
    assert cli.main([]) == 2
