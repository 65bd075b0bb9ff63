from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

DEFAULT_PIPELINE_URL = "http://localhost:8081"
DEFAULT_QA_URL = "http://localhost:8082"


def _resolve_pipeline_url(value: str | None) -> str:
    return (value or os.getenv("STEPWISE_PIPELINE_URL", DEFAULT_PIPELINE_URL)).rstrip("/")


def _resolve_qa_url(value: str | None) -> str:
    return (value or os.getenv("STEPWISE_QA_URL", DEFAULT_QA_URL)).rstrip("/")


def _request_json(
    method: str,
    url: str,
    payload: dict[str, Any] | None = None,
    timeout: int = 30,
) -> dict[str, Any]:
    data = None
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"},
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read()
            if not raw:
                return {}
            return json.loads(raw.decode("utf-8"))
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore")
        detail: str | dict[str, Any] = body
        try:
            detail = json.loads(body)
        except json.JSONDecodeError:
            detail = body or exc.reason
        raise RuntimeError(f"HTTP {exc.code} {detail}") from exc


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _uvicorn_cmd(target: str, host: str, port: int, log_level: str) -> list[str]:
    return [
        "uvicorn",
        target,
        "--host",
        host,
        "--port",
        str(port),
        "--log-level",
        log_level,
    ]


def cmd_up(args: argparse.Namespace) -> int:
    commands = [
        _uvicorn_cmd(
            "local_adapter.pipeline_service:app",
            args.host,
            args.pipeline_port,
            args.log_level,
        ),
        _uvicorn_cmd(
            "local_adapter.qa_service:app",
            args.host,
            args.qa_port,
            args.log_level,
        ),
    ]
    if args.dry_run:
        for command in commands:
            print(" ".join(command))
        return 0

    procs = [subprocess.Popen(command) for command in commands]
    try:
        while True:
            exit_codes = [proc.poll() for proc in procs]
            if any(code is not None for code in exit_codes):
                return next(code for code in exit_codes if code is not None) or 0
            time.sleep(0.5)
    except KeyboardInterrupt:
        for proc in procs:
            proc.terminate()
        for proc in procs:
            proc.wait(timeout=5)
        return 0


def cmd_status(args: argparse.Namespace) -> int:
    pipeline_url = _resolve_pipeline_url(args.pipeline_url)
    if args.module_id:
        module_id = urllib.parse.quote(args.module_id, safe="")
        _print_json(_request_json("GET", f"{pipeline_url}/modules/{module_id}/status"))
        return 0
    qa_url = _resolve_qa_url(args.qa_url)
    results = {
        "pipeline": _request_json("GET", f"{pipeline_url}/health"),
        "qa": _request_json("GET", f"{qa_url}/health"),
    }
    _print_json(results)
    return 0


def cmd_reprocess(args: argparse.Namespace) -> int:
    pipeline_url = _resolve_pipeline_url(args.pipeline_url)
    module_id = urllib.parse.quote(args.module_id, safe="")
    response = _request_json(
        "POST",
        f"{pipeline_url}/modules/{module_id}/reprocess",
        {"force": bool(args.force)},
    )
    _print_json(response)
    return 0


def cmd_ask(args: argparse.Namespace) -> int:
    qa_url = _resolve_qa_url(args.qa_url)
    payload: dict[str, Any] = {
        "moduleId": args.module_id,
        "question": args.question,
    }
    if args.step_id:
        payload["stepId"] = args.step_id
    if args.video_time is not None:
        payload["videoTime"] = args.video_time
    _print_json(_request_json("POST", f"{qa_url}/answers", payload, timeout=90))
    return 0


def cmd_reap(args: argparse.Namespace) -> int:
    from stepwise_core.logging import configure_logging
    from stepwise_core.runtime import get_runtime

    configure_logging(service="stepwise-cli", env=os.getenv("ENV", "local"))
    reaped = get_runtime().orchestrator.reap()
    _print_json({"reaped": reaped})
    return 0


def cmd_worker(args: argparse.Namespace) -> int:
    from stepwise_core.logging import configure_logging, get_logger
    from stepwise_core.pipeline.queue import RedisJobQueue, run_worker
    from stepwise_core.runtime import get_runtime

    configure_logging(service="stepwise-worker", env=os.getenv("ENV", "local"))
    runtime = get_runtime()
    queue = runtime.orchestrator.queue
    if not isinstance(queue, RedisJobQueue):
        raise RuntimeError("worker requires QUEUE_BACKEND=redis")
    handled = run_worker(
        queue,
        runtime.orchestrator.handle_job,
        poll_timeout_s=args.poll_timeout,
        max_jobs=args.max_jobs,
    )
    get_logger(__name__).info("Worker stopped", extra={"step_count": handled})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stepwise")
    subparsers = parser.add_subparsers(dest="command")

    up_parser = subparsers.add_parser("up", help="Run the local pipeline and Q&A services")
    up_parser.add_argument("--host", default="0.0.0.0")
    up_parser.add_argument("--pipeline-port", type=int, default=8081)
    up_parser.add_argument("--qa-port", type=int, default=8082)
    up_parser.add_argument("--log-level", default="info")
    up_parser.add_argument("--dry-run", action="store_true", help="Print commands only")
    up_parser.set_defaults(func=cmd_up)

    status_parser = subparsers.add_parser(
        "status", help="Check service health or a module's processing status"
    )
    status_parser.add_argument("--module-id")
    status_parser.add_argument("--pipeline-url")
    status_parser.add_argument("--qa-url")
    status_parser.set_defaults(func=cmd_status)

    reprocess_parser = subparsers.add_parser("reprocess", help="Reprocess a module")
    reprocess_parser.add_argument("--module-id", required=True)
    reprocess_parser.add_argument(
        "--force", action="store_true", help="Supersede a run still in progress"
    )
    reprocess_parser.add_argument("--pipeline-url")
    reprocess_parser.set_defaults(func=cmd_reprocess)

    ask_parser = subparsers.add_parser("ask", help="Ask a question about a module")
    ask_parser.add_argument("--module-id", required=True)
    ask_parser.add_argument("--question", required=True)
    ask_parser.add_argument("--step-id")
    ask_parser.add_argument("--video-time", type=float)
    ask_parser.add_argument("--qa-url")
    ask_parser.set_defaults(func=cmd_ask)

    reap_parser = subparsers.add_parser(
        "reap", help="Fail modules stuck in PROCESSING past the stale window"
    )
    reap_parser.set_defaults(func=cmd_reap)

    worker_parser = subparsers.add_parser("worker", help="Consume pipeline jobs from redis")
    worker_parser.add_argument("--poll-timeout", type=int, default=5)
    worker_parser.add_argument("--max-jobs", type=int)
    worker_parser.set_defaults(func=cmd_worker)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 2
    try:
        return args.func(args)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
