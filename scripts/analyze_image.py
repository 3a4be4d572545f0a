#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

import httpx


def _print_event(event: dict) -> None:
    kind = event.get("type")
    stage = event.get("stage")
    if kind in {"stage_start", "stage_end"}:
        print(f"[{kind}] {stage}: {json.dumps(event.get('payload'), default=str)}", flush=True)
    else:
        print(f"[{kind}]", flush=True)
        print(json.dumps(event.get("payload"), indent=2, default=str), flush=True)


def _poll_session(client: httpx.Client, api_base: str, session_id: str, poll_seconds: float, timeout_seconds: float) -> int:
    deadline = time.monotonic() + timeout_seconds
    seen = 0
    while time.monotonic() < deadline:
        resp = client.get(f"{api_base}/violations/sessions/{session_id}")
        resp.raise_for_status()
        snapshot = resp.json()
        events = snapshot.get("events") or []
        for event in events[seen:]:
            _print_event(event)
        seen = len(events)
        if snapshot.get("status") != "processing":
            return 0 if snapshot.get("status") == "complete" else 1
        time.sleep(max(poll_seconds, 0.5))
    print("Timed out waiting for the session to finish.", file=sys.stderr)
    return 3


def main() -> int:
    parser = argparse.ArgumentParser(description="Submit a photo for violation analysis and follow its progress.")
    parser.add_argument("image", type=Path, help="Path to a JPEG/PNG photograph")
    parser.add_argument("--api-base", default="http://localhost:8000", help="API base URL (default: http://localhost:8000)")
    parser.add_argument("--poll", action="store_true", help="Detach from the live stream and poll the session instead")
    parser.add_argument("--poll-seconds", type=float, default=2.0, help="Polling interval (default: 2s)")
    parser.add_argument("--timeout-minutes", type=float, default=15.0, help="Stop polling after this long (default: 15m)")
    args = parser.parse_args()

    if not args.image.is_file():
        print(f"ERROR: {args.image} is not a file", file=sys.stderr)
        return 2

    api_base = args.api_base.rstrip("/")
    with httpx.Client(timeout=None) as client:
        resp = client.post(f"{api_base}/violations/sessions")
        resp.raise_for_status()
        session_id = resp.json()["id"]
        print(f"session_id={session_id}", flush=True)

        files = {"file": (args.image.name, args.image.read_bytes())}
        url = f"{api_base}/violations/analyze"
        with client.stream("POST", url, params={"session_id": session_id}, files=files) as stream:
            stream.raise_for_status()
            if args.poll:
                # Closing the stream early leaves the run going on the server.
                pass
            else:
                status = 1
                for line in stream.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    event = json.loads(line[len("data: "):])
                    _print_event(event)
                    if event.get("type") == "final_result":
                        status = 0
                return status

        return _poll_session(client, api_base, session_id, args.poll_seconds, args.timeout_minutes * 60)


if __name__ == "__main__":
    raise SystemExit(main())
