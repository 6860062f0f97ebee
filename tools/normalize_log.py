"""
Rebase a JSONL surface log to relative time.

Reads the lines written by observability.logger, keeps the JSON ones
(optionally only one session), and rewrites each "ts_ms" as seconds since
the first kept event, so state transitions can be read as a timeline.

    python tools/normalize_log.py server.log --session 3f2a... > timeline.txt
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Iterable, Iterator


def parse_events(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    for line in lines:
        line = line.strip()
        if not line.startswith("{"):
            continue  # uvicorn access lines etc.
        try:
            event = json.loads(line)
        except ValueError:
            continue
        if isinstance(event, dict):
            yield event


def normalize_timestamps(events: Iterable[dict[str, Any]], session_id: str | None = None) -> list[str]:
    out: list[str] = []
    t0: int | None = None
    for event in events:
        if session_id is not None and event.get("session_id") != session_id:
            continue
        ts = event.get("ts_ms")
        if not isinstance(ts, int):
            continue
        if t0 is None:
            t0 = ts
        label = event.get("event_type", "?")
        decision = event.get("decision")
        state = event.get("state")
        parts = [f"{(ts - t0) / 1000:9.3f}s", f"{label:<28}"]
        if state:
            parts.append(f"[{state}]")
        if decision:
            parts.append(str(decision))
        out.append(" ".join(parts))
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("log", type=Path)
    parser.add_argument("--session", default=None, help="only events for this session_id")
    args = parser.parse_args()

    with args.log.open(encoding="utf-8") as f:
        for line in normalize_timestamps(parse_events(f), args.session):
            sys.stdout.write(line + "\n")


if __name__ == "__main__":
    main()
