#!/usr/bin/env python3
"""
Probe one tournament round through its configured adapter.

Checks:
  1. The tournament resolves to a registered, valid provider
  2. The adapter returns a snapshot (or prints the structured failure)
  3. Boards carry moves and players; warns on parse errors and empty rounds

Usage:
  python -m scripts.probe_round SLUG [--round N] [--round-id ID] [--json]

  Run from backend/. Tournament configuration comes from CV_* env vars / .env.
"""
from __future__ import annotations

import argparse
import asyncio
import sys

from shared.config import get_settings
from shared.errors import ProviderNotConfigured
from shared.models.domain import RoundSnapshot
from shared.utils.logging import round_context, setup_logging

from ingest.providers.registry import build_registry

GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"

passed = 0
failed = 0
warnings = 0


def ok(msg: str) -> None:
    global passed
    passed += 1
    print(f"  {GREEN}PASS{RESET}  {msg}")


def fail(msg: str) -> None:
    global failed
    failed += 1
    print(f"  {RED}FAIL{RESET}  {msg}")


def warn(msg: str) -> None:
    global warnings
    warnings += 1
    print(f"  {YELLOW}WARN{RESET}  {msg}")


def _print_boards(snapshot: RoundSnapshot) -> None:
    for board in snapshot.boards:
        last = board.moves[-1] if board.moves else "-"
        print(
            f"    #{board.board_number:<3} {board.white.name} - {board.black.name}"
            f"  [{board.status.value}, {board.result.value if board.result else '*'}]"
            f"  plies={len(board.moves)} last={last}"
        )
        if board.parse_error:
            warn(f"  board {board.board_number}: {board.parse_error}")


async def probe(slug: str, round_no: int | None, round_id: str | None, as_json: bool) -> None:
    settings = get_settings()
    registry = build_registry(settings)

    print("[1] Provider")
    try:
        canonical, source, adapter = registry.resolve(slug)
        problem = adapter.validate_source(canonical, source)
    except ProviderNotConfigured as exc:
        fail(str(exc))
        return
    if problem:
        fail(f"{canonical}: {problem}")
        return
    ok(f"{canonical} -> {adapter.name.value}")

    print("[2] Round fetch")
    await registry.start()
    try:
        with round_context(canonical, round_no):
            result = await adapter.fetch_round_snapshot(canonical, round_no, source, round_id=round_id)
    finally:
        await registry.close()

    if not result.success or result.snapshot is None:
        failure = result.failure
        detail = f"{failure.kind.value}: {failure.message} ({failure.url})" if failure else "unknown"
        fail(f"fetch failed after {result.latency_ms:.0f}ms: {detail}")
        return
    snapshot = result.snapshot
    ok(
        f"round {snapshot.round} ({snapshot.round_name or snapshot.round_id or '?'}): "
        f"{len(snapshot.boards)} boards in {result.latency_ms:.0f}ms"
    )

    if as_json:
        print(snapshot.model_dump_json(indent=2))
        return

    print("[3] Boards")
    if not snapshot.boards:
        warn("no boards in round")
    _print_boards(snapshot)

    diag = snapshot.diagnostics
    print("[4] Diagnostics")
    for url in diag.urls:
        print(f"    url     {url}")
    for name, value in diag.timings_ms.items():
        print(f"    timing  {name}={value}ms")
    for name, count in diag.counts.items():
        print(f"    count   {name}={count}")
    for note in diag.notes:
        print(f"    note    {note}")
    if diag.failures:
        warn(f"  {diag.failures} upstream calls failed inside the round")


def main() -> None:
    parser = argparse.ArgumentParser(description="Probe one broadcast round.")
    parser.add_argument("slug", help="tournament slug (aliases accepted)")
    parser.add_argument("--round", dest="round_no", type=int, default=None, help="round number; omit for current")
    parser.add_argument("--round-id", default=None, help="upstream round id override")
    parser.add_argument("--json", action="store_true", help="dump the snapshot as JSON")
    args = parser.parse_args()

    setup_logging("probe")
    print(f"\n=== Round probe: {args.slug} ===\n")
    asyncio.run(probe(args.slug, args.round_no, args.round_id, args.json))
    print(f"\n=== Results: {GREEN}{passed} passed{RESET}, {RED}{failed} failed{RESET}, {YELLOW}{warnings} warnings{RESET} ===\n")
    sys.exit(1 if failed > 0 else 0)


if __name__ == "__main__":
    main()
