from __future__ import annotations

import argparse
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from deepdiff import DeepDiff

DEFAULT_IGNORED = [
    "provenance",
    "resolvedAt",
    "contextId",
]


def _load_resolution(path: Path, ignored: Iterable[str]) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Resolution file not found: {path}")
    record = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(record, dict):
        raise ValueError(f"Resolution file {path} must contain a JSON object")
    for field in set(ignored):
        record.pop(field, None)
    return record


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Diff two saved `toolpolicy resolve` outputs")
    parser.add_argument("baseline", help="Resolution JSON treated as the expected outcome.")
    parser.add_argument("candidate", help="Resolution JSON to compare against the baseline.")
    parser.add_argument("--ignore", nargs="*", default=DEFAULT_IGNORED)
    args = parser.parse_args(argv)

    baseline = _load_resolution(Path(args.baseline), args.ignore)
    candidate = _load_resolution(Path(args.candidate), args.ignore)

    diff = DeepDiff(baseline, candidate, ignore_order=True)
    if diff:
        print("Differences detected between resolutions:")
        print(diff)
        return 1
    print("Resolutions match.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
