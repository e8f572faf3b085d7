#!/usr/bin/env python3
"""Post-run cleanup program run by the daemon after each e2e job.

For every worker product in the data directory that has not been cleaned
yet, writes a ``<name>.CLEANED`` JSON marker and removes that run's
outcome marker files. Markers older than seven days are pruned.
"""

from __future__ import annotations

import datetime
import json
import os
import sys
import time
from pathlib import Path

DATA_DIR_ENV = "HOME_CI_DATA_DIR"
DEFAULT_DATA_DIR = "/tmp/home-ci/e2e/data"

PRODUCT_PATTERNS = ["*_run-product.json", "*_test-run.json", "test-run-*.json"]
CLEANED_SUFFIX = ".CLEANED"
MAX_CLEANED_AGE_SECONDS = 7 * 24 * 3600


def _now_iso() -> str:
    return datetime.datetime.now().astimezone().isoformat(timespec="seconds")


def find_products(data_dir: Path) -> list[Path]:
    found: set[Path] = set()
    for pattern in PRODUCT_PATTERNS:
        found.update(p for p in data_dir.glob(pattern) if p.is_file())
    return sorted(found)


def remove_markers(data_dir: Path, branch: str, commit: str) -> list[str]:
    """Delete SUCCESS/FAILURE/TIMEOUT markers of one run; return their names."""
    safe_branch = branch.replace("/", "-")
    removed: list[str] = []
    for pattern in (f"{safe_branch}-{commit}_*.txt", f"*_{safe_branch}_{commit}.txt"):
        for marker in sorted(data_dir.glob(pattern)):
            if marker.is_file():
                marker.unlink()
                removed.append(marker.name)
    return removed


def clean_product(product_path: Path) -> bool:
    """Mark one product as cleaned. Returns False if already cleaned."""
    data_dir = product_path.parent
    cleaned = data_dir / (product_path.stem + CLEANED_SUFFIX)
    if cleaned.exists():
        print(f"Already cleaned: {product_path.name}")
        return False

    data = json.loads(product_path.read_text())
    if not isinstance(data, dict):
        raise ValueError("product is not a JSON object")
    branch = str(data.get("branch", "unknown"))
    commit = str(data.get("commit", "unknown"))
    test_type = str(data.get("test_type", "unknown"))

    print(f"Cleaning up: {product_path.name}")
    print(f"  Branch: {branch}")
    print(f"  Commit: {commit}")
    print(f"  Type: {test_type}")

    marker = {
        "original_file": str(product_path),
        "branch": branch,
        "commit": commit,
        "test_type": test_type,
        "original_timestamp": str(data.get("timestamp") or _now_iso()),
        "cleanup_timestamp": _now_iso(),
        "cleanup_status": "completed",
    }
    with open(cleaned, "w") as f:
        json.dump(marker, f, indent=2)
        f.write("\n")

    for name in remove_markers(data_dir, branch, commit):
        print(f"  Removing marker: {name}")
    print(f"  Created: {cleaned.name}")
    return True


def prune_cleaned(
    data_dir: Path,
    now: float | None = None,
    max_age: float = MAX_CLEANED_AGE_SECONDS,
) -> int:
    """Delete ``.CLEANED`` markers older than ``max_age`` seconds."""
    now = time.time() if now is None else now
    removed = 0
    for path in data_dir.glob(f"*{CLEANED_SUFFIX}"):
        if now - path.stat().st_mtime > max_age:
            path.unlink()
            removed += 1
    return removed


def run_cleanup(data_dir: str | Path) -> int:
    """Clean every product in ``data_dir``; return the number processed."""
    data_dir = Path(data_dir)
    print("=== E2E Cleanup Script ===")
    print(f"Scanning for data files in: {data_dir}")
    if not data_dir.is_dir():
        print(f"Data directory {data_dir} does not exist - nothing to clean")
        return 0

    products = find_products(data_dir)
    if not products:
        print("No e2e data files found to clean")
        return 0

    count = 0
    for product in products:
        try:
            if clean_product(product):
                count += 1
        except (OSError, ValueError) as e:
            print(f"Warning: could not read {product}: {e}", file=sys.stderr)
    print(f"Cleanup completed: {count} files processed")

    pruned = prune_cleaned(data_dir)
    if pruned:
        print(f"Removed {pruned} old cleaned files")
    return count


def main(argv: list[str] | None = None) -> int:
    data_dir = os.environ.get(DATA_DIR_ENV) or DEFAULT_DATA_DIR
    run_cleanup(data_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
