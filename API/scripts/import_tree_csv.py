#!/usr/bin/env python3
"""
Import a category/topic CSV file into a subject tree, bypassing HTTP.
Usage (from API/): python scripts/import_tree_csv.py <subject-id> <owner-id> <file.csv> [--mode replace]
Prints the import report as JSON; exits non-zero when nothing was imported.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from uuid import UUID


async def run(subject_id: UUID, owner_id: UUID, csv_text: str, mode: str) -> dict:
    from app.core.logging import configure_logging
    from app.core.settings import settings
    from app.storage.database import SessionLocal, engine
    from app.tree.service import build_tree_services

    configure_logging(settings.log_level)
    try:
        async with SessionLocal() as session:
            report = await build_tree_services(session).importer.import_csv(subject_id, owner_id, csv_text, mode)
    finally:
        await engine.dispose()
    return report.model_dump()


def main() -> int:
    parser = argparse.ArgumentParser(description="Import a CSV file into a subject's category/topic tree")
    parser.add_argument("subject_id", type=UUID, help="Target subject id")
    parser.add_argument("owner_id", type=UUID, help="Id of the user who owns the subject")
    parser.add_argument("csv_file", type=Path, help="CSV with a category,topic or category,subcategory,topic header")
    parser.add_argument("--mode", choices=("append", "replace"), default="append", help="Merge mode (default append)")
    args = parser.parse_args()

    if not args.csv_file.is_file():
        print(f"Error: CSV file not found: {args.csv_file}", file=sys.stderr)
        return 1

    from app.tree.errors import TreeError

    try:
        report = asyncio.run(
            run(args.subject_id, args.owner_id, args.csv_file.read_text(encoding="utf-8-sig"), args.mode)
        )
    except TreeError as exc:
        print(f"Error: {exc.code}: {exc.message} {json.dumps(exc.details)}", file=sys.stderr)
        return 1

    print(json.dumps(report, indent=2))
    return 0 if report["success"] else 1


if __name__ == "__main__":
    sys.exit(main())
