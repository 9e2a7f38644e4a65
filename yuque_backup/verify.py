"""Check a backup directory against its metadata.json, without network access."""

from __future__ import annotations

import argparse
import json
import re
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path

from .models import Document
from .store import METADATA_FILE, MainMetadata

DOC_FILE_PATTERN = re.compile(r"^doc(\d+)\.json$")


def iter_document_files(root: Path) -> Iterable[tuple[int, Path]]:
    for path in sorted(root.glob("*/doc*.json")):
        match = DOC_FILE_PATTERN.match(path.name)
        if path.is_file() and match:
            yield int(match.group(1)), path


def load_document(path: Path) -> Document:
    with path.open("r", encoding="utf-8") as f:
        return Document.from_dict(json.load(f))


def verify(root: Path) -> int:
    """Print NG lines and totals. Return the number of problems found."""
    ng_count = 0
    ok_count = 0

    metadata_path = root / METADATA_FILE
    if not metadata_path.is_file():
        print(f"[NG] metadata not found: {metadata_path}")
        print("OK: 0")
        print("NG: 1")
        return 1
    try:
        data = json.loads(metadata_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("metadata must be a JSON object")
        metadata = MainMetadata.from_dict(data)
    except (OSError, KeyError, TypeError, ValueError, AttributeError) as e:
        print(f"[NG] failed to load metadata: {e}")
        print("OK: 0")
        print("NG: 1")
        return 1

    seen_ids: set[int] = set()
    for doc_id, path in iter_document_files(root):
        rel = path.relative_to(root).as_posix()
        try:
            document = load_document(path)
        except (OSError, KeyError, TypeError, ValueError) as e:
            ng_count += 1
            print(f"[NG] unreadable document: {rel} ({e})")
            continue
        if document.id != doc_id:
            ng_count += 1
            print(f"[NG] id mismatch: {rel} (file={doc_id}, record={document.id})")
            continue
        seen_ids.add(doc_id)

        record = metadata.items.get(doc_id)
        if record is None:
            ng_count += 1
            print(f"[NG] untracked document: {rel}")
        elif document.updated_at not in record.backups:
            ng_count += 1
            print(f"[NG] version not in history: {rel} ({document.updated_at.isoformat()})")
        else:
            ok_count += 1

    for doc_id, record in sorted(metadata.items.items()):
        if doc_id not in seen_ids:
            ng_count += 1
            print(f"[NG] tracked document has no file: doc{doc_id}.json")
        if not record.backups or record.last_updated != max(record.backups):
            ng_count += 1
            print(f"[NG] watermark differs from newest backup: doc{doc_id}.json")

    print(f"OK: {ok_count}")
    print(f"NG: {ng_count}")
    return ng_count


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify a Yuque backup directory")
    parser.add_argument("path", nargs="?", default="./", help="Backup directory (default: current directory)")
    args = parser.parse_args(argv)
    return 1 if verify(Path(args.path)) > 0 else 0


if __name__ == "__main__":
    sys.exit(main())
