"""JSON export of the full corpus, the recovery path before a reset."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .. import __version__
from .corpus import CorpusStore

BACKUP_PREFIX = "obituaries-backup-"


def backup_filename(moment: datetime) -> str:
    return f"{BACKUP_PREFIX}{moment.strftime('%Y-%m-%d-%H%M%S')}.json"


def export_backup(
    corpus: CorpusStore,
    backups_dir: Path | None = None,
    now: datetime | None = None,
) -> tuple[dict[str, Any], Path | None]:
    """Build the backup document; also write it under ``backups_dir`` when given."""

    moment = now or datetime.now(timezone.utc)
    rows = list(corpus.iter_all())
    document = {
        "exported_at": moment.isoformat(),
        "total_rows": len(rows),
        "version": __version__,
        "rows": rows,
    }
    if backups_dir is None:
        return document, None
    backups_dir.mkdir(parents=True, exist_ok=True)
    path = backups_dir / backup_filename(moment)
    with path.open("w", encoding="utf-8") as stream:
        json.dump(document, stream, indent=2, ensure_ascii=False)
    return document, path


__all__ = ["BACKUP_PREFIX", "backup_filename", "export_backup"]
