"""Append-only transcript log, one JSON line per top-level chat request.

Entries land in ``transcripts-YYYYMMDD.jsonl`` under the configured
directory. ``write`` serializes concurrent writers with an asyncio lock;
``write_nowait`` is for paths that cannot await, such as a relay being torn
down by a client disconnect.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
import time
from typing import Any, Optional

from .types import TranscriptEntry

logger = logging.getLogger(__name__)


class TranscriptLogger:
    def __init__(self, dirpath: str):
        self.dir = dirpath
        os.makedirs(self.dir, exist_ok=True)
        self._lock: Optional[asyncio.Lock] = None
        self._file_lock = threading.Lock()

    def _file(self) -> str:
        return os.path.join(self.dir, f"transcripts-{time.strftime('%Y%m%d')}.jsonl")

    def _append(self, entry: TranscriptEntry) -> None:
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        with self._file_lock:
            with open(self._file(), "a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    async def write(self, entry: TranscriptEntry) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            self._append(entry)
        logger.debug("transcript.written req_id=%s ok=%s", entry.req_id, entry.ok)

    def write_nowait(self, entry: TranscriptEntry) -> None:
        self._append(entry)

    def read_all(self) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        if not os.path.isdir(self.dir):
            return entries
        for name in sorted(os.listdir(self.dir)):
            if not (name.startswith("transcripts-") and name.endswith(".jsonl")):
                continue
            with open(os.path.join(self.dir, name), "r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if line:
                        entries.append(json.loads(line))
        return entries
