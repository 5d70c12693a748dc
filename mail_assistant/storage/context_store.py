"""Per-user append-only context log with debounced JSON persistence and AI compression."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from mail_assistant.storage.debounce import DebouncedTask
from mail_assistant.storage.models import ContextEntry, ContextType, new_entry_id

if TYPE_CHECKING:
    from mail_assistant.ai.scheduler import RequestScheduler

logger = logging.getLogger(__name__)

#: Owner of entries found in a legacy flat-list file.
DEFAULT_USER_ID = "admin"

_DEFAULT_CONTEXT_PATH = Path("data/context.json")


class ContextSummarizer(Protocol):
    """Anything that can condense context entries into prose (a ProviderGateway)."""

    async def summarize_context(self, entries: Sequence[ContextEntry]) -> str: ...


class ContextStore:
    """In-memory per-user context logs backed by one JSON file.

    Appends are synchronous; the file is rewritten after a quiet period so
    bursts of appends cost one write. Structural changes (compression, purge)
    are written immediately. If a write fails the in-memory state remains
    authoritative for the rest of the process.

    Usage::

        store = ContextStore(Path("data/context.json"), summarizer=provider)
        await store.load()
        store.append(user.id, ContextType.CONVERSATION, "hello")
        await store.compress_if_needed(user.id)
        await store.close()
    """

    def __init__(
        self,
        path: str | Path = _DEFAULT_CONTEXT_PATH,
        summarizer: ContextSummarizer | None = None,
        *,
        scheduler: RequestScheduler | None = None,
        compression_threshold: int = 20_000,
        keep_recent: int = 5,
        debounce_seconds: float = 3.0,
    ) -> None:
        self._path = Path(path)
        self._summarizer = summarizer
        self._scheduler = scheduler
        self._threshold = compression_threshold
        self._keep_recent = max(keep_recent, 0)
        self._logs: dict[str, list[ContextEntry]] = {}
        self._writer = DebouncedTask(self.save, delay=debounce_seconds)
        self._compressing: set[str] = set()
        self._save_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def load(self) -> None:
        """Read the file, accepting both the per-user map and the legacy flat list.

        A missing file means an empty store; an unreadable one is logged and
        also starts empty (the next write replaces it).
        """
        self._logs = {}
        if not self._path.exists():
            logger.info("No context file at %s; starting empty", self._path)
            return
        try:
            text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
            raw = json.loads(text) if text.strip() else {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read context file %s: %s", self._path, exc)
            return

        if isinstance(raw, list):
            self._logs[DEFAULT_USER_ID] = self._parse_entries(raw, DEFAULT_USER_ID)
        elif isinstance(raw, dict):
            for user_id, entries in raw.items():
                if isinstance(entries, list):
                    self._logs[str(user_id)] = self._parse_entries(entries, str(user_id))
        else:
            logger.error("Unexpected context file shape: %s", type(raw).__name__)
        logger.info(
            "Loaded context for %d user(s) from %s", len(self._logs), self._path
        )

    async def close(self) -> None:
        """Flush any pending debounced write."""
        await self._writer.flush()

    # ── Write API ──────────────────────────────────────────────────────────────

    def append(
        self,
        user_id: str,
        type: ContextType,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ContextEntry:
        """Append one entry now; persist after the debounce quiet period."""
        entry = ContextEntry(
            id=new_entry_id(),
            timestamp=datetime.now(),
            type=type,
            content=content,
            metadata=metadata,
        )
        self._logs.setdefault(user_id, []).append(entry)
        self._schedule_save()
        logger.debug("Context entry added for %s: %s", user_id, type.value)
        return entry

    async def purge(self, user_id: str) -> bool:
        """Delete every entry for one user and write immediately."""
        if self._logs.pop(user_id, None) is None:
            return False
        self._writer.cancel()
        await self.save()
        logger.info("Purged context for user %s", user_id)
        return True

    # ── Read API ───────────────────────────────────────────────────────────────

    def entries(self, user_id: str, limit: int | None = None) -> list[ContextEntry]:
        log = self._logs.get(user_id, [])
        return list(log[-limit:]) if limit else list(log)

    def recent(
        self, user_id: str, days: float, type: ContextType | None = None
    ) -> list[ContextEntry]:
        """Entries from the last ``days`` days, oldest first."""
        cutoff = datetime.now() - timedelta(days=days)
        return [
            e
            for e in self._logs.get(user_id, [])
            if e.timestamp >= cutoff and (type is None or e.type == type)
        ]

    def users(self) -> list[str]:
        return list(self._logs)

    def total_length(self, user_id: str) -> int:
        return sum(len(e.content) for e in self._logs.get(user_id, []))

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            user_id: {"entries": len(log), "total_length": self.total_length(user_id)}
            for user_id, log in self._logs.items()
        }

    # ── Compression ────────────────────────────────────────────────────────────

    def should_compress(self, user_id: str) -> bool:
        return self.total_length(user_id) > self._threshold

    async def compress_if_needed(self, user_id: str) -> bool:
        if not self.should_compress(user_id):
            return False
        return await self.compress(user_id)

    async def compress(self, user_id: str) -> bool:
        """Collapse all but the newest entries into one AI summary entry.

        Returns True if the log was rewritten. Never raises: a failed summary
        leaves the log exactly as it was.
        """
        if self._summarizer is None:
            logger.warning("Context compression requested but no summarizer configured")
            return False
        if user_id in self._compressing:
            logger.debug("Compression already running for %s", user_id)
            return False

        log = self._logs.get(user_id, [])
        split = len(log) - self._keep_recent
        if split < 2:
            logger.debug("Nothing to compress for %s (%d entries)", user_id, len(log))
            return False
        candidates = log[:split]

        self._compressing.add(user_id)
        try:
            summary = await self._summarize(candidates)
            if not summary.strip():
                raise ValueError("summarizer returned empty text")
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to compress context for %s: %s", user_id, exc, exc_info=True)
            return False
        finally:
            self._compressing.discard(user_id)

        # Entries appended while the summary was being generated are kept too.
        current = self._logs.get(user_id, [])
        if current[:split] != candidates:
            logger.info("Context for %s changed during compression; keeping it as is", user_id)
            return False
        kept = current[split:]
        compressed = ContextEntry(
            id=new_entry_id(),
            timestamp=candidates[-1].timestamp,
            type=ContextType.CONVERSATION,
            content=summary.strip(),
            metadata={"compressed": True, "originalEntries": len(candidates)},
        )
        self._logs[user_id] = [compressed, *kept]
        self._writer.cancel()
        await self.save()
        logger.info(
            "Context compressed for %s: %d entries → 1 summary + %d kept",
            user_id,
            len(candidates),
            len(kept),
        )
        return True

    async def _summarize(self, candidates: list[ContextEntry]) -> str:
        assert self._summarizer is not None
        summarizer = self._summarizer
        if self._scheduler is not None:
            return await self._scheduler.run(lambda: summarizer.summarize_context(candidates))
        return await summarizer.summarize_context(candidates)

    # ── Persistence ────────────────────────────────────────────────────────────

    async def save(self) -> None:
        """Write the whole store now. Failures are logged, not raised.

        Saves are serialised and each one snapshots memory after taking the
        lock, so the last write to finish always carries the newest state.
        """
        async with self._save_lock:
            payload = {
                user_id: [e.to_dict() for e in log] for user_id, log in self._logs.items()
            }
            try:
                await asyncio.to_thread(self._write_file, payload)
                logger.debug("Context saved to %s", self._path)
            except (OSError, TypeError, ValueError) as exc:
                logger.error("Failed to save context to %s: %s", self._path, exc, exc_info=True)

    def _write_file(self, payload: dict[str, Any]) -> None:
        """Blocking: write via a uniquely named temp file and atomic rename."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(payload, ensure_ascii=False, indent=2)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp.write(text)
        try:
            os.replace(tmp.name, self._path)
        except OSError:
            Path(tmp.name).unlink(missing_ok=True)
            raise

    def _schedule_save(self) -> None:
        try:
            self._writer.schedule()
        except RuntimeError:
            # No running loop (synchronous caller): the next flush or
            # structural write persists this entry.
            logger.debug("No event loop; deferring context write")

    @staticmethod
    def _parse_entries(raw: list[Any], user_id: str) -> list[ContextEntry]:
        entries: list[ContextEntry] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(ContextEntry.from_dict(item))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping malformed context entry for %s: %s", user_id, exc)
        return entries
