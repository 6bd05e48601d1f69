import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from videoconv.utils.file_utils import remove_file

logger = logging.getLogger(__name__)

ExpiredCallback = Callable[[str], None]


@dataclass
class RetentionEntry:
    path: str
    expires_at: datetime
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class RetentionReaper:
    """One-shot delayed deletion of job artifacts.

    At most one entry exists per path. Timers live in memory only; files
    outlive them across a restart and are left to ``RetentionSweeper``.
    """

    def __init__(self):
        self._entries: Dict[str, RetentionEntry] = {}

    @property
    def entries(self) -> List[RetentionEntry]:
        return list(self._entries.values())

    def is_scheduled(self, path: str) -> bool:
        return path in self._entries

    def schedule(self, path: str, delay: float,
                 on_expired: Optional[ExpiredCallback] = None) -> RetentionEntry:
        existing = self._entries.get(path)
        if existing is not None:
            logger.debug(f"Deletion already scheduled for {path} at {existing.expires_at}")
            return existing
        entry = RetentionEntry(path=path, expires_at=datetime.utcnow() + timedelta(seconds=delay))
        entry.task = asyncio.create_task(self._expire(entry, delay, on_expired))
        self._entries[path] = entry
        logger.debug(f"Scheduled deletion of {path} in {delay:.0f}s")
        return entry

    async def _expire(self, entry: RetentionEntry, delay: float,
                      on_expired: Optional[ExpiredCallback]) -> None:
        await asyncio.sleep(delay)
        self._entries.pop(entry.path, None)
        if remove_file(entry.path):
            logger.info(f"Deleted expired file: {entry.path}")
        else:
            logger.debug(f"Expired file already gone: {entry.path}")
        if on_expired is not None:
            try:
                on_expired(entry.path)
            except Exception as e:
                logger.error(f"Expiry callback failed for {entry.path}: {e}")

    async def stop(self):
        tasks = [e.task for e in self._entries.values() if e.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._entries.clear()


class RetentionSweeper:
    """Periodic scan deleting any file older than ``max_age`` seconds.

    Works from filesystem mtimes alone, so it also reclaims files whose jobs
    were lost in a restart.
    """

    def __init__(self, directories: Iterable[str], interval: float, max_age: float,
                 on_removed: Optional[ExpiredCallback] = None):
        self.directories = list(directories)
        self.interval = interval
        self.max_age = max_age
        self.on_removed = on_removed
        self.running = True

    async def start(self):
        logger.info(f"RetentionSweeper started (interval={self.interval}s, max_age={self.max_age}s)")
        while self.running:
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"Retention sweep error: {e}")
            await asyncio.sleep(self.interval)

    async def stop(self):
        self.running = False

    def sweep_once(self, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        removed = 0
        for directory in self.directories:
            for entry in self._scan_directory(directory):
                try:
                    mtime = entry.stat(follow_symlinks=False).st_mtime
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.error(f"Cannot stat {entry.path}: {e}")
                    continue
                if now - mtime <= self.max_age:
                    continue
                if remove_file(entry.path):
                    removed += 1
                    logger.info(f"Swept expired file: {entry.name}")
                    if self.on_removed is not None:
                        try:
                            self.on_removed(entry.path)
                        except Exception as e:
                            logger.error(f"Sweep callback failed for {entry.path}: {e}")
        if removed:
            logger.info(f"Retention sweep removed {removed} file(s)")
        return removed

    @staticmethod
    def _scan_directory(path: str) -> List[os.DirEntry]:
        try:
            with os.scandir(path) as it:
                return [entry for entry in it if entry.is_file(follow_symlinks=False)]
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error(f"Cannot scan {path}: {e}")
            return []
