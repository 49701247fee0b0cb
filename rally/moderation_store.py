# rally/moderation_store.py

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set, Tuple

from rally.rally_model import Entry, Rally

logger = logging.getLogger("rally_bot")


class RWLock:
    """
    Many readers or one writer. Writers wait for active readers to drain
    and block new readers while waiting.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def load_name_map(path: str) -> List[Tuple[str, str]]:
    """
    Read an "old:new" per line mapping file.
    Blank lines, '#' comments and lines without a usable old name are skipped.
    """
    pairs: List[Tuple[str, str]] = []
    with Path(path).open("r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#") or ":" not in line:
                continue
            old, new = line.split(":", 1)
            old = old.strip()
            if old:
                pairs.append((old, new.strip()))
    return pairs


class ModerationStore:
    """
    Process-wide admin state shared by every rally message:

    - ban set: entries of banned identities are scrubbed from every render
    - rename map: one-shot textual substitutions, consumed by the first
      decode whose text contains the old name
    - delete-on-cancel: one-shot flag, the next admin cancel deletes the
      message instead of editing it

    Each structure has its own lock so a rename never waits on a ban check.
    """

    def __init__(self, name_map_path: Optional[str] = None) -> None:
        self._bans_lock = RWLock()
        self._bans: List[str] = []

        self._renames_lock = RWLock()
        self._renames: Dict[str, str] = {}

        self._delete_lock = RWLock()
        self._delete_on_cancel = False

        self._name_map_lock = threading.Lock()
        self._name_map_path = name_map_path
        self._name_map_loaded = False

    # -----------------------
    # Bans
    # -----------------------

    def is_banned(self, identity: str) -> bool:
        with self._bans_lock.read():
            return identity in self._bans

    def add_ban(self, identity: str) -> None:
        if not identity:
            return
        with self._bans_lock.write():
            if identity not in self._bans:
                self._bans.append(identity)

    def remove_ban(self, identity: str) -> None:
        with self._bans_lock.write():
            self._bans = [u for u in self._bans if u != identity]

    def clear_bans(self) -> None:
        with self._bans_lock.write():
            self._bans = []

    def banned(self) -> Set[str]:
        with self._bans_lock.read():
            return set(self._bans)

    def filter_banned(self, entries: List[Entry]) -> List[Entry]:
        # opaque entries have no identity to check, so they always stay
        banned = self.banned()
        return [e for e in entries if e.opaque or e.identity not in banned]

    def scrub(self, rally: Rally) -> Rally:
        """
        Drop banned entries from every list. Roster seats freed this way go
        to the front of the waiting list, as with an unsign.
        """
        rally.signed_up = self.filter_banned(rally.signed_up)
        rally.waiting_list = self.filter_banned(rally.waiting_list)
        rally.penciled_in = self.filter_banned(rally.penciled_in)
        while rally.waiting_list and rally.has_room():
            rally.signed_up.append(rally.waiting_list.pop(0))
        return rally

    # -----------------------
    # Renames
    # -----------------------

    def set_rename(self, old: str, new: str) -> None:
        if not old:
            return
        with self._renames_lock.write():
            self._renames[old] = new

    def clear_renames(self) -> None:
        with self._renames_lock.write():
            self._renames = {}

    def pending_renames(self) -> Dict[str, str]:
        with self._renames_lock.read():
            return dict(self._renames)

    def consume_renames(self, text: str) -> Tuple[str, bool]:
        """
        Apply every pending rename whose old name occurs in `text` and forget
        it. Check, substitute and delete happen under one write lock.
        """
        changed = False
        with self._renames_lock.write():
            for old in list(self._renames):
                if old and old in text:
                    new = self._renames.pop(old)
                    text = text.replace(old, new)
                    changed = True
                    logger.info("rename consumed: %r -> %r", old, new)
        return text, changed

    # -----------------------
    # Static name map file
    # -----------------------

    def ensure_name_map_loaded(self) -> int:
        """
        Queue the configured name map file as one-shot renames, the first
        time it is asked for. Returns how many mappings were queued.
        """
        with self._name_map_lock:
            if self._name_map_loaded or not self._name_map_path:
                return 0
            self._name_map_loaded = True
            path = self._name_map_path

        try:
            pairs = load_name_map(path)
        except OSError as e:
            logger.warning("name map %s could not be read: %s", path, e)
            return 0

        for old, new in pairs:
            self.set_rename(old, new)
        logger.info("name map %s: queued %d renames", path, len(pairs))
        return len(pairs)

    # -----------------------
    # Delete on cancel
    # -----------------------

    def arm_delete_on_cancel(self) -> None:
        with self._delete_lock.write():
            self._delete_on_cancel = True

    def delete_on_cancel_armed(self) -> bool:
        with self._delete_lock.read():
            return self._delete_on_cancel

    def take_delete_on_cancel(self) -> bool:
        """Disarm the flag and report whether it was armed."""
        with self._delete_lock.write():
            armed = self._delete_on_cancel
            self._delete_on_cancel = False
            return armed

    def clear(self) -> None:
        self.clear_bans()
        self.clear_renames()
