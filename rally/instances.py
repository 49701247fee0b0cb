# rally/instances.py
#
# Guest-slot bookkeeping shared by every mutating action.
# Lists are always scanned in the order signed -> waiting -> pencil.

import re
from typing import List, Optional, Tuple

from rally.rally_model import MAX_PLUS_FRIENDS, SIGNED, WAITING, Entry, Rally

_NUMBER_RE = re.compile(r"[0-9]+")


def parse_instance(entry: str) -> Tuple[str, int, bool]:
    """
    "@bob"     -> ("@bob", 0, True)
    "@bob +2"  -> ("@bob", 2, True)
    "@bob +"   -> ("@bob", 0, True)
    "@bob +x"  -> ("", 0, False)
    """
    entry = (entry or "").strip()
    if not entry:
        return "", 0, False

    i = entry.rfind("+")
    if i == -1:
        return entry, 0, True

    base = entry[:i].strip()
    num = entry[i + 1:].strip()
    if base and not num:
        return base, 0, True
    if not base or not _NUMBER_RE.fullmatch(num):
        return "", 0, False
    return base, int(num), True


def parse_entry(text: str) -> Entry:
    base, n, ok = parse_instance(text)
    if not ok:
        return Entry(identity=(text or "").strip(), opaque=True)
    return Entry(identity=base, number=n)


def find_all_instances(rally: Rally, identity: str) -> List[int]:
    numbers = []
    for _, entries in rally.iter_lists():
        for e in entries:
            if e.owned_by(identity):
                numbers.append(e.number)
    return numbers


def count_instances(rally: Rally, identity: str) -> int:
    return len(find_all_instances(rally, identity))


def at_capacity(rally: Rally, identity: str) -> bool:
    return count_instances(rally, identity) >= MAX_PLUS_FRIENDS


def add_instance(rally: Rally, target: str, identity: str) -> bool:
    """
    Append the next instance of `identity` to the `target` list.
    Returns False (and leaves the rally untouched) when the highest owned
    instance number is already MAX_PLUS_FRIENDS.
    """
    numbers = find_all_instances(rally, identity)
    entries = rally.get_list(target)

    if not numbers:
        entries.append(Entry(identity))
        return True

    max_n = max(numbers)
    if max_n >= MAX_PLUS_FRIENDS:
        return False

    entries.append(Entry(identity, max_n + 1))
    return True


def _find_highest(rally: Rally, identity: str) -> Optional[Tuple[str, int]]:
    best: Optional[Tuple[str, int]] = None
    best_n = -1
    for which, entries in rally.iter_lists():
        for idx, e in enumerate(entries):
            if not e.owned_by(identity):
                continue
            # strictly greater: the earliest list keeps a tie
            if e.number > best_n:
                best_n = e.number
                best = (which, idx)
    return best


def remove_highest_instance(rally: Rally, identity: str) -> Optional[Entry]:
    """
    Drop the most recently added instance of `identity` from wherever it is.
    A seat freed in the main roster is refilled from the front of the
    waiting list.
    """
    found = _find_highest(rally, identity)
    if found is None:
        return None

    which, idx = found
    removed = rally.get_list(which).pop(idx)

    if which == SIGNED and rally.waiting_list:
        rally.signed_up.append(rally.waiting_list.pop(0))

    return removed


def find_lowest_pencil(rally: Rally, identity: str) -> Optional[int]:
    """Index in penciled_in of the lowest-numbered instance owned by identity."""
    best_idx = None
    best_n = -1
    for idx, e in enumerate(rally.penciled_in):
        if not e.owned_by(identity):
            continue
        if best_idx is None or e.number < best_n:
            best_idx = idx
            best_n = e.number
    return best_idx


def promote_pencil(rally: Rally, pencil_idx: int) -> Entry:
    """Move a pencilled entry into the roster, or the waiting list when full."""
    entry = rally.penciled_in.pop(pencil_idx)
    target = SIGNED if rally.has_room() else WAITING
    rally.get_list(target).append(entry)
    return entry
