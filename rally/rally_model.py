# rally/rally_model.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

MAX_PLUS_FRIENDS = 4
LIMIT_MIN = 2
LIMIT_MAX = 30

SIGNED = "signed"
WAITING = "waiting"
PENCIL = "pencil"
LIST_ORDER = (SIGNED, WAITING, PENCIL)


@dataclass(frozen=True)
class Entry:
    """
    One occupied slot.

    number == 0 is the person themselves, number > 0 is a guest slot
    ("@bob +2"). Opaque entries could not be parsed into an identity; they
    keep their raw text in `identity` and never match anybody.
    """
    identity: str
    number: int = 0
    opaque: bool = False

    def owned_by(self, identity: str) -> bool:
        return not self.opaque and self.identity == identity

    def render(self) -> str:
        if self.opaque or self.number == 0:
            return self.identity
        return f"{self.identity} +{self.number}"


@dataclass
class Rally:
    name: str
    date: str
    limit: int
    initiator: str
    signed_up: List[Entry] = field(default_factory=list)
    waiting_list: List[Entry] = field(default_factory=list)
    penciled_in: List[Entry] = field(default_factory=list)
    cancelled: bool = False

    def has_room(self) -> bool:
        return len(self.signed_up) < self.limit

    def get_list(self, which: str) -> List[Entry]:
        if which == SIGNED:
            return self.signed_up
        if which == WAITING:
            return self.waiting_list
        if which == PENCIL:
            return self.penciled_in
        raise ValueError(f"Unknown list: {which}")

    def iter_lists(self) -> List[Tuple[str, List[Entry]]]:
        return [(which, self.get_list(which)) for which in LIST_ORDER]
