# rally/engine.py

import logging
from dataclasses import dataclass, field
from typing import Optional

from rally.codec import decode, encode, strip_cancel_marker
from rally.config import BotConfig
from rally.errors import CapacityError, ParseError
from rally.instances import (
    add_instance,
    at_capacity,
    find_lowest_pencil,
    promote_pencil,
    remove_highest_instance,
)
from rally.keyboard import (
    ACTIONS,
    CANCEL,
    RESUME,
    SIGN_UP,
    SIGN_UP_PENCIL,
    UNSIGN,
    Menu,
    build_menu,
    build_resume_menu,
)
from rally.moderation_store import ModerationStore
from rally.rally_model import MAX_PLUS_FRIENDS, PENCIL, SIGNED, WAITING, Rally

logger = logging.getLogger("rally_bot")

OUTCOME_NONE = "none"
OUTCOME_EDIT = "edit"
OUTCOME_DELETE = "delete"

NOTICE_CAPACITY = f"Максимум {MAX_PLUS_FRIENDS} друзей уже записано"
NOTICE_CANCELLED = "Сбор отменён"
NOTICE_RESUMED = "Сбор возобновлён"
NOTICE_DELETED = "Сообщение удалено"


@dataclass
class Outcome:
    """
    What the transport should do after one action.

    kind:
      - "none":   leave the message alone
      - "edit":   replace the message text and keyboard
      - "delete": remove the message
    notice is the callback answer shown to the actor ("" = silent).
    """
    kind: str = OUTCOME_NONE
    text: Optional[str] = None
    menu: Menu = field(default_factory=list)
    notice: str = ""
    rally: Optional[Rally] = None


def texts_differ(new_text: str, current_text: str) -> bool:
    # Telegram trims trailing whitespace from stored message text
    return (new_text or "").rstrip() != (current_text or "").rstrip()


class TransitionEngine:
    """
    Applies one (actor, action) pair to the rally encoded in a message.

    The rally is decoded from `current_text` on every call and never kept
    between calls. Callers must not run two transitions on the same message
    concurrently.
    """

    def __init__(self, store: ModerationStore, config: BotConfig) -> None:
        self.store = store
        self.config = config

    def apply(self, current_text: str, actor: str, action: str) -> Outcome:
        if action not in ACTIONS:
            logger.info("unknown action %r from %s", action, actor)
            return Outcome()

        text, renamed = self.store.consume_renames(current_text or "")
        try:
            rally = decode(text)
        except ParseError as e:
            logger.warning("rally parse error (action=%s actor=%s): %s", action, actor, e)
            return Outcome()

        logger.debug("action=%s actor=%s renamed=%s rally=%s", action, actor, renamed, rally.name)

        if action == CANCEL:
            return self._cancel(rally, actor, current_text)
        if action == RESUME:
            return self._resume(rally, actor, text, current_text)

        notice = ""
        if rally.cancelled:
            logger.debug("ignoring %s on cancelled rally", action)
        else:
            try:
                if action == SIGN_UP:
                    self.sign_up(rally, actor)
                elif action == UNSIGN:
                    self.unsign(rally, actor)
                elif action == SIGN_UP_PENCIL:
                    self.sign_up_pencil(rally, actor)
            except CapacityError as e:
                notice = str(e)

        return self._finish(rally, current_text, notice)

    # -----------------------
    # Mutations
    # -----------------------

    def sign_up(self, rally: Rally, actor: str) -> None:
        pencil_idx = find_lowest_pencil(rally, actor)
        if pencil_idx is not None:
            promote_pencil(rally, pencil_idx)
            return

        if at_capacity(rally, actor):
            raise CapacityError(NOTICE_CAPACITY)

        target = SIGNED if rally.has_room() else WAITING
        if not add_instance(rally, target, actor):
            raise CapacityError(NOTICE_CAPACITY)

    def unsign(self, rally: Rally, actor: str) -> None:
        removed = remove_highest_instance(rally, actor)
        if removed is None:
            logger.debug("unsign: %s holds no slot", actor)

    def sign_up_pencil(self, rally: Rally, actor: str) -> None:
        if at_capacity(rally, actor):
            raise CapacityError(NOTICE_CAPACITY)
        if not add_instance(rally, PENCIL, actor):
            raise CapacityError(NOTICE_CAPACITY)

    # -----------------------
    # Lifecycle
    # -----------------------

    def _cancel(self, rally: Rally, actor: str, current_text: str) -> Outcome:
        if not self.config.can_manage(actor, rally.initiator):
            return self._finish(rally, current_text, "")

        if self.config.is_admin(actor) and self.store.take_delete_on_cancel():
            logger.info("delete-on-cancel consumed by %s", actor)
            return Outcome(kind=OUTCOME_DELETE, notice=NOTICE_DELETED, rally=rally)

        rally.cancelled = True
        self.store.scrub(rally)
        new_text = encode(rally)
        kind = OUTCOME_EDIT if texts_differ(new_text, current_text) else OUTCOME_NONE
        return Outcome(
            kind=kind,
            text=new_text,
            menu=build_resume_menu(rally, actor, self.config),
            notice=NOTICE_CANCELLED,
            rally=rally,
        )

    def _resume(self, rally: Rally, actor: str, text: str, current_text: str) -> Outcome:
        if not self.config.can_manage(actor, rally.initiator) or not rally.cancelled:
            return self._finish(rally, current_text, "")

        self.store.ensure_name_map_loaded()
        body, _ = self.store.consume_renames(strip_cancel_marker(text))
        try:
            resumed = decode(body)
        except ParseError as e:
            logger.warning("resume parse error: %s", e)
            resumed = rally
        resumed.cancelled = False

        return self._finish(resumed, current_text, NOTICE_RESUMED)

    def _finish(self, rally: Rally, current_text: str, notice: str) -> Outcome:
        self.store.scrub(rally)
        new_text = encode(rally)
        if not texts_differ(new_text, current_text):
            return Outcome(kind=OUTCOME_NONE, notice=notice, rally=rally)
        return Outcome(
            kind=OUTCOME_EDIT,
            text=new_text,
            menu=build_menu(rally, rally.initiator, self.config),
            notice=notice,
            rally=rally,
        )
