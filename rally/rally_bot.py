# rally/rally_bot.py

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from rally.codec import encode
from rally.commands import (
    apply_admin_command,
    create_rally,
    is_admin_command,
    is_create_command,
    parse_admin_command,
)
from rally.config import BotConfig
from rally.engine import OUTCOME_DELETE, OUTCOME_EDIT, Outcome, TransitionEngine
from rally.errors import AuthorizationError, CommandError, TransportError
from rally.keyboard import build_menu
from rally.moderation_store import ModerationStore
from rally.transport import Transport

logger = logging.getLogger("rally_bot")

REACTION_OK = "👍"
REACTION_FAIL = "👎"


def display_name(user: Optional[Dict[str, Any]]) -> str:
    """'@username' when the user has one, otherwise 'Last First'."""
    if not user:
        return ""
    username = (user.get("username") or "").strip()
    if username:
        return "@" + username
    first = (user.get("first_name") or "").strip()
    last = (user.get("last_name") or "").strip()
    return f"{last} {first}".strip()


class RallyBot:
    """
    Turns one Telegram update (JSON form) into core decisions and transport
    calls. Not thread-safe on purpose: updates must be fed one at a time.
    """

    def __init__(self, transport: Transport, store: ModerationStore, config: BotConfig) -> None:
        self.transport = transport
        self.store = store
        self.config = config
        self.engine = TransitionEngine(store, config)

    def handle_update(self, update: Dict[str, Any]) -> None:
        message = update.get("message")
        if message:
            self.handle_message(message)
            return

        callback = update.get("callback_query")
        if callback:
            self.handle_callback(callback)

    # -----------------------
    # Text commands
    # -----------------------

    def handle_message(self, message: Dict[str, Any]) -> None:
        text = (message.get("text") or "").strip()
        if not text:
            return

        chat_id = (message.get("chat") or {}).get("id")
        message_id = message.get("message_id")
        user = display_name(message.get("from"))

        if is_admin_command(text):
            self.handle_admin_command(text, user, chat_id, message_id)
        elif is_create_command(text):
            self.handle_create_command(text, user, chat_id, message_id, message.get("message_thread_id"))

    def handle_admin_command(self, text: str, user: str, chat_id: int, message_id: int) -> None:
        try:
            if not self.config.is_admin(user):
                raise AuthorizationError(user)
            cmd = parse_admin_command(text)
            apply_admin_command(cmd, self.store)
        except AuthorizationError:
            logger.debug("admin command from non-admin %r ignored", user)
            return
        except CommandError as e:
            logger.info("admin command rejected (%s): %s", user, e)
            self._react(chat_id, message_id, REACTION_FAIL)
            return

        logger.info("admin %s: %s %s", user, cmd.verb, cmd.target)
        self._react(chat_id, message_id, REACTION_OK)

    def handle_create_command(
        self,
        text: str,
        user: str,
        chat_id: int,
        message_id: int,
        thread_id: Optional[int],
    ) -> None:
        if not user or self.store.is_banned(user):
            self._react(chat_id, message_id, REACTION_FAIL)
            return

        try:
            rally = create_rally(text, user)
        except CommandError as e:
            logger.info("create command rejected (%s): %s", user, e)
            self._safe("sendMessage", self.transport.send_message, chat_id, str(e), thread_id)
            self._react(chat_id, message_id, REACTION_FAIL)
            return

        ok, _ = self._safe(
            "sendMessage",
            self.transport.send_message,
            chat_id,
            encode(rally),
            thread_id,
            build_menu(rally, rally.initiator, self.config),
        )
        logger.info("rally %r (limit %d) created by %s in chat %s", rally.name, rally.limit, user, chat_id)
        self._react(chat_id, message_id, REACTION_OK if ok else REACTION_FAIL)

    # -----------------------
    # Button presses
    # -----------------------

    def handle_callback(self, callback: Dict[str, Any]) -> Optional[Outcome]:
        callback_id = callback.get("id")
        message = callback.get("message")
        if not message:
            return None

        user = display_name(callback.get("from"))
        if not user or self.store.is_banned(user):
            self._answer(callback_id)
            return None

        chat_id = (message.get("chat") or {}).get("id")
        message_id = message.get("message_id")

        outcome = self.engine.apply(message.get("text") or "", user, callback.get("data") or "")

        if outcome.kind == OUTCOME_DELETE:
            self._safe("deleteMessage", self.transport.delete_message, chat_id, message_id)
        elif outcome.kind == OUTCOME_EDIT:
            self._safe("editMessageText", self.transport.edit_message, chat_id, message_id, outcome.text, outcome.menu)

        self._answer(callback_id, outcome.notice)
        return outcome

    # -----------------------
    # Transport helpers
    # -----------------------

    def _safe(self, what: str, fn: Callable[..., Any], *args: Any) -> Tuple[bool, Any]:
        try:
            return True, fn(*args)
        except TransportError as e:
            logger.error("%s failed: %s", what, e)
            return False, None

    def _answer(self, callback_id: Optional[str], text: str = "") -> None:
        if callback_id:
            self._safe("answerCallbackQuery", self.transport.answer_callback, callback_id, text)

    def _react(self, chat_id: int, message_id: int, emoji: str) -> None:
        self._safe("setMessageReaction", self.transport.set_reaction, chat_id, message_id, emoji)


def update_chat_id(update: Dict[str, Any]) -> Optional[int]:
    message = update.get("message")
    if not message:
        message = (update.get("callback_query") or {}).get("message")
    return ((message or {}).get("chat") or {}).get("id")
