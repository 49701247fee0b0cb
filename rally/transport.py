# rally/transport.py

import asyncio
import concurrent.futures
from typing import Any, Awaitable, Callable, Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import BadRequest, TelegramError

from rally.errors import TransportError
from rally.keyboard import Menu

NOT_MODIFIED = "message is not modified"


class Transport:
    """
    Blocking boundary to the chat service. Every method either completes or
    raises TransportError; callers decide whether to care.
    """

    def send_message(
        self,
        chat_id: int,
        text: str,
        thread_id: Optional[int] = None,
        menu: Optional[Menu] = None,
    ) -> Optional[int]:
        raise NotImplementedError

    def edit_message(self, chat_id: int, message_id: int, text: str, menu: Menu) -> None:
        raise NotImplementedError

    def delete_message(self, chat_id: int, message_id: int) -> None:
        raise NotImplementedError

    def answer_callback(self, callback_id: str, text: str = "") -> None:
        raise NotImplementedError

    def set_reaction(self, chat_id: int, message_id: int, emoji: str) -> None:
        raise NotImplementedError


def menu_to_markup(menu: Optional[Menu]) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(label, callback_data=action) for label, action in row] for row in (menu or [])]
    )


class TelegramTransport(Transport):
    """
    Runs python-telegram-bot coroutines on the worker's event loop and waits
    for them from the handler thread.
    """

    def __init__(self, bot: Bot, loop: asyncio.AbstractEventLoop, timeout: float = 30.0) -> None:
        self.bot = bot
        self.loop = loop
        self.timeout = timeout

    def _call(self, what: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        future = asyncio.run_coroutine_threadsafe(factory(), self.loop)
        try:
            return future.result(timeout=self.timeout)
        except BadRequest as e:
            if NOT_MODIFIED in str(e).lower():
                return None
            raise TransportError(f"{what}: {e}") from e
        except TelegramError as e:
            raise TransportError(f"{what}: {e}") from e
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise TransportError(f"{what}: timed out after {self.timeout}s") from e

    def send_message(self, chat_id, text, thread_id=None, menu=None):
        msg = self._call(
            "sendMessage",
            lambda: self.bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=thread_id,
                reply_markup=menu_to_markup(menu) if menu is not None else None,
            ),
        )
        return getattr(msg, "message_id", None)

    def edit_message(self, chat_id, message_id, text, menu):
        self._call(
            "editMessageText",
            lambda: self.bot.edit_message_text(
                chat_id=chat_id,
                message_id=message_id,
                text=text,
                reply_markup=menu_to_markup(menu),
            ),
        )

    def delete_message(self, chat_id, message_id):
        self._call(
            "deleteMessage",
            lambda: self.bot.delete_message(chat_id=chat_id, message_id=message_id),
        )

    def answer_callback(self, callback_id, text=""):
        self._call(
            "answerCallbackQuery",
            lambda: self.bot.answer_callback_query(callback_query_id=callback_id, text=text or None),
        )

    def set_reaction(self, chat_id, message_id, emoji):
        self._call(
            "setMessageReaction",
            lambda: self.bot.set_message_reaction(chat_id=chat_id, message_id=message_id, reaction=emoji),
        )
