"""
Shared fixtures: a transport that records every outbound call instead of
talking to Telegram, a fresh moderation store and a config with one admin.
"""

import itertools

import pytest

from rally.codec import encode
from rally.config import BotConfig
from rally.engine import TransitionEngine
from rally.errors import TransportError
from rally.moderation_store import ModerationStore
from rally.rally_model import Entry, Rally
from rally.transport import Transport

ADMIN = "@admin"


class RecordingTransport(Transport):
    def __init__(self):
        self.calls = []
        self.failing = set()
        self._ids = itertools.count(1000)

    def _record(self, name, **kwargs):
        if name in self.failing:
            raise TransportError(f"{name}: simulated failure")
        self.calls.append((name, kwargs))

    def named(self, name):
        return [kw for n, kw in self.calls if n == name]

    def send_message(self, chat_id, text, thread_id=None, menu=None):
        self._record("send_message", chat_id=chat_id, text=text, thread_id=thread_id, menu=menu)
        return next(self._ids)

    def edit_message(self, chat_id, message_id, text, menu):
        self._record("edit_message", chat_id=chat_id, message_id=message_id, text=text, menu=menu)

    def delete_message(self, chat_id, message_id):
        self._record("delete_message", chat_id=chat_id, message_id=message_id)

    def answer_callback(self, callback_id, text=""):
        self._record("answer_callback", callback_id=callback_id, text=text)

    def set_reaction(self, chat_id, message_id, emoji):
        self._record("set_reaction", chat_id=chat_id, message_id=message_id, emoji=emoji)


def make_rally(limit=5, initiator="@alice", signed=(), waiting=(), pencil=(), cancelled=False):
    def entries(items):
        out = []
        for item in items:
            if isinstance(item, Entry):
                out.append(item)
            elif isinstance(item, tuple):
                out.append(Entry(*item))
            else:
                out.append(Entry(item))
        return out

    return Rally(
        name="Футбол",
        date="пятница 19:00",
        limit=limit,
        initiator=initiator,
        signed_up=entries(signed),
        waiting_list=entries(waiting),
        penciled_in=entries(pencil),
        cancelled=cancelled,
    )


def rally_text(**kwargs):
    return encode(make_rally(**kwargs))


@pytest.fixture
def config():
    return BotConfig(token="test-token", admins={ADMIN}, name_map_path="")


@pytest.fixture
def store():
    return ModerationStore()


@pytest.fixture
def engine(store, config):
    return TransitionEngine(store, config)


@pytest.fixture
def transport():
    return RecordingTransport()
