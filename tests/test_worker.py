import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest
from telegram.error import BadRequest, NetworkError

from rally.db_connection import DbConnection
from rally.entities import QueueMessage
from rally.errors import TransportError
from rally.keyboard import build_menu
from rally.rally_bot import RallyBot
from rally.transport import TelegramTransport, menu_to_markup
from worker_main import (
    TELEGRAM_UPDATE,
    AppHost,
    AsyncGuard,
    Executor,
    RallyApp,
    TelegramPoller,
    telegram_sender_id,
)

from conftest import make_rally


class RecordingExecutor:
    def __init__(self):
        self.jobs = []

    def execute(self, job):
        self.jobs.append(job)


class FakeRallyBot:
    def __init__(self):
        self.updates = []

    def handle_update(self, update):
        self.updates.append(update)


def test_sender_id_uses_chat():
    assert telegram_sender_id({"message": {"chat": {"id": -5}}}) == "tg::-5"
    assert telegram_sender_id({}) == "tg::"


def test_app_host_routes_by_prefix():
    rally_bot = FakeRallyBot()
    host = AppHost([RallyApp(rally_bot)])
    host.process_queue_job({"id": "1", "sender_id": "tg::-5", "type": TELEGRAM_UPDATE, "payload": {"update_id": 1}})
    assert rally_bot.updates == [{"update_id": 1}]


def test_app_host_drops_unknown_prefix_and_type():
    rally_bot = FakeRallyBot()
    host = AppHost([RallyApp(rally_bot)])
    host.process_queue_job({"id": "1", "sender_id": "wa::1", "type": TELEGRAM_UPDATE, "payload": {}})
    host.process_queue_job({"id": "2", "sender_id": "tg::1", "type": "other", "payload": {}})
    assert rally_bot.updates == []


def test_app_host_survives_handler_errors():
    class Exploding:
        def handle_update(self, update):
            raise ValueError("boom")

    host = AppHost([RallyApp(Exploding())])
    host.process_queue_job({"id": "1", "sender_id": "tg::1", "type": TELEGRAM_UPDATE, "payload": {}})


def test_executor_runs_real_bot(transport, store, config):
    host = AppHost([RallyApp(RallyBot(transport, store, config))])
    update = {
        "update_id": 1,
        "message": {
            "message_id": 3,
            "chat": {"id": 10},
            "from": {"id": 1, "username": "alice"},
            "text": "/сбор Бег 4 суббота",
        },
    }
    Executor(host).execute({"id": "1", "sender_id": telegram_sender_id(update), "type": TELEGRAM_UPDATE, "payload": update})
    assert len(transport.named("send_message")) == 1


@pytest.fixture
def session_factory(tmp_path):
    return DbConnection(f"sqlite:///{tmp_path / 'queue.db'}").build_db_session_factory()


def _enqueue(session_factory, receiver, payload, created_at):
    session = session_factory()
    try:
        session.add(
            QueueMessage(
                sender_id="tg::1",
                receiver_id=receiver,
                type=TELEGRAM_UPDATE,
                update_id=payload["update_id"],
                payload=payload,
                created_at=created_at,
            )
        )
        session.commit()
    finally:
        session.close()


def test_async_guard_drains_only_its_receiver(session_factory):
    now = datetime.now(timezone.utc)
    _enqueue(session_factory, "rally_worker", {"update_id": 2}, now)
    _enqueue(session_factory, "rally_worker", {"update_id": 1}, now - timedelta(seconds=5))
    _enqueue(session_factory, "someone_else", {"update_id": 99}, now - timedelta(seconds=10))

    executor = RecordingExecutor()
    guard = AsyncGuard(executor, session_factory, receiver_id="rally_worker", poll_interval=0)

    assert asyncio.run(guard.run_once())
    assert asyncio.run(guard.run_once())
    assert not asyncio.run(guard.run_once())
    assert [job["payload"]["update_id"] for job in executor.jobs] == [1, 2]

    session = session_factory()
    try:
        assert session.query(QueueMessage).count() == 1
    finally:
        session.close()


def test_async_guard_follows_update_order_not_arrival(session_factory):
    now = datetime.now(timezone.utc)
    _enqueue(session_factory, "rally_worker", {"update_id": 501}, now - timedelta(seconds=5))
    _enqueue(session_factory, "rally_worker", {"update_id": 500}, now)

    executor = RecordingExecutor()
    guard = AsyncGuard(executor, session_factory, receiver_id="rally_worker", poll_interval=0)
    while asyncio.run(guard.run_once()):
        pass

    assert [job["payload"]["update_id"] for job in executor.jobs] == [500, 501]


class FakeUpdate:
    def __init__(self, update_id, chat_id):
        self.update_id = update_id
        self.chat_id = chat_id

    def to_dict(self):
        return {"update_id": self.update_id, "message": {"chat": {"id": self.chat_id}, "text": "hi"}}


class FakeBot:
    def __init__(self, batches):
        self.batches = list(batches)
        self.offsets = []

    async def get_updates(self, offset=None, timeout=None, allowed_updates=None):
        self.offsets.append(offset)
        return self.batches.pop(0) if self.batches else []


def test_poller_advances_offset_and_runs_in_order():
    bot = FakeBot([[FakeUpdate(10, 1), FakeUpdate(11, 2)], [FakeUpdate(12, 1)]])
    executor = RecordingExecutor()
    poller = TelegramPoller(bot, executor, timeout=0)

    assert asyncio.run(poller.poll_once()) == 2
    assert asyncio.run(poller.poll_once()) == 1
    assert bot.offsets == [None, 12]
    assert poller.offset == 13
    assert [job["sender_id"] for job in executor.jobs] == ["tg::1", "tg::2", "tg::1"]
    assert all(job["type"] == TELEGRAM_UPDATE for job in executor.jobs)


def test_menu_to_markup(config):
    rally = make_rally()
    markup = menu_to_markup(build_menu(rally, rally.initiator, config))
    assert len(markup.inline_keyboard) == 4
    assert markup.inline_keyboard[0][0].callback_data == "sign_up"


@pytest.fixture
def loop_thread():
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


class ScriptedBot:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def edit_message_text(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error


def test_transport_ignores_not_modified(loop_thread):
    bot = ScriptedBot(BadRequest("Message is not modified: specified new message content is the same"))
    TelegramTransport(bot, loop_thread, timeout=5).edit_message(1, 2, "x", [])
    assert bot.calls[0]["message_id"] == 2


@pytest.mark.parametrize("error", [BadRequest("Message to edit not found"), NetworkError("down")])
def test_transport_wraps_telegram_errors(loop_thread, error):
    transport = TelegramTransport(ScriptedBot(error), loop_thread, timeout=5)
    with pytest.raises(TransportError):
        transport.edit_message(1, 2, "x", [])
