# worker_main.py
"""
Rally worker: the single consumer of chat updates.

Where updates come from (UPDATE_SOURCE)
---------------------------------------
- "poll"  (default): TelegramPoller long-polls getUpdates and feeds each
  update to the executor.
- "queue": server.py receives webhook calls and writes QueueMessage rows.
  AsyncGuard drains rows where
      QueueMessage.receiver_id == QUEUE_RECEIVER_ID
  in Telegram update_id order, arrival time breaking ties.

Routing
-------
Routing is done by sender_id prefix, as "<app_key><app_key_delim><chat_id>".
Telegram updates are addressed "tg::<chat_id>" and go to RallyApp.
If sender_id does not match any registered app prefix, the job is dropped
with an error log.

Ordering
--------
Exactly one update is in flight at any time. Each one runs in a worker
thread (the handlers block on the transport) and is awaited before the next
is taken. A rally message is re-read, mutated and written back inside one
update, so this ordering is the only thing keeping two button presses on the
same message from racing.
"""

import asyncio
import logging
import os
import traceback
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
from telegram import Bot
from telegram.error import TelegramError
from telegram.request import HTTPXRequest

from rally.config import BotConfig
from rally.db_connection import DbConnection
from rally.entities import QueueMessage
from rally.moderation_store import ModerationStore
from rally.rally_bot import RallyBot, update_chat_id
from rally.transport import TelegramTransport

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger("rally_worker")

TELEGRAM_UPDATE = "telegram_update"


def telegram_sender_id(update: Dict[str, Any]) -> str:
    return f"{RallyApp.key}{RallyApp.key_delim}{update_chat_id(update) or ''}"


class RallyApp:
    """
    Telegram rally bot wrapper.

    sender_id must start with: "tg::"
    """
    key = "tg"
    key_delim = "::"

    def __init__(self, rally_bot: RallyBot) -> None:
        self.rally_bot = rally_bot

    def handle(self, job: Dict[str, Any], chat_id: str) -> None:
        if job.get("type") != TELEGRAM_UPDATE:
            logger.warning("RallyApp: unexpected job type %r for chat %s", job.get("type"), chat_id)
            return
        self.rally_bot.handle_update(job.get("payload") or {})


class AppHost:
    def __init__(self, apps: List[Any]):
        self.apps = list(apps or [])

    def _resolve_app(self, sender_full: str) -> Tuple[Any, str, str]:
        """
        STRICT: must match a registered app prefix.
        Returns: (app, matched_prefix, remainder)
        """
        candidates: List[Tuple[int, str, Any]] = []

        for app in self.apps:
            key = getattr(app, "key", "")
            delim = getattr(app, "key_delim", "")
            prefix = f"{key}{delim}"
            if not prefix:
                continue
            if sender_full.startswith(prefix):
                candidates.append((len(prefix), prefix, app))

        if not candidates:
            known = [f"{getattr(a,'key','')}{getattr(a,'key_delim','')}" for a in self.apps]
            raise RuntimeError(f"No app matched sender_id='{sender_full}'. Known prefixes: {known}")

        candidates.sort(key=lambda x: x[0], reverse=True)
        _, prefix, app = candidates[0]
        return app, prefix, sender_full[len(prefix):]

    def process_queue_job(self, job: Dict[str, Any]) -> None:
        sender_full = str(job.get("sender_id") or "")
        msg_type = job.get("type") or "unknown"

        try:
            app, _, remainder = self._resolve_app(sender_full)
            app.handle(job, remainder)
        except Exception as e:
            # one bad update must never stop the loop
            logger.error("Error processing job id=%s type=%s: %s", job.get("id"), msg_type, e)
            traceback.print_exc()


class Executor:
    def __init__(self, host: AppHost):
        self.host = host

    def execute(self, job: Dict[str, Any]) -> None:
        self.host.process_queue_job(job)


class AsyncGuard:
    """Drains the webhook queue, one row at a time, lowest update_id first."""

    def __init__(
        self,
        executor: Executor,
        session_factory: Callable[[], Session],
        receiver_id: str,
        poll_interval: float = 1.0,
    ):
        self.executor = executor
        self.SessionFactory = session_factory
        self.receiver_id = receiver_id
        self.poll_interval = poll_interval

    def _take_next(self) -> Optional[Dict[str, Any]]:
        session = self.SessionFactory()
        try:
            row = (
                session.query(QueueMessage)
                .filter(QueueMessage.receiver_id == str(self.receiver_id))
                .order_by(QueueMessage.update_id.asc(), QueueMessage.created_at.asc())
                .with_for_update(skip_locked=True)
                .first()
            )
            if row is None:
                return None

            job = {
                "id": row.id,
                "sender_id": row.sender_id,
                "receiver_id": row.receiver_id,
                "type": row.type,
                "payload": row.payload,
            }
            session.delete(row)
            session.commit()
            return job
        finally:
            session.close()

    async def run_once(self) -> bool:
        job = await asyncio.to_thread(self._take_next)
        if job is None:
            return False
        await asyncio.to_thread(self.executor.execute, job)
        return True

    async def run(self) -> None:
        logger.info("AsyncGuard running - receiver_id=%s", self.receiver_id)

        while True:
            try:
                took = await self.run_once()
            except Exception as e:
                logger.error("AsyncGuard: queue read failed: %s", e)
                took = False
            if not took:
                await asyncio.sleep(self.poll_interval)


class TelegramPoller:
    """Long-polls getUpdates and runs every update before asking for more."""

    def __init__(self, bot: Bot, executor: Executor, timeout: int = 60, retry_delay: float = 3.0):
        self.bot = bot
        self.executor = executor
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.offset: Optional[int] = None

    async def poll_once(self) -> int:
        updates = await self.bot.get_updates(
            offset=self.offset,
            timeout=self.timeout,
            allowed_updates=["message", "callback_query"],
        )
        for update in updates:
            self.offset = update.update_id + 1
            payload = update.to_dict()
            job = {
                "id": str(update.update_id),
                "sender_id": telegram_sender_id(payload),
                "type": TELEGRAM_UPDATE,
                "payload": payload,
            }
            await asyncio.to_thread(self.executor.execute, job)
        return len(updates)

    async def run(self) -> None:
        logger.info("TelegramPoller running - timeout=%ds", self.timeout)

        while True:
            try:
                await self.poll_once()
            except TelegramError as e:
                logger.error("getUpdates failed: %s", e)
                await asyncio.sleep(self.retry_delay)


async def run_worker(config: BotConfig) -> None:
    bot = Bot(
        config.TOKEN,
        get_updates_request=HTTPXRequest(read_timeout=config.POLL_TIMEOUT + 10),
    )
    async with bot:
        me = await bot.get_me()
        logger.info("Bot authorized on account %s", me.username)

        transport = TelegramTransport(bot, asyncio.get_running_loop())
        store = ModerationStore(name_map_path=config.NAME_MAP_PATH)
        host = AppHost([RallyApp(RallyBot(transport, store, config))])
        executor = Executor(host)

        if config.UPDATE_SOURCE == "queue":
            guard = AsyncGuard(
                executor,
                DbConnection().build_db_session_factory(),
                receiver_id=config.QUEUE_RECEIVER_ID,
                poll_interval=config.POLL_INTERVAL,
            )
            await guard.run()
        else:
            await TelegramPoller(bot, executor, timeout=config.POLL_TIMEOUT).run()


def main() -> None:
    config = BotConfig()
    if not config.TOKEN:
        raise RuntimeError("TELEGRAM_APITOKEN env var is required")
    if config.UPDATE_SOURCE not in ("poll", "queue"):
        raise RuntimeError(f"UPDATE_SOURCE must be 'poll' or 'queue', got '{config.UPDATE_SOURCE}'")

    asyncio.run(run_worker(config))


if __name__ == "__main__":
    main()
