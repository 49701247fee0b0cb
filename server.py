import logging
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel

from rally.config import BotConfig
from rally.db_connection import DbConnection
from rally.entities import QueueMessage
from rally.rally_bot import update_chat_id

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("rally_server")

app = FastAPI()

CONFIG = BotConfig()
SessionFactory = DbConnection().build_db_session_factory()

TELEGRAM_UPDATE = "telegram_update"


class TelegramUpdate(BaseModel):
    update_id: int

    class Config:
        extra = "allow"


def enqueue_update(update: Dict[str, Any]) -> str:
    session = SessionFactory()
    try:
        row = QueueMessage(
            sender_id=f"tg::{update_chat_id(update) or ''}",
            receiver_id=CONFIG.QUEUE_RECEIVER_ID,
            type=TELEGRAM_UPDATE,
            update_id=update["update_id"],
            payload=update,
        )
        session.add(row)
        session.commit()
        return row.id
    finally:
        session.close()


@app.post("/telegram/webhook")
async def telegram_webhook(
    update: TelegramUpdate,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None),
):
    if CONFIG.WEBHOOK_SECRET and x_telegram_bot_api_secret_token != CONFIG.WEBHOOK_SECRET:
        raise HTTPException(status_code=403, detail="bad secret token")

    payload = update.dict()
    try:
        queued_id = enqueue_update(payload)
    except Exception as e:
        logger.error("could not enqueue update %s: %s", update.update_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    logger.debug("update %s queued as %s", update.update_id, queued_id)
    return {"status": "success", "id": queued_id}


@app.get("/health")
async def health():
    return {"status": "ok", "receiver_id": CONFIG.QUEUE_RECEIVER_ID}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
