# rally/config.py

import os
from typing import Optional, Set

from dotenv import load_dotenv

load_dotenv()

CANCEL_POLICY_INITIATOR_OR_ADMIN = "initiator_or_admin"
CANCEL_POLICY_INITIATOR_ONLY = "initiator_only"
CANCEL_POLICIES = (CANCEL_POLICY_INITIATOR_OR_ADMIN, CANCEL_POLICY_INITIATOR_ONLY)


def _split_identities(raw: str) -> Set[str]:
    return {x.strip() for x in (raw or "").split(",") if x.strip()}


class BotConfig:
    def __init__(
        self,
        token: Optional[str] = None,
        admins: Optional[Set[str]] = None,
        cancel_policy: Optional[str] = None,
        name_map_path: Optional[str] = None,
    ) -> None:
        # ---- bot ----
        self.TOKEN = token if token is not None else os.getenv("TELEGRAM_APITOKEN", "")
        self.ADMINS = admins if admins is not None else _split_identities(os.getenv("ADMIN_USERNAMES", ""))
        self.CANCEL_POLICY = cancel_policy or os.getenv("CANCEL_POLICY", CANCEL_POLICY_INITIATOR_OR_ADMIN)
        self.NAME_MAP_PATH = name_map_path if name_map_path is not None else (os.getenv("NAME_MAP_PATH") or None)

        # ---- update intake ----
        self.UPDATE_SOURCE = os.getenv("UPDATE_SOURCE", "poll")
        self.POLL_TIMEOUT = int(os.getenv("POLL_TIMEOUT", "60"))
        self.POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "1.0"))
        self.QUEUE_RECEIVER_ID = os.getenv("QUEUE_RECEIVER_ID", "rally_worker")
        self.WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")

        # ---- logging ----
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        if self.CANCEL_POLICY not in CANCEL_POLICIES:
            raise ValueError(
                f"CANCEL_POLICY must be one of {CANCEL_POLICIES}, got '{self.CANCEL_POLICY}'"
            )

    def is_admin(self, identity: str) -> bool:
        return bool(identity) and identity in self.ADMINS

    def can_manage(self, identity: str, initiator: str) -> bool:
        """Cancel/resume authority over a rally started by `initiator`."""
        if not identity:
            return False
        if identity == initiator:
            return True
        if self.CANCEL_POLICY == CANCEL_POLICY_INITIATOR_OR_ADMIN:
            return self.is_admin(identity)
        return False
