# rally/keyboard.py
#
# Which buttons sit under a rally message. Menus are plain rows of
# (label, action) pairs; the transport turns them into inline keyboards.

from typing import List, Tuple

from rally.config import BotConfig
from rally.rally_model import Rally

SIGN_UP = "sign_up"
UNSIGN = "unsign"
SIGN_UP_PENCIL = "sign_up_pencil"
CANCEL = "cancel"
RESUME = "resume"

ACTIONS = (SIGN_UP, UNSIGN, SIGN_UP_PENCIL, CANCEL, RESUME)

BUTTON_LABELS = {
    SIGN_UP: "✍️ Записаться ✍️",
    UNSIGN: "🧽 Отписаться 🧽",
    SIGN_UP_PENCIL: "✏️ Карандашом ✏️",
    CANCEL: "❌ Отменить ❌",
    RESUME: "🔄 Возобновить 🔄",
}

Menu = List[List[Tuple[str, str]]]


def _row(action: str) -> List[Tuple[str, str]]:
    return [(BUTTON_LABELS[action], action)]


def build_active_menu(rally: Rally, viewer: str, config: BotConfig) -> Menu:
    rows = [_row(SIGN_UP), _row(UNSIGN), _row(SIGN_UP_PENCIL)]
    if config.can_manage(viewer, rally.initiator):
        rows.append(_row(CANCEL))
    return rows


def build_resume_menu(rally: Rally, viewer: str, config: BotConfig) -> Menu:
    if config.can_manage(viewer, rally.initiator):
        return [_row(RESUME)]
    return []


def build_menu(rally: Rally, viewer: str, config: BotConfig) -> Menu:
    """
    Inline keyboards are shared by everyone who sees the message, so callers
    normally render for the initiator and re-check authority on press.
    """
    if rally.cancelled:
        return build_resume_menu(rally, viewer, config)
    return build_active_menu(rally, viewer, config)
