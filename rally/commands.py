# rally/commands.py

import re
from dataclasses import dataclass
from typing import Tuple

from rally.errors import CommandError
from rally.moderation_store import ModerationStore
from rally.rally_model import LIMIT_MAX, LIMIT_MIN, Rally

CREATE_COMMANDS = ("/сбор", "/party")
ADMIN_COMMAND = "/sudo"

CMD_USAGE = "Используйте /сбор <название> <лимит> <дата> [время]"
LIMIT_RANGE_MSG = f"Лимит должен быть от {LIMIT_MIN} до {LIMIT_MAX}"

_LIMIT_RE = re.compile(r"[0-9]+")


def command_word(text: str) -> str:
    """'/party@my_bot Foo' -> '/party'"""
    words = (text or "").split()
    if not words:
        return ""
    return words[0].split("@", 1)[0].lower()


def is_create_command(text: str) -> bool:
    return command_word(text) in CREATE_COMMANDS


def is_admin_command(text: str) -> bool:
    return command_word(text) == ADMIN_COMMAND


def parse_create_command(text: str) -> Tuple[str, int, str]:
    """
    "<prefix> <name words...> <limit> <date words...>"

    The limit is the rightmost numeric word that still leaves at least one
    date word after it and one name word before it.
    """
    words = (text or "").split()
    if len(words) < 4:
        raise CommandError(CMD_USAGE)

    lim_idx = -1
    for i in range(len(words) - 2, 0, -1):
        if _LIMIT_RE.fullmatch(words[i]):
            lim_idx = i
            break
    if lim_idx < 2:
        raise CommandError(CMD_USAGE)

    name = " ".join(words[1:lim_idx]).strip()
    date = " ".join(words[lim_idx + 1:]).strip()
    if not name or not date:
        raise CommandError(CMD_USAGE)

    return name, int(words[lim_idx]), date


def create_rally(text: str, initiator: str) -> Rally:
    name, limit, date = parse_create_command(text)
    if limit < LIMIT_MIN or limit > LIMIT_MAX:
        raise CommandError(LIMIT_RANGE_MSG)
    return Rally(name=name, date=date, limit=limit, initiator=initiator)


@dataclass
class AdminCommand:
    verb: str
    target: str = ""
    new_value: str = ""


def parse_admin_command(text: str) -> AdminCommand:
    """
    /sudo rn <old> || <new>
    /sudo ban <identity>
    /sudo unban <identity>
    /sudo clear
    /sudo delete
    """
    words = (text or "").split()
    if not words or command_word(text) != ADMIN_COMMAND:
        raise CommandError("not an admin command")

    rest = text.strip()[len(words[0]):].strip()
    fields = rest.split()
    if not fields:
        raise CommandError("empty admin command")

    verb = fields[0].lower()
    args = rest[len(fields[0]):].strip()

    if verb == "rn":
        if "||" not in args:
            raise CommandError("usage: /sudo rn <old> || <new>")
        old, new = args.split("||", 1)
        old = old.strip()
        if not old:
            raise CommandError("usage: /sudo rn <old> || <new>")
        return AdminCommand(verb, target=old, new_value=new.strip())

    if verb in ("ban", "unban"):
        if not args:
            raise CommandError(f"usage: /sudo {verb} <identity>")
        return AdminCommand(verb, target=args)

    if verb in ("clear", "delete"):
        return AdminCommand(verb)

    raise CommandError(f"unknown admin command: {verb}")


def apply_admin_command(cmd: AdminCommand, store: ModerationStore) -> None:
    if cmd.verb == "rn":
        store.set_rename(cmd.target, cmd.new_value)
    elif cmd.verb == "ban":
        store.add_ban(cmd.target)
    elif cmd.verb == "unban":
        store.remove_ban(cmd.target)
    elif cmd.verb == "clear":
        store.clear()
    elif cmd.verb == "delete":
        store.arm_delete_on_cancel()
    else:
        raise CommandError(f"unknown admin command: {cmd.verb}")
