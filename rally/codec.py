# rally/codec.py
#
# The message text IS the rally record. decode() and encode() must stay an
# exact round trip for every rally with len(signed_up) <= limit.

from enum import Enum
from typing import Callable, Dict, List, Tuple

from rally.errors import ParseError, ParseErrorKind
from rally.instances import parse_entry
from rally.rally_model import Entry, Rally

CANCEL_MARKER = "❌ СБОР ОТМЕНЁН ❌"

LABEL_NAME = "Сбор:"
LABEL_DATE = "Дата:"
LABEL_LIMIT = "Лимит:"
LABEL_INITIATOR = "Инициатор:"
LABEL_SIGNED = "Записались:"
LABEL_WAITING = "Лист ожидания:"
LABEL_PENCIL = "Карандашом:"

# Bare variants cover clients that drop the U+FE0F variation selector.
DECORATIONS = ("🎉", "📅", "🔢", "👤", "✍️", "✏️", "❌", "⏳", "✍", "✏")
VARIATION_SELECTOR = "\ufe0f"


class Section(Enum):
    NONE = "none"
    SIGNED = "signed"
    WAITING = "waiting"
    PENCIL = "pencil"


SECTION_HEADERS: Dict[str, Section] = {
    LABEL_SIGNED: Section.SIGNED,
    LABEL_WAITING: Section.WAITING,
    LABEL_PENCIL: Section.PENCIL,
}


def strip_decorations(line: str) -> str:
    line = (line or "").strip()
    changed = True
    while changed and line:
        changed = False
        for glyph in DECORATIONS:
            if line.startswith(glyph):
                line = line[len(glyph):].lstrip(VARIATION_SELECTOR).strip()
                changed = True
                break
    return line


def is_cancelled_text(text: str) -> bool:
    first = (text or "").split("\n", 1)[0]
    return first.strip() == CANCEL_MARKER


def strip_cancel_marker(text: str) -> str:
    lines = (text or "").split("\n")
    if len(lines) > 1 and lines[0].strip() == CANCEL_MARKER:
        return "\n".join(lines[1:])
    return text


class _RallyBuilder:
    """
    Accumulates fields while walking the lines of a record.
    Label handlers are looked up in a fixed table, everything else is an
    entry line for the active section.
    """

    def __init__(self) -> None:
        self.name = ""
        self.date = ""
        self.limit = 0
        self.initiator = ""
        self.section = Section.NONE
        self.entries: Dict[Section, List[Entry]] = {
            Section.SIGNED: [],
            Section.WAITING: [],
            Section.PENCIL: [],
        }

    def set_name(self, value: str) -> None:
        self.name = value

    def set_date(self, value: str) -> None:
        self.date = value

    def set_initiator(self, value: str) -> None:
        self.initiator = value

    def set_limit(self, value: str) -> None:
        if value == "":
            self.limit = 0
            return
        if not value.isascii() or not value.isdigit():
            raise ParseError(ParseErrorKind.INVALID_LIMIT, f"limit={value!r}")
        self.limit = int(value)

    def field_handlers(self) -> List[Tuple[str, Callable[[str], None]]]:
        return [
            (LABEL_NAME, self.set_name),
            (LABEL_DATE, self.set_date),
            (LABEL_LIMIT, self.set_limit),
            (LABEL_INITIATOR, self.set_initiator),
        ]

    def add_entry_line(self, line: str) -> None:
        if self.section is Section.NONE:
            return

        if self.section is Section.PENCIL:
            text = line
        else:
            # "<ordinal>) <entry>"; a bare "<ordinal>)" is an empty seat
            parts = line.split(" ", 1)
            if len(parts) != 2:
                return
            text = parts[1].strip()

        if text:
            self.entries[self.section].append(parse_entry(text))

    def build(self) -> Rally:
        missing = [
            label
            for label, value in (("name", self.name), ("date", self.date), ("initiator", self.initiator))
            if not value
        ]
        if missing:
            raise ParseError(ParseErrorKind.MISSING_FIELD, ", ".join(missing))

        return Rally(
            name=self.name,
            date=self.date,
            limit=self.limit,
            initiator=self.initiator,
            signed_up=self.entries[Section.SIGNED],
            waiting_list=self.entries[Section.WAITING],
            penciled_in=self.entries[Section.PENCIL],
        )


def decode(text: str) -> Rally:
    """
    Rebuild a Rally from the message text.
    Raises ParseError when the text is not a rally record.
    """
    text = (text or "").replace("\r\n", "\n")
    builder = _RallyBuilder()
    handlers = builder.field_handlers()

    for raw_line in text.split("\n"):
        line = strip_decorations(raw_line)
        if not line:
            continue

        handled = False
        for label, setter in handlers:
            if line.startswith(label):
                setter(line[len(label):].strip())
                handled = True
                break
        if handled:
            continue

        section = None
        for label, candidate in SECTION_HEADERS.items():
            if line.startswith(label):
                section = candidate
                break
        if section is not None:
            builder.section = section
            continue

        builder.add_entry_line(line)

    rally = builder.build()
    rally.cancelled = is_cancelled_text(text)
    return rally


def encode(rally: Rally) -> str:
    out: List[str] = []
    if rally.cancelled:
        out.append(CANCEL_MARKER)

    out.append(f"🎉 {LABEL_NAME} {rally.name}")
    out.append(f"📅 {LABEL_DATE} {rally.date}")
    out.append(f"🔢 {LABEL_LIMIT} {rally.limit}")
    out.append(f"👤 {LABEL_INITIATOR} {rally.initiator}")
    out.append("")
    out.append(f"✍️ {LABEL_SIGNED}")

    for i in range(rally.limit):
        if i < len(rally.signed_up):
            out.append(f"{i + 1}) {rally.signed_up[i].render()}")
        else:
            out.append(f"{i + 1})")

    if rally.waiting_list:
        out.append("")
        out.append(f"⏳ {LABEL_WAITING}")
        for i, entry in enumerate(rally.waiting_list):
            out.append(f"{rally.limit + i + 1}) {entry.render()}")

    out.append("")
    out.append(f"✏️ {LABEL_PENCIL}")
    for entry in rally.penciled_in:
        out.append(entry.render())

    return "\n".join(out) + "\n"
