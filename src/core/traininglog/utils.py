"""
Small helpers with no dependency on state or the document store.

Date and name formatting used by the views, deterministic per-student
colours, a debouncer for coach filter changes, and the few values kept
in local storage (remembered login, unsaved form drafts).
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

WEEKDAYS_KO = ["월", "화", "수", "목", "금", "토", "일"]  # date.weekday() order

KOREAN_INITIALS = [
    "ㄱ", "ㄲ", "ㄴ", "ㄷ", "ㄸ", "ㄹ", "ㅁ", "ㅂ", "ㅃ", "ㅅ",
    "ㅆ", "ㅇ", "ㅈ", "ㅉ", "ㅊ", "ㅋ", "ㅌ", "ㅍ", "ㅎ",
]
_HANGUL_FIRST = 0xAC00
_HANGUL_LAST = 0xD7A3
_SYLLABLES_PER_INITIAL = 588  # 21 vowels x 28 finals

STUDENT_COLORS = [
    "#FECACA", "#FED7AA", "#FDE68A", "#FEF08A", "#D9F99D", "#BBF7D0",
    "#A7F3D0", "#99F6E4", "#A5F3FC", "#BAE6FD", "#BFDBFE", "#C7D2FE",
    "#DDD6FE", "#E9D5FF", "#F5D0FE", "#FBCFE8", "#FDA4AF",
]
STUDENT_BADGE_COLORS = [
    "#FFB3B3", "#FFD699", "#FFFF99", "#B3FFB3", "#99D6FF",
    "#D699FF", "#FFB3E6", "#FFB3CC", "#99FFFF", "#FFD1A3",
]
STUDENT_TEXT_COLORS = [
    "#CC0000", "#CC6600", "#999900", "#006600", "#0066CC",
    "#6600CC", "#CC0099", "#CC0066", "#006666", "#CC6633",
]

SAVED_USER_KEY = "savedUser"
LOGIN_CREDENTIALS_KEY = "login_credentials"
DRAFT_TTL_SECONDS = 30 * 60


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def today_iso() -> str:
    return date.today().isoformat()


def format_date(date_str: Optional[str]) -> str:
    """'2024-03-05' -> '3월 5일 (화)'. Empty input gives an empty string."""
    if not date_str:
        return ""
    day = date.fromisoformat(date_str)
    return f"{day.month}월 {day.day}일 ({WEEKDAYS_KO[day.weekday()]})"


def korean_initial(name: Optional[str]) -> str:
    """Leading consonant of a Hangul name, '#' for anything else."""
    if not name:
        return "#"
    code = ord(name[0])
    if code < _HANGUL_FIRST or code > _HANGUL_LAST:
        return "#"
    return KOREAN_INITIALS[(code - _HANGUL_FIRST) // _SYLLABLES_PER_INITIAL]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value >= 0x80000000 else value


def name_hash(name: str) -> int:
    """
    String hash compatible with colours already assigned in the browser.

    The shift wraps to 32 bits but the subtraction does not, and
    characters are read as UTF-16 code units.
    """
    raw = name.encode("utf-16-le")
    h = 0
    for i in range(0, len(raw), 2):
        unit = raw[i] | (raw[i + 1] << 8)
        h = unit + (_to_int32(_to_int32(h) << 5) - h)
    return h


def _pick(name: Optional[str], palette: list[str], fallback: str) -> str:
    if not name:
        return fallback
    return palette[abs(name_hash(name)) % len(palette)]


def student_color(name: Optional[str]) -> str:
    return _pick(name, STUDENT_COLORS, "#FFFFFF")


def student_badge_color(name: Optional[str]) -> str:
    return _pick(name, STUDENT_BADGE_COLORS, "#E5E7EB")


def student_text_color(name: Optional[str]) -> str:
    return _pick(name, STUDENT_TEXT_COLORS, "#374151")


# ---------------------------------------------------------------------------
# Debouncing
# ---------------------------------------------------------------------------

class Debouncer:
    """
    Coalesce bursts of triggers into one call of an async callback.

    Each trigger() restarts the delay; the callback runs once the
    triggers stop for `delay` seconds. Must be used on a running loop.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float = 0.3) -> None:
        self._callback = callback
        self._delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def flush(self) -> None:
        """Run a pending call now instead of waiting for the delay."""
        if self._handle is None:
            if self._task is not None:
                await self._task
            return
        self.cancel()
        await self._run()

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as e:
            logger.error("Debounced call failed", extra={"error": str(e)}, exc_info=e)


# ---------------------------------------------------------------------------
# Local storage
# ---------------------------------------------------------------------------

class KeyValueStore(Protocol):
    """
    String key/value storage that survives restarts on one device.

    infrastructure/local_storage provides a JSON file backed version
    and an in-memory one.
    """

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


def read_json(storage: KeyValueStore, key: str, default: Any = None) -> Any:
    """Decode a JSON value, returning default when absent or unreadable."""
    raw = storage.get_item(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable local value", extra={"key": key})
        return default


def write_json(storage: KeyValueStore, key: str, value: Any) -> None:
    storage.set_item(key, json.dumps(value, ensure_ascii=False))


@dataclass(frozen=True)
class SavedLogin:
    name: str
    password: str
    is_coach: bool = False


def save_login(storage: KeyValueStore, name: str, password: str, is_coach: bool) -> None:
    write_json(storage, SAVED_USER_KEY, {"name": name, "password": password, "isCoach": is_coach})


def load_saved_login(storage: KeyValueStore) -> Optional[SavedLogin]:
    data = read_json(storage, SAVED_USER_KEY)
    if not isinstance(data, dict) or not data.get("name"):
        return None
    return SavedLogin(
        name=data["name"],
        password=data.get("password", ""),
        is_coach=bool(data.get("isCoach", False)),
    )


def clear_saved_login(storage: KeyValueStore) -> None:
    storage.remove_item(SAVED_USER_KEY)


def _draft_key(user_id: str) -> str:
    return f"autoSave_{user_id}"


def save_form_draft(
    storage: KeyValueStore,
    user_id: str,
    exercise: str,
    memo: str,
    pain: bool,
    sets: list[dict[str, Any]],
) -> None:
    """Keep an unsaved record form so it can be offered back after a reload."""
    write_json(storage, _draft_key(user_id), {
        "exercise": exercise,
        "memo": memo,
        "painCheck": pain,
        "sets": sets,
        "timestamp": int(time.time() * 1000),
    })


def load_form_draft(storage: KeyValueStore, user_id: str) -> Optional[dict[str, Any]]:
    """
    Return the saved draft if it is younger than 30 minutes and not empty.

    Expired or empty drafts are removed.
    """
    key = _draft_key(user_id)
    draft = read_json(storage, key)
    if not isinstance(draft, dict):
        return None

    age_ms = int(time.time() * 1000) - int(draft.get("timestamp", 0))
    if age_ms > DRAFT_TTL_SECONDS * 1000:
        storage.remove_item(key)
        return None
    if not (draft.get("exercise") or draft.get("memo") or draft.get("sets")):
        storage.remove_item(key)
        return None
    return draft


def clear_form_draft(storage: KeyValueStore, user_id: str) -> None:
    storage.remove_item(_draft_key(user_id))
