"""Binary command/response codec for the M223S multicooker.

Every command is a single frame::

    0x55 | counter | code | payload... | 0xAA

``counter`` tags the command with the session's running byte counter
(mod 256).  Replies arrive as notifications on the notify
characteristic and are decoded by fixed offsets::

    auth reply   (>= 4 bytes):  [2] = 0xFF, [3] = granted flag
    query reply  (>= 20 bytes): [2] = 0x06, [3] = program,
                                [5] = temperature, [8] = hours,
                                [9] = minutes, [11] = state

Everything here is pure: no I/O, no shared state.  :func:`decode`
never raises; malformed input yields an :class:`Invalid` value that
callers log and drop.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum

FRAME_START = 0x55
FRAME_END = 0xAA
AUTH_KEY_LENGTH = 8
MIN_NOTIFICATION_LENGTH = 4
MIN_QUERY_REPLY_LENGTH = 20

_CODE_OFFSET = 2
_AUTH_FLAG_OFFSET = 3
_PROGRAM_OFFSET = 3
_TEMPERATURE_OFFSET = 5
_HOURS_OFFSET = 8
_MINUTES_OFFSET = 9
_STATE_OFFSET = 11


class CommandCode(IntEnum):
    """Command codes carried in byte 2 of every frame."""

    OFF = 0x04
    QUERY = 0x06
    AUTH = 0xFF


class Program(IntEnum):
    """Cooking programs as reported by the appliance."""

    FRYING = 0
    CEREALS = 1
    MULTICOOKER = 2
    PILAU = 3
    STEAM = 4
    BAKING = 5
    STEW = 6
    SOUP = 7
    MILK_PORRIDGE = 8
    YOGHURT = 9
    EXPRESS = 10
    WARMING = 11


class LifecycleState(IntEnum):
    """Session lifecycle plus the operational states the device reports.

    Negative members are owned by the bridge; non-negative members are
    copied verbatim from byte 11 of a query reply.
    """

    DISCONNECTED = -3
    CONNECTED = -2
    AUTHORIZED = -1
    OFF = 0
    SETTING = 1
    DELAYED = 2
    HEATING = 3
    UNKNOWN = 4
    ON = 5
    KEEP_WARM = 6


def friendly_name(value: IntEnum | int) -> str:
    """Render an enum member as lowercase space-separated words.

    ``LifecycleState.KEEP_WARM`` becomes ``"keep warm"``.  Raw integers
    the appliance reported outside the known range are rendered as
    their decimal string.
    """
    if isinstance(value, IntEnum):
        return value.name.lower().replace("_", " ")
    return str(value)


def to_program(raw: int) -> Program | int:
    """Map a raw program byte to :class:`Program`, keeping unknown values."""
    try:
        return Program(raw)
    except ValueError:
        return raw


def to_state(raw: int) -> LifecycleState | int:
    """Map a raw state byte to :class:`LifecycleState`, keeping unknown values."""
    try:
        return LifecycleState(raw)
    except ValueError:
        return raw


def format_frame(data: bytes) -> str:
    """Hex dump used in log lines, e.g. ``"55 00 06 aa"``."""
    return data.hex(" ")


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Frame:
    """One outgoing command frame."""

    counter: int
    code: CommandCode
    payload: bytes = b""

    def __post_init__(self) -> None:
        if not 0 <= self.counter <= 0xFF:
            msg = f"counter must fit in one byte, got {self.counter}"
            raise ValueError(msg)

    def to_bytes(self) -> bytes:
        """Serialise to the on-air byte layout."""
        return bytes((FRAME_START, self.counter, self.code)) + self.payload + bytes(
            (FRAME_END,)
        )


def encode_auth(counter: int, key: bytes) -> bytes:
    """Build an authorization frame carrying the 8-byte key.

    Raises:
        ValueError: If *key* is not exactly 8 bytes long.
    """
    if len(key) != AUTH_KEY_LENGTH:
        msg = f"auth key must be {AUTH_KEY_LENGTH} bytes, got {len(key)}"
        raise ValueError(msg)
    return Frame(counter, CommandCode.AUTH, bytes(key)).to_bytes()


def encode_query(counter: int) -> bytes:
    """Build a state query frame."""
    return Frame(counter, CommandCode.QUERY).to_bytes()


def encode_off(counter: int) -> bytes:
    """Build a "turn off" frame."""
    return Frame(counter, CommandCode.OFF).to_bytes()


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class InvalidReason(StrEnum):
    """Why a notification payload was rejected."""

    TOO_SHORT = "too_short"
    UNKNOWN_CODE = "unknown_code"


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Reply to an authorization frame."""

    granted: bool


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Reply to a query frame.  Fields hold the raw byte values."""

    program: int
    temperature: int
    hours: int
    minutes: int
    state: int


@dataclass(frozen=True, slots=True)
class Invalid:
    """A payload that could not be decoded."""

    reason: InvalidReason
    data: bytes = b""


type NotificationEvent = AuthResult | QueryResult
type DecodeResult = NotificationEvent | Invalid


class Notification:
    """Read-only view over a notification payload with bounds-checked access."""

    __slots__ = ("_data",)

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    def __len__(self) -> int:
        return len(self._data)

    @property
    def data(self) -> bytes:
        return self._data

    def has(self, length: int) -> bool:
        """Whether the payload holds at least *length* bytes."""
        return len(self._data) >= length

    def byte_at(self, offset: int) -> int:
        """Return the byte at *offset*.

        Raises:
            IndexError: If *offset* is outside the payload.
        """
        if not 0 <= offset < len(self._data):
            msg = f"offset {offset} outside payload of {len(self._data)} bytes"
            raise IndexError(msg)
        return self._data[offset]

    @property
    def code(self) -> int:
        return self.byte_at(_CODE_OFFSET)


def decode(data: bytes) -> DecodeResult:
    """Decode a notification payload.

    Never raises: short payloads and unknown command codes come back
    as :class:`Invalid`.
    """
    note = Notification(data)
    if not note.has(MIN_NOTIFICATION_LENGTH):
        return Invalid(InvalidReason.TOO_SHORT, note.data)

    code = note.code
    if code == CommandCode.AUTH:
        return AuthResult(granted=note.byte_at(_AUTH_FLAG_OFFSET) != 0)

    if code == CommandCode.QUERY:
        if not note.has(MIN_QUERY_REPLY_LENGTH):
            return Invalid(InvalidReason.TOO_SHORT, note.data)
        return QueryResult(
            program=note.byte_at(_PROGRAM_OFFSET),
            temperature=note.byte_at(_TEMPERATURE_OFFSET),
            hours=note.byte_at(_HOURS_OFFSET),
            minutes=note.byte_at(_MINUTES_OFFSET),
            state=note.byte_at(_STATE_OFFSET),
        )

    return Invalid(InvalidReason.UNKNOWN_CODE, note.data)
