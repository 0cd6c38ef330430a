"""Layout of the shared segment, its cross-process semaphores and display helpers."""

from __future__ import annotations

import errno
import fcntl
import mmap
import os
import re
import signal
import struct
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

SHM_NAME = "mem"
MAX_BUFFER_SIZE = 256
MAX_RECEIVERS = 50
MAX_FILE_SIZE = 4096
SEGMENT_DIR_ENV = "XORCAST_SHM_DIR"
BUFFER_SIZE_ERROR = (
    f"La cantidad de espacios debe ser un entero positivo (max {MAX_BUFFER_SIZE})."
)

COLOR_RESET = "\033[0m"
COLOR_BOLD = "\033[1m"

COLOR_EMISOR_HEADER = "\033[1;32m"
COLOR_EMISOR_CHAR = "\033[0;36m"
COLOR_EMISOR_BUFFER = "\033[0;33m"
COLOR_EMISOR_TIME = "\033[0;35m"

COLOR_RECEPTOR_HEADER = "\033[1;34m"
COLOR_RECEPTOR_CHAR = "\033[0;36m"
COLOR_RECEPTOR_BUFFER = "\033[0;33m"
COLOR_RECEPTOR_TIME = "\033[0;35m"

COLOR_INFO = "\033[0;90m"
COLOR_SUCCESS = "\033[0;32m"
COLOR_WARNING = "\033[0;33m"
COLOR_ERROR = "\033[0;31m"


class SegmentError(OSError):
    """The shared segment is missing or cannot be used."""


class UsageError(ValueError):
    """A command-line argument or parameter is invalid."""


@dataclass
class BufferEntry:
    """One slot of the circular buffer."""

    ascii_val: int = 0
    index: int = 0
    timestamp: int = 0
    read_count: int = 0


@dataclass
class ReceiverInfo:
    """Registration record of one receiver."""

    pid: int = 0
    read_index: int = 0
    is_manual: bool = False


_SEM = struct.Struct("<q")
_ENTRY = struct.Struct("<Biqi")
_RECEIVER = struct.Struct("<iiiq")
_RECEIVER_SEM_OFFSET = struct.calcsize("<iii")

_SEMAPHORE_NAMES = (
    "empty_slots",
    "producer_mutex",
    "receiver_registry_mutex",
    "process_finished",
)
_CONTROL_FIELDS = (
    ("buffer_size", "i"),
    ("write_index", "i"),
    ("shutdown_requested", "i"),
    ("source_size", "i"),
    ("source_read_index", "i"),
    ("total_emitters", "i"),
    ("active_emitters", "i"),
    ("total_receivers", "i"),
    ("active_receivers", "i"),
    ("total_chars_transferred", "q"),
)


def _layout() -> tuple[dict[str, int], int]:
    offsets: dict[str, int] = {}
    pos = 0
    for name in _SEMAPHORE_NAMES:
        offsets[name] = pos
        pos += _SEM.size
    for name, fmt in _CONTROL_FIELDS:
        offsets[name] = pos
        pos += struct.calcsize("<" + fmt)
    offsets["source_content"] = pos
    pos += MAX_FILE_SIZE
    offsets["receivers"] = pos
    pos += MAX_RECEIVERS * _RECEIVER.size
    return offsets, pos


_OFFSETS, HEADER_SIZE = _layout()
_FORMATS = dict(_CONTROL_FIELDS)


def _segment_size(buffer_size: int) -> int:
    return HEADER_SIZE + buffer_size * (_ENTRY.size + _SEM.size)


def _segment_dir() -> Path:
    configured = os.environ.get(SEGMENT_DIR_ENV)
    if configured:
        return Path(configured)
    shm = Path("/dev/shm")
    if shm.is_dir():
        return shm
    return Path(tempfile.gettempdir())


def _segment_path(name: str) -> Path:
    bare = name.lstrip("/")
    if not bare or "/" in bare:
        raise SegmentError(errno.EINVAL, f"nombre de segmento inválido: {name!r}")
    return _segment_dir() / bare


_PATH_LOCKS: dict[str, threading.RLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


def _path_lock(path: Path) -> threading.RLock:
    key = os.path.realpath(path)
    with _PATH_LOCKS_GUARD:
        return _PATH_LOCKS.setdefault(key, threading.RLock())


class _Field:
    """A scalar stored at a fixed offset of the segment."""

    def __init__(self, name: str) -> None:
        self._struct = struct.Struct("<" + _FORMATS[name])
        self._offset = _OFFSETS[name]

    def __get__(self, segment, owner=None):
        if segment is None:
            return self
        return self._struct.unpack_from(segment._map, self._offset)[0]

    def __set__(self, segment, value) -> None:
        self._struct.pack_into(segment._map, self._offset, int(value))


class SegmentSemaphore:
    """A counting semaphore whose count lives inside a shared segment."""

    POLL_INTERVAL = 0.001

    def __init__(self, segment: SharedSegment, offset: int) -> None:
        self._segment = segment
        self._offset = offset

    def value(self) -> int:
        with self._segment._locked(self._offset, _SEM.size):
            return _SEM.unpack_from(self._segment._map, self._offset)[0]

    def release(self) -> None:
        with self._segment._locked(self._offset, _SEM.size):
            count = _SEM.unpack_from(self._segment._map, self._offset)[0]
            _SEM.pack_into(self._segment._map, self._offset, count + 1)

    def acquire(self, timeout: float | None = None) -> bool:
        """Take one unit; wait up to ``timeout`` seconds (forever if None)."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._segment._locked(self._offset, _SEM.size):
                count = _SEM.unpack_from(self._segment._map, self._offset)[0]
                if count > 0:
                    _SEM.pack_into(self._segment._map, self._offset, count - 1)
                    return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.POLL_INTERVAL)

    def _reset(self, count: int) -> None:
        with self._segment._locked(self._offset, _SEM.size):
            _SEM.pack_into(self._segment._map, self._offset, count)


class SharedSegment:
    """A named memory segment holding the buffer, the registry and the counters."""

    buffer_size = _Field("buffer_size")
    write_index = _Field("write_index")
    shutdown_requested = _Field("shutdown_requested")
    source_size = _Field("source_size")
    source_read_index = _Field("source_read_index")
    total_emitters = _Field("total_emitters")
    active_emitters = _Field("active_emitters")
    total_receivers = _Field("total_receivers")
    active_receivers = _Field("active_receivers")
    total_chars_transferred = _Field("total_chars_transferred")

    def __init__(self, name: str, path: Path, fd: int, mapping: mmap.mmap) -> None:
        self.name = name
        self.path = path
        self._fd = fd
        self._map = mapping
        self._lock = _path_lock(path)

    @classmethod
    def create(cls, name: str, buffer_size: int, source: bytes) -> SharedSegment:
        """Create (replacing any previous one) and initialise a segment."""
        if not 0 < buffer_size <= MAX_BUFFER_SIZE:
            raise UsageError(BUFFER_SIZE_ERROR)
        path = _segment_path(name)
        path.unlink(missing_ok=True)
        size = _segment_size(buffer_size)
        fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o666)
        try:
            os.ftruncate(fd, size)
            mapping = mmap.mmap(fd, size)
        except OSError:
            os.close(fd)
            path.unlink(missing_ok=True)
            raise
        segment = cls(name, path, fd, mapping)
        segment._initialize(buffer_size, bytes(source[: MAX_FILE_SIZE - 1]))
        return segment

    @classmethod
    def attach(cls, name: str) -> SharedSegment:
        """Map an existing segment."""
        path = _segment_path(name)
        try:
            fd = os.open(path, os.O_RDWR)
        except FileNotFoundError as exc:
            raise SegmentError(
                errno.ENOENT, f"no existe la memoria compartida {name!r}"
            ) from exc
        try:
            total = os.fstat(fd).st_size
            if total < HEADER_SIZE:
                raise SegmentError(errno.EINVAL, f"memoria compartida {name!r} inválida")
            raw = os.pread(fd, 4, _OFFSETS["buffer_size"])
            buffer_size = struct.unpack("<i", raw)[0]
            size = _segment_size(buffer_size)
            if not 0 < buffer_size <= MAX_BUFFER_SIZE or total < size:
                raise SegmentError(errno.EINVAL, f"memoria compartida {name!r} inválida")
            mapping = mmap.mmap(fd, size)
        except BaseException:
            os.close(fd)
            raise
        return cls(name, path, fd, mapping)

    def _initialize(self, buffer_size: int, source: bytes) -> None:
        self.buffer_size = buffer_size
        start = _OFFSETS["source_content"]
        self._map[start : start + MAX_FILE_SIZE] = bytes(MAX_FILE_SIZE)
        self._map[start : start + len(source)] = source
        self.source_size = len(source)
        for name, _ in _CONTROL_FIELDS:
            if name not in ("buffer_size", "source_size"):
                setattr(self, name, 0)
        for slot in range(MAX_RECEIVERS):
            self.write_receiver(slot, ReceiverInfo())
            self.receiver_semaphore(slot)._reset(0)
        for index in range(buffer_size):
            self.write_entry(index, BufferEntry())
            self.slot_semaphore(index)._reset(1)
        self.semaphore("empty_slots")._reset(buffer_size)
        self.semaphore("producer_mutex")._reset(1)
        self.semaphore("receiver_registry_mutex")._reset(1)
        self.semaphore("process_finished")._reset(0)

    @contextmanager
    def _locked(self, offset: int, length: int):
        with self._lock:
            fcntl.lockf(self._fd, fcntl.LOCK_EX, length, offset, os.SEEK_SET)
            try:
                yield
            finally:
                fcntl.lockf(self._fd, fcntl.LOCK_UN, length, offset, os.SEEK_SET)

    @property
    def size(self) -> int:
        """Total size of the segment in bytes."""
        return _segment_size(self.buffer_size)

    @property
    def source_content(self) -> bytes:
        start = _OFFSETS["source_content"]
        return bytes(self._map[start : start + self.source_size])

    def close(self) -> None:
        """Unmap the segment; the segment itself stays in place."""
        with self._lock:
            if not self._map.closed:
                self._map.close()
                os.close(self._fd)

    def unlink(self) -> None:
        """Remove the segment's name so that no one can attach any more."""
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> SharedSegment:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _check_slot(self, index: int, limit: int) -> None:
        if not 0 <= index < limit:
            raise IndexError(f"índice fuera de rango: {index}")

    def _entry_offset(self, index: int) -> int:
        self._check_slot(index, self.buffer_size)
        return HEADER_SIZE + index * _ENTRY.size

    def _receiver_offset(self, slot: int) -> int:
        self._check_slot(slot, MAX_RECEIVERS)
        return _OFFSETS["receivers"] + slot * _RECEIVER.size

    def read_entry(self, index: int) -> BufferEntry:
        ascii_val, slot_index, timestamp, read_count = _ENTRY.unpack_from(
            self._map, self._entry_offset(index)
        )
        return BufferEntry(ascii_val, slot_index, timestamp, read_count)

    def write_entry(self, index: int, entry: BufferEntry) -> None:
        _ENTRY.pack_into(
            self._map,
            self._entry_offset(index),
            entry.ascii_val & 0xFF,
            entry.index,
            int(entry.timestamp),
            entry.read_count,
        )

    def read_receiver(self, slot: int) -> ReceiverInfo:
        pid, read_index, is_manual, _ = _RECEIVER.unpack_from(
            self._map, self._receiver_offset(slot)
        )
        return ReceiverInfo(pid, read_index, bool(is_manual))

    def write_receiver(self, slot: int, info: ReceiverInfo) -> None:
        offset = self._receiver_offset(slot)
        struct.pack_into(
            "<iii", self._map, offset, info.pid, info.read_index, int(info.is_manual)
        )

    def semaphore(self, name: str) -> SegmentSemaphore:
        if name not in _SEMAPHORE_NAMES:
            raise KeyError(name)
        return SegmentSemaphore(self, _OFFSETS[name])

    def slot_semaphore(self, index: int) -> SegmentSemaphore:
        self._check_slot(index, self.buffer_size)
        base = HEADER_SIZE + self.buffer_size * _ENTRY.size
        return SegmentSemaphore(self, base + index * _SEM.size)

    def receiver_semaphore(self, slot: int) -> SegmentSemaphore:
        return SegmentSemaphore(self, self._receiver_offset(slot) + _RECEIVER_SEM_OFFSET)


_ESCAPES = {ord("\n"): "\\n", ord("\r"): "\\r", ord("\t"): "\\t", ord(" "): "⎵"}


def display_char(c: int | str) -> str:
    """Printable form of a byte for the activity log."""
    code = ord(c) if isinstance(c, str) else c & 0xFF
    if code in _ESCAPES:
        return _ESCAPES[code]
    return chr(code) if 32 <= code <= 126 else "?"


def format_char_info(role: str, pid: int, c: int | str, index: int, ts: float) -> str:
    """One coloured log line describing a processed character."""
    stamp = time.strftime("%H:%M:%S", time.localtime(ts))
    if role == "Emisor":
        header, char, buf, clock = (
            COLOR_EMISOR_HEADER,
            COLOR_EMISOR_CHAR,
            COLOR_EMISOR_BUFFER,
            COLOR_EMISOR_TIME,
        )
    else:
        header, char, buf, clock = (
            COLOR_RECEPTOR_HEADER,
            COLOR_RECEPTOR_CHAR,
            COLOR_RECEPTOR_BUFFER,
            COLOR_RECEPTOR_TIME,
        )
    return (
        f"{header}{role:<8}{COLOR_RESET} (PID {COLOR_INFO}{pid}{COLOR_RESET}) │ "
        f"Carácter: {char}'{display_char(c)}'{COLOR_RESET} │ "
        f"Búfer{buf}[{index}]{COLOR_RESET} │ Hora: {clock}{stamp}{COLOR_RESET}"
    )


_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")


def _c_integer(text: str) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else 0


def parse_mode(arg: str) -> tuple[bool, int]:
    """Return ``(manual, delay_ms)`` from a "manual" or milliseconds argument."""
    if arg == "manual":
        return True, 0
    delay = _c_integer(arg)
    if delay < 0:
        raise UsageError("El tiempo de espera no puede ser negativo.")
    return False, delay


def parse_key(arg: str) -> int:
    """Return the 8-bit XOR key given on the command line."""
    return _c_integer(arg) & 0xFF


def install_stop_handler(signum: int = signal.SIGTERM) -> threading.Event:
    """Install a handler for ``signum`` that sets the returned event."""
    stop = threading.Event()

    def _handler(_signum, _frame) -> None:
        stop.set()

    signal.signal(signum, _handler)
    return stop