"""Emitter: reads the source text from the segment and publishes it XOR-encrypted."""

from __future__ import annotations

import os
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path

from xorcast.shared import (
    COLOR_INFO,
    COLOR_RESET,
    COLOR_WARNING,
    MAX_RECEIVERS,
    SHM_NAME,
    BufferEntry,
    SegmentError,
    SegmentSemaphore,
    SharedSegment,
    UsageError,
    format_char_info,
    install_stop_handler,
    parse_key,
    parse_mode,
)

_WAIT_STEP = 0.05


@contextmanager
def _held(semaphore: SegmentSemaphore):
    semaphore.acquire()
    try:
        yield
    finally:
        semaphore.release()


class Emitter:
    """Publishes one character of the shared source per step into the ring buffer."""

    def __init__(
        self,
        segment: SharedSegment,
        key: int,
        delay_ms: int = 0,
        manual: bool = False,
        stop: threading.Event | None = None,
        input_stream=None,
        output=None,
    ) -> None:
        if delay_ms < 0:
            raise UsageError("El tiempo de espera no puede ser negativo.")
        self.segment = segment
        self.key = key & 0xFF
        self.delay_ms = delay_ms
        self.manual = manual
        self.stop = stop if stop is not None else threading.Event()
        self.input_stream = input_stream if input_stream is not None else sys.stdin
        self.output = output if output is not None else sys.stdout
        self.pid = os.getpid()
        self.position = 0

    @property
    def stopped(self) -> bool:
        """True once a stop signal or a shutdown request has been seen."""
        return self.stop.is_set() or bool(self.segment.shutdown_requested)

    def _say(self, text: str) -> None:
        print(text, file=self.output, flush=True)

    def _wait(self, semaphore: SegmentSemaphore) -> bool:
        while not semaphore.acquire(timeout=_WAIT_STEP):
            if self.stopped:
                return False
        return True

    def register(self) -> None:
        """Count this emitter among the connected ones."""
        with _held(self.segment.semaphore("producer_mutex")):
            self.segment.total_emitters += 1
            self.segment.active_emitters += 1

    def emit_one(self) -> bool:
        """Publish the next character; return False when the emitter should stop."""
        seg = self.segment
        empty_slots = seg.semaphore("empty_slots")
        if not self._wait(empty_slots):
            return False
        if self.stopped:
            empty_slots.release()
            return False
        if self.position >= seg.source_size:
            self._say(f"Emisor (PID {self.pid}): Fin del archivo.")
            empty_slots.release()
            return False
        original = seg.source_content[self.position]
        self.position += 1

        with _held(seg.semaphore("receiver_registry_mutex")):
            with _held(seg.semaphore("producer_mutex")):
                write_idx = seg.write_index
                seg.write_index = (write_idx + 1) % seg.buffer_size

            active = seg.active_receivers
            timestamp = int(time.time())
            with _held(seg.slot_semaphore(write_idx)):
                seg.write_entry(
                    write_idx,
                    BufferEntry(
                        ascii_val=original ^ self.key,
                        index=write_idx,
                        timestamp=timestamp,
                        read_count=active,
                    ),
                )
                self._say(
                    format_char_info("Emisor", self.pid, original, write_idx, timestamp)
                )
            seg.total_chars_transferred += 1

            if active == 0:
                empty_slots.release()
            else:
                for slot in range(MAX_RECEIVERS):
                    if seg.read_receiver(slot).pid != 0:
                        seg.receiver_semaphore(slot).release()
        return True

    def run(self) -> int:
        """Emit until stopped or out of source; return the number of characters sent."""
        sent = 0
        while not self.stopped:
            if self.manual:
                line = self.input_stream.readline()
                if not line or self.stopped:
                    break
            if not self.emit_one():
                break
            sent += 1
            if not self.manual and self.delay_ms:
                self.stop.wait(self.delay_ms / 1000)
        return sent

    def unregister(self) -> None:
        """Drop this emitter from the active count and report that it finished."""
        with _held(self.segment.semaphore("producer_mutex")):
            self.segment.active_emitters -= 1
        self.segment.semaphore("process_finished").release()
        self._say(f"Emisor (PID {self.pid}) finalizando.")


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 2:
        prog = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "xorcast-emit"
        print(f"Uso: {prog} <'manual' | milisegundos> <llave_8bits>", file=sys.stderr)
        return 1
    try:
        manual, delay_ms = parse_mode(args[0])
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 1
    key = parse_key(args[1])
    try:
        segment = SharedSegment.attach(SHM_NAME)
    except SegmentError as exc:
        print(f"Emisor: shm_open falló: {exc.strerror}", file=sys.stderr)
        return 1
    stop = install_stop_handler()
    with segment:
        emitter = Emitter(segment, key, delay_ms, manual, stop, sys.stdin, sys.stdout)
        emitter.register()
        mode = "Manual" if manual else "Automático"
        print(f"Emisor (PID {emitter.pid}) iniciado en modo: {mode}", flush=True)
        if manual:
            print(
                f"{COLOR_INFO}Presione {COLOR_WARNING}ENTER{COLOR_INFO} "
                f"para enviar caracteres.{COLOR_RESET}\n",
                flush=True,
            )
        try:
            emitter.run()
        finally:
            emitter.unregister()
    return 0


if __name__ == "__main__":
    sys.exit(main())