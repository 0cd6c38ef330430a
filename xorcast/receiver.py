"""Receiver: reads characters from the ring buffer, decrypts them and stores them."""

from __future__ import annotations

import errno
import os
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

from xorcast.shared import (
    COLOR_INFO,
    COLOR_RESET,
    COLOR_WARNING,
    MAX_RECEIVERS,
    SHM_NAME,
    ReceiverInfo,
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


class Receiver:
    """Consumes every character published after it registered."""

    def __init__(
        self,
        segment: SharedSegment,
        key: int,
        delay_ms: int = 0,
        manual: bool = False,
        stop: threading.Event | None = None,
        input_stream=None,
        output=None,
        sink=None,
    ) -> None:
        if delay_ms < 0:
            raise UsageError("El tiempo no puede ser negativo.")
        if sink is None:
            raise ValueError("a writable binary sink is required")
        self.segment = segment
        self.key = key & 0xFF
        self.delay_ms = delay_ms
        self.manual = manual
        self.stop = stop if stop is not None else threading.Event()
        self.input_stream = input_stream if input_stream is not None else sys.stdin
        self.output = output if output is not None else sys.stdout
        self.sink = sink
        self.pid = os.getpid()
        self.slot: int | None = None

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

    def register(self) -> int:
        """Take a free place in the receiver table and return its index."""
        seg = self.segment
        with _held(seg.semaphore("receiver_registry_mutex")):
            for slot in range(MAX_RECEIVERS):
                if seg.read_receiver(slot).pid == 0:
                    seg.write_receiver(
                        slot, ReceiverInfo(self.pid, seg.write_index, self.manual)
                    )
                    seg.total_receivers += 1
                    seg.active_receivers += 1
                    self.slot = slot
                    return slot
        raise SegmentError(errno.ENOSPC, "No hay slots disponibles para receptores")

    def receive_one(self) -> int | None:
        """Read and store the next character; return it, or None when stopping."""
        if self.slot is None:
            raise RuntimeError("receiver is not registered")
        seg = self.segment
        if not self._wait(seg.receiver_semaphore(self.slot)):
            return None
        if self.stopped:
            return None

        read_idx = seg.read_receiver(self.slot).read_index
        with _held(seg.slot_semaphore(read_idx)):
            entry = seg.read_entry(read_idx)
            decrypted = (entry.ascii_val ^ self.key) & 0xFF
            entry.read_count -= 1
            seg.write_entry(read_idx, entry)
            reads_after = entry.read_count
            self._say(
                format_char_info("Receptor", self.pid, decrypted, read_idx, entry.timestamp)
            )
            if reads_after == 0:
                self._say(f"      * Último lector: Búfer[{read_idx}] liberado.")
                seg.semaphore("empty_slots").release()
            else:
                self._say(f"      * Faltan {reads_after} lectores[{read_idx}].")

        info = seg.read_receiver(self.slot)
        info.read_index = (read_idx + 1) % seg.buffer_size
        seg.write_receiver(self.slot, info)

        self.sink.write(bytes([decrypted]))
        self.sink.flush()
        return decrypted

    def run(self) -> int:
        """Receive until stopped; return the number of characters stored."""
        received = 0
        while not self.stopped:
            if self.manual:
                line = self.input_stream.readline()
                if not line or self.stopped:
                    break
            if self.receive_one() is None:
                break
            received += 1
            if not self.manual and self.delay_ms:
                self.stop.wait(self.delay_ms / 1000)
        return received

    def unregister(self) -> None:
        """Free the table place and report that this receiver finished."""
        seg = self.segment
        with _held(seg.semaphore("receiver_registry_mutex")):
            if self.slot is not None:
                seg.write_receiver(self.slot, ReceiverInfo())
                seg.active_receivers -= 1
                self.slot = None
        seg.semaphore("process_finished").release()
        self._say(f"Receptor (PID {self.pid}) finalizando.")


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 2:
        prog = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "xorcast-receive"
        print(f"Uso: {prog} <'manual' | milisegundos> <llave_8bits>", file=sys.stderr)
        return 1
    try:
        manual, delay_ms = parse_mode(args[0])
    except UsageError:
        print("El tiempo no puede ser negativo.", file=sys.stderr)
        return 1
    key = parse_key(args[1])
    try:
        segment = SharedSegment.attach(SHM_NAME)
    except SegmentError as exc:
        print(f"Receptor: shm_open falló: {exc.strerror}", file=sys.stderr)
        return 1
    stop = install_stop_handler()
    with segment:
        filename = f"output_receptor_{os.getpid()}.txt"
        try:
            sink = open(filename, "wb")
        except OSError as exc:
            print(f"No se pudo crear el archivo de salida: {exc.strerror}", file=sys.stderr)
            return 1
        with sink:
            receiver = Receiver(
                segment, key, delay_ms, manual, stop, sys.stdin, sys.stdout, sink
            )
            try:
                receiver.register()
            except SegmentError as exc:
                print(exc.strerror, file=sys.stderr)
                return 1
            mode = "Manual" if manual else "Automático"
            print(
                f"Receptor (PID {receiver.pid}) en modo {mode}. Escribiendo a {filename}",
                flush=True,
            )
            if manual:
                print(
                    f"{COLOR_INFO}Presione {COLOR_WARNING}ENTER{COLOR_INFO} "
                    f"para leer caracteres.{COLOR_RESET}\n",
                    flush=True,
                )
            try:
                receiver.run()
            finally:
                receiver.unregister()
    return 0


if __name__ == "__main__":
    sys.exit(main())