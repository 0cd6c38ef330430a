"""Finalizer: on Ctrl+C, stops every participant, reports statistics and frees the segment."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
from dataclasses import dataclass

from xorcast.shared import (
    MAX_RECEIVERS,
    SHM_NAME,
    SegmentError,
    SharedSegment,
    install_stop_handler,
)

_BOLD_CYAN = "\033[1;36m"
_BOLD_GREEN = "\033[1;32m"
_BOLD_YELLOW = "\033[1;33m"
_YELLOW = "\033[0;33m"
_GREEN = "\033[0;32m"
_RED = "\033[0;31m"
_RESET = "\033[0m"

_EMITTER_PATTERN = r"xorcast(\.emitter|-emit)"
_POLL = 0.1


@dataclass(frozen=True)
class Statistics:
    """Counters gathered from the segment at the end of a run."""

    total_emitters: int
    total_receivers: int
    chars_transferred: int
    active_emitters: int
    active_receivers: int


def collect_statistics(segment: SharedSegment) -> Statistics:
    """Read the run counters from the segment."""
    return Statistics(
        total_emitters=segment.total_emitters,
        total_receivers=segment.total_receivers,
        chars_transferred=segment.total_chars_transferred,
        active_emitters=segment.active_emitters,
        active_receivers=segment.active_receivers,
    )


def format_statistics(stats: Statistics) -> str:
    """Render the statistics block shown after every process has finished."""
    return "\n".join(
        [
            f"{_BOLD_CYAN}⸻⸻⸻⸻   Estadísticas de Ejecución ⸻⸻⸻⸻{_RESET}",
            f"  * Total de emisores conectados: {_YELLOW}{stats.total_emitters}{_RESET}",
            f"  * Total de receptores conectados: {_YELLOW}{stats.total_receivers}{_RESET}",
            f"  * Caracteres transferidos: {_GREEN}{stats.chars_transferred}{_RESET}",
            f"  * Emisores activos al finalizar: {_RED}{stats.active_emitters}{_RESET}",
            f"  * Receptores activos al finalizar: {_RED}{stats.active_receivers}{_RESET}",
            f"{_BOLD_CYAN}{'⸻' * 37}{_RESET}",
        ]
    )


def _signal_emitters() -> None:
    try:
        subprocess.run(
            ["pkill", "-TERM", "-f", _EMITTER_PATTERN],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        pass


def request_shutdown(segment: SharedSegment) -> int:
    """Ask every participant to stop; return how many processes were active."""
    segment.shutdown_requested = 1

    registry = segment.semaphore("receiver_registry_mutex")
    registry.acquire()
    try:
        total = segment.active_emitters + segment.active_receivers
        for slot in range(MAX_RECEIVERS):
            pid = segment.read_receiver(slot).pid
            if pid != 0:
                segment.receiver_semaphore(slot).release()
                try:
                    os.kill(pid, signal.SIGTERM)
                except ProcessLookupError:
                    pass
    finally:
        registry.release()

    empty_slots = segment.semaphore("empty_slots")
    for _ in range(segment.buffer_size):
        empty_slots.release()

    _signal_emitters()
    return total


def wait_for_processes(segment: SharedSegment, total: int, output=None) -> int:
    """Wait for ``total`` finish notifications; return how many arrived."""
    out = output if output is not None else sys.stdout
    finished = segment.semaphore("process_finished")
    for done in range(1, total + 1):
        finished.acquire()
        remaining = total - done
        if remaining > 0:
            print(f"  {remaining} proceso(s) restante(s)", file=out, flush=True)
    return max(total, 0)


def release_resources(segment: SharedSegment) -> None:
    """Unmap the segment and remove it from the system."""
    segment.close()
    segment.unlink()


def main(argv=None) -> int:
    print("Para iniciar el proceso de finalización presione Ctrl+C.", flush=True)
    try:
        segment = SharedSegment.attach(SHM_NAME)
    except SegmentError as exc:
        print(f"Finalizador: shm_open falló: {exc.strerror}", file=sys.stderr)
        return 1
    stop = install_stop_handler(signal.SIGINT)

    while not stop.wait(_POLL):
        pass

    print(
        f"\n{_BOLD_YELLOW}Ctrl+C presionado, procedo con la finalización de procesos.{_RESET}",
        flush=True,
    )
    total = request_shutdown(segment)
    print(
        f"Esperando a que todos los procesos finalicen ({total} procesos activos)",
        flush=True,
    )
    wait_for_processes(segment, total, sys.stdout)
    print(f"{_BOLD_GREEN}Procesos finalizados con exito.{_RESET}")

    print()
    print(format_statistics(collect_statistics(segment)))

    print("\nProcedo a liberar recursos del sistema.")
    release_resources(segment)
    print(f"{_BOLD_GREEN}Limpieza completa.{_RESET}", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())