"""Create and initialise the shared segment from a source file."""

from __future__ import annotations

import sys
from pathlib import Path

from xorcast.shared import (
    BUFFER_SIZE_ERROR,
    COLOR_BOLD,
    COLOR_RESET,
    COLOR_SUCCESS,
    MAX_BUFFER_SIZE,
    MAX_FILE_SIZE,
    MAX_RECEIVERS,
    SHM_NAME,
    SharedSegment,
    UsageError,
)


def initialize(name: str, buffer_size: int, source_path) -> SharedSegment:
    """Create segment ``name`` with ``buffer_size`` slots, loaded from ``source_path``."""
    if not 0 < buffer_size <= MAX_BUFFER_SIZE:
        raise UsageError(BUFFER_SIZE_ERROR)
    with open(source_path, "rb") as source:
        content = source.read(MAX_FILE_SIZE - 1)
    return SharedSegment.create(name, buffer_size, content)


def format_summary(segment: SharedSegment, source_path) -> str:
    """Describe the configuration of a freshly initialised segment."""
    return "\n".join(
        [
            "Memoria compartida inicializada correctamente.",
            f"{COLOR_BOLD}Configuración:{COLOR_RESET}",
            f"  • Búfer: {COLOR_SUCCESS}{segment.buffer_size} espacios{COLOR_RESET}",
            f"  • Archivo: {COLOR_SUCCESS}{source_path}{COLOR_RESET} "
            f"({COLOR_SUCCESS}{segment.source_size} bytes{COLOR_RESET})",
            f"  • Memoria total: {COLOR_SUCCESS}{segment.size} bytes{COLOR_RESET}",
            f"  • Receptores máximos: {COLOR_SUCCESS}{MAX_RECEIVERS}{COLOR_RESET}",
        ]
    )


def _parse_size(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 3:
        prog = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "xorcast-init"
        print(
            f"Uso: {prog} <identificador_memoria> <cantidad_espacios> <archivo_origen>",
            file=sys.stderr,
        )
        return 1
    _identifier, size_arg, source_path = args
    try:
        segment = initialize(SHM_NAME, _parse_size(size_arg), source_path)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 1
    except OSError as exc:
        if exc.filename == source_path:
            print(f"No se pudo abrir el archivo de origen: {exc.strerror}", file=sys.stderr)
        else:
            print(f"No se pudo crear la memoria compartida: {exc.strerror}", file=sys.stderr)
        return 1
    with segment:
        print(format_summary(segment, source_path))
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())