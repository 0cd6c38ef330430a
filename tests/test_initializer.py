import pytest

from xorcast.initializer import format_summary, initialize, main
from xorcast.shared import (
    MAX_BUFFER_SIZE,
    SEGMENT_DIR_ENV,
    SHM_NAME,
    SharedSegment,
    UsageError,
)


@pytest.fixture
def shm_dir(tmp_path, monkeypatch):
    monkeypatch.setenv(SEGMENT_DIR_ENV, str(tmp_path / "shm"))
    (tmp_path / "shm").mkdir()
    return tmp_path / "shm"


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "origen.txt"
    path.write_bytes(b"texto de prueba\n")
    return path


def test_initialize_loads_source(shm_dir, source_file):
    with initialize("seg", 5, source_file) as seg:
        assert seg.source_content == source_file.read_bytes()
        assert seg.buffer_size == 5
        assert seg.write_index == 0
        assert seg.total_emitters == 0
        assert seg.semaphore("empty_slots").value() == 5
    assert (shm_dir / "seg").exists()


@pytest.mark.parametrize("size", [0, MAX_BUFFER_SIZE + 1])
def test_initialize_rejects_bad_size(shm_dir, source_file, size):
    with pytest.raises(UsageError):
        initialize("seg", size, source_file)


def test_initialize_missing_file(shm_dir, tmp_path):
    with pytest.raises(FileNotFoundError):
        initialize("seg", 3, tmp_path / "no-existe.txt")


def test_format_summary(shm_dir, source_file):
    with initialize("seg", 7, source_file) as seg:
        summary = format_summary(seg, source_file)
        assert summary.startswith("Memoria compartida inicializada correctamente.")
        assert "7 espacios" in summary
        assert str(source_file) in summary
        assert f"{seg.source_size} bytes" in summary
        assert f"{seg.size} bytes" in summary
        assert "50" in summary


def test_main_creates_named_segment(shm_dir, source_file, capsys):
    assert main(["ignorado", "4", str(source_file)]) == 0
    out = capsys.readouterr().out
    assert "Memoria compartida inicializada correctamente." in out
    with SharedSegment.attach(SHM_NAME) as seg:
        assert seg.buffer_size == 4
        assert seg.source_content == source_file.read_bytes()


def test_main_wrong_argument_count(shm_dir, capsys):
    assert main(["solo-uno"]) == 1
    assert "Uso:" in capsys.readouterr().err


@pytest.mark.parametrize("size", ["0", "abc", "999"])
def test_main_bad_size(shm_dir, source_file, capsys, size):
    assert main(["mem", size, str(source_file)]) == 1
    assert f"max {MAX_BUFFER_SIZE}" in capsys.readouterr().err
    assert not (shm_dir / SHM_NAME).exists()


def test_main_missing_file(shm_dir, tmp_path, capsys):
    missing = tmp_path / "falta.txt"
    assert main(["mem", "3", str(missing)]) == 1
    assert "No se pudo abrir el archivo de origen" in capsys.readouterr().err