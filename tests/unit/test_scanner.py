"""Unit tests for the tick-driven incremental scanner."""

from pathlib import Path

from secureviewer.core.discovery.archive_index import ArchiveIndex
from secureviewer.core.discovery.scanner import IncrementalScanner, ScanProgress, ScanState


def _build_tree(root: Path) -> None:
    (root / "a" / "a1").mkdir(parents=True)
    (root / "b").mkdir()
    (root / ".cache").mkdir()
    (root / "top.senc").write_bytes(b"x")
    (root / "a" / "one.senc").write_bytes(b"x")
    (root / "a" / "a1" / "two.senc").write_bytes(b"x")
    (root / "b" / "readme.txt").write_bytes(b"x")
    (root / ".cache" / "hidden.senc").write_bytes(b"x")


class TestScanProgress:
    """Tests for the progress text."""

    def test_scanning_text(self):
        assert str(ScanProgress(3, 10, ScanState.SCANNING)) == "Scanning... (3/10)"

    def test_complete_text(self):
        assert str(ScanProgress(10, 10, ScanState.COMPLETE)) == "Complete"

    def test_idle_text(self):
        assert str(ScanProgress()) == "Idle"


class TestIncrementalScanner:
    """Tests for one-directory-per-tick walking."""

    def test_first_tick_processes_root_only(self, tmp_path):
        _build_tree(tmp_path)
        scanner = IncrementalScanner(ArchiveIndex(), tmp_path)

        assert scanner.tick()

        progress = scanner.progress
        assert progress.scanned == 1
        assert progress.total == 3  # root + a + b
        assert scanner.discovered() == [tmp_path / "top.senc"]

    def test_runs_to_completion(self, tmp_path):
        _build_tree(tmp_path)
        index = ArchiveIndex(cache_file=tmp_path / "cache.json")
        scanner = IncrementalScanner(index, tmp_path)

        ticks = 1
        while scanner.tick():
            ticks += 1

        assert ticks == 4  # root, a, b, a1
        assert scanner.is_complete
        assert scanner.progress == ScanProgress(4, 4, ScanState.COMPLETE)
        assert sorted(scanner.discovered()) == sorted([
            tmp_path / "top.senc",
            tmp_path / "a" / "one.senc",
            tmp_path / "a" / "a1" / "two.senc",
        ])
        assert len(index) == 3
        assert (tmp_path / "cache.json").exists()

    def test_tick_after_completion_is_noop(self, tmp_path):
        scanner = IncrementalScanner(ArchiveIndex(), tmp_path)

        assert not scanner.tick()
        assert not scanner.tick()
        assert scanner.progress.scanned == 1

    def test_cancel(self, tmp_path):
        _build_tree(tmp_path)
        scanner = IncrementalScanner(ArchiveIndex(), tmp_path)
        scanner.tick()

        scanner.cancel()

        assert not scanner.tick()
        assert scanner.progress.state is ScanState.IDLE
        assert str(scanner.progress) == "Idle"

    def test_scanned_directories(self, tmp_path):
        _build_tree(tmp_path)
        scanner = IncrementalScanner(ArchiveIndex(), tmp_path)
        while scanner.tick():
            pass

        assert set(scanner.scanned_directories()) == {
            tmp_path,
            tmp_path / "a",
            tmp_path / "b",
            tmp_path / "a" / "a1",
        }
