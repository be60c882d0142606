"""Tests for TailWatcher and log directory scanning."""
import os
import threading
from pathlib import Path

import pytest
from conftest import wait_for
from watchdog.events import DirModifiedEvent, FileModifiedEvent

import tailcast.watcher as watcher_module
from tailcast.errors import DirectoryScanFailure, FileUnavailable
from tailcast.watcher import LogDirHandler, TailWatcher, find_most_recent_log


def append(path: Path, text: str) -> None:
    with open(path, "a", encoding="utf-8", newline="") as f:
        f.write(text)


class TestCheckForNewContent:
    def test_first_check_reads_whole_file(self, watcher: TailWatcher, log_file: Path):
        assert watcher.check_for_new_content() == ["Line 1", "Line 2", "Line 3"]
        assert watcher.offset == log_file.stat().st_size

    def test_no_growth_returns_empty_and_keeps_offset(self, watcher: TailWatcher):
        watcher.check_for_new_content()
        offset = watcher.offset

        assert watcher.check_for_new_content() == []
        assert watcher.offset == offset

    def test_appends_are_returned_once_in_order(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()
        append(log_file, "Line 4\n")
        append(log_file, "Line 5\nLine 6\n")

        assert watcher.check_for_new_content() == ["Line 4", "Line 5", "Line 6"]
        append(log_file, "Line 7\n")
        assert watcher.check_for_new_content() == ["Line 7"]
        assert watcher.check_for_new_content() == []

    def test_concatenated_batches_equal_appended_lines(self, watcher: TailWatcher, log_file: Path):
        seen = watcher.check_for_new_content()
        expected = ["Line 1", "Line 2", "Line 3"]
        for i in range(20):
            append(log_file, f"entry {i}\n")
            expected.append(f"entry {i}")
            if i % 3 == 0:
                seen += watcher.check_for_new_content()
        seen += watcher.check_for_new_content()

        assert seen == expected

    def test_partial_line_waits_for_terminator(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()
        offset = watcher.offset
        append(log_file, "half a li")

        assert watcher.check_for_new_content() == []
        assert watcher.offset == offset
        assert watcher.check_for_new_content() == []

        append(log_file, "ne\nnext")
        assert watcher.check_for_new_content() == ["half a line"]
        append(log_file, "\n")
        assert watcher.check_for_new_content() == ["next"]

    def test_crlf_and_empty_lines(self, tmp_path: Path):
        path = tmp_path / "win.log"
        path.write_bytes(b"one\r\n\r\ntwo\r\n")

        assert TailWatcher(str(path)).check_for_new_content() == ["one", "", "two"]

    def test_invalid_utf8_is_replaced(self, tmp_path: Path):
        path = tmp_path / "bin.log"
        path.write_bytes(b"ok \xff\xfe\n")

        assert TailWatcher(str(path)).check_for_new_content() == ["ok \ufffd\ufffd"]

    def test_truncation_resets_offset(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()
        log_file.write_text("new\n")

        assert watcher.check_for_new_content() == ["new"]
        assert watcher.offset == 4

    def test_truncated_to_empty(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()
        log_file.write_text("")

        assert watcher.check_for_new_content() == []
        assert watcher.offset == 0

    def test_replaced_file_is_read_from_start(self, watcher: TailWatcher, log_file: Path, tmp_path: Path):
        watcher.check_for_new_content()
        replacement = tmp_path / "app.log.tmp"
        replacement.write_text("A much longer replacement line\nand another one\n")
        os.replace(replacement, log_file)

        assert watcher.check_for_new_content() == ["A much longer replacement line", "and another one"]

    def test_resume_offset(self, log_file: Path):
        w = TailWatcher(str(log_file), offset=len("Line 1\n"))

        assert w.check_for_new_content() == ["Line 2", "Line 3"]

    def test_rotation_switches_to_newest_log(self, watcher: TailWatcher, log_file: Path, tmp_path: Path):
        watcher.check_for_new_content()
        log_file.unlink()
        rotated = tmp_path / "app-2.log"
        rotated.write_text("fresh 1\nfresh 2\n")

        assert watcher.check_for_new_content() == ["fresh 1", "fresh 2"]
        assert watcher.path == str(rotated)
        assert watcher.offset == rotated.stat().st_size

        append(rotated, "fresh 3\n")
        assert watcher.check_for_new_content() == ["fresh 3"]

    def test_failed_read_after_rotation_keeps_old_path(self, watcher: TailWatcher, log_file: Path,
                                                       tmp_path: Path, monkeypatch):
        watcher.check_for_new_content()
        offset = watcher.offset
        log_file.unlink()
        rotated = tmp_path / "app-2.log"
        rotated.write_text("fresh 1\n")

        def broken(fd):
            raise OSError("I/O error")

        monkeypatch.setattr(watcher_module.os, "fstat", broken)
        assert watcher.check_for_new_content() == []
        assert watcher.path == str(log_file)
        assert watcher.offset == offset

        monkeypatch.undo()
        assert watcher.check_for_new_content() == ["fresh 1"]
        assert watcher.path == str(rotated)

    def test_missing_file_without_replacement_is_noop(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()
        offset = watcher.offset
        log_file.unlink()

        assert watcher.check_for_new_content() == []
        assert watcher.path == str(log_file)
        assert watcher.offset == offset

    def test_open_error_leaves_state_unchanged(self, watcher: TailWatcher, log_file: Path, monkeypatch):
        watcher.check_for_new_content()
        offset = watcher.offset
        append(log_file, "Line 4\n")

        def deny(*args, **kwargs):
            raise PermissionError("denied")

        monkeypatch.setattr(watcher_module, "open", deny, raising=False)
        assert watcher.check_for_new_content() == []
        assert watcher.offset == offset

        monkeypatch.undo()
        assert watcher.check_for_new_content() == ["Line 4"]

    def test_read_error_leaves_state_unchanged(self, watcher: TailWatcher, log_file: Path, monkeypatch):
        watcher.check_for_new_content()
        offset = watcher.offset
        append(log_file, "Line 4\n")

        def broken(fd):
            raise OSError("I/O error")

        monkeypatch.setattr(watcher_module.os, "fstat", broken)
        assert watcher.check_for_new_content() == []
        assert watcher.offset == offset

        monkeypatch.undo()
        assert watcher.check_for_new_content() == ["Line 4"]


class TestFindMostRecentLog:
    def test_picks_newest(self, tmp_path: Path):
        old = tmp_path / "old.log"
        new = tmp_path / "new.log"
        old.write_text("x")
        new.write_text("y")
        os.utime(old, ns=(1_000_000_000, 1_000_000_000))
        os.utime(new, ns=(2_000_000_000, 2_000_000_000))

        assert find_most_recent_log(str(tmp_path)) == str(new)

    def test_tie_breaks_by_name(self, tmp_path: Path):
        for name in ("b.log", "a.log", "c.log"):
            p = tmp_path / name
            p.write_text("x")
            os.utime(p, ns=(5_000_000_000, 5_000_000_000))

        assert find_most_recent_log(str(tmp_path)) == str(tmp_path / "a.log")

    def test_ignores_hidden_dirs_and_other_suffixes(self, tmp_path: Path):
        (tmp_path / "app.log").write_text("x")
        os.utime(tmp_path / "app.log", ns=(1_000_000_000, 1_000_000_000))
        (tmp_path / ".hidden.log").write_text("x")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / "dir.log").mkdir()

        assert find_most_recent_log(str(tmp_path)) == str(tmp_path / "app.log")

    def test_suffix_is_case_insensitive(self, tmp_path: Path):
        (tmp_path / "SERVER.LOG").write_text("x")

        assert find_most_recent_log(str(tmp_path)) == str(tmp_path / "SERVER.LOG")

    def test_no_log_files(self, tmp_path: Path):
        (tmp_path / "readme.md").write_text("x")

        with pytest.raises(DirectoryScanFailure):
            find_most_recent_log(str(tmp_path))

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(DirectoryScanFailure):
            find_most_recent_log(str(tmp_path / "nope"))


class TestSnapshot:
    def test_snapshot_ignores_offset(self, watcher: TailWatcher, log_file: Path):
        watcher.check_for_new_content()

        assert watcher.read_snapshot() == log_file.read_bytes()
        assert watcher.offset == log_file.stat().st_size

    def test_snapshot_missing_file(self, watcher: TailWatcher, log_file: Path):
        log_file.unlink()

        with pytest.raises(FileUnavailable) as exc:
            watcher.read_snapshot()
        assert exc.value.not_found


class TestRunLoop:
    def test_loop_publishes_batches(self, watcher: TailWatcher, log_file: Path):
        batches = []
        got = threading.Event()

        def publish(lines):
            batches.append(lines)
            got.set()

        stop = threading.Event()
        t = watcher.start(publish, interval=0.05, stop_event=stop)
        try:
            assert got.wait(5)
            got.clear()
            append(log_file, "Line 4\n")
            watcher.poke()
            assert got.wait(5)
        finally:
            stop.set()
            watcher.poke()
            t.join(5)

        assert not t.is_alive()
        assert batches == [["Line 1", "Line 2", "Line 3"], ["Line 4"]]

    def test_loop_survives_publish_errors(self, watcher: TailWatcher, log_file: Path):
        calls = []
        done = threading.Event()

        def publish(lines):
            calls.append(lines)
            if len(calls) == 1:
                raise RuntimeError("boom")
            done.set()

        stop = threading.Event()
        t = watcher.start(publish, interval=0.05, stop_event=stop)
        try:
            assert wait_for(lambda: len(calls) == 1)
            append(log_file, "Line 4\n")
            assert done.wait(5)
        finally:
            stop.set()
            watcher.poke()
            t.join(5)

        assert calls == [["Line 1", "Line 2", "Line 3"], ["Line 4"]]


class TestLogDirHandler:
    def test_log_event_wakes_watcher(self, watcher: TailWatcher, log_file: Path):
        LogDirHandler(watcher).on_any_event(FileModifiedEvent(str(log_file)))

        assert watcher._wake.is_set()

    def test_other_events_ignored(self, watcher: TailWatcher, tmp_path: Path):
        handler = LogDirHandler(watcher)
        handler.on_any_event(FileModifiedEvent(str(tmp_path / "notes.txt")))
        handler.on_any_event(DirModifiedEvent(str(tmp_path)))

        assert not watcher._wake.is_set()
