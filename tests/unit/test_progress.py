"""
Unit tests for progress output
"""

import io
import re
import time

from gsi_mbtiles.progress import Reporter


class TestReporter:

    def test_line_format(self, reporter):
        reporter.log("hello")
        assert re.fullmatch(r"test: \d+\.\d{3}s hello\n", reporter.stream.getvalue())

    def test_defaults_to_stdout(self, capsys):
        Reporter("relief").log("Starting up")
        assert capsys.readouterr().out.startswith("relief: ")

    def test_elapsed_increases(self, reporter):
        first = reporter.elapsed
        time.sleep(0.01)
        assert reporter.elapsed > first


class TestPeriodicReport:
    """Test cases for the background progress timer"""

    def test_reports_while_running(self):
        reporter = Reporter("test", stream=io.StringIO())
        calls = []

        def report():
            calls.append(1)
            return f"tick {len(calls)}"

        with reporter.every(0.01, report):
            deadline = time.monotonic() + 5
            while not calls and time.monotonic() < deadline:
                time.sleep(0.01)

        assert calls
        assert "tick 1" in reporter.stream.getvalue()

    def test_stops_on_exit(self):
        reporter = Reporter("test", stream=io.StringIO())

        with reporter.every(0.01, lambda: "tick") as periodic:
            pass

        assert not periodic._thread.is_alive()
        output = reporter.stream.getvalue()
        time.sleep(0.05)
        assert reporter.stream.getvalue() == output

    def test_stops_when_block_raises(self):
        reporter = Reporter("test", stream=io.StringIO())
        try:
            with reporter.every(60, lambda: "tick") as periodic:
                raise KeyboardInterrupt
        except KeyboardInterrupt:
            pass
        assert not periodic._thread.is_alive()
