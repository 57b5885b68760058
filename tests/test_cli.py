"""
Tests for the CLI entry point and structured logging.

Usage:
    pytest tests/test_cli.py -v
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from src.orchestrator.cli import main
from src.orchestrator.logging_config import ConsoleFormatter, JSONFormatter


REVIEWS = [
    {"id": f"r{i}", "author": f"Author {i}", "rating": (i % 5) + 1,
     "text": f"Review {i}: the food was good and the staff friendly",
     "date": f"2024-05-{i + 1:02d}T10:00:00Z"}
    for i in range(8)
]


@pytest.fixture
def review_file(tmp_path):
    path = tmp_path / "reviews.json"
    path.write_text(json.dumps(REVIEWS), encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("src.orchestrator.cli.setup_logging"):
        yield


# ============================================================================
# COMMANDS
# ============================================================================

class TestCLI:

    def test_no_command(self, capsys):
        assert main([]) == 1

    def test_config(self, capsys):
        assert main(["config"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert set(data["collection"]) == {"targetCounts", "timeouts", "retryLimits", "performance"}

    def test_analyze_fallback_json(self, review_file, capsys):
        assert main(["analyze", "--file", review_file, "--fallback", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert len(data["sentiment"]) == 8
        assert data["summary"]["fallbackOnly"] is True
        assert len(data["verdict"]["citations"]) == 8
        assert set(data["verdict"]["verdict"]) == {"overallScore", "trustworthiness", "redFlags"}

    def test_analyze_text_shows_verdict(self, review_file, capsys):
        assert main(["analyze", "--file", review_file, "--fallback"]) == 0
        assert "Verdict: score " in capsys.readouterr().out

    def test_analyze_missing_file(self, tmp_path, capsys):
        assert main(["analyze", "--file", str(tmp_path / "nope.json"), "--fallback"]) == 1
        assert "ERROR" in capsys.readouterr().out

    def test_collect_fallback_json(self, review_file, capsys):
        code = main([
            "collect",
            "--source", "https://example.com/place/1",
            "--file", review_file,
            "--recent", "4", "--worst", "2", "--best", "2",
            "--fallback", "--json",
        ])
        out = capsys.readouterr().out
        session_line, payload = out.split("\n", 1)
        status = json.loads(payload)

        assert code == 0
        assert session_line.startswith("Session: collection_")
        assert status["status"] == "complete"
        assert status["results"]["summary"]["totalCollected"] == 8

    def test_collect_invalid_source(self, review_file, capsys):
        code = main(["collect", "--source", "nowhere", "--file", review_file, "--fallback"])
        assert code == 1
        assert "ERROR" in capsys.readouterr().out

    def test_extract(self, tmp_path, capsys):
        page = tmp_path / "page.txt"
        page.write_text(
            "John Smith\n5 stars\n2 weeks ago\n"
            "Amazing food and great service, the staff were friendly and helpful.\n",
            encoding="utf-8",
        )
        assert main(["extract", "--file", str(page), "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["method"] == "content-based"
        assert data["reviews"][0]["author"] == "John Smith"


# ============================================================================
# LOGGING
# ============================================================================

class TestJSONFormatter:

    def test_session_context_fields(self):
        record = logging.LogRecord(
            name="src.orchestrator", level=logging.INFO, pathname=__file__, lineno=1,
            msg="phase %s done", args=("recent",), exc_info=None,
        )
        record.session_id = "collection_1"
        record.phase = "recent"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["msg"] == "phase recent done"
        assert entry["level"] == "INFO"
        assert entry["session_id"] == "collection_1"
        assert entry["phase"] == "recent"
        assert "batch" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("t").makeRecord(
                "t", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )

        entry = json.loads(JSONFormatter().format(record))

        assert "RuntimeError: boom" in entry["exception"]


class TestConsoleFormatter:

    def make_record(self, **extra):
        record = logging.LogRecord(
            name="src.orchestrator", level=logging.WARNING, pathname=__file__, lineno=1,
            msg="slow batch", args=(), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_session_tag(self):
        line = ConsoleFormatter().format(self.make_record(session_id="collection_1", phase="worst"))
        assert "[collection_1/worst] slow batch" in line

    def test_no_context(self):
        line = ConsoleFormatter().format(self.make_record())
        assert line.endswith("src.orchestrator: slow batch")
