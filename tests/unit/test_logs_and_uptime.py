# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for log parsing and aggregation and for uptime tracking.
"""
from datetime import timedelta

import pytest

from conftest import make_service
from vtx.MANAGERS.log_aggregator import LogAggregator, parse_log_line
from vtx.MANAGERS.uptime_tracker import UptimeTracker
from vtx.MODELS.service import LogEntry, utcnow


class TestParseLogLine:
    """Tests for level inference."""

    @pytest.mark.parametrize(
        "line,level",
        [
            ("2024-01-01 INFO Started Application", "INFO"),
            ("ERROR something broke", "ERROR"),
            ("[main] warn: low memory", "WARN"),
            ("WARNING deprecated property", "WARN"),
            ("DEBUG o.s.web", "DEBUG"),
            ("TRACE wire", "TRACE"),
            ("plain output", "INFO"),
            ("ERROR then INFO", "ERROR"),
        ],
    )
    def test_levels(self, line, level):
        entry = parse_log_line(line)
        assert entry.level == level
        assert entry.message == line


class TestLogAggregator:
    """Tests for LogAggregator."""

    def test_recent_merges_by_timestamp(self):
        now = utcnow()
        api = make_service("api")
        db = make_service("db")
        api.append_log(LogEntry(timestamp=now, message="api-1"))
        db.append_log(LogEntry(timestamp=now - timedelta(seconds=1), message="db-1"))
        api.append_log(LogEntry(timestamp=now + timedelta(seconds=1), level="ERROR", message="api-2"))

        merged = LogAggregator().recent([api, db])
        assert [(name, e.message) for name, e in merged] == [("db", "db-1"), ("api", "api-1"), ("api", "api-2")]

        assert [e.message for _, e in LogAggregator().recent([api, db], level="error")] == ["api-2"]
        assert [e.message for _, e in LogAggregator().recent([api, db], limit=1)] == ["api-2"]

    def test_clear(self):
        api = make_service("api")
        api.append_log(LogEntry(message="x"))
        assert LogAggregator().clear([api]) == {"api": "Success"}
        assert api.logs == []

    def test_tail_logs_emits_new_lines(self, tmp_path):
        aggregator = LogAggregator(str(tmp_path))
        path = tmp_path / "api.log"
        path.write_text("old line\n")
        seen = []
        calls = {"n": 0}

        def should_stop():
            calls["n"] += 1
            if calls["n"] == 2:
                with open(path, "a") as f:
                    f.write("new line\n")
            return bool(seen) or calls["n"] > 50

        aggregator.tail_logs(["api"], emit=lambda name, line: seen.append((name, line)),
                             should_stop=should_stop, poll_interval=0.01)
        assert seen == [("api", "new line")]


class TestUptimeTracker:
    """Tests for UptimeTracker."""

    def test_no_events(self):
        stats = UptimeTracker().statistics("svc")
        assert stats.total_restarts == 0
        assert stats.uptime_percentage_24h == 100.0

    def test_statistics(self):
        tracker = UptimeTracker()
        now = utcnow()
        t0 = now - timedelta(hours=3)
        tracker.record("svc", "start", "running", t0)
        tracker.record("svc", "crash", "error", t0 + timedelta(hours=1))
        tracker.record("svc", "start", "running", t0 + timedelta(hours=2))

        stats = tracker.statistics("svc", now=now)
        assert stats.total_restarts == 2
        assert stats.total_downtime_24h == pytest.approx(3600.0)
        assert stats.uptime_percentage_24h == pytest.approx((86400 - 3600) / 86400 * 100)
        assert stats.last_downtime == t0 + timedelta(hours=1)
        assert stats.mtbf == 0.0

    def test_mtbf_between_failures(self):
        tracker = UptimeTracker()
        now = utcnow()
        tracker.record("svc", "crash", "error", now - timedelta(hours=4))
        tracker.record("svc", "start", "running", now - timedelta(hours=3))
        tracker.record("svc", "crash", "error", now - timedelta(hours=2))
        stats = tracker.statistics("svc", now=now)
        assert stats.mtbf == pytest.approx(7200.0)
        # down 4h->3h and 2h->now
        assert stats.total_downtime_24h == pytest.approx(3 * 3600.0)

    def test_history_is_bounded(self):
        tracker = UptimeTracker(max_events=10)
        for _ in range(25):
            tracker.record("svc", "health", "healthy")
        assert len(tracker.events("svc")) == 10
        tracker.forget("svc")
        assert tracker.events("svc") == []
