"""Tests for the slotkeeper command line."""

import json

import pytest
from unittest.mock import patch

from slotkeeper.cli import main
from slotkeeper.data.models import EventType


@pytest.fixture
def stores(scheduling_db, connection_db):
    scheduling_db.add_host("h1", "Host")
    scheduling_db.add_availability_rule("h1", "09:00", "10:00", day_of_week=2)
    scheduling_db.add_event_type(EventType(id="et1", host_id="h1", duration_minutes=30))
    with patch("slotkeeper.cli.SchedulingDB", return_value=scheduling_db), \
         patch("slotkeeper.cli.ConnectionDB", return_value=connection_db):
        yield scheduling_db


class TestCli:
    def test_prints_slots_for_date(self, stores, capsys):
        # 2030-01-01 is a Tuesday
        assert main(["h1", "et1", "--date", "2030-01-01"]) == 0
        slots = json.loads(capsys.readouterr().out)
        assert [s["start"] for s in slots] == [
            "2030-01-01T09:00:00+00:00",
            "2030-01-01T09:15:00+00:00",
            "2030-01-01T09:30:00+00:00",
        ]

    def test_unknown_event_type(self, stores, capsys):
        assert main(["h1", "missing", "--date", "2030-01-01"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_event_type_of_other_host(self, stores, capsys):
        assert main(["h2", "et1", "--date", "2030-01-01"]) == 1

    def test_invalid_booker_timezone(self, stores, capsys):
        assert main(["h1", "et1", "--date", "2030-01-01", "--timezone", "Nowhere/Land"]) == 2
        assert "Error" in capsys.readouterr().err
