"""
Tests for the busy-calendar adapters.
"""

import asyncio
import json

import pendulum
import pytest
import requests

from teamslots.adapters import graph_client
from teamslots.adapters.file_busy_calendar import FileBusyCalendar
from teamslots.adapters.graph_client import GraphBusyCalendar
from teamslots.domain.exceptions import AdapterUnavailable
from teamslots.domain.models import TimeRange


def utc(text: str):
    return pendulum.parse(text, tz="UTC")


def tr(start: str, end: str) -> TimeRange:
    return TimeRange(start=utc(start), end=utc(end))


class TestFileBusyCalendar:
    """Tests for the JSON file source."""

    def test_filters_by_calendar_and_window(self, tmp_path):
        data_file = tmp_path / "busy.json"
        data_file.write_text(
            json.dumps([
                {"calendarId": "alice@example.com", "start": "2024-11-25T10:00:00Z", "end": "2024-11-25T11:00:00Z"},
                {"calendarId": "alice@example.com", "start": "2024-11-27T10:00:00Z", "end": "2024-11-27T11:00:00Z"},
                {"calendarId": "bob@example.com", "start": "2024-11-25T10:00:00Z", "end": "2024-11-25T11:00:00Z"},
                {"calendarId": "alice@example.com", "start": "2024-11-25 14:00", "end": "2024-11-25 15:00"},
            ]),
            encoding="utf-8",
        )
        calendar = FileBusyCalendar(data_file, default_timezone="Europe/Berlin")

        busy = asyncio.run(
            calendar.get_busy_intervals("alice@example.com", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"))
        )

        assert busy == [
            tr("2024-11-25 10:00", "2024-11-25 11:00"),
            tr("2024-11-25 13:00", "2024-11-25 14:00"),
        ]

    def test_invalid_events_skipped(self, tmp_path, caplog):
        data_file = tmp_path / "busy.json"
        data_file.write_text(
            json.dumps([
                {"calendarId": "alice@example.com", "start": "2024-11-25T11:00:00Z", "end": "2024-11-25T10:00:00Z"},
                {"calendarId": "alice@example.com", "start": "not a date", "end": "2024-11-25T10:00:00Z"},
                {"calendarId": "alice@example.com", "start": "2024-11-25T10:00:00Z"},
            ]),
            encoding="utf-8",
        )
        calendar = FileBusyCalendar(data_file)

        busy = asyncio.run(
            calendar.get_busy_intervals("alice@example.com", utc("2024-11-25 00:00"), utc("2024-11-26 00:00"))
        )

        assert busy == []
        assert "Skipping invalid busy event" in caplog.text

    def test_missing_file_unavailable(self, tmp_path):
        calendar = FileBusyCalendar(tmp_path / "absent.json")

        with pytest.raises(AdapterUnavailable):
            asyncio.run(calendar.get_busy_intervals("alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00")))

    def test_non_list_unavailable(self, tmp_path):
        data_file = tmp_path / "busy.json"
        data_file.write_text('{"events": []}', encoding="utf-8")

        with pytest.raises(AdapterUnavailable):
            asyncio.run(
                FileBusyCalendar(data_file).get_busy_intervals(
                    "alice", utc("2024-11-25 00:00"), utc("2024-11-26 00:00")
                )
            )


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


def schedule_payload(items, schedule_id="alice@example.com", error=None):
    schedule = {"scheduleId": schedule_id, "scheduleItems": items}
    if error:
        schedule["error"] = error
    return {"value": [schedule]}


def item(status, start, end):
    return {
        "status": status,
        "start": {"dateTime": start, "timeZone": "UTC"},
        "end": {"dateTime": end, "timeZone": "UTC"},
    }


class TestGraphBusyCalendar:
    """Tests for the Microsoft Graph adapter with the HTTP call stubbed."""

    def _query(self, monkeypatch, response=None, error=None):
        captured = {}

        def fake_post(url, headers=None, json=None, timeout=None):
            captured.update(url=url, headers=headers, json=json, timeout=timeout)
            if error is not None:
                raise error
            return response

        monkeypatch.setattr(graph_client.requests, "post", fake_post)
        calendar = GraphBusyCalendar("token-123", timeout_seconds=3)
        busy = asyncio.run(
            calendar.get_busy_intervals(
                "alice@example.com", utc("2024-11-25 00:00"), utc("2024-11-26 00:00")
            )
        )
        return busy, captured

    def test_busy_items_parsed(self, monkeypatch):
        payload = schedule_payload([
            item("busy", "2024-11-25T10:00:00.0000000", "2024-11-25T11:00:00.0000000"),
            item("free", "2024-11-25T12:00:00.0000000", "2024-11-25T13:00:00.0000000"),
            item("tentative", "2024-11-25T14:00:00.0000000", "2024-11-25T14:30:00.0000000"),
            item("oof", "garbage", "2024-11-25T16:00:00.0000000"),
        ])

        busy, captured = self._query(monkeypatch, FakeResponse(payload))

        assert busy == [
            tr("2024-11-25 10:00", "2024-11-25 11:00"),
            tr("2024-11-25 14:00", "2024-11-25 14:30"),
        ]
        assert captured["url"].endswith("/me/calendar/getSchedule")
        assert captured["headers"]["Authorization"] == "Bearer token-123"
        assert captured["json"]["schedules"] == ["alice@example.com"]
        assert captured["json"]["startTime"] == {"dateTime": "2024-11-25T00:00:00", "timeZone": "UTC"}
        assert captured["timeout"] == 3

    def test_http_error_unavailable(self, monkeypatch):
        with pytest.raises(AdapterUnavailable):
            self._query(monkeypatch, FakeResponse({}, status_code=503))

    def test_connection_error_unavailable(self, monkeypatch):
        with pytest.raises(AdapterUnavailable):
            self._query(monkeypatch, error=requests.exceptions.ConnectionError("refused"))

    def test_schedule_error_unavailable(self, monkeypatch):
        payload = schedule_payload([], error={"message": "mailbox not found"})

        with pytest.raises(AdapterUnavailable, match="mailbox not found"):
            self._query(monkeypatch, FakeResponse(payload))

    def test_missing_schedule_unavailable(self, monkeypatch):
        payload = schedule_payload([], schedule_id="someone-else@example.com")

        with pytest.raises(AdapterUnavailable):
            self._query(monkeypatch, FakeResponse(payload))

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            ["alice@example.com"],
            {"value": "alice@example.com"},
            {"value": ["x", 3]},
            {"value": [{"scheduleId": "alice@example.com", "scheduleItems": "busy"}]},
        ],
    )
    def test_unexpected_shape_unavailable(self, monkeypatch, payload):
        with pytest.raises(AdapterUnavailable):
            self._query(monkeypatch, FakeResponse(payload))

    def test_malformed_items_skipped(self, monkeypatch):
        payload = schedule_payload([
            "busy",
            {"status": "busy", "start": "2024-11-25T09:00:00", "end": "2024-11-25T10:00:00"},
            item("busy", "2024-11-25T10:00:00.0000000", "2024-11-25T11:00:00.0000000"),
        ])

        busy, _ = self._query(monkeypatch, FakeResponse(payload))

        assert busy == [tr("2024-11-25 10:00", "2024-11-25 11:00")]
