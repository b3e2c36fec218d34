"""Tests for the /api/events endpoints."""

from datetime import datetime, UTC
from unittest.mock import MagicMock, patch

import pytest
import requests
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy import select

from main import app
from models import Event


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def http_error(status):
    response = MagicMock(status_code=status)
    return requests.HTTPError(f"{status} Error", response=response)


class TestListEvents:
    """GET /api/events"""

    def test_single_day(self, test_client, user, auth_headers, make_event):
        make_event(user, "Standup", utc(2024, 6, 10, 9))
        make_event(user, "Tomorrow", utc(2024, 6, 11, 9))

        response = test_client.get(
            "/api/events", params={"days": 1, "startDate": "2024-06-10"}, headers=auth_headers
        )

        assert response.status_code == 200
        body = response.json()
        assert body["dateRange"]["days"] == 1
        assert datetime.fromisoformat(body["dateRange"]["startDate"]) == utc(2024, 6, 10)
        assert datetime.fromisoformat(body["dateRange"]["endDate"]) == utc(2024, 6, 10, 23, 59, 59, 999000)
        assert len(body["events"]) == 1
        group = body["events"][0]
        assert group["date"] == "2024-06-10"
        assert "weekStart" not in group
        assert [e["title"] for e in group["events"]] == ["Standup"]
        assert set(group["events"][0]) >= {
            "id", "user_id", "title", "start_time", "end_time", "created_at", "updated_at"
        }

    def test_two_weeks_grouped_by_sunday(self, test_client, user, auth_headers, make_event):
        make_event(user, "Wednesday", utc(2024, 6, 19, 9), google_event_id="g2")
        make_event(user, "Monday", utc(2024, 6, 10, 9), google_event_id="g1")

        response = test_client.get(
            "/api/events", params={"days": 14, "startDate": "2024-06-10"}, headers=auth_headers
        )

        groups = response.json()["events"]
        assert [g["weekStart"] for g in groups] == ["2024-06-09", "2024-06-16"]
        assert all("date" not in g for g in groups)
        assert [g["events"][0]["title"] for g in groups] == ["Monday", "Wednesday"]

    def test_week_view_day_groups_sorted(self, test_client, user, auth_headers, make_event):
        make_event(user, "Late", utc(2024, 6, 12, 18))
        make_event(user, "Early", utc(2024, 6, 12, 7))
        make_event(user, "First day", utc(2024, 6, 10, 12))

        response = test_client.get(
            "/api/events", params={"startDate": "2024-06-10T15:00:00Z"}, headers=auth_headers
        )

        body = response.json()
        assert body["dateRange"]["days"] == 7
        assert [g["date"] for g in body["events"]] == ["2024-06-10", "2024-06-12"]
        assert [e["title"] for e in body["events"][1]["events"]] == ["Early", "Late"]

    def test_event_without_google_id_keeps_null_field(self, test_client, user, auth_headers, make_event):
        make_event(user, "Local only", utc(2024, 6, 10, 9))

        response = test_client.get(
            "/api/events", params={"days": 1, "startDate": "2024-06-10"}, headers=auth_headers
        )

        group = response.json()["events"][0]
        assert "weekStart" not in group
        record = group["events"][0]
        assert "google_event_id" in record
        assert record["google_event_id"] is None

    @pytest.mark.parametrize("start_date", ["9999-12-01", "9999-12-31"])
    def test_window_past_last_representable_date(self, test_client, auth_headers, start_date):
        response = test_client.get(
            "/api/events", params={"days": 365, "startDate": start_date}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "startDate out of range"

    def test_empty_range(self, test_client, auth_headers):
        response = test_client.get(
            "/api/events", params={"days": 30, "startDate": "2030-01-01"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["events"] == []

    def test_excludes_other_users_events(self, test_client, user, other_user, auth_headers, make_event):
        make_event(other_user, "Not mine", utc(2024, 6, 10, 9))
        response = test_client.get(
            "/api/events", params={"days": 1, "startDate": "2024-06-10"}, headers=auth_headers
        )
        assert response.json()["events"] == []

    @pytest.mark.parametrize("days", [0, 366, -1, "abc"])
    def test_days_out_of_range(self, test_client, auth_headers, days):
        response = test_client.get("/api/events", params={"days": days}, headers=auth_headers)
        assert response.status_code == 400

    def test_bad_start_date(self, test_client, auth_headers):
        response = test_client.get(
            "/api/events", params={"startDate": "next tuesday"}, headers=auth_headers
        )
        assert response.status_code == 400

    def test_requires_auth(self, test_client):
        assert test_client.get("/api/events").status_code == 401

    def test_does_not_call_google(self, test_client, auth_headers):
        with patch("services.google_calendar.list_events") as mock_list:
            test_client.get("/api/events", headers=auth_headers)
        mock_list.assert_not_called()


class TestCreateEvent:
    """POST /api/events"""

    body = {
        "title": "Planning",
        "start_time": "2024-06-10T09:00:00Z",
        "end_time": "2024-06-10T10:00:00Z",
    }

    def test_creates_on_google_then_locally(self, test_client, db, user, auth_headers):
        with patch(
            "services.google_calendar.insert_event", return_value={"id": "google-evt-1"}
        ) as mock_insert:
            response = test_client.post("/api/events", json=self.body, headers=auth_headers)

        assert response.status_code == 201
        created = response.json()
        assert created["google_event_id"] == "google-evt-1"
        assert created["user_id"] == user.id
        assert datetime.fromisoformat(created["start_time"]) == utc(2024, 6, 10, 9)

        access_token, payload = mock_insert.call_args.args
        assert access_token == "ya29.test-access-token"
        assert payload["summary"] == "Planning"
        assert payload["start"] == {"dateTime": "2024-06-10T09:00:00Z", "timeZone": "UTC"}
        assert payload["end"] == {"dateTime": "2024-06-10T10:00:00Z", "timeZone": "UTC"}

        row = db.scalars(select(Event).where(Event.user_id == user.id)).one()
        assert row.id == created["id"]

    @pytest.mark.parametrize(
        "end_time",
        ["2024-06-10T09:00:00Z", "2024-06-10T08:59:59Z"],
    )
    def test_end_not_after_start_rejected_before_google(self, test_client, auth_headers, end_time):
        with patch("services.google_calendar.insert_event") as mock_insert, patch(
            "services.google_calendar.refresh_access_token"
        ) as mock_refresh:
            response = test_client.post(
                "/api/events", json={**self.body, "end_time": end_time}, headers=auth_headers
            )

        assert response.status_code == 400
        assert response.json()["detail"] == "End time must be after start time"
        mock_insert.assert_not_called()
        mock_refresh.assert_not_called()

    @pytest.mark.parametrize(
        "overrides",
        [{"title": ""}, {"title": "   "}, {"start_time": "yesterday"}, {"end_time": None}],
    )
    def test_invalid_body(self, test_client, auth_headers, overrides):
        with patch("services.google_calendar.insert_event") as mock_insert:
            response = test_client.post(
                "/api/events", json={**self.body, **overrides}, headers=auth_headers
            )
        assert response.status_code == 400
        mock_insert.assert_not_called()

    def test_expired_google_token_is_refreshed_first(self, test_client, db, user, auth_headers):
        user.token_expiry = utc(2020, 1, 1)
        db.commit()
        with patch(
            "services.google_calendar.refresh_access_token",
            return_value={"access_token": "ya29.refreshed", "expires_in": 3600},
        ), patch(
            "services.google_calendar.insert_event", return_value={"id": "google-evt-2"}
        ) as mock_insert:
            response = test_client.post("/api/events", json=self.body, headers=auth_headers)

        assert response.status_code == 201
        assert mock_insert.call_args.args[0] == "ya29.refreshed"

    @pytest.mark.parametrize("status,expected", [(401, 401), (403, 403), (500, 500), (404, 500)])
    def test_google_failure_creates_nothing(self, test_client, db, user, auth_headers, status, expected):
        with patch("services.google_calendar.insert_event", side_effect=http_error(status)):
            response = test_client.post("/api/events", json=self.body, headers=auth_headers)

        assert response.status_code == expected
        assert db.scalars(select(Event)).all() == []

    def test_duplicate_google_id_is_conflict(self, test_client, user, auth_headers, make_event):
        make_event(user, "Existing", utc(2024, 6, 1, 9), google_event_id="google-evt-1")
        with patch("services.google_calendar.insert_event", return_value={"id": "google-evt-1"}):
            response = test_client.post("/api/events", json=self.body, headers=auth_headers)
        assert response.status_code == 409

    def test_requires_auth(self, test_client):
        with patch("services.google_calendar.insert_event") as mock_insert:
            response = test_client.post("/api/events", json=self.body)
        assert response.status_code == 401
        mock_insert.assert_not_called()


class TestRefreshEvents:
    """POST /api/events/refresh"""

    def test_returns_fetched_count(self, test_client, db, user, auth_headers, google_item):
        items = [
            google_item("g1", "Standup", "2024-06-10T09:00:00Z", "2024-06-10T09:15:00Z"),
            google_item("g2", "", "2024-06-10T10:00:00Z", "2024-06-10T11:00:00Z"),
        ]
        with patch("services.google_calendar.list_events", return_value=items) as mock_list:
            response = test_client.post("/api/events/refresh", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"message": "Events refreshed successfully", "count": 2}
        assert mock_list.call_args.args[0] == "ya29.test-access-token"
        assert [e.google_event_id for e in db.scalars(select(Event)).all()] == ["g1"]

    def test_rejected_google_refresh_is_unauthorized(self, test_client, db, user, auth_headers):
        user.token_expiry = utc(2020, 1, 1)
        db.commit()
        with patch(
            "services.google_calendar.refresh_access_token",
            side_effect=requests.ConnectionError("down"),
        ), patch("services.google_calendar.list_events") as mock_list:
            response = test_client.post("/api/events/refresh", headers=auth_headers)

        assert response.status_code == 401
        mock_list.assert_not_called()

    def test_unreadable_stored_token_is_unauthorized(self, test_client, db, user, auth_headers):
        user.encrypted_access_token = Fernet(Fernet.generate_key()).encrypt(b"ya29.old").decode()
        db.commit()
        with patch("services.google_calendar.list_events") as mock_list:
            response = test_client.post("/api/events/refresh", headers=auth_headers)

        assert response.status_code == 401
        mock_list.assert_not_called()

    def test_google_forbidden(self, test_client, auth_headers):
        with patch("services.google_calendar.list_events", side_effect=http_error(403)):
            response = test_client.post("/api/events/refresh", headers=auth_headers)
        assert response.status_code == 403


def test_health(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_unhandled_error_is_generic_500(auth_headers):
    client = TestClient(app, raise_server_exceptions=False)
    with patch("services.event_service.group_events", side_effect=RuntimeError("secret detail")):
        response = client.get("/api/events", headers=auth_headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"
    # ENV=test: the exception text is only exposed in development
    assert "message" not in response.json()
