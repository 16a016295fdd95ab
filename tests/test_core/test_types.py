"""Tests for core domain types."""

from __future__ import annotations

from src.core.types import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertType,
    Server,
    ServerStatus,
    Site,
    SiteStatus,
)


class TestServer:
    def test_defaults(self) -> None:
        s = Server(id="s1", name="web-1")
        assert s.status == ServerStatus.UNKNOWN
        assert s.last_heartbeat is None

    def test_heartbeat_age(self) -> None:
        s = Server(id="s1", name="web-1", last_heartbeat=100.0)
        assert s.heartbeat_age(130.0) == 30.0

    def test_heartbeat_age_never_seen(self) -> None:
        assert Server(id="s1", name="web-1").heartbeat_age(130.0) is None

    def test_status_serializes_as_string(self) -> None:
        s = Server(id="s1", name="web-1", status=ServerStatus.OFFLINE)
        assert s.model_dump(mode="json")["status"] == "offline"


class TestSite:
    def test_defaults(self) -> None:
        site = Site(id="x", server_id="s1", name="app", url="https://example.com")
        assert site.status == SiteStatus.UNKNOWN
        assert site.response_time is None
        assert site.last_checked is None


class TestAlert:
    def test_defaults(self) -> None:
        a = Alert(server_id="s1", type=AlertType.SERVER_DOWN, message="down")
        assert a.status == AlertStatus.ACTIVE
        assert a.severity == AlertSeverity.WARNING
        assert a.notified is False
        assert a.is_active

    def test_key_distinguishes_site_scope(self) -> None:
        server_alert = Alert(server_id="s1", type=AlertType.SERVER_DOWN, message="m")
        site_alert = Alert(
            server_id="s1", site_id="x", type=AlertType.SERVER_DOWN, message="m",
        )
        assert server_alert.key != site_alert.key

    def test_resolved_not_active(self) -> None:
        a = Alert(
            server_id="s1",
            type=AlertType.SERVER_DOWN,
            message="m",
            status=AlertStatus.RESOLVED,
        )
        assert not a.is_active
