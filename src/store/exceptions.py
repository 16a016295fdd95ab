"""Exception hierarchy for the fleet store."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all store errors."""


class ServerNotFoundError(StoreError):
    """No server with the requested id."""


class SiteNotFoundError(StoreError):
    """No tracked site with the requested id."""


class AlertNotFoundError(StoreError):
    """No alert with the requested id."""
