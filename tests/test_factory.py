"""Tests for application wiring."""

import pytest

from starfall.factory import _normalize_db_url
from starfall.services.container import get_services


@pytest.mark.parametrize("url,expected", [
    ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
    ("postgresql://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
    ("postgresql+psycopg://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
    ("sqlite:///tmp/x.db", "sqlite:///tmp/x.db"),
])
def test_normalize_db_url(url, expected):
    assert _normalize_db_url(url) == expected


def test_services_registered(app, services):
    assert get_services() is services
    assert services.notifier.is_admin("999")


def test_blueprints(app):
    rules = {rule.rule for rule in app.url_map.iter_rules()}
    assert {"/health", "/healthz", "/readyz", "/metrics",
            "/webhook/<channel>", "/telegram/webhook"} <= rules
