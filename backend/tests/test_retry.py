"""
Tests for the backoff helper and the JWKS fetch that uses it
"""
import pytest
import requests

import auth
from core.retry import backoff_delay, retry_with_backoff


def test_backoff_grows_and_caps():
    for attempt, base in [(1, 0.5), (2, 1.0), (3, 2.0), (10, 8.0)]:
        delay = backoff_delay(attempt)
        assert base <= delay <= base * 1.5


def test_retries_until_success():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("boom")
        return "ok"

    assert retry_with_backoff(flaky, attempts=3, sleep=sleeps.append) == "ok"
    assert len(calls) == 3
    assert len(sleeps) == 2


def test_gives_up_after_last_attempt():
    sleeps = []

    def broken():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        retry_with_backoff(broken, attempts=2, sleep=sleeps.append)
    assert len(sleeps) == 1


def test_other_errors_are_not_retried():
    calls = []

    def bad():
        calls.append(1)
        raise KeyError("kid")

    with pytest.raises(KeyError):
        retry_with_backoff(bad, retry_on=(ConnectionError,), sleep=lambda s: None)
    assert len(calls) == 1


def test_jwks_is_cached(monkeypatch):
    fetched = []

    def fake_fetch(url):
        fetched.append(url)
        return {"keys": [{"kid": "k1"}]}

    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.test")
    monkeypatch.setattr(auth, "_fetch_jwks", fake_fetch)
    monkeypatch.setattr(auth, "_jwks_cache", {"data": None, "expires_at": None})

    assert auth.get_jwks() == {"keys": [{"kid": "k1"}]}
    assert auth.get_jwks() == {"keys": [{"kid": "k1"}]}
    assert fetched == ["https://proj.supabase.test/auth/v1/.well-known/jwks.json"]


def test_jwks_fetch_retries_transient_errors(monkeypatch):
    attempts = []

    def fake_fetch(url):
        attempts.append(url)
        if len(attempts) == 1:
            raise requests.ConnectionError("reset")
        return {"keys": []}

    monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.test")
    monkeypatch.setattr(auth, "_fetch_jwks", fake_fetch)
    monkeypatch.setattr(auth, "_jwks_cache", {"data": None, "expires_at": None})
    monkeypatch.setattr("core.retry.time.sleep", lambda s: None)

    assert auth.get_jwks() == {"keys": []}
    assert len(attempts) == 2
