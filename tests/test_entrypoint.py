"""Tests for the `python -m cryptofolio` / `cryptofolio` entry point."""

import uvicorn

from cryptofolio import __main__ as entry


class TestMain:
    def test_serves_the_app_module(self, monkeypatch):
        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
        monkeypatch.setattr(entry, "PORT", 9001)

        entry.main()

        assert calls == [("cryptofolio.main:app", {"host": entry.HOST, "port": 9001})]
