"""
Tests for startup port selection.
"""

import socket

import pytest

import entrypoint


def test_first_free_port_is_used(monkeypatch):
    busy = {7890, 7891}
    monkeypatch.setattr(entrypoint, "port_is_free", lambda host, port: port not in busy)

    assert entrypoint.find_available_port("127.0.0.1", 7890, attempts=10) == 7892


def test_gives_up_after_attempts(monkeypatch):
    monkeypatch.setattr(entrypoint, "port_is_free", lambda host, port: False)

    assert entrypoint.find_available_port("127.0.0.1", 7890, attempts=3) is None


def test_port_is_free_detects_bound_socket():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        port = sock.getsockname()[1]

        assert entrypoint.port_is_free("127.0.0.1", port) is False


def test_main_exits_when_no_port(monkeypatch):
    monkeypatch.setattr(entrypoint, "find_available_port", lambda *args: None)
    monkeypatch.setattr(entrypoint.uvicorn, "run", lambda *args, **kwargs: pytest.fail("server started"))

    with pytest.raises(SystemExit) as exc_info:
        entrypoint.main()

    assert exc_info.value.code == 1


def test_main_runs_on_found_port(monkeypatch):
    calls = []
    monkeypatch.setattr(entrypoint, "find_available_port", lambda *args: 7893)
    monkeypatch.setattr(entrypoint.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs["port"])))

    entrypoint.main()

    assert calls == [("app:app", 7893)]
