"""Tests for the launcher's configuration and forwarding logic."""

import json
import pathlib
import threading

import pytest

import remote_launcher
from conftest import RecordingHandler
from instance_relay.communication.ipc_client import RemoteClient
from instance_relay.communication.manager import RemoteListenerServerManager


def _test_config(port: int) -> dict[str, object]:
    """Build a launcher config that never shows a tray icon.

    :param port: Remote port to use.
    :returns: Config dictionary.
    """
    config: dict[str, object] = remote_launcher.DEFAULT_CONFIG.copy()
    config["remote_port"] = port
    config["show_tray_icon"] = False
    return config


def test_load_config_missing_file_uses_defaults(tmp_path: pathlib.Path) -> None:
    config = remote_launcher.load_config(str(tmp_path / "missing.json"))
    assert config == remote_launcher.DEFAULT_CONFIG
    assert config is not remote_launcher.DEFAULT_CONFIG


def test_load_config_merges_defaults(tmp_path: pathlib.Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"remote_port": 7000}), encoding="utf-8")
    config = remote_launcher.load_config(str(path))
    assert config["remote_port"] == 7000
    assert config["use_remote_server"] is True
    assert config["client_timeout"] == remote_launcher.DEFAULT_CONFIG["client_timeout"]


@pytest.mark.parametrize("content", ["{not json", "[6050]"])
def test_load_config_invalid_content_uses_defaults(tmp_path: pathlib.Path, content: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")
    assert remote_launcher.load_config(str(path)) == remote_launcher.DEFAULT_CONFIG


@pytest.mark.parametrize(
    ("port", "expected"),
    [(1024, True), (6050, True), (65535, True), (1023, False), (0, False), (65536, False), ("6050", False), (True, False)],
)
def test_is_user_port(port: object, expected: bool) -> None:
    assert remote_launcher.is_user_port(port) is expected


def test_resolve_port_falls_back_to_default() -> None:
    assert remote_launcher.resolve_port({"remote_port": 80}) == remote_launcher.DEFAULT_PORT
    assert remote_launcher.resolve_port({"remote_port": 7000}) == 7000
    assert remote_launcher.resolve_port({}) == remote_launcher.DEFAULT_PORT


def test_forward_without_running_instance(free_port: int) -> None:
    assert remote_launcher.forward_to_running_instance(free_port, ["a.bib"]) is False


def test_forward_to_running_instance(handler: RecordingHandler, free_port: int) -> None:
    with RemoteListenerServerManager() as server:
        server.open_and_start(handler, free_port)
        assert remote_launcher.forward_to_running_instance(free_port, ["a.bib", "--import"]) is True
    assert handler.calls == [["a.bib", "--import"]]


def test_logging_message_handler_records_arguments() -> None:
    handler = remote_launcher.LoggingMessageHandler()
    handler.handle_command_line_arguments(["one", "two"])
    assert handler.received == [["one", "two"]]


def test_run_primary_receives_forwarded_arguments(free_port: int) -> None:
    stop_event = threading.Event()
    result: dict[str, remote_launcher.LoggingMessageHandler] = {}

    def run() -> None:
        result["handler"] = remote_launcher.run_primary(_test_config(free_port), free_port, ["own"], stop_event)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    try:
        client = RemoteClient(free_port, timeout=3.0)
        for _ in range(50):
            if client.ping() is True:
                break
            stop_event.wait(0.1)
        assert client.send_command_line_arguments(["forwarded"]) is True
    finally:
        stop_event.set()
        thread.join(timeout=5.0)

    assert thread.is_alive() is False
    assert result["handler"].received == [["own"], ["forwarded"]]
    assert RemoteClient(free_port).ping() is False


def test_main_forwards_and_returns(handler: RecordingHandler, free_port: int, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]) -> None:
    with RemoteListenerServerManager() as server:
        server.open_and_start(handler, free_port)
        remote_launcher.main(["--config", str(tmp_path / "none.json"), "--port", str(free_port), "paper.bib"])
    assert handler.calls == [["paper.bib"]]
    assert "passed on" in capsys.readouterr().out
