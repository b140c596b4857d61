import argparse
import json
import logging
import os
import signal
import sys
import threading

try:
    from PIL import Image, ImageDraw
    import pystray
except Exception:  # noqa: W0703
    pystray = None

from instance_relay.communication.ipc_client import RemoteClient
from instance_relay.communication.manager import RemoteListenerServerManager

DEFAULT_PORT = 6050

# Default configuration used when no config file is found.
DEFAULT_CONFIG = {
    "use_remote_server": True,
    "remote_port": DEFAULT_PORT,
    "client_timeout": 1.0,
    "server_read_timeout": 0.5,
    "show_tray_icon": True,
}


class LoggingMessageHandler:
    """Records every argument list this instance is asked to handle."""

    def __init__(self):
        self.received = []
        self._lock = threading.Lock()

    def handle_command_line_arguments(self, arguments: list[str]) -> None:
        logging.info("Handling arguments: %s", " ".join(arguments))
        with self._lock:
            self.received.append(list(arguments))


def is_user_port(port) -> bool:
    """Ports below 1024 are reserved for the system."""
    return isinstance(port, int) and not isinstance(port, bool) \
        and 1024 <= port <= 65535


def resolve_port(config: dict) -> int:
    port = config.get("remote_port", DEFAULT_PORT)
    if not is_user_port(port):
        logging.error("Invalid remote port %r, using %d instead",
                      port, DEFAULT_PORT)
        return DEFAULT_PORT
    return port


def load_config(path: str) -> dict:
    """Load configuration from JSON file or return defaults if missing."""
    if not os.path.isfile(path):
        logging.info("Config file '%s' not found, using defaults", path)
        return DEFAULT_CONFIG.copy()
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            logging.error("Failed to parse config file: %s", exc)
            return DEFAULT_CONFIG.copy()
    if not isinstance(data, dict):
        logging.error("Config file '%s' must contain an object", path)
        return DEFAULT_CONFIG.copy()
    # Merge defaults for missing values
    cfg = DEFAULT_CONFIG.copy()
    cfg.update(data)
    return cfg


def forward_to_running_instance(port: int, arguments: list[str],
                                timeout: float = 1.0) -> bool:
    """Hand ``arguments`` to an instance already listening on ``port``.

    Returns False when nobody (or something else) answers, in which case the
    caller should carry on as the primary instance.
    """
    client = RemoteClient(port, timeout=timeout)
    if not client.ping():
        return False
    if client.send_command_line_arguments(arguments):
        logging.info("Arguments passed on to the instance on port %d", port)
        return True
    logging.warning("Running instance on port %d did not accept arguments",
                    port)
    return False


def _create_image():
    """Create tray icon image."""
    image = Image.new("RGB", (64, 64), (0, 0, 0))
    draw = ImageDraw.Draw(image)
    draw.rectangle((8, 8, 56, 56), fill=(0, 128, 255))
    return image


def _setup_tray(manager, exit_cb):
    """Start system tray icon."""
    if pystray is None:
        return None

    port = manager.port
    status = f"Listening on {port}" if port else "Remote listener off"
    icon = pystray.Icon("instance_relay", _create_image(), "Instance Relay")
    icon.menu = pystray.Menu(
        pystray.MenuItem(status, None, enabled=False),
        pystray.MenuItem("Exit", lambda: exit_cb("[Exit] Tray")),
    )

    threading.Thread(target=icon.run, daemon=True).start()

    return icon


def run_primary(config: dict, port: int, arguments: list[str],
                stop_event: threading.Event | None = None) -> LoggingMessageHandler:
    """Run as the primary instance until ``stop_event`` is set."""
    stop_event = stop_event or threading.Event()
    handler = LoggingMessageHandler()

    with RemoteListenerServerManager(
            read_timeout=config["server_read_timeout"]) as manager:
        if config["use_remote_server"]:
            manager.open_and_start(handler, port)
            if not manager.is_open():
                logging.warning(
                    "Remote listener unavailable, running as an independent "
                    "instance")

        if arguments:
            handler.handle_command_line_arguments(arguments)

        def exit_handler(reason: str):
            logging.info("Shutting down: %s", reason)
            stop_event.set()

        if threading.current_thread() is threading.main_thread():
            signal.signal(
                signal.SIGINT, lambda sig, frame: exit_handler(
                    "[Exit] Signal Interrupt")
            )

        icon = None
        if config["show_tray_icon"]:
            icon = _setup_tray(manager, exit_handler)

        try:
            while not stop_event.wait(0.5):
                pass
        finally:
            if icon:
                icon.stop()
    return handler


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        description="Single-instance launcher forwarding arguments to a "
                    "running instance")
    parser.add_argument(
        "--config",
        default="config.json",
        help="path to config.json (optional)",
    )
    parser.add_argument("--port", type=int,
                        help="override the configured remote port")
    parser.add_argument("--no-remote", action="store_true",
                        help="neither forward nor listen for other instances")
    parser.add_argument("--verbose", action="store_true",
                        help="enable debug logging")
    parser.add_argument("arguments", nargs="*",
                        help="arguments to handle or forward")
    args = parser.parse_args(argv)

    if hasattr(sys.stdout, "reconfigure"):
        sys.stdout.reconfigure(encoding="utf-8")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="[%(levelname)s] %(message)s")

    config = load_config(args.config)
    if args.port is not None:
        config["remote_port"] = args.port
    if args.no_remote:
        config["use_remote_server"] = False
    port = resolve_port(config)

    if config["use_remote_server"] and forward_to_running_instance(
            port, args.arguments, config["client_timeout"]):
        print("Arguments passed on to the running instance.")
        return

    run_primary(config, port, args.arguments)


if __name__ == "__main__":
    main()
