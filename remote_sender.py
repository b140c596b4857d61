#!/usr/bin/env python3
"""
Simple client to test the remote listener of a running instance
"""

import argparse
import logging
import sys

from instance_relay.communication.ipc_client import DEFAULT_TIMEOUT, RemoteClient


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Send arguments to a running instance")
    parser.add_argument("--port", type=int, default=6050,
                        help="Port the running instance listens on")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT,
                        help="Connect and read timeout in seconds")
    parser.add_argument("--ping", action="store_true",
                        help="Only check that an instance answers")
    parser.add_argument("arguments", nargs="*",
                        help="Arguments to forward")

    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO,
                        format="[%(levelname)s] %(message)s")

    client = RemoteClient(args.port, timeout=args.timeout)
    if args.ping:
        ok = client.ping()
        print(f"Ping 127.0.0.1:{args.port}: {'answered' if ok else 'no answer'}")
    else:
        ok = client.send_command_line_arguments(args.arguments)
        print(f"Sent {args.arguments} to 127.0.0.1:{args.port}: "
              f"{'acknowledged' if ok else 'not acknowledged'}")

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
