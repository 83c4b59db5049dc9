#!/usr/bin/env python3

"""
HeadlessController Utilities

Logging setup and debug port selection.
"""

import logging
import socket


def setup_logging(verbose: bool = False, protocol_frames: bool = False):
    """
    Setup logging for HeadlessController.

    Args:
        verbose: Log traffic and process output at debug level
        protocol_frames: Also let the websockets library log every frame
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # The clients already log each message once
    logging.getLogger("websockets").setLevel(logging.DEBUG if protocol_frames else logging.INFO)
    return logging.getLogger("HeadlessController")


def _port_is_free(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(start_port=9292, max_attempts=100, host="localhost"):
    """
    Find a free port for a browser debug endpoint.

    Asks the OS for an ephemeral port first, then scans upwards from
    ``start_port``.

    Returns:
        int: Available port number

    Raises:
        OSError: If no available port found after max_attempts
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, 0))
            port = sock.getsockname()[1]
        except OSError:
            port = 0
    if port >= 1024:
        return port

    for try_port in range(start_port, start_port + max_attempts):
        if _port_is_free(host, try_port):
            return try_port

    raise OSError("Could not find available port after {} attempts starting from {}".format(
        max_attempts, start_port))
