"""
Local TCP port probing for the inference engine.

A port counts as in use when a TCP connect to it succeeds within the probe
timeout; any connection error or timeout means nothing is listening there.
"""

import socket

from restyle.config import (
    ENGINE_HOST,
    ENGINE_PORT_MAX_TRIES,
    ENGINE_PORT_PROBE_TIMEOUT_SECONDS,
    ENGINE_PORT_START,
)
from restyle.errors import NoFreePort
from restyle.logging_config import debug_log


def port_in_use(host: str, port: int, timeout: float = ENGINE_PORT_PROBE_TIMEOUT_SECONDS) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except (socket.timeout, OSError):
        return False


def port_is_free(host: str, port: int, timeout: float = ENGINE_PORT_PROBE_TIMEOUT_SECONDS) -> bool:
    return not port_in_use(host, port, timeout)


def find_free_port(
    host: str = ENGINE_HOST,
    start_port: int = ENGINE_PORT_START,
    max_tries: int = ENGINE_PORT_MAX_TRIES,
    timeout: float = ENGINE_PORT_PROBE_TIMEOUT_SECONDS,
) -> int:
    """
    First free port in start_port .. start_port + max_tries - 1.

    Raises:
        NoFreePort: If every port in the range answered a connect.
    """
    for port in range(start_port, min(start_port + max_tries, 65536)):
        if port_is_free(host, port, timeout):
            debug_log(f"[ENGINE] Port {port} is free on {host}")
            return port
        debug_log(f"[ENGINE] Port {port} in use on {host}")
    raise NoFreePort(f"No free port found in range {start_port}-{start_port + max_tries - 1}")
