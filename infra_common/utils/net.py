"""Network helpers for test harnesses."""

import socket


LOOPBACK_ADDRESS = "127.0.0.1"


def get_next_free_tcp_port() -> int:
    """
    Return a TCP port on the loopback interface that is currently free.

    Binding to port 0 lets the OS choose an unused ephemeral port; the socket is
    closed before returning, so another process may take the port before the
    caller binds it. Use only for tests, never for production port allocation.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK_ADDRESS, 0))
        port: int = sock.getsockname()[1]
    return port


__all__ = ["get_next_free_tcp_port"]
