"""
Utilities Package for infra-common.

Modules:
--------
logger:
    Structured logging configuration (JSONFormatter, setup_logging,
    get_logger, add_log_context).

net:
    get_next_free_tcp_port for test harnesses.
"""

from infra_common.utils.logger import add_log_context, get_logger, setup_logging
from infra_common.utils.net import get_next_free_tcp_port


__all__ = [
    "add_log_context",
    "get_logger",
    "get_next_free_tcp_port",
    "setup_logging",
]
