"""
Proxmox VE API client

Thin, synchronous wrappers over the Proxmox VE REST API: nodes, storage,
storage content (list and download-by-URL) and QEMU virtual machines
(list, create, delete, start, graceful shutdown).

Requirements:
    - Python 3
    - requests library
    - structlog library

Configuration:
    Transport defaults live in DEFAULT_CONFIG (port, verify_ssl, timeout) and
    can be changed with configure() or per call to connect().
    Certificate validation is disabled by default; turn it on for any host
    you do not reach over a trusted network.
"""

from .main import (
    __author__,
    __description__,
    __version__,
    AuthError,
    NotFoundError,
    ProxmoxError,
    RequestError,
    Session,
    ValidationError,
    add_content,
    configure,
    connect,
    create_vm,
    execute_command,
    initialize,
    list_content,
    list_nodes,
    list_storage,
    list_vms,
    remove_vm,
    reset_config,
    start_vm,
    stop_vm,
)

__all__ = [
    "AuthError",
    "NotFoundError",
    "ProxmoxError",
    "RequestError",
    "Session",
    "ValidationError",
    "add_content",
    "configure",
    "connect",
    "create_vm",
    "execute_command",
    "initialize",
    "list_content",
    "list_nodes",
    "list_storage",
    "list_vms",
    "remove_vm",
    "reset_config",
    "start_vm",
    "stop_vm",
    "__version__",
    "__author__",
    "__description__",
]
