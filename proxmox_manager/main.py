from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import requests
import structlog

# Library metadata
__version__ = "1.0.0"
__author__ = "OpenHome"
__description__ = "Proxmox VE API client for node, storage, content and VM management"

logger = structlog.get_logger()

# Fallback transport config. Override with configure() or per-call arguments.
DEFAULT_CONFIG = {
    "port": 8006,
    # Certificate validation is OFF to match self-signed PVE installs.
    # Callers reaching a host over an untrusted network must turn it on.
    "verify_ssl": False,
    "timeout": 30,
}

_config: Dict[str, Any] = DEFAULT_CONFIG.copy()

AUTH_SCHEME = "PVEAPIToken"
API_BASE_PATH = "/api2/json"

CPU_TYPES = ("x86-64-v2-AES",)
OS_TYPES = ("l26",)
CONTENT_KINDS = ("iso", "vztmpl", "import")
CONTENT_KIND_ALIASES = {"template": "vztmpl"}

# Fixed hardware layout for new VMs
SCSI_CONTROLLER = "virtio-scsi-single"
NETWORK_DEVICE = "virtio,bridge=vmbr0"
FIRST_VMID = 100


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProxmoxError(Exception):
    """Base class for every error raised by this client."""


class AuthError(ProxmoxError):
    """The connection probe failed: host unreachable, bad token, or non-2xx."""

    def __init__(self, host: str, cause: Any):
        self.host = host
        self.cause = cause
        super().__init__(f"Authentication against {host} failed: {cause}")


class RequestError(ProxmoxError, requests.RequestException):
    """A request other than the auth probe failed."""

    def __init__(self, host: str, endpoint: str, cause: Any):
        self.host = host
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"Proxmox API request to {host} ({endpoint}) failed: {cause}")


class NotFoundError(ProxmoxError, LookupError):
    """A name or id filter matched nothing."""

    def __init__(self, kind: str, value: Any, host: str):
        self.kind = kind
        self.value = value
        self.host = host
        super().__init__(f"No {kind} matching '{value}' on {host}")


class ValidationError(ProxmoxError, ValueError):
    """A parameter is outside its permitted set. Raised before any request."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def configure(**overrides: Any) -> Dict[str, Any]:
    """Override transport defaults used by connect()."""
    unknown = sorted(set(overrides) - set(DEFAULT_CONFIG))
    if unknown:
        raise ValidationError(
            f"Unknown config option(s) {', '.join(unknown)}. "
            f"Valid: {', '.join(sorted(DEFAULT_CONFIG))}"
        )
    _config.update(overrides)
    return dict(_config)


def reset_config() -> Dict[str, Any]:
    _config.clear()
    _config.update(DEFAULT_CONFIG)
    return dict(_config)


# ---------------------------------------------------------------------------
# Session and request helpers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Session:
    """Authenticated context handed to every API call.

    Immutable and stateless: each call opens its own HTTP request using the
    header and transport settings captured here.
    """

    base_uri: str
    auth_header: str
    server_host: str
    verify_ssl: bool = False
    timeout: float = 30

    def __repr__(self) -> str:
        # Never echo the token secret
        return (
            f"Session(base_uri={self.base_uri!r}, server_host={self.server_host!r}, "
            f"verify_ssl={self.verify_ssl!r}, timeout={self.timeout!r})"
        )


def _get_api_headers(session: Session) -> Dict[str, str]:
    return {
        "Authorization": session.auth_header,
        "Content-Type": "application/json",
    }


def _base_url(host: str, port: int) -> str:
    return f"https://{host}:{port}{API_BASE_PATH}"


def _unwrap(result: Any) -> Any:
    if not isinstance(result, dict) or "data" not in result:
        raise ValueError(f"response has no 'data' envelope: {result!r}")
    return result["data"]


def _make_api_request(
    session: Session,
    endpoint: str,
    method: str = "GET",
    data: Optional[Dict[str, Any]] = None,
) -> Any:
    url = f"{session.base_uri}/{endpoint}"
    host = session.server_host
    logger.debug("Sending Proxmox request", method=method, endpoint=endpoint, host=host)

    try:
        response = requests.request(
            method=method,
            url=url,
            json=data,
            headers=_get_api_headers(session),
            verify=session.verify_ssl,
            timeout=session.timeout,
        )
        response.raise_for_status()
        return _unwrap(response.json())

    except requests.exceptions.SSLError as e:
        logger.error("Proxmox SSL error", endpoint=endpoint, host=host, error=str(e))
        raise RequestError(
            host, endpoint, f"SSL Error: {e}. Check verify_ssl setting."
        ) from e
    except requests.exceptions.ConnectionError as e:
        logger.error("Proxmox host unreachable", endpoint=endpoint, host=host)
        raise RequestError(host, endpoint, f"Cannot reach Proxmox host: {host}") from e
    except requests.exceptions.Timeout as e:
        logger.error("Proxmox request timed out", endpoint=endpoint, host=host)
        raise RequestError(host, endpoint, "Request timed out") from e
    except requests.exceptions.RequestException as e:
        logger.error("Proxmox API failed", endpoint=endpoint, host=host, error=str(e))
        raise RequestError(host, endpoint, str(e)) from e
    except ValueError as e:
        # Non-JSON body or missing envelope
        logger.error("Malformed Proxmox response", endpoint=endpoint, host=host, error=str(e))
        raise RequestError(host, endpoint, f"Malformed response: {e}") from e


def _first_match(
    items: List[Dict[str, Any]], key: str, value: Any
) -> Optional[Dict[str, Any]]:
    # First match wins; names are not unique on the server side
    for item in items:
        if item.get(key) == value:
            return item
    return None


def _get_list(session: Session, endpoint: str) -> List[Dict[str, Any]]:
    data = _make_api_request(session, endpoint)
    if not isinstance(data, list):
        logger.error("Malformed Proxmox listing", endpoint=endpoint, host=session.server_host)
        raise RequestError(
            session.server_host, endpoint, f"expected a list under 'data', got {type(data).__name__}"
        )
    return [item for item in data if isinstance(item, dict)]


def _check_choice(label: str, value: Any, allowed: tuple) -> None:
    if value not in allowed:
        raise ValidationError(
            f"Invalid {label} '{value}'. Valid: {', '.join(allowed)}"
        )


def _to_int(label: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label} '{value}'. Expected an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} '{value}'. Expected an integer") from None


# ---------------------------------------------------------------------------
# Connector
# ---------------------------------------------------------------------------

def connect(
    host: str,
    token_id: str,
    secret: str,
    *,
    port: Optional[int] = None,
    verify_ssl: Optional[bool] = None,
    timeout: Optional[float] = None,
) -> Session:
    """Build a Session and verify it with a GET on the version endpoint."""
    session = Session(
        base_uri=_base_url(host, port if port is not None else _config["port"]),
        auth_header=f"{AUTH_SCHEME} {token_id}={secret}",
        server_host=host,
        verify_ssl=_config["verify_ssl"] if verify_ssl is None else verify_ssl,
        timeout=_config["timeout"] if timeout is None else timeout,
    )

    try:
        version = _make_api_request(session, "version")
    except RequestError as e:
        logger.error("Proxmox authentication failed", host=host, token_id=token_id)
        raise AuthError(host, e.cause) from e

    logger.info(
        "Connected to Proxmox",
        host=host,
        token_id=token_id,
        version=version.get("version") if isinstance(version, dict) else version,
    )
    return session


# ---------------------------------------------------------------------------
# Node functions
# ---------------------------------------------------------------------------

def _project_node(node: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": node.get("id", ""),
        "status": node.get("status", "unknown"),
        "name": node.get("node", ""),
    }


def list_nodes(
    session: Session, name: Optional[str] = None
) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
    """List cluster nodes, or return the one named ``name``."""
    nodes = _get_list(session, "nodes")

    if name is None:
        return [_project_node(node) for node in nodes]

    match = _first_match(nodes, "node", name)
    if match is None:
        logger.warning("Node not found", node=name, host=session.server_host)
        raise NotFoundError("node", name, session.server_host)
    return _project_node(match)


# ---------------------------------------------------------------------------
# Storage functions
# ---------------------------------------------------------------------------

def _project_storage(st: Dict[str, Any]) -> Dict[str, Any]:
    content = st.get("content", "")
    return {
        "name": st.get("storage", ""),
        "content_types": [c for c in content.split(",") if c] if content else [],
        "used_fraction": st.get("used_fraction", 0),
        "available": st.get("avail", 0),
    }


def list_storage(
    session: Session, node: str, name: Optional[str] = None
) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
    """List storage pools on a node, or return the one named ``name``."""
    storages = _get_list(session, f"nodes/{node}/storage")

    if name is None:
        return [_project_storage(st) for st in storages]

    match = _first_match(storages, "storage", name)
    if match is None:
        logger.warning("Storage not found", node=node, storage=name, host=session.server_host)
        raise NotFoundError("storage", name, session.server_host)
    return _project_storage(match)


# ---------------------------------------------------------------------------
# Content functions
# ---------------------------------------------------------------------------

def list_content(
    session: Session, node: str, storage: str, volid: Optional[str] = None
) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
    """List stored ISOs, templates and images. Items are passed through as-is."""
    items = _get_list(session, f"nodes/{node}/storage/{storage}/content")

    if volid is None:
        return items

    match = _first_match(items, "volid", volid)
    if match is None:
        logger.warning("Content not found", node=node, storage=storage, volid=volid)
        raise NotFoundError("content", volid, session.server_host)
    return match


def add_content(
    session: Session,
    node: str,
    storage: str,
    content_kind: str,
    file_name: str,
    source_url: str,
) -> Dict[str, Any]:
    """Ask the node to download ``source_url`` into ``storage``.

    The download runs server-side; the returned task id is not polled.
    """
    kind = CONTENT_KIND_ALIASES.get(content_kind, content_kind)
    _check_choice("content kind", kind, CONTENT_KINDS)

    data = _make_api_request(
        session,
        f"nodes/{node}/storage/{storage}/download-url",
        method="POST",
        data={
            "content": kind,
            "filename": file_name,
            "node": node,
            "storage": storage,
            "url": source_url,
        },
    )
    logger.info(
        "Content download requested",
        node=node, storage=storage, content=kind, filename=file_name,
    )
    return {
        "node": node,
        "storage": storage,
        "content": kind,
        "filename": file_name,
        "task_id": data,
    }


# ---------------------------------------------------------------------------
# VM (QEMU) functions
# ---------------------------------------------------------------------------

def list_vms(
    session: Session,
    node: str,
    name: Optional[str] = None,
    vmid: Optional[int] = None,
) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
    """List QEMU VMs on a node, or return the one matching ``name``/``vmid``."""
    if vmid is not None:
        vmid = _to_int("vmid", vmid)
    vms = _get_list(session, f"nodes/{node}/qemu")

    if name is None and vmid is None:
        return vms

    for vm in vms:
        if name is not None and vm.get("name") != name:
            continue
        if vmid is not None and _vmid(vm) != vmid:
            continue
        return vm

    wanted = name if name is not None else vmid
    logger.warning("VM not found", node=node, vm=wanted, host=session.server_host)
    raise NotFoundError("VM", wanted, session.server_host)


def _vmid(vm: Dict[str, Any]) -> Optional[int]:
    try:
        return int(vm.get("vmid"))
    except (TypeError, ValueError):
        return None


def _next_vmid(session: Session, node: str) -> int:
    # Read-then-write with no reservation: concurrent creations on the same
    # node can pick the same id. Callers must serialize create_vm.
    ids = [i for i in (_vmid(vm) for vm in list_vms(session, node)) if i is not None]
    return max(ids) + 1 if ids else FIRST_VMID


def create_vm(
    session: Session,
    node: str,
    name: str,
    memory_gb: int,
    cpu_type: str,
    sockets: int,
    cores: int,
    os_type: str,
    storage: str,
    disk_gb: int,
    iso_ref: str,
) -> Dict[str, Any]:
    """Create a VM with one SCSI disk, one bridged NIC and the ISO as CD-ROM."""
    _check_choice("cpu type", cpu_type, CPU_TYPES)
    _check_choice("os type", os_type, OS_TYPES)
    memory_gb = _to_int("memory_gb", memory_gb)
    sockets = _to_int("sockets", sockets)
    cores = _to_int("cores", cores)
    disk_gb = _to_int("disk_gb", disk_gb)

    vmid = _next_vmid(session, node)
    payload = {
        "vmid": vmid,
        "name": name,
        "memory": memory_gb * 1024,
        "cpu": cpu_type,
        "sockets": sockets,
        "cores": cores,
        "ostype": os_type,
        "scsihw": SCSI_CONTROLLER,
        "scsi0": f"{storage}:{disk_gb},discard=on",
        "net0": NETWORK_DEVICE,
        "ide2": f"{iso_ref},media=cdrom",
    }
    data = _make_api_request(session, f"nodes/{node}/qemu", method="POST", data=payload)
    logger.info("VM creation requested", node=node, vmid=vmid, name=name)
    return {"node": node, "vmid": vmid, "name": name, "action": "create", "task_id": data}


def _vm_action(session: Session, node: str, name: str, action: str) -> Dict[str, Any]:
    # Name is resolved on every call. The VM can change between the lookup
    # and the action; that window is accepted.
    vmid = _vmid(list_vms(session, node, name=name))
    if vmid is None:
        logger.error("VM has no usable vmid", node=node, name=name, host=session.server_host)
        raise RequestError(
            session.server_host, f"nodes/{node}/qemu", f"VM '{name}' listed without a usable vmid"
        )

    if action == "delete":
        data = _make_api_request(session, f"nodes/{node}/qemu/{vmid}", method="DELETE")
    else:
        data = _make_api_request(
            session, f"nodes/{node}/qemu/{vmid}/status/{action}", method="POST"
        )
    logger.info("VM action requested", node=node, vmid=vmid, name=name, action=action)
    return {"node": node, "vmid": vmid, "name": name, "action": action, "task_id": data}


def remove_vm(session: Session, node: str, name: str) -> Dict[str, Any]:
    """Delete a VM by name."""
    return _vm_action(session, node, name, "delete")


def start_vm(session: Session, node: str, name: str) -> Dict[str, Any]:
    """Start a VM by name."""
    return _vm_action(session, node, name, "start")


def stop_vm(session: Session, node: str, name: str) -> Dict[str, Any]:
    """Gracefully shut down a VM by name (ACPI shutdown)."""
    return _vm_action(session, node, name, "shutdown")


# ---------------------------------------------------------------------------
# Command router
# ---------------------------------------------------------------------------

# command -> (function, required args, optional args)
_COMMANDS: Dict[str, Any] = {
    "list_nodes": (list_nodes, (), ("name",)),
    "list_storage": (list_storage, ("node",), ("name",)),
    "list_content": (list_content, ("node", "storage"), ("volid",)),
    "add_content": (
        add_content,
        ("node", "storage", "content_kind", "file_name", "source_url"),
        (),
    ),
    "list_vms": (list_vms, ("node",), ("name", "vmid")),
    "create_vm": (
        create_vm,
        ("node", "name", "memory_gb", "cpu_type", "sockets", "cores",
         "os_type", "storage", "disk_gb", "iso_ref"),
        (),
    ),
    "remove_vm": (remove_vm, ("node", "name"), ()),
    "start_vm": (start_vm, ("node", "name"), ()),
    "stop_vm": (stop_vm, ("node", "name"), ()),
}

# Text commands carry numbers as strings
_INT_ARGS = ("memory_gb", "sockets", "cores", "disk_gb", "vmid")

_ALIASES = {
    "nodes": "list_nodes",
    "storage": "list_storage",
    "content": "list_content",
    "download": "add_content",
    "vms": "list_vms",
    "create": "create_vm",
    "delete": "remove_vm",
    "start": "start_vm",
    "stop": "stop_vm",
}


def execute_command(
    session: Session, command: str, args: Optional[Dict[str, Any]] = None
) -> Any:
    """Route a command string to the appropriate function."""
    command = command.lower().strip()
    args = args or {}

    name = _ALIASES.get(command, command)
    if name not in _COMMANDS:
        raise ValidationError(
            f"Unknown command '{command}'. "
            f"Valid: {', '.join(sorted(list(_COMMANDS) + list(_ALIASES)))}"
        )

    func, required, optional = _COMMANDS[name]
    for arg in required:
        if args.get(arg) in (None, ""):
            raise ValidationError(f"{command} requires a '{arg}' argument")

    kwargs = {arg: args[arg] for arg in required}
    kwargs.update({arg: args[arg] for arg in optional if args.get(arg) is not None})
    for arg in _INT_ARGS:
        if arg in kwargs:
            kwargs[arg] = _to_int(arg, kwargs[arg])
    return func(session, **kwargs)


# ---------------------------------------------------------------------------
# Initialize helper
# ---------------------------------------------------------------------------

def initialize() -> Dict[str, Any]:
    return {
        "name": "Proxmox VE Manager",
        "version": __version__,
        "author": __author__,
        "description": __description__,
        "commands": [
            "list_nodes / nodes → optional {'name': 'pve01'}",
            "list_storage / storage → needs {'node': 'name'}, optional {'name': 'local'}",
            "list_content / content → needs {'node', 'storage'}, optional {'volid'}",
            "add_content / download → needs {'node', 'storage', 'content_kind', "
            "'file_name', 'source_url'}",
            "list_vms / vms → needs {'node': 'name'}, optional {'name'} or {'vmid'}",
            "create_vm / create → needs {'node', 'name', 'memory_gb', 'cpu_type', "
            "'sockets', 'cores', 'os_type', 'storage', 'disk_gb', 'iso_ref'}",
            "remove_vm / delete → needs {'node': 'name', 'name': 'vm name'}",
            "start_vm / start → needs {'node': 'name', 'name': 'vm name'}",
            "stop_vm / stop → needs {'node': 'name', 'name': 'vm name'}",
        ],
    }
