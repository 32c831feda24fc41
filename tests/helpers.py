"""Fake Proxmox transport shared by the test modules."""

import json
from typing import Any, Dict, List, Tuple

import requests


HOST = "pve.local"
BASE = f"https://{HOST}:8006/api2/json"


def make_response(payload: Any, status: int = 200, url: str = BASE) -> requests.Response:
    """Build a real requests.Response carrying a JSON body."""
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = "utf-8"
    resp._content = json.dumps(payload).encode("utf-8")
    return resp


class FakeProxmox:
    """Stands in for requests.request and records every call."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, endpoint: str, payload: Any = None, status: int = 200, raw: Any = None):
        url = f"{BASE}/{endpoint}"
        if raw is not None:
            self.routes[(method, url)] = raw
        else:
            self.routes[(method, url)] = make_response(payload, status, url)

    def __call__(self, method, url, params=None, json=None, headers=None, verify=None, timeout=None):
        self.calls.append(
            {"method": method, "url": url, "json": json, "headers": headers,
             "verify": verify, "timeout": timeout}
        )
        route = self.routes.get((method, url))
        if route is None:
            return make_response({"errors": "no such route"}, 501, url)
        if isinstance(route, Exception):
            raise route
        return route

    def calls_to(self, method: str, endpoint: str) -> List[Dict[str, Any]]:
        url = f"{BASE}/{endpoint}"
        return [c for c in self.calls if c["method"] == method and c["url"] == url]
