"""Shared test fixtures for the Proxmox client."""

import pytest

from proxmox_manager import main as pve
from tests.helpers import BASE, HOST, FakeProxmox


@pytest.fixture
def fake_pve(monkeypatch) -> FakeProxmox:
    """Patch the HTTP layer with a recording fake."""
    fake = FakeProxmox()
    monkeypatch.setattr(pve.requests, "request", fake)
    return fake


@pytest.fixture
def session() -> pve.Session:
    """A Session built without the network probe."""
    return pve.Session(
        base_uri=BASE,
        auth_header="PVEAPIToken root@pam!ci=s3cret",
        server_host=HOST,
    )


@pytest.fixture(autouse=True)
def clean_config():
    pve.reset_config()
    yield
    pve.reset_config()
