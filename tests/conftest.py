import json
import os
import socket
import sys
import urllib.request
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC = REPO_ROOT / "src"

# Prefer repo sources over any installed package.
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def block_network(monkeypatch):
    if os.getenv("LIVE") == "1":
        return

    real_connect = socket.socket.connect

    def guarded_connect(sock, address):
        host = address[0]
        if host not in ("127.0.0.1", "localhost"):
            raise RuntimeError("Network access blocked in tests")
        return real_connect(sock, address)

    monkeypatch.setattr(socket.socket, "connect", guarded_connect)
    monkeypatch.setattr(
        urllib.request,
        "urlopen",
        lambda *args, **kwargs: (_ for _ in ()).throw(
            RuntimeError("Network access blocked in tests")
        ),
    )


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    from permit_sync.config import reset_settings_cache

    for name in list(os.environ):
        if name.startswith("PERMIT_SYNC_"):
            monkeypatch.delenv(name, raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()


def _raw_permit(**overrides):
    raw = {
        "PERMIT_NUM": "24 101234",
        "REVISION_NUM": "01",
        "PERMIT_TYPE": "Building",
        "STRUCTURE_TYPE": "Small Residential",
        "WORK": "Interior Alterations",
        "STREET_NUM": "123",
        "STREET_NAME": "QUEEN",
        "STREET_TYPE": "ST",
        "STREET_DIRECTION": "W",
        "CITY": "TORONTO",
        "POSTAL": "M5V 2A1",
        "GEO_ID": "1234567",
        "BUILDING_TYPE": "Row House",
        "CATEGORY": "Permit",
        "APPLICATION_DATE": "2024-01-15T00:00:00.000",
        "ISSUED_DATE": "2024-03-01T00:00:00.000",
        "COMPLETED_DATE": "",
        "STATUS": "Issued",
        "DESCRIPTION": "Interior renovation including new plumbing and electrical work",
        "EST_CONST_COST": "150000",
        "BUILDER_NAME": "ACME CONSTRUCTION INC",
        "OWNER": "JOHN DOE",
        "DWELLING_UNITS_CREATED": "0",
        "DWELLING_UNITS_LOST": "0",
        "WARD": "10",
        "COUNCIL_DISTRICT": "Toronto Centre",
        "CURRENT_USE": "Residential",
        "PROPOSED_USE": "Residential",
        "HOUSING_UNITS": "1",
        "STOREYS": "2",
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def raw_permit():
    return _raw_permit


@pytest.fixture
def write_export(tmp_path):
    counter = {"n": 0}

    def _write(records, name=None):
        counter["n"] += 1
        path = tmp_path / (name or f"export_{counter['n']}.json")
        path.write_text(json.dumps(records), encoding="utf-8")
        return path

    return _write
