from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

import solve_server.workers.fetcher as fetcher_module
from solve_server.core.config import settings
from solve_server.main import app


@pytest.fixture(autouse=True)
def _fresh_http_client():
    """Never let a shared AsyncClient leak between tests (and event loops)."""
    fetcher_module._http_client = None
    yield
    fetcher_module._http_client = None


@pytest.fixture
def no_probe(monkeypatch):
    """Fetch plain ``repodata.json`` without probing compressed variants."""
    monkeypatch.setattr(settings, "repodata_probe_compressed", False)


@pytest.fixture
def client():
    """TestClient with the real lifespan (fresh cache and orchestrator)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def small_repodata() -> dict:
    """linux-64 repodata where libgomp depends on _libgcc_mutex."""
    return {
        "info": {"subdir": "linux-64"},
        "packages": {
            "_libgcc_mutex-0.1-conda_forge.tar.bz2": {
                "build": "conda_forge",
                "build_number": 0,
                "depends": [],
                "license": "None",
                "md5": "d7c89558ba9fa0495403155b64376d81",
                "name": "_libgcc_mutex",
                "sha256": "fe51de6107f9edc7aa4f786a70f4a883943bc9d39b3bb7307c04c41410990726",
                "size": 2562,
                "subdir": "linux-64",
                "timestamp": 1578324546067,
                "version": "0.1",
            },
            "libgomp-12.2.0-h65d4601_19.tar.bz2": {
                "build": "h65d4601_19",
                "build_number": 19,
                "constrains": [],
                "depends": ["_libgcc_mutex 0.1 conda_forge"],
                "license": "GPL-3.0-only WITH GCC-exception-3.1",
                "license_family": "GPL",
                "md5": "cedcee7c064c01c403f962c9e8d3c373",
                "name": "libgomp",
                "sha256": "81a76d20cfdee9fe0728b93ef057ba93494fd1450d42bc3717af4e468235661e",
                "size": 466188,
                "subdir": "linux-64",
                "timestamp": 1666519598453,
                "version": "12.2.0",
            },
        },
        "packages.conda": {},
        "repodata_version": 1,
    }


@pytest.fixture
def glibc_repodata(small_repodata) -> dict:
    """Adds libgcc-ng, whose only build needs ``__glibc >=2.17``."""
    packages = dict(small_repodata["packages"])
    packages["libgcc-ng-12.2.0-h65d4601_19.tar.bz2"] = {
        "build": "h65d4601_19",
        "build_number": 19,
        "constrains": ["libgomp 12.2.0 h65d4601_19"],
        "depends": ["_libgcc_mutex 0.1 conda_forge", "libgomp 12.2.0 h65d4601_19", "__glibc >=2.17,<3.0.a0"],
        "license": "GPL-3.0-only WITH GCC-exception-3.1",
        "md5": "e4c94f80aef025c17ab0828cd85ef535",
        "name": "libgcc-ng",
        "sha256": "f3b0e76ab2fa5f7c0e4d7c5a2b8c2fa7f4eb4a4cd1c1d2e4dbb8e41d1a0d7a2c",
        "size": 953812,
        "subdir": "linux-64",
        "timestamp": 1666519637045,
        "version": "12.2.0",
    }
    return {**small_repodata, "packages": packages}


@pytest.fixture
def empty_repodata() -> dict:
    return {
        "info": {"subdir": "noarch"},
        "packages": {},
        "packages.conda": {},
        "repodata_version": 1,
    }
