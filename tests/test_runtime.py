import pytest

from securebank.service import runtime as runtime_module
from securebank.service.runtime import Runtime, _mask_url_password


class _BrokenStore:
    def __init__(self):
        self.closed = False

    def ensure_schema(self):
        raise ConnectionError("database unreachable")

    def close(self):
        self.closed = True


def test_store_built_by_runtime_is_closed_when_schema_fails(settings, monkeypatch):
    broken = _BrokenStore()
    monkeypatch.setattr(runtime_module, "build_store", lambda _settings: broken)

    with pytest.raises(ConnectionError):
        Runtime(settings)

    assert broken.closed


def test_injected_store_is_left_to_its_owner(settings):
    broken = _BrokenStore()

    with pytest.raises(ConnectionError):
        Runtime(settings, store=broken)

    assert not broken.closed


def test_runtime_wires_services_around_one_store(runtime, memory_store):
    assert runtime.store is memory_store
    assert runtime.sessions.backend is memory_store
    assert runtime.auth.store is memory_store


def test_mask_url_password():
    assert (
        _mask_url_password("postgresql://app:secret@db:5432/bank")
        == "postgresql://app:***@db:5432/bank"
    )
    assert _mask_url_password("postgresql://db/bank") == "postgresql://db/bank"
    assert _mask_url_password(None) is None
