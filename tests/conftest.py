import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="securebank_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# base64 of b"0123456789abcdef0123456789abcdef"
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("PASSWORD_HASH_TIME_COST", "1")
os.environ.setdefault("PASSWORD_HASH_MEMORY_COST", "8192")
os.environ.setdefault("PASSWORD_HASH_PARALLELISM", "1")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from securebank.config import Settings  # noqa: E402
from securebank.service.runtime import Runtime  # noqa: E402
from securebank.storage.memory import MemoryStore  # noqa: E402

TEST_ENCRYPTION_KEY = os.environ["ENCRYPTION_KEY"]


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        use_memory_store=True,
        test_mode=True,
        encryption_key=TEST_ENCRYPTION_KEY,
        password_hash_time_cost=1,
        password_hash_memory_cost=8192,
        password_hash_parallelism=1,
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def runtime(settings, memory_store):
    rt = Runtime(settings, store=memory_store)
    yield rt
    rt.close()


@pytest.fixture
def signup_payload():
    return {
        "email": "Jane.Doe@Example.com",
        "password": "Str0ng!Pass",
        "first_name": "Jane",
        "last_name": "Doe",
        "phone_number": "(555) 123-4567",
        "date_of_birth": "1990-01-15",
        "ssn": "123456789",
        "address": "1 Main St",
        "city": "Springfield",
        "state": "il",
        "zip_code": "62701",
    }


class RecordingHttp:
    """HttpContext double that records every cookie write."""

    def __init__(self, cookies=None):
        self.cookies = dict(cookies or {})
        self.set_calls = []

    def get_cookie(self, name):
        return self.cookies.get(name)

    def set_cookie(self, name, value, *, max_age):
        self.set_calls.append((name, value, max_age))
        self.cookies[name] = value


@pytest.fixture
def http():
    return RecordingHttp()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
