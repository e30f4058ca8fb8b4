"""
Pytest bootstrap for running Django tests without pytest-django.

The suite uses Django's `TestCase` / `SimpleTestCase` classes. When running
tests via `pytest` directly, we must:
- set `DJANGO_SETTINGS_MODULE`
- keep processed files out of the real media directory
- switch rate limiting off unless a test enables it
- call `django.setup()`
- create/teardown the Django test databases
"""

import os
import shutil
import tempfile

import django
from django.test.utils import (
    setup_databases,
    setup_test_environment,
    teardown_databases,
    teardown_test_environment,
)


_db_cfg = None
_storage_root = None


def pytest_configure():
    global _storage_root
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
    _storage_root = tempfile.mkdtemp(prefix="hires-test-")
    os.environ["HIRES_STORAGE_ROOT"] = _storage_root
    os.environ.setdefault("RATELIMIT_ENABLE", "false")
    django.setup()


def pytest_sessionstart(session):
    global _db_cfg
    setup_test_environment()
    _db_cfg = setup_databases(verbosity=0, interactive=False, keepdb=False)


def pytest_sessionfinish(session, exitstatus):
    global _db_cfg
    if _db_cfg:
        teardown_databases(_db_cfg, verbosity=0)
        _db_cfg = None
    teardown_test_environment()
    if _storage_root:
        shutil.rmtree(_storage_root, ignore_errors=True)
