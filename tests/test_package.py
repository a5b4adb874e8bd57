"""
Tests for the memopad package surface: version, exports and module headers.

Author: memopad contributors
"""

import importlib

import pytest

import memopad

MODULES = [
    "memopad",
    "memopad.autosave",
    "memopad.backends",
    "memopad.cli",
    "memopad.config",
    "memopad.errors",
    "memopad.export",
    "memopad.search",
    "memopad.service",
    "memopad.store",
    "memopad.text",
    "memopad.timers",
    "memopad.types",
]


def test_version():
    assert memopad.__version__ == "0.1.0"


def test_exports_resolve():
    for name in memopad.__all__:
        assert hasattr(memopad, name), name


@pytest.mark.parametrize("module_name", MODULES)
def test_module_docstring_has_author(module_name):
    module = importlib.import_module(module_name)
    assert module.__doc__, f"{module_name} has no module docstring"
    assert "Author: memopad contributors" in module.__doc__
