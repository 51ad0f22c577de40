"""Fixtures for core application tests."""

import pytest


@pytest.fixture
def sites_base_dir(tmp_path, settings):
    """Point SITES_BASE_DIR to an empty temporary directory."""
    base = tmp_path / "sites"
    base.mkdir()
    settings.SITES_BASE_DIR = str(base)
    settings.DEPLOY_LOCK_TIMEOUT = 10
    return base
