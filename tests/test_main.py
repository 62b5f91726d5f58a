import pytest

import main
from registry_cleanup.exceptions import AuthenticationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PLUGIN_CONFIG", "PLUGIN_USERNAME", "PLUGIN_PASSWORD", "PLUGIN_REGEX"):
        monkeypatch.delenv(name, raising=False)


ARGV = ["--repo", "team/app", "--registry", "https://registry.example"]


def test_invalid_config_exits_nonzero():
    assert main.main(ARGV + ["--regex", ".*"]) == 1


def test_fatal_error_exits_nonzero(monkeypatch):
    async def failing_cleanup(config):
        raise AuthenticationError("bad credentials")

    monkeypatch.setattr(main, "cleanup_registry", failing_cleanup)

    assert main.main(ARGV) == 1


def test_completed_run_exits_zero(monkeypatch):
    seen = {}

    async def cleanup(config):
        seen["config"] = config

    monkeypatch.setattr(main, "cleanup_registry", cleanup)

    assert main.main(ARGV + ["--dryrun", "-m", "5"]) == 0
    assert seen["config"].dry_run is True
    assert seen["config"].min_keep == 5
