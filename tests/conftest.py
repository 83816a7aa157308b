import logging
import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import zkpip`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from zkpip.keystore import Keystore  # noqa: E402
from zkpip.observability import ROOT_LOGGER  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless ZKPIP_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('ZKPIP_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set ZKPIP_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    """Keep the caller's ZKPIP_* settings and home directory out of tests."""
    for name in list(os.environ):
        if name.startswith('ZKPIP_') and name != 'ZKPIP_RUN_SLOW':
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv('SOURCE_DATE_EPOCH', raising=False)
    monkeypatch.setenv('ZKPIP_KEYSTORE_DIR', str(tmp_path / 'keys'))
    monkeypatch.setenv('ZKPIP_VECTOR_STORE_DIR', str(tmp_path / 'vectors'))


@pytest.fixture
def keystore(tmp_path: pathlib.Path) -> Keystore:
    return Keystore(tmp_path / 'keys')


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers installed by configure_logging so streams do not leak between tests."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        if getattr(h, '_zkpip_managed', False):
            logger.removeHandler(h)
    logger.setLevel(logging.NOTSET)
