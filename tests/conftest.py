import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture
def settings():
    """Settings with no real waiting, so retry and reset paths run instantly."""
    from src.codeai.config import Settings

    return Settings(
        function_url="http://testserver/functions/v1/chat",
        function_key="anon-key",
        retry_backoff_seconds=0.0,
        reset_delay_seconds=0.0,
        preview_reload_delay_seconds=0.0,
    )


@pytest.fixture
def repo():
    from src.codeai.domain.edit_models import RepoConfig

    return RepoConfig(token="gh-token", owner="octo", name="site")
