import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("QA_MODE", "true")


@pytest.fixture(autouse=True)
def _fresh_metrics():
    from avatar_interview.system_metrics import reset_metrics

    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def recording_sleep():
    from fakes import RecordingSleep

    return RecordingSleep()


@pytest.fixture
def view():
    from fakes import RecordingView

    return RecordingView()
