import sys
from dataclasses import replace
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from dmsreport.config import SettlePolicy, Settings  # noqa: E402

FULL_ENV = {
    "DTC_USERNAME": "fleet-user",
    "DTC_PASSWORD": "s3cret",
    "EMAIL_USER": "reports@example.com",
    "EMAIL_PASS": "app-password",
    "EMAIL_TO": "ops@example.com, lead@example.com",
}

FAST_SETTLE = SettlePolicy(
    after_login=0,
    after_navigation=0,
    after_search=0,
    export_wait=0.2,
    short=0,
    probe=0.1,
    options_wait=0.1,
    poll_interval=0.01,
)


@pytest.fixture
def env():
    return dict(FULL_ENV)


@pytest.fixture
def settings(env, tmp_path):
    return replace(
        Settings.from_env(env),
        scratch_dir=tmp_path / "downloads",
        screenshot_path=tmp_path / "error_screenshot.png",
        log_file=tmp_path / "run.log",
        settle=FAST_SETTLE,
    )
