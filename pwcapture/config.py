"""Runtime settings for the capture engine.

Settings come from an optional YAML file with ``PWCAPTURE_*`` environment
variables taking precedence, e.g.::

    PWCAPTURE_SINGLE_TIMEOUT_SECONDS=300
    PWCAPTURE_REPORTS_DIR=artifacts/reports
"""

import os
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

ENV_PREFIX = "PWCAPTURE_"
DEFAULT_CONFIG_PATH = "config/pwcapture.yaml"


class CaptureSettings(BaseModel):
    """Tunables for spawning, capture and report output.

    Attributes:
        single_timeout_seconds: Per-process timeout for single-location runs.
        batch_timeout_seconds: Per-process timeout for whole-project runs.
        kill_grace_seconds: Wait between graceful terminate and forced kill.
        reports_dir: Directory (relative to the project) for generated reports.
        state_dir: Directory (relative to the project) for local run history.
        record_history: Whether single-location results are appended to history.
        history_max_entries: History entries kept per test location.
        capture_hook: Optional path of a Node ``--require`` hook injected
            through ``NODE_OPTIONS`` to instrument the test workers.
        endpoint_env: Environment variable carrying the capture endpoint.
        session_env: Environment variable carrying the capture session id.
        screenshot_glob: File-name pattern of failure screenshots.
        screenshot_max_depth: Directory depth searched for failure screenshots.
    """

    single_timeout_seconds: float = Field(default=120.0, gt=0)
    batch_timeout_seconds: float = Field(default=600.0, gt=0)
    kill_grace_seconds: float = Field(default=5.0, ge=0)
    reports_dir: str = Field(default="test-reports")
    state_dir: str = Field(default=".pwcapture")
    record_history: bool = Field(default=True)
    history_max_entries: int = Field(default=20, gt=0)
    capture_hook: Optional[str] = Field(default=None)
    endpoint_env: str = Field(default="PW_CAPTURE_ENDPOINT")
    session_env: str = Field(default="PW_CAPTURE_SESSION")
    screenshot_glob: str = Field(default="test-failed*.png")
    screenshot_max_depth: int = Field(default=4, ge=0)


def load_config_file(config_path: str = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """Load the raw configuration mapping from a YAML file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        The ``capture`` section if present, else the whole document, or an
        empty dict when the file does not exist.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        return {}

    with open(config_file, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        logger.warning("config_file_ignored", path=str(config_file), reason="not a mapping")
        return {}
    section = data.get("capture", data)
    return section if isinstance(section, dict) else {}


def env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Collect ``PWCAPTURE_*`` variables that name a known setting."""
    environ = os.environ if environ is None else environ
    known = set(CaptureSettings.model_fields)
    overrides: dict[str, str] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in known:
            overrides[name] = value
    return overrides


def load_settings(
    config_path: str = DEFAULT_CONFIG_PATH,
    environ: Optional[dict[str, str]] = None,
) -> CaptureSettings:
    """Build settings from YAML defaults overlaid with environment variables.

    Args:
        config_path: YAML file to read (missing file means defaults).
        environ: Environment mapping, defaults to ``os.environ``.

    Returns:
        Validated settings.
    """
    values: dict[str, Any] = load_config_file(config_path)
    values.update(env_overrides(environ))
    settings = CaptureSettings.model_validate(values)
    logger.debug("settings_loaded", source=config_path, overrides=sorted(values))
    return settings
