"""
Engine and session configuration.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

ENV_PREFIX = "PAGESMITH_"

DIALECTS = ("playwright-ts", "pytest-selenium")


@dataclass
class SessionOptions:
    """Per-session browser options."""
    headless: bool = False
    window_width: int = 1280
    window_height: int = 720
    page_load_timeout: int = 30  # seconds, enforced by the driver
    implicit_wait: float = 0.0  # seconds; 0 means element lookups fail immediately
    profile_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping]) -> "SessionOptions":
        data = dict(data or {})
        viewport = data.pop("viewport", None) or {}
        options = cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        if viewport:
            options.window_width = int(viewport.get("width", options.window_width))
            options.window_height = int(viewport.get("height", options.window_height))
        return options


@dataclass
class EngineConfig:
    """Configuration shared by every session of one engine instance."""
    artifacts_dir: str = "./pagesmith_artifacts"
    store_dir: Optional[str] = None
    screenshot_on_action: bool = True
    dialect: str = "playwright-ts"

    def __post_init__(self) -> None:
        if self.dialect not in DIALECTS:
            raise ValueError(f"Unknown dialect: {self.dialect} (expected one of {', '.join(DIALECTS)})")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from PAGESMITH_* environment variables.

        PAGESMITH_ARTIFACTS_DIR, PAGESMITH_STORE_DIR,
        PAGESMITH_SCREENSHOTS (0/1), PAGESMITH_DIALECT.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        screenshots = env.get(f"{ENV_PREFIX}SCREENSHOTS", "").strip().lower()
        return cls(
            artifacts_dir=env.get(f"{ENV_PREFIX}ARTIFACTS_DIR", defaults.artifacts_dir),
            store_dir=env.get(f"{ENV_PREFIX}STORE_DIR") or defaults.store_dir,
            screenshot_on_action=screenshots not in ("0", "false", "no", "off") if screenshots else defaults.screenshot_on_action,
            dialect=env.get(f"{ENV_PREFIX}DIALECT", defaults.dialect),
        )
