# Status board — configuration
# Defaults < statusboard.yaml < environment. Secrets come from the environment only.

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from .errors import Misconfiguration

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "statusboard.yaml"

# YAML keys that are never read from file
SECRET_FIELDS = {"github_token", "hook_token", "api_secret"}

ENV_OVERRIDES = {
    "GITHUB_TOKEN": "github_token",
    "GITHUB_REPO": "github_repo",
    "STATUSBOARD_API_SECRET": "api_secret",
    "OPENCLAW_HOOK_URL": "hook_url",
    "OPENCLAW_HOOK_TOKEN": "hook_token",
    "STATUSBOARD_OVERRIDES_DB": "overrides_db",
    "STATUSBOARD_API_URL": "api_url",
    "STATUSBOARD_DOCUMENT_FILE": "document_file",
}


@dataclass
class Config:
    """Runtime configuration for the board server and sync client."""

    # Remote document store (GitHub contents API)
    github_api: str = "https://api.github.com"
    github_repo: str = "YS-projectcalc/ariel-dashboard"
    github_token: str = ""
    document_path: str = "public/status.json"
    github_branch: Optional[str] = None

    # Local JSON file store, used instead of GitHub when set
    document_file: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    api_secret: str = ""
    commit_attempts: int = 3

    # Webhook for new ideas / change requests (optional)
    hook_url: str = ""
    hook_token: str = ""

    # Client
    api_url: str = "http://127.0.0.1:3000"
    overrides_db: str = "~/.local/share/statusboard/overrides.db"
    poll_interval: float = 60.0
    request_timeout: float = 10.0
    retry_attempts: int = 3
    retry_backoff: float = 2.0

    # Today planner
    timezone: str = "Asia/Jerusalem"
    today_weights: Dict[str, int] = field(default_factory=lambda: {
        "epiphany-made": 40,
        "juniform": 25,
        "spotlight-ai": 20,
        "bigbang": 5,
        "iluy": 5,
        "raffle-builder": 5,
    })

    def resolve_paths(self):
        """Expand ~ in local paths."""
        self.overrides_db = str(Path(self.overrides_db).expanduser())
        if self.document_file:
            self.document_file = str(Path(self.document_file).expanduser())

    def apply_env(self, environ=None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            value = env.get(var)
            if value:
                setattr(self, attr, value.strip())

    def require_github(self):
        """Raise Misconfiguration unless the GitHub store can be used."""
        if not self.github_token:
            raise Misconfiguration("Server not configured (missing GITHUB_TOKEN)")
        if not self.github_repo:
            raise Misconfiguration("Server not configured (missing GITHUB_REPO)")

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML, falling back to defaults, then apply env vars."""
        env = os.environ if environ is None else environ
        cfg_path = Path(path or env.get("STATUSBOARD_CONFIG") or CONFIG_PATH)
        data = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                data = {}
        if not isinstance(data, dict):
            data = {}
        cfg = cls(**{
            k: v for k, v in data.items()
            if k in cls.__dataclass_fields__ and k not in SECRET_FIELDS
        })
        cfg.apply_env(env)
        cfg.resolve_paths()
        return cfg
