# Status board — webhook notifier
#
# Wakes the assistant when someone drops an idea or a change request on the
# board. Best effort: never raises.

import logging
from typing import Optional

import requests

from .config import Config

logger = logging.getLogger(__name__)


class HookNotifier:
    """POSTs `{text, mode}` to `<hook_url>/hooks/wake`."""

    def __init__(self, hook_url: str = "", hook_token: str = "", timeout: float = 5.0):
        self.hook_url = hook_url.rstrip("/")
        self.hook_token = hook_token
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: Config) -> "HookNotifier":
        return cls(cfg.hook_url, cfg.hook_token, timeout=cfg.request_timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.hook_url and self.hook_token)

    def notify(self, text: str, mode: str = "now") -> bool:
        if not self.enabled:
            return False
        try:
            r = requests.post(
                f"{self.hook_url}/hooks/wake",
                json={"text": text, "mode": mode},
                headers={"Authorization": f"Bearer {self.hook_token}"},
                timeout=self.timeout,
            )
            if not r.ok:
                logger.warning(f"Hook returned {r.status_code}")
            return r.ok
        except requests.RequestException as e:
            logger.warning(f"Hook delivery failed: {e}")
            return False


def idea_message(title: str) -> str:
    return f"💡 Dashboard: New idea: \"{title}\""


def change_request_message(text: str, limit: Optional[int] = 120) -> str:
    return f"💬 Dashboard change request: {text[:limit] if limit else text}"
