"""
Remote document store adapters.

Contract shared by every adapter:

    read()  -> (content: dict, revision: str)
    write(content, revision, message) -> new revision   # raises Conflict if stale

GitHubDocumentStore is the production store (contents API, revision = blob
sha). FileDocumentStore keeps status.json on local disk for single-host
setups. MemoryDocumentStore backs tests and local experiments.
"""
import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests

from . import codec
from .config import Config
from .errors import Conflict, Misconfiguration, NetworkFailure, NotFound, ParseFailure

logger = logging.getLogger(__name__)

USER_AGENT = "statusboard"


class GitHubDocumentStore:
    """status.json kept in a GitHub repository, accessed via the contents API."""

    def __init__(
        self,
        token: str,
        repo: str,
        path: str = "public/status.json",
        api_base: str = "https://api.github.com",
        branch: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not token:
            raise Misconfiguration("Server not configured (missing GITHUB_TOKEN)")
        if not repo:
            raise Misconfiguration("Server not configured (missing GITHUB_REPO)")
        self.token = token
        self.repo = repo
        self.path = path
        self.branch = branch
        self.timeout = timeout
        self.url = f"{api_base.rstrip('/')}/repos/{repo}/contents/{path}"
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, cfg: Config) -> "GitHubDocumentStore":
        cfg.require_github()
        return cls(
            token=cfg.github_token,
            repo=cfg.github_repo,
            path=cfg.document_path,
            api_base=cfg.github_api,
            branch=cfg.github_branch,
            timeout=cfg.request_timeout,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": USER_AGENT,
        }

    def describe(self) -> str:
        return f"github:{self.repo}/{self.path}"

    def read(self) -> Tuple[Dict[str, Any], str]:
        params = {"ref": self.branch} if self.branch else None
        try:
            r = self.session.get(self.url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkFailure("GitHub read failed", str(e))
        if r.status_code == 404:
            raise NotFound(f"Document not found: {self.path}")
        if r.status_code in (401, 403):
            raise Misconfiguration(f"Server not configured (GitHub rejected token: {r.status_code})")
        if not r.ok:
            raise NetworkFailure(f"GitHub read failed: {r.status_code}", r.text[:500])
        try:
            file_data = r.json()
        except ValueError as e:
            raise ParseFailure("GitHub read returned non-JSON", str(e))
        if "content" not in file_data or "sha" not in file_data:
            raise ParseFailure("GitHub read returned no content")
        return codec.decode_document(file_data["content"]), file_data["sha"]

    def write(self, content: Dict[str, Any], revision: str, message: str) -> str:
        body = {
            "message": message,
            "content": codec.encode_document(content),
            "sha": revision,
        }
        if self.branch:
            body["branch"] = self.branch
        headers = dict(self._headers(), **{"Content-Type": "application/json"})
        try:
            r = self.session.put(self.url, headers=headers, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkFailure("GitHub commit failed", str(e))
        # 409: sha does not match the branch head; 422 is returned for stale sha on some paths
        if r.status_code in (409, 422):
            raise Conflict(f"GitHub commit rejected: {r.status_code}", r.text[:500])
        if r.status_code in (401, 403):
            raise Misconfiguration(f"Server not configured (GitHub rejected token: {r.status_code})")
        if not r.ok:
            raise NetworkFailure(f"GitHub commit failed: {r.status_code}", r.text[:500])
        try:
            return r.json()["content"]["sha"]
        except (ValueError, KeyError, TypeError) as e:
            raise ParseFailure("GitHub commit returned no sha", str(e))


class FileDocumentStore:
    """
    status.json on local disk. Revision = sha1 of the file bytes.

    The revision check and rename are not atomic across processes; run one
    server per file.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def describe(self) -> str:
        return f"file:{self.path}"

    def _revision(self, raw: bytes) -> str:
        return hashlib.sha1(raw).hexdigest()

    def read(self) -> Tuple[Dict[str, Any], str]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"Document not found: {self.path}")
        except OSError as e:
            raise NetworkFailure(f"Cannot read {self.path}", str(e))
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseFailure("Document is not valid UTF-8", str(e))
        return codec.load_document(text), self._revision(raw)

    def write(self, content: Dict[str, Any], revision: str, message: str) -> str:
        try:
            current = self._revision(self.path.read_bytes())
        except FileNotFoundError:
            current = None
        if current != revision:
            raise Conflict("Document changed since it was read", f"expected {revision}, found {current}")

        raw = codec.dump_document(content).encode("utf-8")
        # Atomic write: write to temp, then rename
        tmp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_file, "wb") as f:
            f.write(raw)
        os.replace(tmp_file, self.path)
        logger.info(f"Committed {self.path.name}: {message}")
        return self._revision(raw)


class MemoryDocumentStore:
    """
    In-process store holding the transport-encoded document, like the remote one.

    Revisions are increasing integers rendered as strings. The compare-and-set
    in write() runs under a lock.
    """

    def __init__(self, content: Optional[Dict[str, Any]] = None):
        self._lock = threading.Lock()
        self._encoded = codec.encode_document(content or {})
        self._version = 1
        self.commits = []  # commit messages, oldest first

    def describe(self) -> str:
        return "memory"

    @property
    def revision(self) -> str:
        return str(self._version)

    def read(self) -> Tuple[Dict[str, Any], str]:
        with self._lock:
            encoded, revision = self._encoded, str(self._version)
        return codec.decode_document(encoded), revision

    def write(self, content: Dict[str, Any], revision: str, message: str) -> str:
        encoded = codec.encode_document(content)
        with self._lock:
            if revision != str(self._version):
                raise Conflict("Document changed since it was read",
                               f"expected {revision}, found {self._version}")
            self._encoded = encoded
            self._version += 1
            self.commits.append(message)
            return str(self._version)


def store_from_config(cfg: Config):
    """Pick the document store for this deployment."""
    if cfg.document_file:
        return FileDocumentStore(cfg.document_file)
    return GitHubDocumentStore.from_config(cfg)
