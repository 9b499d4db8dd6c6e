"""
Client minimal pour l'API "contents" de GitHub.

Un fichier du dépôt sert de stockage : chaque écriture est conditionnée
par le `sha` du blob actuel (jeton de version). GitHub refuse une écriture
dont le sha n'est plus celui du fichier (HTTP 409, ou 422 si le sha manque).
"""
import base64
import logging
from typing import Any, Dict, Optional, Tuple

import requests

from marketplace_api.core.config import Settings
from marketplace_api.core.errors import ListingStoreError, VersionConflictError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
RAW_BASE_URL = "https://raw.githubusercontent.com"
RAW_MEDIA_TYPE = "application/vnd.github.raw"
CONFLICT_STATUSES = (409, 422)


class RepoFileClient:
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        branch: str = "main",
        timeout: float = 15,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
    ):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.timeout = timeout
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RepoFileClient":
        if not settings.github_configured:
            logger.warning("⚠️ GITHUB_OWNER / GITHUB_REPO / GITHUB_TOKEN missing, repository calls will fail")
        return cls(
            owner=settings.GITHUB_OWNER,
            repo=settings.GITHUB_REPO,
            token=settings.GITHUB_TOKEN,
            branch=settings.GITHUB_BRANCH,
            timeout=settings.REQUEST_TIMEOUT,
        )

    def contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{path.lstrip('/')}"

    def raw_url(self, path: str) -> str:
        return f"{RAW_BASE_URL}/{self.owner}/{self.repo}/{self.branch}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ListingStoreError(f"GitHub request failed: {method} {url}") from e

    def get_file(self, path: str) -> Tuple[Optional[bytes], Optional[str]]:
        """Retourne (contenu, sha), ou (None, None) si le fichier n'existe pas."""
        resp = self._request("GET", self.contents_url(path), params={"ref": self.branch})
        if resp.status_code == 404:
            return None, None
        if not resp.ok:
            raise ListingStoreError(f"GitHub GET {path} failed with HTTP {resp.status_code}")
        data = resp.json()
        sha = data["sha"]
        # au-delà de 1 Mo, l'API contents ne renvoie pas le contenu inline
        if data.get("encoding") == "none" or (not data.get("content") and data.get("size", 0) > 0):
            return self.get_blob(sha), sha
        return base64.b64decode(data.get("content") or ""), sha

    def get_blob(self, sha: str) -> bytes:
        """Contenu brut d'un blob git, quelle que soit sa taille."""
        url = f"{self.api_url}/repos/{self.owner}/{self.repo}/git/blobs/{sha}"
        resp = self._request("GET", url, headers={"Accept": RAW_MEDIA_TYPE})
        if not resp.ok:
            raise ListingStoreError(f"GitHub blob {sha} unavailable (HTTP {resp.status_code})")
        return resp.content

    def put_file(self, path: str, content: bytes, sha: Optional[str], message: str) -> Dict[str, Any]:
        """Écriture conditionnelle : rejetée avec VersionConflictError si le sha est périmé."""
        body = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        resp = self._request("PUT", self.contents_url(path), json=body)
        if resp.status_code in CONFLICT_STATUSES:
            raise VersionConflictError(f"{path} changed since sha {sha}")
        if not resp.ok:
            raise ListingStoreError(f"GitHub PUT {path} failed with HTTP {resp.status_code}")
        return resp.json().get("content") or {}

    def delete_file(self, path: str, sha: str, message: str) -> None:
        body = {"message": message, "sha": sha, "branch": self.branch}
        resp = self._request("DELETE", self.contents_url(path), json=body)
        if resp.status_code in CONFLICT_STATUSES:
            raise VersionConflictError(f"{path} changed since sha {sha}")
        if resp.status_code == 404:
            logger.warning("GitHub file already gone: %s", path)
            return
        if not resp.ok:
            raise ListingStoreError(f"GitHub DELETE {path} failed with HTTP {resp.status_code}")

    def ping(self) -> bool:
        try:
            resp = self._request("GET", f"{self.api_url}/repos/{self.owner}/{self.repo}")
        except ListingStoreError:
            return False
        return resp.ok
