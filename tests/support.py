from __future__ import annotations

import re
import copy
import base64
import hashlib
import itertools
from datetime import timezone
from types import SimpleNamespace
from typing import Callable, Optional

import bson
from bson import ObjectId
from bson.codec_options import CodecOptions
from fastapi.testclient import TestClient
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import ServerSelectionTimeoutError

from marketplace_api.core.config import Settings
from marketplace_api.core.errors import ImageHostError, ListingStoreError, VersionConflictError
from marketplace_api.database.github_store import GithubListingStore
from marketplace_api.database.mongo import MongoListingStore
from marketplace_api.main import create_app
from marketplace_api.services.image_host import HostedImage, ImageHost, check_image

PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")


class _FakeRepoFileClient:
    """Dépôt en mémoire qui applique la même précondition de sha que GitHub."""

    def __init__(self, owner: str = "acme", repo: str = "listings", branch: str = "main"):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.files: dict[str, tuple[bytes, str]] = {}
        self.reachable = True
        self.fail_puts = 0
        self.before_put: Optional[Callable[[str], None]] = None
        self.put_calls = 0
        self._counter = itertools.count(1)

    def _sha(self, content: bytes) -> str:
        return hashlib.sha1(content + str(next(self._counter)).encode()).hexdigest()

    def raw_url(self, path: str) -> str:
        return f"https://raw.example.test/{self.owner}/{self.repo}/{self.branch}/{path}"

    def get_file(self, path: str):
        if path not in self.files:
            return None, None
        return self.files[path]

    def put_file(self, path: str, content: bytes, sha: Optional[str], message: str) -> dict:
        self.put_calls += 1
        if self.before_put is not None:
            hook, self.before_put = self.before_put, None
            hook(path)
        if self.fail_puts:
            self.fail_puts -= 1
            raise ListingStoreError("GitHub PUT failed with HTTP 502")
        current = self.files.get(path)
        if (current is None and sha) or (current is not None and current[1] != sha):
            raise VersionConflictError(f"{path} changed since sha {sha}")
        new_sha = self._sha(content)
        self.files[path] = (content, new_sha)
        return {"path": path, "sha": new_sha}

    def delete_file(self, path: str, sha: str, message: str) -> None:
        current = self.files.get(path)
        if current is None:
            return
        if current[1] != sha:
            raise VersionConflictError(f"{path} changed since sha {sha}")
        del self.files[path]

    def ping(self) -> bool:
        return self.reachable


BSON_OPTIONS = CodecOptions(tz_aware=True, tzinfo=timezone.utc)


def _bson_round_trip(doc: dict) -> dict:
    return bson.decode(bson.encode(doc), codec_options=BSON_OPTIONS)


def _mongo_match(doc: dict, query: dict) -> bool:
    """Sous-ensemble des opérateurs de requête utilisés par le store."""
    for key, cond in query.items():
        if key == "$or":
            if not any(_mongo_match(doc, sub) for sub in cond):
                return False
            continue
        value = doc.get(key)
        if not isinstance(cond, dict):
            if value != cond:
                return False
            continue
        for op, arg in cond.items():
            if op == "$regex":
                flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(arg, value, flags):
                    return False
            elif op == "$gte":
                if value is None or value < arg:
                    return False
            elif op == "$lte":
                if value is None or value > arg:
                    return False
            elif op != "$options":
                raise NotImplementedError(op)
    return True


class _FakeMotorCursor:
    def __init__(self, docs: list):
        self.docs = docs

    def sort(self, spec):
        for key, direction in reversed(spec):
            self.docs.sort(key=lambda d: d.get(key), reverse=direction == DESCENDING)
        return self

    async def to_list(self, length=None):
        return self.docs[:length] if length else list(self.docs)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self.docs:
            yield doc


class _FakeMotorCollection:
    """Collection en mémoire ; chaque écriture passe par un aller-retour BSON."""

    def __init__(self):
        self.docs: list[dict] = []
        self.indexes: list = []

    def _find(self, query: Optional[dict]) -> list:
        return [d for d in self.docs if _mongo_match(d, query or {})]

    async def create_index(self, keys, **kwargs):
        self.indexes.append(keys)

    def find(self, query=None):
        return _FakeMotorCursor([copy.deepcopy(d) for d in self._find(query)])

    async def find_one(self, query):
        found = self._find(query)
        return copy.deepcopy(found[0]) if found else None

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self.docs.append(_bson_round_trip(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        found = self._find(query)
        if not found:
            return None
        before = copy.deepcopy(found[0])
        found[0].update(_bson_round_trip(update["$set"]))
        return copy.deepcopy(found[0]) if return_document == ReturnDocument.AFTER else before

    async def find_one_and_delete(self, query):
        found = self._find(query)
        if not found:
            return None
        self.docs.remove(found[0])
        return found[0]

    async def count_documents(self, query):
        return len(self._find(query))

    async def distinct(self, field, query=None):
        values = []
        for doc in self._find(query):
            if doc.get(field) not in values:
                values.append(doc.get(field))
        return values

    def aggregate(self, pipeline):
        docs = list(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _mongo_match(d, stage["$match"])]
            elif "$group" in stage and docs:
                row = {"_id": None}
                for name, spec in stage["$group"].items():
                    if name != "_id":
                        values = [d[spec["$avg"].lstrip("$")] for d in docs]
                        row[name] = sum(values) / len(values)
                docs = [row]
        return _FakeMotorCursor(docs)


class _FakeMotorDatabase(dict):
    def __missing__(self, name):
        self[name] = _FakeMotorCollection()
        return self[name]


class _FakeMotorClient:
    def __init__(self):
        self.databases: dict[str, _FakeMotorDatabase] = {}
        self.admin = self
        self.reachable = True
        self.closed = False

    def __getitem__(self, name):
        return self.databases.setdefault(name, _FakeMotorDatabase())

    async def command(self, name):
        if not self.reachable:
            raise ServerSelectionTimeoutError("no server")
        return {"ok": 1}

    def close(self):
        self.closed = True


class _FakeImageHost(ImageHost):
    name = "fake"

    def __init__(self, max_bytes: int = 1024 * 1024):
        super().__init__(max_bytes)
        self.uploaded: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_upload = False
        self.fail_delete = False
        self._ids = itertools.count(1)

    async def upload(self, data, filename=None, content_type=None) -> HostedImage:
        check_image(data, filename, content_type, self.max_bytes)
        if self.fail_upload:
            raise ImageHostError("upload refused")
        public_id = f"product_{next(self._ids)}"
        self.uploaded[public_id] = data
        return HostedImage(url=f"https://img.example.test/{public_id}.png", public_id=public_id)

    async def delete(self, public_id: str) -> None:
        if self.fail_delete:
            raise ImageHostError("destroy refused")
        self.deleted.append(public_id)
        self.uploaded.pop(public_id, None)


class _BrokenStore(GithubListingStore):
    """Store dont toutes les écritures échouent."""

    async def write(self, listings, sha, message):
        raise ListingStoreError("write refused")


def make_store(client: Optional[_FakeRepoFileClient] = None, retries: int = 3) -> GithubListingStore:
    return GithubListingStore(client or _FakeRepoFileClient(), "data/products.json", retries)


def make_mongo_store(client: Optional[_FakeMotorClient] = None) -> MongoListingStore:
    return MongoListingStore("mongodb://fake", "marketplace", "products", client=client or _FakeMotorClient())


def make_client(store=None, image_host=None, raise_server_exceptions: bool = True):
    store = store or make_store()
    image_host = image_host or _FakeImageHost()
    app = create_app(Settings(), store=store, image_host=image_host)
    return TestClient(app, raise_server_exceptions=raise_server_exceptions), store, image_host


def product_form(**overrides) -> dict:
    form = {
        "name": "Desk",
        "price": "2000",
        "seller": "A",
        "whatsapp": "919999999999",
        "condition": "Good",
        "description": "x",
    }
    form.update(overrides)
    return form
