"""Key-value persistence for subscribers and the latest picks.

Layout:
    "sub:<email>"   -> JSON {"subscribedAt": ISO-8601}
    "latest_picks"  -> JSON {date_str, meals, location_map}

The backend is an external key-value capability (get/put/delete, prefix listing
with an opaque cursor). Each call is independently atomic at the backend's
granularity; nothing here spans keys.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from urllib.parse import quote

import requests
from supabase import Client, create_client

from mealpick.config import Config
from mealpick.models import Subscriber

logger = logging.getLogger(__name__)

SUBSCRIBER_PREFIX = "sub:"
LATEST_PICKS_KEY = "latest_picks"

CLOUDFLARE_API = "https://api.cloudflare.com/client/v4"


class StoreError(RuntimeError):
    """A backend call failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


@dataclass
class KeyPage:
    """One page of a prefix listing."""

    names: list[str] = field(default_factory=list)
    cursor: str | None = None
    list_complete: bool = True


class KeyValueBackend:
    """Interface implemented by the concrete stores. Values are strings."""

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def put(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self, prefix: str, cursor: str | None = None, limit: int = 1000) -> KeyPage:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class MemoryKV(KeyValueBackend):
    """Process-local store for tests and local development.

    The cursor is the index of the next key in sorted order.
    """

    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})

    def get(self, key):
        return self.data.get(key)

    def put(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)

    def list_keys(self, prefix, cursor=None, limit=1000):
        names = sorted(k for k in self.data if k.startswith(prefix))
        start = int(cursor) if cursor else 0
        end = start + limit
        page = names[start:end]
        if end >= len(names):
            return KeyPage(names=page, cursor=None, list_complete=True)
        return KeyPage(names=page, cursor=str(end), list_complete=False)


class CloudflareKV(KeyValueBackend):
    """Workers KV namespace accessed through the Cloudflare REST API."""

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        session: requests.Session | None = None,
        timeout: float = 10,
    ):
        self.base = f"{CLOUDFLARE_API}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})

    def _value_url(self, key: str) -> str:
        return f"{self.base}/values/{quote(key, safe='')}"

    def _check(self, resp: requests.Response, action: str) -> None:
        if not resp.ok:
            raise StoreError(f"Cloudflare KV {action} failed: {resp.status_code} {resp.text[:200]}", resp.status_code)

    def get(self, key):
        resp = self.session.get(self._value_url(key), timeout=self.timeout)
        if resp.status_code == 404:
            return None
        self._check(resp, "get")
        return resp.text

    def put(self, key, value):
        resp = self.session.put(
            self._value_url(key),
            data=value.encode(),
            headers={"Content-Type": "text/plain"},
            timeout=self.timeout,
        )
        self._check(resp, "put")

    def delete(self, key):
        resp = self.session.delete(self._value_url(key), timeout=self.timeout)
        # Deleting a missing key is a no-op.
        if resp.status_code == 404:
            return
        self._check(resp, "delete")

    def list_keys(self, prefix, cursor=None, limit=1000):
        params = {"prefix": prefix, "limit": limit}
        if cursor:
            params["cursor"] = cursor
        resp = self.session.get(f"{self.base}/keys", params=params, timeout=self.timeout)
        self._check(resp, "list")
        body = resp.json()
        names = [k["name"] for k in body.get("result") or []]
        next_cursor = (body.get("result_info") or {}).get("cursor") or None
        return KeyPage(names=names, cursor=next_cursor, list_complete=next_cursor is None)


class SupabaseKV(KeyValueBackend):
    """A two-column table (``key text primary key, value text``) in Supabase.

    Listing uses keyset pagination: the cursor is the last key of the previous page.
    """

    def __init__(self, client: Client, table: str = "kv"):
        self.client = client
        self.table = table

    @classmethod
    def connect(cls, url: str, key: str, table: str = "kv") -> SupabaseKV:
        return cls(create_client(url, key), table)

    def get(self, key):
        result = self.client.table(self.table).select("value").eq("key", key).execute()
        if not result.data:
            return None
        return result.data[0]["value"]

    def put(self, key, value):
        self.client.table(self.table).upsert(
            {"key": key, "value": value}, on_conflict="key"
        ).execute()

    def delete(self, key):
        self.client.table(self.table).delete().eq("key", key).execute()

    def list_keys(self, prefix, cursor=None, limit=1000):
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        query = self.client.table(self.table).select("key").like("key", pattern)
        if cursor:
            query = query.gt("key", cursor)
        result = query.order("key").limit(limit).execute()
        names = [r["key"] for r in (result.data or [])]
        if len(names) < limit:
            return KeyPage(names=names, cursor=None, list_complete=True)
        return KeyPage(names=names, cursor=names[-1], list_complete=False)


def build_backend(config: Config) -> KeyValueBackend:
    """Return the backend selected by ``config.kv_backend``."""
    if config.kv_backend == "cloudflare":
        config.require("cf_account_id", "cf_namespace_id", "cf_api_token")
        return CloudflareKV(config.cf_account_id, config.cf_namespace_id, config.cf_api_token)
    if config.kv_backend == "supabase":
        config.require("supabase_url", "supabase_key")
        return SupabaseKV.connect(config.supabase_url, config.supabase_key, config.supabase_kv_table)
    logger.warning("Using in-memory key-value store; data will not persist")
    return MemoryKV()


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class SubscriberStore:
    """Subscriber and picks records on top of a KeyValueBackend."""

    def __init__(self, backend: KeyValueBackend, page_size: int = 1000):
        self.backend = backend
        self.page_size = page_size

    # -- raw JSON operations -------------------------------------------------

    def get(self, key: str):
        """Return the decoded JSON value, or None if the key is absent."""
        raw = self.backend.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def put(self, key: str, value) -> None:
        self.backend.put(key, json.dumps(value))

    def delete(self, key: str) -> None:
        self.backend.delete(key)

    def iter_key_batches(self, prefix: str) -> Iterator[list[str]]:
        """Yield pages of key names under ``prefix`` until the backend reports completion."""
        cursor = None
        while True:
            page = self.backend.list_keys(prefix, cursor=cursor, limit=self.page_size)
            if page.names:
                yield page.names
            if page.list_complete or not page.cursor:
                return
            cursor = page.cursor

    def list_by_prefix(self, prefix: str) -> list[str]:
        return [name for batch in self.iter_key_batches(prefix) for name in batch]

    # -- subscribers ---------------------------------------------------------

    def get_subscriber(self, email: str) -> Subscriber | None:
        record = self.get(SUBSCRIBER_PREFIX + email)
        if record is None:
            return None
        return Subscriber.from_record(email, record)

    def is_subscribed(self, email: str) -> bool:
        return self.backend.get(SUBSCRIBER_PREFIX + email) is not None

    def add_subscriber(self, email: str) -> Subscriber:
        sub = Subscriber(email=email)
        self.put(SUBSCRIBER_PREFIX + email, sub.to_record())
        logger.info("Added subscriber: %s", email)
        return sub

    def remove_subscriber(self, email: str) -> None:
        self.delete(SUBSCRIBER_PREFIX + email)
        logger.info("Removed subscriber: %s", email)

    def list_subscribers(self) -> list[str]:
        """Return every confirmed email address (keys with the prefix stripped)."""
        return [name[len(SUBSCRIBER_PREFIX):] for name in self.list_by_prefix(SUBSCRIBER_PREFIX)]

    # -- picks ---------------------------------------------------------------

    def get_latest_picks(self) -> dict | None:
        return self.get(LATEST_PICKS_KEY)

    def put_latest_picks(self, payload: dict) -> None:
        """Overwrite the singleton picks record with ``payload`` verbatim."""
        self.put(LATEST_PICKS_KEY, payload)
