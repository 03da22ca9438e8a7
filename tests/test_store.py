import json
from unittest.mock import MagicMock

import pytest

from mealpick.config import Config, ConfigError
from mealpick.store import (
    LATEST_PICKS_KEY,
    CloudflareKV,
    KeyPage,
    MemoryKV,
    StoreError,
    SubscriberStore,
    SupabaseKV,
    build_backend,
)


def _response(status=200, text="", body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.text = text
    resp.json.return_value = body
    return resp


# ---------------------------------------------------------------------------
# MemoryKV
# ---------------------------------------------------------------------------

def test_memory_list_keys_paginates_in_sorted_order():
    kv = MemoryKV({"sub:c": "1", "sub:a": "1", "sub:b": "1", "other": "1"})
    first = kv.list_keys("sub:", limit=2)
    assert first.names == ["sub:a", "sub:b"]
    assert not first.list_complete
    second = kv.list_keys("sub:", cursor=first.cursor, limit=2)
    assert second.names == ["sub:c"]
    assert second.list_complete


def test_memory_delete_missing_is_noop():
    kv = MemoryKV()
    kv.delete("sub:nobody@example.com")
    assert kv.data == {}


# ---------------------------------------------------------------------------
# SubscriberStore
# ---------------------------------------------------------------------------

def test_iter_key_batches_loops_until_complete():
    kv = MemoryKV({f"sub:user{i}@example.com": "{}" for i in range(5)})
    store = SubscriberStore(kv, page_size=2)
    batches = list(store.iter_key_batches("sub:"))
    assert [len(b) for b in batches] == [2, 2, 1]


def test_iter_key_batches_follows_backend_cursor():
    backend = MagicMock()
    backend.list_keys.side_effect = [
        KeyPage(names=["sub:a"], cursor="c1", list_complete=False),
        KeyPage(names=[], cursor="c2", list_complete=False),
        KeyPage(names=["sub:b"], cursor=None, list_complete=True),
    ]
    store = SubscriberStore(backend, page_size=1)
    assert store.list_by_prefix("sub:") == ["sub:a", "sub:b"]
    cursors = [c.kwargs["cursor"] for c in backend.list_keys.call_args_list]
    assert cursors == [None, "c1", "c2"]


def test_subscriber_lifecycle(store, kv):
    assert store.get_subscriber("a@b.com") is None
    assert not store.is_subscribed("a@b.com")

    sub = store.add_subscriber("a@b.com")
    assert json.loads(kv.data["sub:a@b.com"]) == {"subscribedAt": sub.subscribed_at}
    assert store.is_subscribed("a@b.com")
    assert store.get_subscriber("a@b.com") == sub

    store.remove_subscriber("a@b.com")
    assert "sub:a@b.com" not in kv.data
    store.remove_subscriber("a@b.com")


def test_list_subscribers_strips_prefix(store):
    for email in ["c@x.com", "a@x.com", "b@x.com"]:
        store.add_subscriber(email)
    store.put_latest_picks({"date_str": "d", "meals": {}})
    assert sorted(store.list_subscribers()) == ["a@x.com", "b@x.com", "c@x.com"]


def test_latest_picks_is_overwritten(store, kv):
    assert store.get_latest_picks() is None
    store.put_latest_picks({"date_str": "Thu", "meals": {"lunch": {}}, "location_map": {"A": "B"}})
    store.put_latest_picks({"date_str": "Fri", "meals": {}})
    assert store.get_latest_picks() == {"date_str": "Fri", "meals": {}}
    assert list(kv.data) == [LATEST_PICKS_KEY]


# ---------------------------------------------------------------------------
# CloudflareKV
# ---------------------------------------------------------------------------

@pytest.fixture
def session():
    s = MagicMock()
    s.headers = {}
    return s


@pytest.fixture
def cf(session):
    return CloudflareKV("acct", "ns", "cf-token", session=session)


def test_cloudflare_sets_bearer_header(cf, session):
    assert session.headers["Authorization"] == "Bearer cf-token"


def test_cloudflare_get(cf, session):
    session.get.return_value = _response(200, text='{"subscribedAt": "x"}')
    assert cf.get("sub:a@b.com") == '{"subscribedAt": "x"}'
    url = session.get.call_args.args[0]
    assert url.endswith("/accounts/acct/storage/kv/namespaces/ns/values/sub%3Aa%40b.com")


def test_cloudflare_get_missing_returns_none(cf, session):
    session.get.return_value = _response(404)
    assert cf.get("sub:a@b.com") is None


def test_cloudflare_get_error_raises(cf, session):
    session.get.return_value = _response(500, text="boom")
    with pytest.raises(StoreError) as exc:
        cf.get("latest_picks")
    assert exc.value.status == 500


def test_cloudflare_put_and_delete(cf, session):
    session.put.return_value = _response(200)
    session.delete.return_value = _response(404)
    cf.put("latest_picks", '{"a": 1}')
    assert session.put.call_args.kwargs["data"] == b'{"a": 1}'
    cf.delete("sub:a@b.com")


def test_cloudflare_list_keys_cursor(cf, session):
    session.get.side_effect = [
        _response(200, body={"result": [{"name": "sub:a"}], "result_info": {"cursor": "next"}}),
        _response(200, body={"result": [{"name": "sub:b"}], "result_info": {"cursor": ""}}),
    ]
    store = SubscriberStore(cf, page_size=1)
    assert store.list_subscribers() == ["a", "b"]
    second_params = session.get.call_args_list[1].kwargs["params"]
    assert second_params == {"prefix": "sub:", "limit": 1, "cursor": "next"}


# ---------------------------------------------------------------------------
# SupabaseKV
# ---------------------------------------------------------------------------

def test_supabase_get_and_put():
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.execute.return_value.data = [{"value": '{"a": 1}'}]
    kv = SupabaseKV(client, table="kv")

    assert kv.get("latest_picks") == '{"a": 1}'
    table.select.assert_called_with("value")

    kv.put("latest_picks", "{}")
    table.upsert.assert_called_once_with({"key": "latest_picks", "value": "{}"}, on_conflict="key")


def test_supabase_get_missing():
    client = MagicMock()
    client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []
    assert SupabaseKV(client).get("sub:a@b.com") is None


def test_supabase_list_keys_keyset_pagination():
    client = MagicMock()
    like = client.table.return_value.select.return_value.like.return_value
    like.order.return_value.limit.return_value.execute.return_value.data = [
        {"key": "sub:a"}, {"key": "sub:b"},
    ]
    like.gt.return_value.order.return_value.limit.return_value.execute.return_value.data = [
        {"key": "sub:c"},
    ]
    store = SubscriberStore(SupabaseKV(client), page_size=2)
    assert store.list_subscribers() == ["a", "b", "c"]
    like.gt.assert_called_once_with("key", "sub:b")
    client.table.return_value.select.return_value.like.assert_called_with("key", "sub:%")


# ---------------------------------------------------------------------------
# build_backend
# ---------------------------------------------------------------------------

def test_build_backend_memory_default():
    assert isinstance(build_backend(Config(hmac_secret="x")), MemoryKV)


def test_build_backend_cloudflare_requires_credentials():
    with pytest.raises(ConfigError):
        build_backend(Config(hmac_secret="x", kv_backend="cloudflare"))
    backend = build_backend(Config(
        hmac_secret="x", kv_backend="cloudflare",
        cf_account_id="a", cf_namespace_id="n", cf_api_token="t",
    ))
    assert isinstance(backend, CloudflareKV)
