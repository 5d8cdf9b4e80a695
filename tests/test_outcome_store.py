"""Tests pour la rétention des issues (Redis ou KV mémoire)."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
import redis

from anchor_backend.infra.ops.outcome_store import OutcomeStore, _InMemoryKV


def test_memory_backend_by_default() -> None:
    store = OutcomeStore()
    assert store.backend == "memory"
    assert isinstance(store.client, _InMemoryKV)


def test_remember_and_recall_roundtrip() -> None:
    store = OutcomeStore(ttl_seconds=30)
    store.remember("anchor:create:0xabc:0x01", {"status": "confirmed", "tokenId": 1})
    assert store.recall("anchor:create:0xabc:0x01") == {"status": "confirmed", "tokenId": 1}
    assert store.recall("anchor:create:0xabc:0x02") is None


def test_in_memory_kv_expiration() -> None:
    kv = _InMemoryKV()
    with patch("anchor_backend.infra.ops.outcome_store.time") as mock_time:
        mock_time.time.return_value = 100.0
        kv.set("k", "v", ex=5)
        assert kv.get("k") == "v"
        mock_time.time.return_value = 106.0
        assert kv.get("k") is None


def test_redis_client_used_when_url_given() -> None:
    with patch("anchor_backend.infra.ops.outcome_store.redis.Redis") as mock_redis:
        client = Mock()
        mock_redis.from_url.return_value = client
        store = OutcomeStore(ttl_seconds=45, redis_url="redis://localhost:6379/0")
        assert store.backend == "redis"
        store.remember("key", {"status": "failed"})
        client.set.assert_called_once()
        args, kwargs = client.set.call_args
        assert args[0] == "outcome:key"
        assert kwargs["ex"] == 45


def test_redis_errors_do_not_propagate() -> None:
    client = Mock()
    client.set.side_effect = redis.RedisError("down")
    client.get.side_effect = redis.RedisError("down")
    store = OutcomeStore(client=client)
    store.remember("key", {"status": "confirmed"})
    assert store.recall("key") is None


def test_redis_client_is_bounded_by_socket_timeout() -> None:
    with patch("anchor_backend.infra.ops.outcome_store.redis.Redis") as mock_redis:
        OutcomeStore(redis_url="redis://localhost:6379/0", socket_timeout=0.25)
    _args, kwargs = mock_redis.from_url.call_args
    assert kwargs["socket_timeout"] == 0.25
    assert kwargs["socket_connect_timeout"] == 0.25


@pytest.mark.asyncio
async def test_async_accessors_use_redis_client() -> None:
    client = Mock()
    client.get.return_value = '{"status":"confirmed","tokenId":4}'
    store = OutcomeStore(ttl_seconds=30, client=client)

    await store.aremember("key", {"status": "confirmed", "tokenId": 4})
    recalled = await store.arecall("key")

    assert store.backend == "redis"
    assert client.set.call_args.args[0] == "outcome:key"
    client.get.assert_called_once_with("outcome:key")
    assert recalled == {"status": "confirmed", "tokenId": 4}


@pytest.mark.asyncio
async def test_async_accessors_swallow_redis_timeouts() -> None:
    client = Mock()
    client.get.side_effect = redis.TimeoutError("Timeout reading from socket")
    store = OutcomeStore(client=client)
    assert await store.arecall("key") is None


@pytest.mark.asyncio
async def test_async_accessors_with_memory_backend() -> None:
    store = OutcomeStore(ttl_seconds=30)
    await store.aremember("key", {"status": "failed"})
    assert await store.arecall("key") == {"status": "failed"}
