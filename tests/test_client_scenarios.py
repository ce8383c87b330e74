"""
End-to-end tests for the ClusterClient against a FakeCluster.
"""

import asyncio
import json
import random

from hypothesis import given, settings
from hypothesis import strategies as st

from cluster_locator.client import ClusterClient
from cluster_locator.config import STORAGE_KEY
from cluster_locator.enums import NotificationKind
from cluster_locator.exceptions import (
    ClusterIntegrityViolation,
    NoServersAvailable,
    ResetExhausted,
    UrlFormatError,
)
from cluster_locator.persistence import MappingStorage

from fake_cluster import FakeCluster, fast_config, quiet_logger, run_async, wait_until


A = "https://a.example:443"
B = "https://b.example:443"
C = "https://c.example:443"


def make_client(cluster: FakeCluster, **config_options) -> ClusterClient:
    return ClusterClient(
        config=fast_config(**config_options),
        logger=quiet_logger(),
        transport=cluster.transport(),
        rng=random.Random(0),
    )


class TestClientScenarios:
    """Single seed, peer discovery, foreign cluster, empty client, skip flag."""

    def test_single_seed_becomes_ready(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example", identifier="k1")
            async with make_client(cluster) as client:
                client.add_server("https://a.example")
                await asyncio.wait_for(client.ready, timeout=2)
                return client.verified_servers, client.get_url("/api/1.0/status"), client.cluster_identifier

        verified, url, identifier = run_async(scenario())

        assert verified == {A: 0}
        assert url == "https://a.example:443/api/1.0/status"
        assert identifier == "k1"

    def test_peers_are_discovered_and_trusted(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example", identifier="k1", hostnames=["b.example"])
            cluster.add("b.example", identifier="k1", hostnames=["a.example"])
            async with make_client(cluster) as client:
                client.add_server("https://a.example")
                await asyncio.wait_for(client.ready, timeout=2)
                await wait_until(lambda: client.verified_servers == {A: 2, B: 2})
                return client.skip_priority_one_servers, client.get_url("x")

        skip, url = run_async(scenario())

        assert skip is True
        assert url in ("https://a.example:443/x", "https://b.example:443/x")

    def test_foreign_server_triggers_reset_of_seeds_only(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example", identifier="k1")
            cluster.add("c.example", identifier="k2")
            notifications = []
            async with make_client(cluster) as client:
                client.subscribe(notifications.append)
                client.add_server("https://a.example")
                await asyncio.wait_for(client.ready, timeout=2)

                error = None
                try:
                    await client.verify("https://c.example", 0)
                except ClusterIntegrityViolation as e:
                    error = e

                await wait_until(lambda: cluster.request_count("a.example") == 2)
                await wait_until(lambda: client.is_ready)
                return cluster, notifications, error, client.verified_servers

        cluster, notifications, error, verified = run_async(scenario())

        assert error is not None
        assert verified == {A: 0}
        assert cluster.request_count("c.example") == 1
        assert set(cluster.requests) == {"a.example", "c.example"}
        c_kinds = [n.kind for n in notifications if n.url == C]
        assert c_kinds == [NotificationKind.CLEAR_SERVER]
        assert [n.kind for n in notifications].count(NotificationKind.READY) == 2

    def test_no_servers_available(self) -> None:
        client = ClusterClient(config=fast_config(), logger=quiet_logger())
        try:
            client.get_url("x")
            assert False, "Expected NoServersAvailable"
        except NoServersAvailable as e:
            assert e.to_dict()["error_type"] == "NoServersAvailable"

    def test_seed_is_used_before_verification(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            async with make_client(cluster, auto_verify=False) as client:
                client.add_server("a.example")
                return client.get_url("/x"), cluster.requests

        url, requests = run_async(scenario())

        assert url == "https://a.example:443/x"
        assert requests == []

    def test_invalid_seed_is_rejected(self) -> None:
        client = ClusterClient(config=fast_config(), logger=quiet_logger())
        try:
            client.add_server("https://")
            assert False, "Expected UrlFormatError"
        except UrlFormatError:
            pass
        assert client.seeds == []


class TestReadyOncePerEpochProperty:
    """
    Property: ready is announced exactly once per epoch no matter how many
    servers verify.
    """

    @given(size=st.integers(min_value=1, max_value=6))
    @settings(max_examples=10, deadline=None)
    def test_single_ready_notification(self, size: int) -> None:
        hosts = [f"n{i}.example" for i in range(size)]

        async def scenario():
            cluster = FakeCluster()
            for host in hosts:
                cluster.add(host)
            notifications = []
            async with make_client(cluster) as client:
                client.subscribe(notifications.append)
                for host in hosts:
                    client.add_server(host)
                await asyncio.wait_for(client.ready, timeout=2)
                await client.wait_idle()
                first_epoch = [n.kind for n in notifications].count(NotificationKind.READY)

                await asyncio.wait_for(client.reverify_servers(), timeout=2)
                await client.wait_idle()
                second_epoch = [n.kind for n in notifications].count(NotificationKind.READY)
                return first_epoch, second_epoch, client.verified_servers

        first_epoch, second_epoch, verified = run_async(scenario())

        assert first_epoch == 1
        assert second_epoch == 2
        assert set(verified) == {f"https://{h}:443" for h in hosts}

    def test_notification_sequence_for_single_seed(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example")
            notifications = []
            async with make_client(cluster) as client:
                client.subscribe(notifications.append)
                client.add_server("a.example")
                client.add_server("A.EXAMPLE:443")
                await asyncio.wait_for(client.ready, timeout=2)
                return notifications, cluster.request_count("a.example")

        notifications, requests = run_async(scenario())

        assert [(n.kind, n.url) for n in notifications] == [
            (NotificationKind.ADD_SERVER, A),
            (NotificationKind.ADD_SERVER, A),
            (NotificationKind.VERIFIED_SERVER, A),
            (NotificationKind.READY, None),
        ]
        assert requests == 1


class TestPausedVerification:
    """auto_verify=False defers all network traffic to verify_servers()."""

    def test_verify_servers_starts_and_waits(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example")
            storage = MappingStorage({STORAGE_KEY: json.dumps([["https://b.example:443", 1]])})
            cluster.add("b.example")
            async with make_client(cluster, auto_verify=False) as client:
                client.add_storage_adapter(storage)
                client.add_server("a.example")
                await asyncio.sleep(0.02)
                before = list(cluster.requests)
                await asyncio.wait_for(client.verify_servers(), timeout=2)
                await client.wait_idle()
                return before, client.verified_servers

        before, verified = run_async(scenario())

        assert before == []
        assert verified == {A: 0, B: 1}


class TestStoredServers:
    """Loading, ordering and saving through storage adapters."""

    def test_verified_servers_are_saved_binarized(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example", hostnames=["b.example"])
            cluster.add("b.example", hostnames=["a.example"])
            mapping = {}
            client = await ClusterClient.create(
                seeds=["a.example"],
                storage=[MappingStorage(mapping)],
                config=fast_config(),
                logger=quiet_logger(),
                transport=cluster.transport(),
            )
            async with client:
                await wait_until(
                    lambda: STORAGE_KEY in mapping
                    and sorted(json.loads(mapping[STORAGE_KEY])) == [[A, 1], [B, 1]]
                )
            return json.loads(mapping[STORAGE_KEY])

        stored = run_async(scenario())

        assert sorted(stored) == [[A, 1], [B, 1]]

    def test_stored_servers_are_tried_highest_priority_first(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example")
            cluster.add("b.example")
            mapping = {STORAGE_KEY: json.dumps([[B, 0], [A, 1]])}
            client = await ClusterClient.create(
                storage=[MappingStorage(mapping)],
                config=fast_config(),
                logger=quiet_logger(),
                transport=cluster.transport(),
            )
            async with client:
                await asyncio.wait_for(client.ready, timeout=2)
                await client.wait_idle()
                client.add_server("https://a.example")
                await client.wait_idle()
                return cluster, client.verified_servers, client.registry.persisted

        cluster, verified, persisted = run_async(scenario())

        assert verified == {A: 1}
        assert persisted == {A, B}
        assert cluster.request_count("a.example") == 1
        assert cluster.request_count("b.example") == 0

    def test_corrupt_storage_is_cleared(self) -> None:
        async def scenario():
            mapping = {STORAGE_KEY: "not json"}
            logger = quiet_logger()
            client = await ClusterClient.create(
                storage=[MappingStorage(mapping)],
                config=fast_config(),
                logger=logger,
                transport=FakeCluster().transport(),
            )
            async with client:
                await client.wait_idle()
            return mapping, logger

        mapping, logger = run_async(scenario())

        assert STORAGE_KEY not in mapping
        assert any(e.message == "Unable to load stored servers" for e in logger.entries)

    def test_corrupt_storage_clears_every_adapter(self) -> None:
        async def scenario():
            corrupt = {STORAGE_KEY: "not json"}
            intact = {STORAGE_KEY: json.dumps([[B, 1]])}
            cluster = FakeCluster()
            client = await ClusterClient.create(
                storage=[MappingStorage(corrupt), MappingStorage(intact)],
                config=fast_config(auto_verify=False),
                logger=quiet_logger(),
                transport=cluster.transport(),
            )
            async with client:
                await client.load_stored_servers()
                await client.wait_idle()
            return corrupt, intact, cluster

        corrupt, intact, cluster = run_async(scenario())

        assert STORAGE_KEY not in corrupt
        assert STORAGE_KEY not in intact
        assert cluster.request_count("b.example") == 0

    def test_async_storage_adapter(self) -> None:
        class AsyncStorage:
            def __init__(self) -> None:
                self.saved = []

            async def get_stored_servers(self):
                return [["https://a.example:443", 0]]

            async def save_stored_servers(self, servers):
                self.saved.append(servers)

            async def clear_stored_servers(self):
                self.saved.append(None)

        async def scenario():
            cluster = FakeCluster()
            cluster.add("a.example")
            storage = AsyncStorage()
            client = await ClusterClient.create(
                storage=[storage],
                config=fast_config(),
                logger=quiet_logger(),
                transport=cluster.transport(),
            )
            async with client:
                await asyncio.wait_for(client.ready, timeout=2)
                await wait_until(lambda: bool(storage.saved))
            return storage

        storage = run_async(scenario())

        assert storage.saved[-1] == [(A, 0)]


class TestResetExhaustion:
    """Total verification failure resets with backoff, then gives up."""

    def test_unreachable_seed_exhausts_resets(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            async with make_client(cluster, max_attempts=2) as client:
                ready = client.ready
                client.add_server("down.example")
                error = None
                try:
                    await asyncio.wait_for(ready, timeout=3)
                except ResetExhausted as e:
                    error = e
                return cluster, client.exhausted, error

        cluster, exhausted, error = run_async(scenario())

        assert error is not None
        assert error.code == "reset_exhausted"
        assert exhausted is True
        assert cluster.request_count("down.example") == 3

    def test_reverify_recovers_after_exhaustion(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            async with make_client(cluster, max_attempts=1) as client:
                client.add_server("a.example")
                await wait_until(lambda: client.exhausted)
                cluster.add("a.example")
                await asyncio.wait_for(client.reverify_servers(), timeout=2)
                return client.exhausted, client.verified_servers, client.reset_count

        exhausted, verified, reset_count = run_async(scenario())

        assert exhausted is False
        assert verified == {A: 0}
        assert reset_count == 0

    def test_server_verified_after_exhaustion_resolves_ready(self) -> None:
        async def scenario():
            cluster = FakeCluster()
            cluster.add("b.example", identifier="k1")
            async with make_client(cluster, max_attempts=1) as client:
                client.add_server("down.example")
                await wait_until(lambda: client.exhausted)
                client.add_server("b.example")
                await asyncio.wait_for(client.ready, timeout=2)
                return client.is_ready, client.exhausted, client.verified_servers

        is_ready, exhausted, verified = run_async(scenario())

        assert is_ready is True
        assert exhausted is False
        assert verified == {B: 0}


class TestDefaultLogger:
    """The client's own logger keeps a bounded history."""

    def test_default_logger_retention_follows_config(self) -> None:
        async def scenario():
            config = fast_config()
            config.logging.level = "error"
            config.logging.max_entries = 2
            async with ClusterClient(config=config, transport=FakeCluster().transport()) as client:
                for i in range(5):
                    client.logger.error("Test", f"entry {i}")
                return [e.message for e in client.logger.entries]

        messages = run_async(scenario())

        assert messages == ["entry 3", "entry 4"]
