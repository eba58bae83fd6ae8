"""Tests for incoming-call tree expansion and the visited cache."""

import asyncio
import logging

import pytest

from codelineage.errors import ResponseError
from codelineage.lineage import CancellationToken, LineageBuilder, VisitedCache
from codelineage.model import CallHierarchyNode
from codelineage.paths import enumerate_paths
from fakes import FakeLspClient, item


@pytest.fixture
def client():
    return FakeLspClient()


@pytest.fixture
def builder(client):
    return LineageBuilder(client)


def chain(client):
    """h -> g -> f: h calls g on line 3, g calls f on line 10."""
    f, g, h = item("f", 20), item("g", 8), item("h", 0)
    client.calls(g, f, 10)
    client.calls(h, g, 3)
    return f, g, h


class TestExpand:
    @pytest.mark.asyncio
    async def test_no_callers_is_a_single_node_tree(self, client, builder):
        start = CallHierarchyNode(item("lonely", 0))

        assert await builder.expand(start) is True
        assert start.incoming == ()
        assert start.is_root
        assert start.identity in builder.cache

    @pytest.mark.asyncio
    async def test_chain(self, client, builder):
        f, g, h = chain(client)
        start = CallHierarchyNode(f)

        assert await builder.expand(start)

        [edge_g] = start.incoming
        assert edge_g.caller.name == "g"
        assert edge_g.lines == [10]
        [edge_h] = edge_g.caller.incoming
        assert edge_h.caller.name == "h"
        assert edge_h.caller.is_root
        assert client.requests == ["f", "g", "h"]
        assert len(builder.cache) == 3

    @pytest.mark.asyncio
    async def test_second_expand_is_served_from_cache(self, client, builder):
        f, _, _ = chain(client)
        first = CallHierarchyNode(f)
        await builder.expand(first)
        requests_before = len(client.requests)

        second = CallHierarchyNode(f)
        assert await builder.expand(second)

        assert len(client.requests) == requests_before
        assert second.incoming is first.incoming
        assert builder.hits == 1

    @pytest.mark.asyncio
    async def test_shared_caller_is_requested_once(self, client, builder):
        a, b, shared = item("a", 0), item("b", 10), item("shared", 20)
        client.calls(shared, a, 22)
        client.calls(shared, b, 25)

        await builder.expand(CallHierarchyNode(a))
        await builder.expand(CallHierarchyNode(b))

        assert client.requests.count("shared") == 1

    @pytest.mark.asyncio
    async def test_excluded_callers_are_skipped(self, client, builder):
        f = item("f", 0)
        client.calls(item("TestF", 0, uri="file:///proj/main_test.go"), f, 4)
        client.calls(item("helper", 0, uri="file:///proj/x/component_test/h.go"), f, 2)
        client.calls(item("real", 10), f, 12)

        start = CallHierarchyNode(f)
        await builder.expand(start)

        assert [e.caller.name for e in start.incoming] == ["real"]
        assert "TestF" not in client.requests

    @pytest.mark.asyncio
    async def test_excluded_names(self, client):
        builder = LineageBuilder(client, exclude=(), exclude_names=("mock*",))
        f = item("f", 0)
        client.calls(item("mockCaller", 30), f, 31)
        client.calls(item("caller", 40), f, 41)

        start = CallHierarchyNode(f)
        await builder.expand(start)

        assert [e.caller.name for e in start.incoming] == ["caller"]

    @pytest.mark.asyncio
    async def test_call_sites_deduplicated_by_line(self, client, builder):
        f, g = item("f", 0), item("g", 10)
        client.calls(g, f, 12, 12, 15)

        start = CallHierarchyNode(f)
        await builder.expand(start)

        [edge] = start.incoming
        assert edge.lines == [12, 15]

    @pytest.mark.asyncio
    async def test_caller_without_call_sites_is_logged(self, client, builder, caplog):
        f = item("f", 0)
        client.calls(item("ghost", 30), f)
        client.calls(item("real", 10), f, 12)

        start = CallHierarchyNode(f)
        with caplog.at_level(logging.WARNING, logger="codelineage"):
            await builder.expand(start)

        assert [e.caller.name for e in start.incoming] == ["real"]
        assert "ghost" in caplog.text
        assert "ghost" not in client.requests

    @pytest.mark.asyncio
    async def test_expanded_edges_are_frozen(self, client, builder):
        f, _, _ = chain(client)
        start = CallHierarchyNode(f)
        await builder.expand(start)

        assert start.is_expanded
        assert isinstance(start.incoming, tuple)
        assert builder.cache.get(start.identity) is start.incoming

    @pytest.mark.asyncio
    async def test_server_error_propagates_and_caches_nothing(self):
        class FailingClient:
            async def incoming_calls(self, target):
                raise ResponseError(-32603, "internal error")

        builder = LineageBuilder(FailingClient())
        with pytest.raises(ResponseError):
            await builder.expand(CallHierarchyNode(item("f", 0)))
        assert len(builder.cache) == 0


class TestCycles:
    @pytest.mark.asyncio
    async def test_self_recursion_terminates(self, client, builder):
        f, main = item("f", 0), item("main", 10)
        client.calls(f, f, 3)
        client.calls(main, f, 11)

        start = CallHierarchyNode(f)
        assert await builder.expand(start)

        callers = {e.caller.name: e.caller for e in start.incoming}
        assert callers["f"].recursive
        assert callers["f"].incoming == ()
        assert not callers["f"].is_root
        assert client.requests == ["f", "main"]
        assert [p.root for p in enumerate_paths(start)] == ["main"]

    @pytest.mark.asyncio
    async def test_mutual_recursion_terminates(self, client, builder):
        a, b = item("a", 0), item("b", 10)
        client.calls(b, a, 12)
        client.calls(a, b, 2)

        start = CallHierarchyNode(a)
        assert await builder.expand(start)

        [edge_b] = start.incoming
        [edge_a] = edge_b.caller.incoming
        assert edge_a.caller.recursive
        assert enumerate_paths(start) == []

    @pytest.mark.asyncio
    async def test_cycle_member_is_not_cached_with_partial_edges(self, client, builder):
        a, b, root = item("a", 0), item("b", 10), item("root", 20)
        client.calls(b, a, 12)
        client.calls(root, a, 21)
        client.calls(a, b, 2)

        await builder.expand(CallHierarchyNode(a))
        assert a.identity in builder.cache
        assert b.identity not in builder.cache

        # b's own lineage still reaches root through a
        start = CallHierarchyNode(b)
        assert await builder.expand(start)
        assert {p.root for p in enumerate_paths(start)} == {"root"}
        assert b.identity in builder.cache


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, client, builder):
        chain(client)
        token = CancellationToken()
        token.cancel()

        assert await builder.expand(CallHierarchyNode(item("f", 20)), token) is False
        assert client.requests == []
        assert len(builder.cache) == 0

    @pytest.mark.asyncio
    async def test_cancel_midway_leaves_no_partial_cache_entries(self, client):
        f, g, h = chain(client)
        token = CancellationToken()

        class CancellingClient(FakeLspClient):
            async def incoming_calls(self, target):
                if target.name == "g":
                    token.cancel()
                return await client.incoming_calls(target)

        builder = LineageBuilder(CancellingClient())
        start = CallHierarchyNode(f)
        assert await builder.expand(start, token) is False
        assert f.identity not in builder.cache
        assert g.identity not in builder.cache
        assert "h" not in client.requests

        # a retry re-expands instead of trusting partial data
        assert await builder.expand(start, CancellationToken())
        assert len(start.incoming) == 1
        assert start.incoming[0].caller.incoming[0].caller.name == "h"
        assert f.identity in builder.cache

    @pytest.mark.asyncio
    async def test_task_cancellation_caches_nothing(self):
        started = asyncio.Event()

        class HangingClient:
            async def incoming_calls(self, target):
                started.set()
                await asyncio.Event().wait()

        builder = LineageBuilder(HangingClient())
        task = asyncio.create_task(builder.expand(CallHierarchyNode(item("f", 0))))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(builder.cache) == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_traversals_share_cache(self, client):
        cache = VisitedCache()
        builder = LineageBuilder(client, cache)
        x, y, mid, top = item("x", 0), item("y", 10), item("mid", 20), item("top", 30)
        client.calls(mid, x, 21)
        client.calls(mid, y, 22)
        client.calls(top, mid, 31)

        sx, sy = CallHierarchyNode(x), CallHierarchyNode(y)
        assert await asyncio.gather(builder.expand(sx), builder.expand(sy)) == [True, True]

        for start in (sx, sy):
            assert [p.root for p in enumerate_paths(start)] == ["top"]
        assert all(ident in cache for ident in (x.identity, y.identity, mid.identity))

    def test_cache_clear(self):
        cache = VisitedCache()
        cache.store(item("f", 0).identity, ())
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0
