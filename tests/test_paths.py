"""Tests for path enumeration, truncation and compression."""

import pytest

from codelineage.lineage import LineageBuilder
from codelineage.model import CallHierarchyNode, LineagePath
from codelineage.paths import (
    compress_paths,
    dedupe_paths,
    enumerate_paths,
    render_path,
    summarize,
    truncate_path,
)
from fakes import FakeLspClient, item


def P(root, *offsets):
    return LineagePath(root, tuple(offsets))


class TestEnumerate:
    @pytest.mark.asyncio
    async def test_offsets_are_relative_to_caller_declaration(self):
        client = FakeLspClient()
        f, g, h = item("f", 20), item("g", 8), item("h", 0)
        client.calls(g, f, 10)
        client.calls(h, g, 3)
        start = CallHierarchyNode(f)
        await LineageBuilder(client).expand(start)

        assert enumerate_paths(start) == [P("h", 3, 2)]

    @pytest.mark.asyncio
    async def test_each_call_site_yields_a_path(self):
        client = FakeLspClient()
        f, g = item("f", 20), item("g", 8)
        client.calls(g, f, 10, 14)
        start = CallHierarchyNode(f)
        await LineageBuilder(client).expand(start)

        assert sorted(enumerate_paths(start)) == [P("g", 2), P("g", 6)]

    @pytest.mark.asyncio
    async def test_duplicate_paths_through_shared_cache_collapse(self):
        client = FakeLspClient()
        f, g, root = item("f", 20), item("g", 8), item("root", 0)
        # the server reports g twice; the second copy is spliced from cache
        client.calls(g, f, 10)
        client.calls(g, f, 10)
        client.calls(root, g, 1)
        start = CallHierarchyNode(f)
        await LineageBuilder(client).expand(start)

        paths = enumerate_paths(start)
        assert paths == [P("root", 1, 2), P("root", 1, 2)]
        assert dedupe_paths(paths) == [P("root", 1, 2)]
        assert client.requests.count("g") == 1

    def test_start_without_callers_is_its_own_root(self):
        start = CallHierarchyNode(item("main", 0), incoming=())
        assert enumerate_paths(start) == [P("main")]


class TestTruncate:
    def test_keeps_root_most_segments(self):
        assert truncate_path(P("r", 1, 2, 3, 4, 5), 3) == P("r", 1, 2)

    def test_root_counts_as_a_segment(self):
        assert truncate_path(P("h", 1, 2), 2) == P("h", 1)
        assert truncate_path(P("h", 1, 2), 1) == P("h")

    def test_is_idempotent(self):
        once = truncate_path(P("r", 1, 2, 3, 4, 5), 2)
        assert len(once.offsets) + 1 == 2
        assert truncate_path(once, 2) == once

    def test_zero_means_unlimited(self):
        path = P("r", 1, 2, 3)
        assert truncate_path(path, 0) is path

    def test_short_path_unchanged(self):
        path = P("r", 1)
        assert truncate_path(path, 4) is path
        assert truncate_path(path, 2) is path


class TestCompress:
    def test_identical_paths_render_plainly(self):
        path = P("main", 4, 7, 1)
        assert compress_paths(path, path) == render_path(path) == "main.4.7.1"

    def test_common_prefix(self):
        assert compress_paths(P("r", 1, 2, 3, 4, 5), P("r", 1, 2, 3, 6, 7)) == "r.1.2.3.[4.5..6.7]"

    def test_no_common_prefix(self):
        assert compress_paths(P("r", 1, 2), P("r", 3, 4)) == "r.[1.2..3.4]"

    def test_strict_prefix(self):
        assert compress_paths(P("r", 1, 2), P("r", 1, 2, 3)) == "r.1.2.[..3]"

    def test_prefix_sorts_first(self):
        assert min(P("r", 1, 2, 3), P("r", 1, 2)) == P("r", 1, 2)


class TestSummarize:
    def test_one_entry_per_root_sorted_by_name(self):
        paths = [P("zeta", 1), P("alpha", 5, 1), P("alpha", 2, 9)]
        assert summarize(paths) == "alpha.[2.9..5.1], zeta.1"

    def test_implicit_root_renders_bare(self):
        paths = [P("init", 3, 4), P("init", 8), P("main", 2)]
        assert summarize(paths) == "init, main.2"

    def test_duplicates_are_rendered_once(self):
        assert summarize([P("main", 2, 3), P("main", 2, 3)]) == "main.2.3"

    def test_max_segments_applies_before_grouping(self):
        paths = [P("main", 1, 2, 3), P("main", 1, 2, 9)]
        assert summarize(paths, max_segments=3) == "main.1.2"

    def test_max_segments_includes_root(self):
        assert summarize([P("h", 1, 2)], max_segments=2) == "h.1"

    def test_trims_whole_entries_to_fit_width(self):
        paths = [P(f"root{i}", i) for i in range(10)]
        title = summarize(paths, max_width=30)
        assert title == "root0.0, root1.1, root2.2, and 7 more"

    def test_keeps_at_least_one_entry(self):
        title = summarize([P("a_very_long_root_name", 1), P("b", 2)], max_width=5)
        assert title == "a_very_long_root_name.1, and 1 more"
