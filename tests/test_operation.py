"""
Operation engine tests

⚙️ Reference fan-out on write, resolution on read, count substitution and
cascading deletes, observed through a recording in-memory delegate.
"""

import asyncio
from contextlib import aclosing

import pytest
import pytest_asyncio

from docref import (
    CountMarker, CountPolicy, DataFieldValue, DataOperation, InMemoryDelegate, ReferenceMarker,
    where
)
from docref.persistence.delegates.interface import BatchOperation, BatchOperationType


def op_set(path, data, merge=True):
    return BatchOperation(BatchOperationType.SET, path, data, merge)


def op_update(path, data):
    return BatchOperation(BatchOperationType.UPDATE, path, data)


class GatedDelegate(InMemoryDelegate):
    """Holds reference fetches until ``expected`` of them are pending at once"""

    def __init__(self, root: str, expected: int):
        super().__init__()
        self.root = root
        self.expected = expected
        self.in_flight = 0
        self.peak = 0
        self.opened = asyncio.Event()

    async def get_by_id(self, path: str):
        if path == self.root:
            return await super().get_by_id(path)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        if self.in_flight >= self.expected:
            self.opened.set()
        try:
            await asyncio.wait_for(self.opened.wait(), timeout=1)
        finally:
            self.in_flight -= 1
        return await super().get_by_id(path)


@pytest.fixture
def operation(delegate):
    return DataOperation(delegate)


class TestReferenceWrites:

    @pytest.mark.asyncio
    async def test_directive_fans_out_into_one_batch(self, operation, delegate):
        await operation.create(
            "users/u1",
            {"name": "Ann", "@org": {"path": "orgs/o1", "create": {"title": "Acme"}}},
            create_refs=True,
        )
        assert delegate.batches == [(
            op_set("orgs/o1", {"title": "Acme"}),
            op_set("users/u1", {"name": "Ann", "@org": "orgs/o1"}),
        )]

    @pytest.mark.asyncio
    async def test_nested_directives_come_first(self, operation, delegate):
        await operation.create("users/u1", {
            "@org": {
                "path": "orgs/o1",
                "create": {"title": "Acme", "@owner": {"path": "people/p1", "create": {"name": "Eve"}}},
            },
        }, create_refs=True)
        assert [(op.type, op.path) for op in delegate.batches[0]] == [
            (BatchOperationType.SET, "people/p1"),
            (BatchOperationType.SET, "orgs/o1"),
            (BatchOperationType.SET, "users/u1"),
        ]
        assert delegate.batches[0][1].data == {"title": "Acme", "@owner": "people/p1"}

    @pytest.mark.asyncio
    async def test_directive_lists_and_delete(self, operation, delegate):
        await operation.create("users/u1", {
            "@members": [
                {"path": "people/p1", "create": [{"name": "Eve"}, {"age": 3}]},
                {"path": "people/p2", "delete": True},
                "people/p3",
            ],
        }, create_refs=True)
        batch = delegate.batches[0]
        assert [(op.type, op.path) for op in batch] == [
            (BatchOperationType.SET, "people/p1"),
            (BatchOperationType.SET, "people/p1"),
            (BatchOperationType.DELETE, "people/p2"),
            (BatchOperationType.SET, "users/u1"),
        ]
        assert batch[-1].data == {"@members": ["people/p1", "people/p2", "people/p3"]}

    @pytest.mark.asyncio
    async def test_wrapped_directive_and_markers(self, operation, delegate):
        await operation.create("users/u1", {
            "org": ReferenceMarker(DataFieldValue.write("orgs/o1", create={"title": "Acme"})),
            "posts": CountMarker("users/u1/posts"),
            "note": "@not-a-reference",
        }, create_refs=True)
        assert delegate.batches[0][-1].data == {
            "@org": "orgs/o1",
            "#posts": "users/u1/posts",
            "note": "@not-a-reference",
        }

    @pytest.mark.asyncio
    async def test_update_with_refs(self, operation, delegate):
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("users/u1", {"@org": "orgs/o1"})
        await operation.update(
            "users/u1", {"@org": {"path": "orgs/o1", "update": {"title": "Acme Inc"}}}, update_refs=True
        )
        assert delegate.batches[-1] == (
            op_update("orgs/o1", {"title": "Acme Inc"}),
            op_update("users/u1", {"@org": "orgs/o1"}),
        )
        assert (await delegate.get_by_id("orgs/o1")).doc["title"] == "Acme Inc"

    @pytest.mark.asyncio
    async def test_without_refs_writes_directly(self, operation, delegate):
        await operation.create("users/u1", {"org": ReferenceMarker("orgs/o1")})
        assert delegate.batches == [(op_set("users/u1", {"@org": "orgs/o1"}),)]


class TestReferenceReads:

    @pytest_asyncio.fixture
    async def seeded(self, operation):
        await operation.create(
            "users/u1",
            {"name": "Ann", "@org": {"path": "orgs/o1", "create": {"title": "Acme"}}},
            create_refs=True,
        )
        return operation

    @pytest.mark.asyncio
    async def test_round_trip(self, seeded):
        snapshot = await seeded.get_by_id("users/u1", resolve_refs=True)
        assert snapshot.doc["org"] == {"id": "o1", "title": "Acme"}
        assert snapshot.doc["@org"] == "orgs/o1"
        assert snapshot.doc["name"] == "Ann"

    @pytest.mark.asyncio
    async def test_unresolved_by_default(self, seeded):
        snapshot = await seeded.get_by_id("users/u1")
        assert "org" not in snapshot.doc

    @pytest.mark.asyncio
    async def test_missing_reference_is_omitted(self, operation, delegate):
        await delegate.create("users/u2", {"@org": "orgs/missing", "@friends": ["users/u9"]})
        snapshot = await operation.get_by_id("users/u2", resolve_refs=True)
        assert "org" not in snapshot.doc
        assert snapshot.doc["friends"] == []

    @pytest.mark.asyncio
    async def test_list_and_map_references_keep_order(self, operation, delegate):
        for index in range(3):
            await delegate.create(f"people/p{index}", {"n": index})
        await delegate.create("teams/t1", {
            "@members": ["people/p2", "people/p0", "people/p1"],
            "@roles": {"lead": "people/p1", "ghost": "people/none"},
        })
        doc = (await operation.get_by_id("teams/t1", resolve_refs=True)).doc
        assert [member["n"] for member in doc["members"]] == [2, 0, 1]
        assert doc["roles"] == {"lead": {"id": "p1", "n": 1}}

    @pytest.mark.asyncio
    async def test_nested_references_resolve_recursively(self, operation, delegate):
        await delegate.create("c/c1", {"v": "leaf"})
        await delegate.create("b/b1", {"@c": "c/c1"})
        await delegate.create("a/a1", {"@b": "b/b1"})
        doc = (await operation.get_by_id("a/a1", resolve_refs=True)).doc
        assert doc["b"]["c"]["v"] == "leaf"

    @pytest.mark.asyncio
    async def test_reference_cycle_stops(self, operation, delegate):
        await delegate.create("a/a1", {"@b": "b/b1"})
        await delegate.create("b/b1", {"@a": "a/a1"})
        doc = (await operation.get_by_id("a/a1", resolve_refs=True)).doc
        assert doc["b"]["id"] == "b1"
        assert "a" not in doc["b"]

    @pytest.mark.asyncio
    async def test_ignore_skips_fields(self, seeded):
        doc = (await seeded.get_by_id("users/u1", resolve_refs=True, ignore=["org"])).doc
        assert "org" not in doc
        doc = (await seeded.get_by_id("users/u1", resolve_refs=True, ignore=["@org"])).doc
        assert "org" not in doc

    @pytest.mark.asyncio
    async def test_collection_reads_resolve_each_document(self, seeded, delegate):
        await delegate.create("users/u2", {"name": "Bob"})
        snapshot = await seeded.get("users", resolve_refs=True)
        docs = {doc["id"]: doc for doc in snapshot.docs}
        assert docs["u1"]["org"]["title"] == "Acme"
        assert "org" not in docs["u2"]

    @pytest.mark.asyncio
    async def test_malformed_references_are_omitted(self, operation, delegate):
        await delegate.create("people/p0", {"n": 0})
        await delegate.create("users/u3", {
            "name": "Cy",
            "@org": "orgs",
            "@note": "free text",
            "@friends": ["users", "people/p0"],
        })
        doc = (await operation.get_by_id("users/u3", resolve_refs=True)).doc
        assert doc["name"] == "Cy"
        assert "org" not in doc
        assert "note" not in doc
        assert doc["friends"] == [{"id": "p0", "n": 0}]

    @pytest.mark.asyncio
    async def test_reference_fields_are_fetched_concurrently(self):
        delegate = GatedDelegate("users/u1", expected=3)
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("teams/t1", {"title": "Core"})
        await delegate.create("users/u2", {"name": "Bob"})
        await delegate.create("users/u1", {"@org": "orgs/o1", "@team": "teams/t1", "@friend": "users/u2"})

        doc = (await DataOperation(delegate).get_by_id("users/u1", resolve_refs=True)).doc
        assert delegate.peak == 3
        assert list(doc)[-3:] == ["org", "team", "friend"]
        assert doc["org"]["title"] == "Acme"
        assert doc["team"]["title"] == "Core"
        assert doc["friend"]["name"] == "Bob"

    @pytest.mark.asyncio
    async def test_resolve_for_read(self, seeded):
        doc = await seeded.resolve_for_read({"@org": "orgs/o1"})
        assert doc["org"]["title"] == "Acme"


class TestCounts:

    @pytest_asyncio.fixture
    async def counted(self, delegate):
        await delegate.create("users/u1/posts/p1", {"title": "a"})
        await delegate.create("users/u1/posts/p2", {"title": "b"})
        await delegate.create("users/u1", {
            "#posts": "users/u1/posts",
            "#drafts": "users/u1/drafts",
            "#all": ["users/u1/posts", "users/u1/drafts"],
            "#by_kind": {"posts": "users/u1/posts", "drafts": "users/u1/drafts"},
        })
        return delegate

    @pytest.mark.asyncio
    async def test_counts_only_when_countable(self, counted):
        operation = DataOperation(counted)
        doc = (await operation.get_by_id("users/u1")).doc
        assert "posts" not in doc

    @pytest.mark.asyncio
    async def test_zero_counts_are_omitted_uniformly(self, counted):
        operation = DataOperation(counted)
        doc = (await operation.get_by_id("users/u1", countable=True)).doc
        assert doc["posts"] == 2
        assert "drafts" not in doc
        assert doc["all"] == [2]
        assert doc["by_kind"] == {"posts": 2}

    @pytest.mark.asyncio
    async def test_legacy_policy_keeps_zero_in_lists(self, counted):
        operation = DataOperation(counted, CountPolicy.LEGACY)
        doc = (await operation.get_by_id("users/u1", countable=True)).doc
        assert doc["posts"] == 2
        assert "drafts" not in doc
        assert doc["all"] == [2, 0]
        assert doc["by_kind"] == {"posts": 2, "drafts": 0}

    @pytest.mark.asyncio
    async def test_document_paths_are_not_counted(self, counted):
        await counted.create("users/u2", {"#posts": "users/u1", "#all": ["users/u1/posts", "users/u1"]})
        counted.calls.clear()
        doc = (await DataOperation(counted).get_by_id("users/u2", countable=True)).doc
        assert "posts" not in doc
        assert doc["all"] == [2]
        assert counted.calls_to("count") == ["users/u1/posts"]


class TestCascadingDelete:

    @pytest.mark.asyncio
    async def test_plain_delete(self, operation, delegate):
        await delegate.create("a/a1", {"@b": "b/b1"})
        await delegate.create("b/b1", {"v": 1})
        report = await operation.delete("a/a1")
        assert report.deleted == ["a/a1"]
        assert delegate.paths() == ["b/b1"]

    @pytest.mark.asyncio
    async def test_references_are_deleted_before_referrers(self, operation, delegate):
        await delegate.create("c/c1", {"v": "leaf"})
        await delegate.create("b/b1", {"@c": "c/c1"})
        await delegate.create("a/a1", {"@b": "b/b1"})
        report = await operation.delete("a/a1", delete_refs=True)
        assert report.paths == ["c/c1", "b/b1", "a/a1"]
        assert report.is_complete
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_deletes_in_chunks(self, operation, delegate):
        for index in range(5):
            await delegate.create(f"b/b{index}", {"v": index})
        await delegate.create("a/a1", {"@items": [f"b/b{index}" for index in range(5)]})
        delegate.batches.clear()
        report = await operation.delete("a/a1", delete_refs=True, batch_limit=2)
        assert report.chunks == 3
        assert [len(batch) for batch in delegate.batches] == [2, 2, 2]
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_limit_truncates_and_reports_skipped(self, operation, delegate):
        for index in range(3):
            await delegate.create(f"b/b{index}", {"v": index})
        await delegate.create("a/a1", {"@items": ["b/b0", "b/b1", "b/b2"]})
        report = await operation.delete("a/a1", delete_refs=True, batch_max_limit=2)
        assert report.truncated
        assert report.paths == ["b/b0", "a/a1"]
        assert report.skipped == ["b/b1", "b/b2"]
        assert delegate.paths() == ["b/b1", "b/b2"]

    @pytest.mark.asyncio
    async def test_shared_skipped_reference_is_reported_once(self, operation, delegate):
        await delegate.create("d/d1", {"v": 1})
        await delegate.create("b/b0", {"@d": "d/d1"})
        await delegate.create("a/a1", {"@b": "b/b0", "@d": "d/d1"})
        report = await operation.delete("a/a1", delete_refs=True, batch_max_limit=2)
        assert report.paths == ["b/b0", "a/a1"]
        assert report.skipped == ["d/d1"]
        assert delegate.paths() == ["d/d1"]

    @pytest.mark.asyncio
    async def test_cycles_are_deleted_once(self, operation, delegate):
        await delegate.create("a/a1", {"@b": "b/b1"})
        await delegate.create("b/b1", {"@a": "a/a1"})
        report = await operation.delete("a/a1", delete_refs=True)
        assert report.paths == ["b/b1", "a/a1"]

    @pytest.mark.asyncio
    async def test_counter_deletes_counted_collections(self, operation, delegate):
        await delegate.create("users/u1/posts/p1", {"title": "a"})
        await delegate.create("users/u1", {"#posts": "users/u1/posts"})
        report = await operation.delete("users/u1", delete_refs=True, counter=True)
        assert report.paths == ["users/u1/posts/p1", "users/u1"]
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_missing_root(self, operation):
        report = await operation.delete("a/none", delete_refs=True)
        assert report.paths == []
        assert report.chunks == 0


class TestListeners:

    @pytest.mark.asyncio
    async def test_listen_by_id_resolves(self, operation, delegate):
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("users/u1", {"@org": "orgs/o1"})
        async with aclosing(operation.listen_by_id("users/u1", resolve_refs=True)) as stream:
            first = await stream.__anext__()
            assert first.doc["org"]["title"] == "Acme"
            await delegate.update("users/u1", {"name": "Ann"})
            second = await stream.__anext__()
            assert second.doc["name"] == "Ann"
            assert second.doc["org"]["title"] == "Acme"

    @pytest.mark.asyncio
    async def test_listen_by_query(self, operation, delegate):
        async with aclosing(operation.listen_by_query("users", queries=[where("age", is_equal_to=3)])) as stream:
            first = await stream.__anext__()
            assert first.docs == []
            await delegate.create("users/u1", {"age": 3})
            second = await stream.__anext__()
            assert [doc["id"] for doc in second.docs] == ["u1"]
