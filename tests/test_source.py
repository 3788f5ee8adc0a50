"""
Data source tests

📦 Status mapping, ``where_in`` fan-out, encryption, cascading deletes and
entity listeners over a recording in-memory delegate.
"""

from contextlib import aclosing

import pytest
import pytest_asyncio

from docref import (
    ENCRYPTED_FIELD, Checker, DataEncryptor, DataFieldParams, DataFieldValue,
    DataLimitations, DataWriter, EntityDataSource, JsonEncryptor, Status,
    where
)
from docref.persistence.source import ENCRYPTION_ERROR

from conftest import FailingDelegate, Post, User


class EmptyEncryptor(DataEncryptor):
    """Encryptor that loses the document"""

    async def input(self, data):
        return {}

    async def output(self, data):
        return dict(data)


def reversing_encryptor() -> JsonEncryptor:
    return JsonEncryptor(transform=lambda raw: raw[::-1], reverse=lambda raw: raw[::-1])


@pytest.fixture
def source(delegate):
    return EntityDataSource("users", delegate, User)


@pytest_asyncio.fixture
async def twelve_users(delegate):
    ids = [f"u{index:02d}" for index in range(12)]
    for id in ids:
        await delegate.create(f"users/{id}", {"name": id})
    delegate.calls.clear()
    return ids


class TestSourceValidation:

    @pytest.mark.asyncio
    async def test_empty_ids_short_circuit(self, source, delegate):
        assert (await source.get_by_id("")).status is Status.INVALID_ID
        assert (await source.check_by_id("")).status is Status.INVALID_ID
        assert (await source.create("", {"name": "x"})).status is Status.INVALID_ID
        assert (await source.update_by_id("", {"name": "x"})).status is Status.INVALID_ID
        assert (await source.delete_by_id("")).status is Status.INVALID_ID
        assert delegate.calls == []

    @pytest.mark.asyncio
    async def test_empty_payloads_are_invalid(self, source, delegate):
        assert (await source.create("u1", {})).status is Status.INVALID
        assert (await source.update_by_id("u1", {})).status is Status.INVALID
        assert (await source.get_by_ids([])).status is Status.INVALID
        assert (await source.creates([])).status is Status.INVALID
        assert (await source.search(Checker("", "x"))).status is Status.INVALID
        assert delegate.calls == []

    @pytest.mark.asyncio
    async def test_backend_errors_become_failure(self):
        source = EntityDataSource("users", FailingDelegate(), User)
        response = await source.get_by_id("u1")
        assert response.status is Status.FAILURE
        assert "backend unavailable" in response.error

        response = await source.create("u1", {"name": "Ann"})
        assert response.status is Status.FAILURE


class TestSourceReads:

    @pytest.mark.asyncio
    async def test_create_then_get(self, source):
        created = await source.create("u1", {"id": "u1", "name": "Ann", "age": 3})
        assert created.status is Status.OK
        assert created.data.name == "Ann"

        response = await source.get_by_id("u1")
        assert response.status is Status.OK
        assert isinstance(response.data, User)
        assert response.data.id == "u1"
        assert response.data.age == 3

    @pytest.mark.asyncio
    async def test_missing_document(self, source):
        assert (await source.get_by_id("nobody")).status is Status.NOT_FOUND
        assert (await source.check_by_id("nobody")).status is Status.NOT_FOUND
        assert (await source.get()).status is Status.NOT_FOUND

    @pytest.mark.asyncio
    async def test_many_ids_fetch_one_by_one(self, source, delegate, twelve_users):
        response = await source.get_by_ids(twelve_users)
        assert response.status is Status.OK
        assert len(response.result) == 12
        assert len(delegate.calls_to("get_by_id")) == 12
        assert delegate.calls_to("query") == []

    @pytest.mark.asyncio
    async def test_few_ids_use_one_query(self, source, delegate, twelve_users):
        response = await source.get_by_ids(twelve_users[:10])
        assert response.status is Status.OK
        assert len(response.result) == 10
        assert delegate.calls_to("query") == ["users"]
        assert delegate.calls_to("get_by_id") == []

    @pytest.mark.asyncio
    async def test_partial_fan_out_is_canceled(self, source, twelve_users):
        response = await source.get_by_ids(twelve_users[:11] + ["missing"])
        assert response.status is Status.CANCELED
        assert len(response.result) == 11

    @pytest.mark.asyncio
    async def test_collection_reads(self, source, delegate):
        for id, age in (("u1", 30), ("u2", 20), ("u3", 40)):
            await delegate.create(f"users/{id}", {"name": f"An{id}", "age": age})
        assert (await source.count()).data == 3
        assert len((await source.get()).result) == 3

        response = await source.get_by_query(queries=[where("age", is_greater_than=25)])
        assert sorted(user.id for user in response.result) == ["u1", "u3"]

        response = await source.search(Checker.contains("name", "Anu"))
        assert len(response.result) == 3
        assert (await source.search(Checker.equals("name", "Bob"))).status is Status.NOT_FOUND

    @pytest.mark.asyncio
    async def test_resolved_references_reach_entities(self, source, delegate):
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("users/u1", {"name": "Ann", "@org": "orgs/o1"})
        response = await source.get_by_id("u1", resolve_refs=True)
        assert response.data.org == {"id": "o1", "title": "Acme"}

    @pytest.mark.asyncio
    async def test_malformed_reference_and_count_still_read(self, source, delegate):
        await delegate.create("users/u1", {"name": "Ann", "@org": "orgs", "#posts": "users/u1"})
        response = await source.get_by_id("u1", resolve_refs=True, countable=True)
        assert response.status is Status.OK
        assert response.data.name == "Ann"
        assert response.data.org is None
        assert response.data.posts is None

        deleted = await source.delete_by_id("u1", delete_refs=True)
        assert deleted.status is Status.OK
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_parameterised_paths(self, delegate):
        posts = EntityDataSource("users/{uid}/posts", delegate, Post)
        params = DataFieldParams({"uid": "u1"})
        assert (await posts.create("p1", {"title": "Hello"}, params=params)).is_successful
        assert delegate.paths() == ["users/u1/posts/p1"]
        assert (await posts.get_by_id("p1", params=params)).data.title == "Hello"


class TestSourceWrites:

    @pytest.mark.asyncio
    async def test_creates_reports_partial_failure(self, source, delegate):
        response = await source.creates([DataWriter("u1", {"name": "Ann"}), DataWriter("", {"name": "x"})])
        assert response.status is Status.CANCELED
        assert [user.name for user in response.result] == ["Ann"]
        assert delegate.paths() == ["users/u1"]

    @pytest.mark.asyncio
    async def test_update_with_field_values(self, source, delegate):
        await delegate.create("users/u1", {"name": "Ann", "age": 1})
        response = await source.update_by_id("u1", {"age": DataFieldValue.increment(2)})
        assert response.status is Status.OK
        assert (await source.get_by_id("u1")).data.age == 3

    @pytest.mark.asyncio
    async def test_update_missing_document_fails(self, source):
        assert (await source.update_by_id("ghost", {"age": 1})).status is Status.FAILURE

    @pytest.mark.asyncio
    async def test_update_by_ids(self, source, delegate):
        await delegate.create("users/u1", {"age": 1})
        await delegate.create("users/u2", {"age": 1})
        response = await source.update_by_ids([DataWriter("u1", {"age": 5}), DataWriter("u2", {"age": 6})])
        assert response.status is Status.OK
        assert (await source.get_by_id("u2")).data.age == 6

    @pytest.mark.asyncio
    async def test_delete_returns_backup(self, source, delegate):
        await delegate.create("users/u1", {"name": "Ann"})
        response = await source.delete_by_id("u1")
        assert response.status is Status.OK
        assert [user.name for user in response.backups] == ["Ann"]
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_delete_missing(self, source):
        assert (await source.delete_by_id("ghost")).status is Status.NOT_FOUND

    @pytest.mark.asyncio
    async def test_truncated_cascade_is_canceled(self, delegate):
        source = EntityDataSource("users", delegate, User, limitations=DataLimitations(maximum_delete_limit=1))
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("users/u1", {"@org": "orgs/o1"})
        response = await source.delete_by_id("u1", delete_refs=True)
        assert response.status is Status.CANCELED
        assert response.snapshot.skipped == ["orgs/o1"]
        assert delegate.paths() == ["orgs/o1"]

    @pytest.mark.asyncio
    async def test_cascade_delete(self, source, delegate):
        await delegate.create("orgs/o1", {"title": "Acme"})
        await delegate.create("users/u1", {"@org": "orgs/o1"})
        response = await source.delete_by_id("u1", delete_refs=True)
        assert response.status is Status.OK
        assert response.snapshot.paths == ["orgs/o1", "users/u1"]
        assert response.backups[0].org == {"id": "o1", "title": "Acme"}

    @pytest.mark.asyncio
    async def test_clear(self, source, delegate):
        for id in ("u1", "u2", "u3"):
            await delegate.create(f"users/{id}", {"name": id})
        response = await source.clear()
        assert response.status is Status.OK
        assert sorted(user.id for user in response.backups) == ["u1", "u2", "u3"]
        assert len(delegate) == 0
        assert (await source.clear()).status is Status.NOT_FOUND


class TestSourceEncryption:

    @pytest.mark.asyncio
    async def test_documents_are_stored_encrypted(self, delegate):
        source = EntityDataSource("users", delegate, User, encryptor=reversing_encryptor())
        assert source.is_encryptor
        await source.create("u1", {"id": "u1", "name": "Ann"})

        stored = (await delegate.get_by_id("users/u1")).doc
        assert set(stored) == {"id", ENCRYPTED_FIELD}
        assert isinstance(stored[ENCRYPTED_FIELD], str)

        response = await source.get_by_id("u1")
        assert response.data.name == "Ann"

    @pytest.mark.asyncio
    async def test_update_re_encrypts_merged_document(self, delegate):
        source = EntityDataSource("users", delegate, User, encryptor=reversing_encryptor())
        await source.create("u1", {"id": "u1", "name": "Ann", "age": 1})
        assert (await source.update_by_id("u1", {"age": 5})).status is Status.OK

        response = await source.get_by_id("u1")
        assert response.data.name == "Ann"
        assert response.data.age == 5

    @pytest.mark.asyncio
    async def test_empty_encryption_result_is_an_error(self, delegate):
        source = EntityDataSource("users", delegate, User, encryptor=EmptyEncryptor())
        response = await source.create("u1", {"name": "Ann"})
        assert response.status is Status.ERROR
        assert response.error == ENCRYPTION_ERROR
        assert len(delegate) == 0

    @pytest.mark.asyncio
    async def test_empty_encryption_result_on_update_is_nullable(self, delegate):
        await delegate.create("users/u1", {"name": "Ann", "age": 1})
        source = EntityDataSource("users", delegate, User, encryptor=EmptyEncryptor())
        response = await source.update_by_id("u1", {"age": 2})
        assert response.status is Status.NULLABLE
        assert (await delegate.get_by_id("users/u1")).doc["age"] == 1


class TestSourceListeners:

    @pytest.mark.asyncio
    async def test_listen_by_id(self, source, delegate):
        async with aclosing(source.listen_by_id("u1")) as stream:
            assert (await stream.__anext__()).status is Status.NOT_FOUND
            await delegate.create("users/u1", {"name": "Ann"})
            response = await stream.__anext__()
            assert response.status is Status.OK
            assert response.data.name == "Ann"

    @pytest.mark.asyncio
    async def test_listen_by_id_without_id(self, source):
        async with aclosing(source.listen_by_id("")) as stream:
            assert (await stream.__anext__()).status is Status.INVALID_ID

    @pytest.mark.asyncio
    async def test_listen_by_ids_merges_streams_over_limit(self, delegate):
        source = EntityDataSource("users", delegate, User, limitations=DataLimitations(where_in=1))
        await delegate.create("users/u1", {"name": "Ann"})
        await delegate.create("users/u2", {"name": "Bob"})
        async with aclosing(source.listen_by_ids(["u1", "u2"])) as stream:
            await stream.__anext__()
            second = await stream.__anext__()
            assert sorted(user.id for user in second.result) == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_listen_by_ids_uses_query(self, source, delegate):
        await delegate.create("users/u1", {"name": "Ann"})
        async with aclosing(source.listen_by_ids(["u1", "u2"])) as stream:
            first = await stream.__anext__()
            assert [user.id for user in first.result] == ["u1"]
        assert delegate.calls_to("query") == ["users"]

    @pytest.mark.asyncio
    async def test_listen_collection(self, source, delegate):
        async with aclosing(source.listen()) as stream:
            assert (await stream.__anext__()).status is Status.NOT_FOUND
            await delegate.create("users/u1", {"name": "Ann"})
            assert [user.name for user in (await stream.__anext__()).result] == ["Ann"]

    @pytest.mark.asyncio
    async def test_listen_count(self, source, delegate):
        await delegate.create("users/u1", {"name": "Ann"})
        async with aclosing(source.listen_count(interval=0)) as stream:
            assert (await stream.__anext__()).data == 1

    @pytest.mark.asyncio
    async def test_stream_errors_become_failure(self):
        source = EntityDataSource("users", FailingDelegate(), User)
        async with aclosing(source.listen()) as stream:
            assert (await stream.__anext__()).status is Status.FAILURE
