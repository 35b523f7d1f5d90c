"""Tests for document deletion - idempotent NotFound, deferred purge, sweeper"""
import asyncio

import pytest

from docvault.documents.upload import UploadRequest
from docvault.errors import CatalogUnavailable, Forbidden, NotFound, Unauthorized


async def upload(services, admin, owner="c1"):
    return await services.uploads.upload(
        admin, UploadRequest(owner_id=owner, month="07", year="2023", filename="a.txt", data=b"x")
    )


@pytest.mark.asyncio
async def test_delete_twice(services, store, admin):
    doc = await upload(services, admin)
    await services.deletion.delete(admin, doc["id"])
    assert store.keys() == []
    assert services.catalog.pending_deletes() == []

    with pytest.raises(NotFound):
        await services.deletion.delete(admin, doc["id"])


@pytest.mark.asyncio
async def test_clients_cannot_delete(services, store, admin, client_c1, client_c2):
    doc = await upload(services, admin, owner="c1")
    with pytest.raises(Forbidden):
        await services.deletion.delete(client_c1, doc["id"])
    with pytest.raises(Unauthorized):
        await services.deletion.delete(client_c2, doc["id"])
    assert len(store.keys()) == 1


@pytest.mark.asyncio
async def test_missing_blob_still_removes_record(services, store, admin):
    doc = await upload(services, admin)
    store.delete(services.catalog.find_by_id(doc["id"]).storage_key)
    await services.deletion.delete(admin, doc["id"])
    assert services.catalog.find_all() == []
    assert services.catalog.pending_deletes() == []


@pytest.mark.asyncio
async def test_store_outage_defers_purge_to_sweeper(services, store, admin, client_c1):
    doc = await upload(services, admin)
    store.fail_delete = True
    await services.deletion.delete(admin, doc["id"])

    # Invisible to callers right away, but the blob and the row remain
    with pytest.raises(NotFound):
        await services.retrieval.read(client_c1, doc["id"])
    assert len(store.keys()) == 1
    assert [r.id for r in services.catalog.pending_deletes()] == [doc["id"]]

    assert await services.deletion.purge_pending() == 0

    store.fail_delete = False
    assert await services.deletion.purge_pending() == 1
    assert store.keys() == []
    assert services.catalog.pending_deletes() == []


@pytest.mark.asyncio
async def test_catalog_outage_after_blob_delete_still_succeeds(services, store, admin, mocker):
    doc = await upload(services, admin)
    remove_row = mocker.patch.object(services.catalog, "delete", side_effect=CatalogUnavailable("db down"))
    await services.deletion.delete(admin, doc["id"])

    assert store.keys() == []
    with pytest.raises(NotFound):
        services.catalog.find_by_id(doc["id"])
    assert [r.id for r in services.catalog.pending_deletes()] == [doc["id"]]

    mocker.stop(remove_row)
    assert await services.deletion.purge_pending() == 1
    assert services.catalog.pending_deletes() == []


@pytest.mark.asyncio
async def test_sweeper_survives_unexpected_errors(services, mocker):
    sweep = mocker.patch.object(
        services.deletion, "purge_pending",
        side_effect=[RuntimeError("boom"), 0, asyncio.CancelledError()],
    )
    with pytest.raises(asyncio.CancelledError):
        await services.deletion.sweeper(interval=0)
    assert sweep.call_count == 3
