"""Tests for the Retrieval Orchestrator - gate, streaming decrypt, listing, signed URLs"""
import os

import pytest

from docvault.catalog.models import DocumentFilters
from docvault.documents.retrieval import RetrievalOrchestrator
from docvault.documents.upload import UploadRequest
from docvault.errors import CodecError, Forbidden, NotFound, Unauthorized, to_response_body


async def upload(services, admin, owner="c1", name="a.txt", data=b"hello", month="07", year="2023"):
    return await services.uploads.upload(
        admin, UploadRequest(owner_id=owner, month=month, year=year, filename=name, data=data)
    )


@pytest.mark.asyncio
async def test_owner_and_admin_can_read(services, admin, client_c1):
    doc = await upload(services, admin)
    assert await services.retrieval.read(client_c1, doc["id"]) == b"hello"
    assert await services.retrieval.read(admin, doc["id"]) == b"hello"


@pytest.mark.asyncio
async def test_non_owner_gets_same_error_shape_as_missing(services, admin, client_c2):
    doc = await upload(services, admin, owner="c1")

    with pytest.raises(NotFound) as denied:
        await services.retrieval.read(client_c2, doc["id"])
    with pytest.raises(NotFound) as missing:
        await services.retrieval.read(client_c2, "does-not-exist")

    assert isinstance(denied.value, Unauthorized)
    assert denied.value.status_code == missing.value.status_code == 404
    assert to_response_body(denied.value) == to_response_body(missing.value)


@pytest.mark.asyncio
async def test_large_document_streams_in_chunks(services, store, key_manager, admin):
    data = os.urandom(300_000)
    doc = await upload(services, admin, data=data)

    retrieval = RetrievalOrchestrator(store, services.catalog, key_manager, chunk_size=64 * 1024)
    stream = await retrieval.open(admin, doc["id"])
    chunks = list(stream.chunks)
    assert len(chunks) > 1
    assert max(len(c) for c in chunks) <= 64 * 1024
    assert b"".join(chunks) == data
    assert stream.record.original_name == "a.txt"


@pytest.mark.asyncio
async def test_tampered_blob_raises_codec_error(services, store, admin, client_c1):
    doc = await upload(services, admin)
    record = services.catalog.find_by_id(doc["id"])
    blob = bytearray(store.get(record.storage_key))
    blob[0] ^= 0x80
    store.put(record.storage_key, bytes(blob), "text/plain")

    with pytest.raises(CodecError):
        await services.retrieval.read(client_c1, doc["id"])


@pytest.mark.asyncio
async def test_blob_deleted_underneath_is_not_found(services, store, admin):
    doc = await upload(services, admin)
    store.delete(services.catalog.find_by_id(doc["id"]).storage_key)
    with pytest.raises(NotFound):
        await services.retrieval.read(admin, doc["id"])


@pytest.mark.asyncio
async def test_client_listing_is_scoped_to_self(services, admin, client_c1):
    await upload(services, admin, owner="c1", name="mine.pdf")
    await upload(services, admin, owner="c2", name="theirs.pdf")

    records = await services.retrieval.list(client_c1, owner_id="c2")
    assert [r.original_name for r in records] == ["mine.pdf"]


@pytest.mark.asyncio
async def test_admin_listing_all_or_by_owner(services, admin):
    await upload(services, admin, owner="c1", name="one.pdf", year="2023")
    await upload(services, admin, owner="c2", name="two.pdf", year="2023")
    await upload(services, admin, owner="c1", name="three.pdf", year="2022")

    assert len(await services.retrieval.list(admin)) == 3
    by_owner = await services.retrieval.list(admin, DocumentFilters(year="2023"), owner_id="c1")
    assert [r.original_name for r in by_owner] == ["one.pdf"]


@pytest.mark.asyncio
async def test_signed_url_admin_only(services, admin, client_c1, client_c2):
    doc = await upload(services, admin)
    result = await services.retrieval.signed_url(admin, doc["id"], ttl=600)
    assert result["expires_in"] == 600
    assert result["url"].startswith("memory://c1/2023/07/")

    with pytest.raises(Forbidden):
        await services.retrieval.signed_url(client_c1, doc["id"])
    with pytest.raises(NotFound):
        await services.retrieval.signed_url(client_c2, doc["id"])
