"""Integration Tests for Audit Logging - entries written by the pipeline, signatures verify"""
import pytest

from docvault.documents.upload import UploadRequest
from docvault.errors import NotFound


@pytest.mark.asyncio
async def test_audit_on_upload_retrieve_delete(services, admin, client_c1):
    doc = await services.uploads.upload(
        admin, UploadRequest(owner_id="c1", month="07", year="2023", filename="a.txt", data=b"hi")
    )
    assert await services.retrieval.read(client_c1, doc["id"]) == b"hi"
    await services.deletion.delete(admin, doc["id"])

    entries = services.audit.entries(doc["id"])
    assert [(e["user_id"], e["action"]) for e in entries] == [
        ("admin1", "upload"),
        ("c1", "retrieve"),
        ("admin1", "delete"),
    ]
    assert all(services.audit.verify(e) for e in entries)
    assert "cipher_key" not in str(entries)


@pytest.mark.asyncio
async def test_audit_records_denied_reads(services, admin, client_c2):
    doc = await services.uploads.upload(
        admin, UploadRequest(owner_id="c1", month="07", year="2023", filename="a.txt", data=b"hi")
    )
    with pytest.raises(NotFound):
        await services.retrieval.read(client_c2, doc["id"])
    actions = [e["action"] for e in services.audit.entries(doc["id"])]
    assert actions == ["upload", "read_denied"]


def test_tampered_entry_fails_verification(services):
    services.audit.log("admin1", "delete", "d1", {"purged": True})
    entry = services.audit.entries("d1")[0]
    assert services.audit.verify(entry)
    entry["action"] = "retrieve"
    assert not services.audit.verify(entry)
