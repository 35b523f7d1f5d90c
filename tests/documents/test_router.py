"""HTTP Tests for the documents API - TestClient against an app with injected services"""
import pytest
from fastapi.testclient import TestClient

from docvault.governance.auth import issue_token
from docvault.main import create_app


def auth(user_id, role):
    return {"Authorization": f"Bearer {issue_token(user_id, role)}"}


ADMIN = auth("admin1", "admin")
C1 = auth("c1", "client")
C2 = auth("c2", "client")


@pytest.fixture
def client(services):
    with TestClient(create_app(services, run_sweeper=False)) as client:
        yield client


def upload(client, owner="c1", name="report.pdf", data=b"%PDF-1.4 body", month="07", year="2023"):
    return client.post(
        "/documents",
        files={"file": (name, data, "application/pdf")},
        data={"owner_id": owner, "month": month, "year": year},
        headers=ADMIN,
    )


def test_upload_download_delete(client):
    response = upload(client)
    assert response.status_code == 200
    body = response.json()
    assert set(body) == {"id", "name", "type", "size", "uploaded_at"}
    assert body["size"] == len(b"%PDF-1.4 body")

    download = client.get(f"/documents/{body['id']}", headers=C1)
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 body"
    assert download.headers["content-type"].startswith("application/pdf")
    assert "report.pdf" in download.headers["content-disposition"]

    assert client.delete(f"/documents/{body['id']}", headers=ADMIN).json() == {"success": True}
    assert client.delete(f"/documents/{body['id']}", headers=ADMIN).status_code == 404


def test_upload_response_hides_key_material(client, services):
    body = upload(client).json()
    record = services.catalog.find_by_id(body["id"])
    text = str(body)
    assert record.cipher_key not in text
    assert record.storage_key not in text
    assert record.iv not in text


def test_missing_field_is_400(client):
    response = client.post(
        "/documents",
        files={"file": ("a.pdf", b"x", "application/pdf")},
        data={"owner_id": "c1", "month": "07"},
        headers=ADMIN,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_non_owner_and_missing_are_indistinguishable(client):
    doc_id = upload(client, owner="c1").json()["id"]
    denied = client.get(f"/documents/{doc_id}", headers=C2)
    missing = client.get("/documents/0123456789abcdef0123456789abcdef", headers=C2)
    assert denied.status_code == missing.status_code == 404
    assert denied.json() == missing.json()


def test_auth_required(client):
    assert client.get("/documents").status_code == 401
    assert client.get("/documents", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_clients_cannot_upload_or_delete(client):
    response = client.post(
        "/documents",
        files={"file": ("a.pdf", b"x", "application/pdf")},
        data={"owner_id": "c1", "month": "07", "year": "2023"},
        headers=C1,
    )
    assert response.status_code == 403
    doc_id = upload(client).json()["id"]
    assert client.delete(f"/documents/{doc_id}", headers=C1).status_code == 403


def test_list_filters_and_scope(client):
    upload(client, owner="c1", name="Tax-2023.pdf", year="2023")
    upload(client, owner="c1", name="rent.pdf", year="2023")
    upload(client, owner="c1", name="tax-2022.pdf", year="2022")
    upload(client, owner="c2", name="tax-other.pdf", year="2023")

    mine = client.get("/documents", params={"year": "2023", "search": "tax"}, headers=C1).json()
    assert [d["name"] for d in mine] == ["Tax-2023.pdf"]

    everything = client.get("/documents", headers=ADMIN).json()
    assert len(everything) == 4
    assert {d["owner_id"] for d in everything} == {"c1", "c2"}
    assert all("cipher_key" not in d and "storage_key" not in d for d in everything)


def test_signed_url(client):
    doc_id = upload(client).json()["id"]
    response = client.get(f"/documents/{doc_id}/url", params={"ttl": 120}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["expires_in"] == 120
    assert client.get(f"/documents/{doc_id}/url", headers=C1).status_code == 403


def test_store_outage_is_503(client, store):
    store.fail_put = True
    response = upload(client)
    assert response.status_code == 503
    assert response.json()["error"] == "store_unavailable"


def test_health_and_metrics(client):
    assert client.get("/health/live").json()["status"] == "healthy"
    ready = client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json()["checks"]["catalog"]["status"] == "healthy"
    upload(client)
    assert b"docvault_documents_uploaded_total" in client.get("/metrics").content


def test_shutdown_stops_sweeper(services):
    app = create_app(services, run_sweeper=True)
    with TestClient(app) as client:
        assert client.get("/health/live").status_code == 200
        assert not app.state.sweeper.done()
    assert app.state.sweeper.cancelled()
