# tests/test_objects_api.py
"""
Tests for the HTTP surface: upload, retrieve, quote and discovery.
Payments are disabled here; see test_payment_middleware.py for the gate.
"""
import hashlib
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from unhash.core.config import Settings
from unhash.main import create_app
from unhash.payments.channel import derive_shared_secret
from unhash.storage.ingest import IngestionError, temp_dir_for

EMPTY_DIGEST = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
TOKEN = "abcdefghijklmnop0123"


def make_client(tmp_path, **overrides) -> TestClient:
    values = {
        "UNHASH_DATA_DIR": tmp_path,
        "UNHASH_PAYMENT_CREDENTIALS": {"secret": "test-secret"},
        "UNHASH_USD_PER_GB_MONTH": Decimal("0.75"),
        "X402_ENABLED": False,
        "X402_NETWORK": "base-sepolia",
        "X402_PAY_TO_ADDRESS": "0xpayee",
    }
    values.update(overrides)
    return TestClient(create_app(Settings(**values)))


def stored_files(data_dir):
    return [
        p for p in data_dir.rglob("*")
        if p.is_file() and temp_dir_for(data_dir) not in p.parents
    ]


class TestUpload:
    """Test POST /upload."""

    def test_new_object_returns_201(self, tmp_path):
        client = make_client(tmp_path)
        response = client.post("/upload", content=b"hello world")

        digest = hashlib.sha256(b"hello world").hexdigest()
        assert response.status_code == 201
        assert response.json() == {"digest": digest}
        assert (tmp_path / digest[:2] / digest).read_bytes() == b"hello world"

    def test_duplicate_returns_200(self, tmp_path):
        """Re-uploading the same bytes is idempotent."""
        client = make_client(tmp_path)
        first = client.post("/upload", content=b"same bytes")
        second = client.post("/upload", content=b"same bytes")

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["digest"] == first.json()["digest"]
        assert len(stored_files(tmp_path)) == 1

    def test_empty_object(self, tmp_path):
        client = make_client(tmp_path)
        first = client.post("/upload", content=b"")
        second = client.post("/upload", content=b"")

        assert first.status_code == 201
        assert first.json()["digest"] == EMPTY_DIGEST
        assert second.status_code == 200
        assert second.json()["digest"] == EMPTY_DIGEST

    def test_binary_content(self, tmp_path):
        client = make_client(tmp_path)
        data = bytes(range(256)) * 1000
        response = client.post("/upload", content=data)

        assert response.status_code == 201
        assert client.get(f"/{response.json()['digest']}").content == data

    def test_chunked_upload_over_default_size(self, tmp_path):
        """Without Content-Length the default quote size caps the body."""
        client = make_client(tmp_path, UNHASH_DEFAULT_QUOTE_SIZE=4)
        response = client.post("/upload", content=iter([b"123", b"456"]))

        assert response.status_code == 413
        assert stored_files(tmp_path) == []

    def test_ingestion_failure_returns_500(self, tmp_path):
        client = make_client(tmp_path)
        with patch(
            "unhash.api.endpoints.objects.ingest_stream",
            new=AsyncMock(side_effect=IngestionError("client disconnected")),
        ):
            response = client.post("/upload", content=b"data")

        assert response.status_code == 500
        assert response.json()["detail"] == "Ingestion failed"
        assert stored_files(tmp_path) == []

    def test_commit_failure_returns_500(self, tmp_path):
        client = make_client(tmp_path)
        with patch("unhash.storage.store.os.replace", side_effect=OSError("No space left on device")):
            response = client.post("/upload", content=b"data")

        assert response.status_code == 500
        assert response.json()["detail"] == "Storage failure"
        assert stored_files(tmp_path) == []
        assert list(temp_dir_for(tmp_path).iterdir()) == []


class TestRootUpload:
    """Test POST / toggled by UNHASH_ROOT_UPLOAD_ENABLED."""

    def test_enabled(self, tmp_path):
        client = make_client(tmp_path, UNHASH_ROOT_UPLOAD_ENABLED=True)
        response = client.post("/", content=b"root upload")
        assert response.status_code == 201
        assert response.json()["digest"] == hashlib.sha256(b"root upload").hexdigest()

    def test_disabled(self, tmp_path):
        client = make_client(tmp_path, UNHASH_ROOT_UPLOAD_ENABLED=False)
        response = client.post("/", content=b"root upload")
        assert response.status_code == 405
        assert stored_files(tmp_path) == []


class TestRetrieve:
    """Test GET /{digest}."""

    def test_round_trip(self, tmp_path):
        client = make_client(tmp_path)
        digest = client.post("/upload", content=b"payload").json()["digest"]

        response = client.get(f"/{digest}")
        assert response.status_code == 200
        assert response.content == b"payload"
        assert response.headers["content-type"] == "application/octet-stream"

    def test_uppercase_digest(self, tmp_path):
        client = make_client(tmp_path)
        digest = client.post("/upload", content=b"payload").json()["digest"]

        response = client.get(f"/{digest.upper()}")
        assert response.status_code == 200
        assert response.content == b"payload"

    def test_unknown_digest(self, tmp_path):
        client = make_client(tmp_path)
        response = client.get(f"/{EMPTY_DIGEST}")
        assert response.status_code == 404
        assert response.content == b""

    @pytest.mark.parametrize("identifier", ["nothex", "upload", EMPTY_DIGEST[:-1], EMPTY_DIGEST + "00", "z" * 64])
    def test_malformed_identifier_is_not_found(self, tmp_path, identifier):
        """Malformed identifiers look exactly like missing objects."""
        client = make_client(tmp_path)
        response = client.get(f"/{identifier}")
        assert response.status_code == 404
        assert response.content == b""


class TestQuote:
    """Test OPTIONS /upload."""

    def test_declared_size(self, tmp_path):
        """round((1024 + 0) * 0.00075) = 1."""
        client = make_client(tmp_path)
        response = client.options("/upload", headers={"Upload-Length": "0", "Pay-Token": TOKEN})

        assert response.status_code == 204
        assert response.headers["Upload-Length"] == "0"
        price, destination, shared_secret = response.headers["Pay"].split(" ")
        assert price == "1"
        assert destination == "base-sepolia:0xpayee"
        assert shared_secret == derive_shared_secret(b"test-secret", TOKEN)
        assert response.headers["Pay-Token"] == TOKEN

    def test_default_size(self, tmp_path):
        """Missing size is priced at the default and echoed back."""
        client = make_client(tmp_path, UNHASH_DEFAULT_QUOTE_SIZE=1_000_000_000)
        response = client.options("/upload")

        assert response.status_code == 204
        assert response.headers["Upload-Length"] == "1000000000"
        price = int(response.headers["Pay"].split(" ")[0])
        assert price == round((1024 + 1_000_000_000) * 0.00075)

    def test_new_token_issued(self, tmp_path):
        client = make_client(tmp_path)
        response = client.options("/upload", headers={"Upload-Length": "10"})
        assert len(response.headers["Pay-Token"]) >= 16
        assert "Pay-Balance" not in response.headers

    def test_invalid_size(self, tmp_path):
        client = make_client(tmp_path)
        assert client.options("/upload", headers={"Upload-Length": "-5"}).status_code == 422
        assert client.options("/upload", headers={"Upload-Length": "lots"}).status_code == 422

    def test_reports_balance(self, tmp_path):
        client = make_client(tmp_path, UNHASH_EXPOSE_BALANCE=True)
        client.app.state.ledger.credit(TOKEN, 42)

        response = client.options("/upload", headers={"Upload-Length": "10", "Pay-Token": TOKEN})
        assert response.headers["Pay-Balance"] == "42"

    def test_balance_hidden_when_disabled(self, tmp_path):
        client = make_client(tmp_path, UNHASH_EXPOSE_BALANCE=False)
        client.app.state.ledger.credit(TOKEN, 42)

        response = client.options("/upload", headers={"Upload-Length": "10", "Pay-Token": TOKEN})
        assert "Pay-Balance" not in response.headers

    def test_no_storage_side_effects(self, tmp_path):
        client = make_client(tmp_path)
        client.options("/upload", headers={"Upload-Length": "10"})
        assert list(tmp_path.iterdir()) == []


class TestDiscoveryAndBanner:
    """Test the well-known document and the root banner."""

    def test_well_known(self, tmp_path):
        client = make_client(tmp_path, UNHASH_PUBLIC_URI="https://unhash.example.com")
        response = client.get("/.well-known/unhash.json")

        assert response.status_code == 200
        assert response.json() == {"upload": "https://unhash.example.com/upload"}

    def test_banner(self, tmp_path):
        client = make_client(tmp_path)
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
