"""
Root conftest.py — Shared fixtures for ALL tests (unit + pipeline + integration)

Fixture hierarchy:
  session-scoped  : rsa keys, test_jwks
  function-scoped : ids, make_token, fake stores / AI clients, orchestrator,
                    sample file bytes

Environment strategy:
  - DATABASE_URL points at in-memory aiosqlite; SQL store tests build their
    own engine with StaticPool and create the schema per test.
  - The pipeline runs on the inline transport with an in-memory run store.
  - JWT tokens are built with a test RSA key — no live auth provider needed.
  - AI providers are replaced by fakes (tests/fakes.py); no network calls.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m pipeline              # end-to-end stage runs
  pytest backend/tests/unit/test_chunking.py
"""

from __future__ import annotations

import base64
import io
import os
import time
import uuid

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any docintel imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AWS_REGION",            "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("S3_BUCKET",             "test-bucket")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("PIPELINE_TRANSPORT",    "inline")
os.environ.setdefault("AI_ENCRYPTION_KEY",     "test-encryption-secret")
os.environ.setdefault("APP_ENV",               "development")

os.environ.setdefault("AUTH_ISSUER",          "https://test.auth.example.com/")
os.environ.setdefault("AUTH_AUDIENCE",        "test-api-audience")
os.environ.setdefault("AUTH_CLAIM_NAMESPACE", "https://api.crm.example.com")

from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402

from tests.fakes import (  # noqa: E402
    FakeAIClients,
    FakeDocumentStore,
    FakeEmbeddingClient,
    FakeModelClient,
    FakeStorage,
)

TEST_KID      = "test-key-id-2024"
TEST_ISSUER   = "https://test.auth.example.com/"
TEST_AUDIENCE = "test-api-audience"

ORG_ID   = "aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"
USER_ID  = "user-bbbbbbbb"
OTHER_ORG_ID = "dddddddd-dddd-dddd-dddd-dddddddddddd"


# ─────────────────────────────────────────────────────────────────────────────
# RSA key pair for signing test JWTs (generated once per session)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> bytes:
    """PEM-encoded private key bytes (used by jose.jwt.encode)."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def test_jwks(rsa_private_key) -> dict:
    """What the provider's /.well-known/jwks.json would return."""
    numbers = rsa_private_key.public_key().public_numbers()

    def _b64url(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": TEST_KID,
                "n":   _b64url(numbers.n),
                "e":   _b64url(numbers.e),
            }
        ]
    }


# ─────────────────────────────────────────────────────────────────────────────
# Identity fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def org_id() -> str:
    return ORG_ID


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def make_token(rsa_private_key_pem):
    """
    Factory fixture: returns a function that builds signed test JWTs.

    Usage:
        token = make_token()
        token = make_token(claim_style="auth0")
        token = make_token(expired=True)
    """
    from jose import jwt as jose_jwt

    def _build(
        organization_id: str | None = ORG_ID,
        user_id:         str = USER_ID,
        expired:         bool = False,
        claim_style:     str = "cognito",
        audience:        str = TEST_AUDIENCE,
        issuer:          str = TEST_ISSUER,
        kid:             str = TEST_KID,
    ) -> str:
        now = int(time.time())
        claims: dict = {
            "sub":   user_id,
            "email": "user@crm.example.com",
            "iss":   issuer,
            "aud":   audience,
            "exp":   now - 60 if expired else now + 3600,
            "iat":   now,
        }
        if organization_id is not None:
            if claim_style == "cognito":
                claims["custom:organization_id"] = organization_id
            else:
                claims["https://api.crm.example.com/organization_id"] = organization_id

        return jose_jwt.encode(claims, rsa_private_key_pem, algorithm="RS256", headers={"kid": kid})

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def documents() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def model_client() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def embedding_client() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def ai_clients(model_client, embedding_client) -> FakeAIClients:
    return FakeAIClients(model=model_client, embedder=embedding_client)


@pytest.fixture
def pipeline(documents, storage, ai_clients):
    """
    A fully wired orchestrator on the inline transport.

    Returns (orchestrator, transport, services).
    """
    import docintel.pipeline  # noqa: F401  (registers functions)
    from docintel.events.orchestrator import Orchestrator
    from docintel.events.registry import registry
    from docintel.events.runs import MemoryRunStore
    from docintel.events.transports import InlineTransport
    from docintel.pipeline.services import PipelineServices
    from docintel.processing.analyzer import DocumentAnalyzer
    from docintel.rag.retriever import RetrievalEngine

    retrieval = RetrievalEngine(documents, ai_clients, ttl_seconds=300, max_orgs=3)
    services = PipelineServices(
        documents=documents,
        storage=storage,
        ai=ai_clients,
        retrieval=retrieval,
        analyzer=DocumentAnalyzer(ai_clients, retrieval),
        embedding_batch_size=50,
    )
    transport = InlineTransport()
    orchestrator = Orchestrator(registry, MemoryRunStore(), transport, services)
    return orchestrator, transport, services


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_docx_bytes() -> bytes:
    """A real DOCX built with python-docx."""
    import docx

    document = docx.Document()
    document.add_paragraph("Meeting notes for the quarterly review.")
    document.add_paragraph("Attendees: Alice, Bob.")
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def sample_txt_bytes() -> bytes:
    return b"This is a test document for the CRM pipeline.\nIt has multiple lines.\n"


@pytest.fixture
def new_uuid():
    return lambda: str(uuid.uuid4())
