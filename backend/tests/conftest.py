"""
Test configuration and shared fixtures for the ABDM integration test suite.

Uses an in-memory SQLite database; every test gets freshly created tables.
Configuration is set in the environment before any application module is
imported, so module-level settings pick up the test values.
"""

import base64
import os
from typing import Generator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

# Test keys (generated once per session, before application imports)
_CONSENT_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4  # 64 hex characters

TEST_CONSENT_PRIVATE_KEY_PEM = _CONSENT_PRIVATE_KEY.private_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PrivateFormat.PKCS8,
    encryption_algorithm=serialization.NoEncryption(),
).decode("utf-8")

TEST_CONSENT_PUBLIC_KEY_PEM = _CONSENT_PRIVATE_KEY.public_key().public_bytes(
    encoding=serialization.Encoding.PEM,
    format=serialization.PublicFormat.SubjectPublicKeyInfo,
).decode("utf-8")

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["CONSENT_JWT_PRIVATE_KEY"] = TEST_CONSENT_PRIVATE_KEY_PEM
os.environ["CONSENT_JWT_PUBLIC_KEY"] = TEST_CONSENT_PUBLIC_KEY_PEM
os.environ.setdefault("ABHA_CLIENT_ID", "test-client")
os.environ.setdefault("ABHA_CLIENT_SECRET", "test-secret")
os.environ.pop("FHIR_BASE_URL", None)

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.database import Base  # noqa: E402

# Import all models to ensure they're registered with SQLAlchemy before create_all
from models.consent_token import ConsentToken  # noqa: E402,F401
from models.patient_abha_link import PatientAbhaLink  # noqa: E402,F401


@pytest.fixture(scope="session")
def db_engine():
    """
    Create a database engine for the test session.

    A single in-memory connection (StaticPool) is shared across threads so
    the FastAPI TestClient sees the same database as the test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Provide a database session on freshly created tables."""
    Base.metadata.create_all(bind=db_engine)
    TestSession = sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)
    session = TestSession()

    yield session

    session.close()
    Base.metadata.drop_all(bind=db_engine)


@pytest.fixture(scope="session")
def gateway_private_key() -> rsa.RSAPrivateKey:
    """RSA key pair standing in for the ABDM gateway's certificate."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def gateway_public_key_base64(gateway_private_key) -> str:
    """Gateway public key as the certificate endpoint returns it (bare base64 DER)."""
    der = gateway_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("utf-8")


@pytest.fixture(scope="session")
def gateway_public_key_pem(gateway_private_key) -> str:
    return gateway_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("utf-8")


@pytest.fixture
def sample_profile():
    """ABHAProfile as returned by a completed Aadhaar enrollment."""
    return {
        "ABHANumber": "12-3456-7890-1234",
        "preferredAbhaAddress": "ravi.kumar@sbx",
        "firstName": "Ravi",
        "lastName": "Kumar",
        "abhaStatus": "ACTIVE",
    }
