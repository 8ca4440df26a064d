"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the application.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or any("pytest" in str(frame) for frame in __import__('inspect').stack(0))

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    # Try multiple possible locations for .env file
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # .env (when run from src)
        pathlib.Path.cwd() / ".env",  # .env in current directory
        pathlib.Path.cwd().parent / ".env",  # .env in parent directory
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _read_pem(name: str) -> str:
    """Read a PEM value from the environment, accepting escaped newlines."""
    return os.getenv(name, "").replace("\\n", "\n").strip()


def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/niraiva_dev"
    )

DATABASE_URL = get_database_url()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# ABDM gateway
ABHA_ENV = os.getenv("ABHA_ENV", os.getenv("ABHA_X_CM_ID", "sbx"))
ABHA_SANDBOX_BASE_URL = os.getenv("ABHA_SANDBOX_BASE_URL", "https://abhasbx.abdm.gov.in/abha/api")
ABHA_PRODUCTION_BASE_URL = os.getenv("ABHA_PRODUCTION_BASE_URL", "https://apis.abdm.gov.in/abha/api")
ABHA_SESSION_URL = os.getenv("ABHA_SESSION_URL", "https://dev.abdm.gov.in/api/hiecm/gateway/v3/sessions")
ABHA_CLIENT_ID = os.getenv("ABHA_CLIENT_ID", "")
ABHA_CLIENT_SECRET = os.getenv("ABHA_CLIENT_SECRET", "")
ABHA_HTTP_TIMEOUT_SECONDS = float(os.getenv("ABHA_HTTP_TIMEOUT_SECONDS", "20"))

# At-rest encryption for patient refresh tokens (64 hex characters = 32 bytes)
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "")

# Fast token store
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379")

# Consent tokens (RS256)
CONSENT_JWT_PRIVATE_KEY = _read_pem("CONSENT_JWT_PRIVATE_KEY")
CONSENT_JWT_PUBLIC_KEY = _read_pem("CONSENT_JWT_PUBLIC_KEY")
CONSENT_JWT_ISSUER = os.getenv("CONSENT_JWT_ISSUER", "niraiva-consent-service")

# FHIR server
FHIR_BASE_URL = os.getenv("FHIR_BASE_URL", "")
