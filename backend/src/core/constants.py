"""Application constants and protocol values for the ABDM integration."""

from core.config import FRONTEND_URL

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite)
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# ABDM mandatory headers
HEADER_REQUEST_ID = "REQUEST-ID"
HEADER_TIMESTAMP = "TIMESTAMP"
HEADER_CM_ID = "X-CM-ID"

# ABDM endpoints (relative to the environment base URL)
ENDPOINT_PUBLIC_KEY = "/v3/profile/public/certificate"
ENDPOINT_REQUEST_OTP = "/v3/enrollment/request/otp"
ENDPOINT_ENROL_BY_AADHAAR = "/v3/enrollment/enrol/byAadhaar"
ENDPOINT_AUTH_BY_ABDM = "/v3/enrollment/auth/byAbdm"
ENDPOINT_ENROL_BY_DOCUMENT = "/v3/enrollment/enrol/byDocument"
ENDPOINT_GENERATE_QR = "/v3/qr/generate"
ENDPOINT_GENERATE_CARD = "/v3/abha/card/generate"
ENDPOINT_LINK_BENEFIT = "/v3/benefit/{benefit_id}/link"
ENDPOINT_TOKEN_REFRESH = "/v3/profile/token/refresh"

# Token lifetimes
TOKEN_EXPIRY_SAFETY_MARGIN_SECONDS = 60  # Refresh one minute before upstream expiry
ACCESS_TOKEN_MIN_TTL_SECONDS = 60  # Floor for cached patient access tokens
PUBLIC_KEY_TTL_SECONDS = 5 * 60  # Gateway public key is re-fetched every 5 minutes
TIMESTAMP_MAX_DRIFT_SECONDS = 5 * 60  # Gateway rejects timestamps older than 5 minutes

# Patient token store
REFRESH_TOKEN_KEY_PREFIX = "abha_refresh_token"
ACCESS_TOKEN_KEY_PREFIX = "abha_access_token"
REDIS_RETRY_INTERVAL_SECONDS = 30  # Re-probe an unavailable fast store after this long

# Enrollment consent (ABDM terms version accepted by the patient)
ABHA_CONSENT_CODE = "abha-enrollment"
ABHA_CONSENT_VERSION = "1.4"
DRIVING_LICENCE_DOCUMENT_TYPE = "DRIVING_LICENCE"

# FHIR
ABHA_IDENTIFIER_SYSTEM = "urn:abdm:abha"

# Consent tokens
CONSENT_JWT_ALGORITHM = "RS256"
PURPOSES_OF_USE = ("TREATMENT", "EMERGENCY", "INSURANCE", "RESEARCH")
DEFAULT_CONSENT_DURATION_DAYS = 180

# Orchestrator retry (idempotent QR/card generation only)
IDEMPOTENT_RETRY_ATTEMPTS = 3
