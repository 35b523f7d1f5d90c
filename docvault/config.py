"""DocVault Configuration - Environment-driven settings

Self-Explanatory: Every tunable lives here, read once at import.
How: os.getenv with development defaults (memory store, local master key, SQLite).
"""

import os

# Metadata catalog
DATABASE_URL = os.getenv("DOCVAULT_DATABASE_URL", "sqlite:///data/docvault.db")

# Object store
STORE_BACKEND = os.getenv("DOCVAULT_STORE_BACKEND", "memory")  # s3 | memory
BUCKET = os.getenv("DOCVAULT_BUCKET", "docvault-documents")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
S3_ENDPOINT_URL = os.getenv("DOCVAULT_S3_ENDPOINT_URL")  # MinIO / localstack
STORE_RETRIES = int(os.getenv("DOCVAULT_STORE_RETRIES", "4"))
STORE_BACKOFF_MAX = float(os.getenv("DOCVAULT_STORE_BACKOFF_MAX", "8"))
SIGNED_URL_TTL = int(os.getenv("DOCVAULT_SIGNED_URL_TTL", "3600"))  # 1 hour
CHUNK_SIZE = int(os.getenv("DOCVAULT_CHUNK_SIZE", str(1024 * 1024)))

# Key management
KMS_KEY_ID = os.getenv("DOCVAULT_KMS_KEY_ID")  # unset -> local master key
MASTER_KEY = os.getenv("DOCVAULT_MASTER_KEY")  # urlsafe base64, 32 bytes

# Auth
JWT_SECRET = os.getenv("DOCVAULT_JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("DOCVAULT_JWT_ALGORITHM", "HS256")

# Audit
AUDIT_KEY = os.getenv("DOCVAULT_AUDIT_KEY", "docvault-audit-dev-key").encode()
