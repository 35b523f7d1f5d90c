"""Prometheus Metrics - Observability for the document pipeline

Self-Explanatory: Counters and histograms for upload, retrieval, delete and crypto.
How: prometheus_client default registry, exported on /metrics.

Metrics Categories:
1. Pipeline: documents_uploaded, upload_failures, retrievals, deletes
2. Consistency: orphan_blobs (compensation failed), pending_deletes_purged
3. Security: encryption_operations, access_denied
"""

import time
from functools import wraps
from typing import Callable

import structlog
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

logger = structlog.get_logger()

# ============================================================================
# PIPELINE METRICS
# ============================================================================

documents_uploaded_total = Counter(
    "docvault_documents_uploaded_total",
    "Documents encrypted, stored and cataloged",
    ["mime_family"],
)

upload_failures_total = Counter(
    "docvault_upload_failures_total",
    "Uploads that ended in a failed state",
    ["reason", "state"],
)

documents_retrieved_total = Counter(
    "docvault_documents_retrieved_total",
    "Retrieval requests by outcome",
    ["outcome"],  # streamed, signed_url, not_found
)

documents_deleted_total = Counter(
    "docvault_documents_deleted_total",
    "Documents deleted",
)

upload_duration_seconds = Histogram(
    "docvault_upload_duration_seconds",
    "Time from receipt to catalog commit",
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60],
)

upload_size_bytes = Histogram(
    "docvault_upload_size_bytes",
    "Plaintext size of uploaded documents",
    buckets=[
        1024,
        100 * 1024,
        1024 * 1024,  # 1 MB
        10 * 1024 * 1024,  # 10 MB
        100 * 1024 * 1024,  # 100 MB
    ],
)

# ============================================================================
# CONSISTENCY METRICS
# ============================================================================

orphan_blobs_total = Counter(
    "docvault_orphan_blobs_total",
    "Blobs left without a catalog record after failed compensation",
)

pending_deletes_purged_total = Counter(
    "docvault_pending_deletes_purged_total",
    "Soft-deleted records finished by the sweeper",
)

# ============================================================================
# SECURITY METRICS
# ============================================================================

encryption_operations_total = Counter(
    "docvault_encryption_operations_total",
    "Total encryption/decryption operations",
    ["operation", "algorithm"],
)

access_denied_total = Counter(
    "docvault_access_denied_total",
    "Access gate denials",
    ["action", "role"],
)


def track_duration(histogram: Histogram) -> Callable:
    """Decorator observing the wall time of an async function"""

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                histogram.observe(time.time() - start)

        return wrapper

    return decorator


def get_metrics_text() -> bytes:
    """Prometheus exposition format for the default registry"""
    return generate_latest(REGISTRY)
