"""
Cache key derivation.
"""
import hashlib
import json
from typing import Optional

from .core import RequestDescriptor

DEFAULT_NAMESPACE = "stale-fetcher:v1"


def canonical_request(request: RequestDescriptor) -> str:
    """
    Serialize the parts of a request that identify it.

    Header names are case-insensitive so they are lower-cased;
    params with a None value are dropped.
    """
    if not isinstance(request.url, str) or not request.url:
        raise ValueError(f"Request URL must be a non-empty string, got {request.url!r}")

    headers = {str(k).lower(): v for k, v in request.headers.items()}
    params = {k: v for k, v in request.params.items() if v is not None}
    return json.dumps(
        {"url": request.url, "headers": headers, "params": params},
        sort_keys=True,
        separators=(",", ":"),
    )


def derive_cache_key(
    request: RequestDescriptor,
    namespace: str = DEFAULT_NAMESPACE,
    instance_id: Optional[str] = None,
) -> str:
    """
    Derive a stable cache key for a request.

    Args:
        request: The request to key
        namespace: Prefix shared by every key of one deployment
        instance_id: When given, keys are private to one fetcher instance

    Returns:
        "<namespace>:<sha256>" or "<namespace>:<instance_id>:<sha256>"

    Raises:
        ValueError: If the URL is empty or not a string
        TypeError: If headers or params are not JSON serializable
    """
    digest = hashlib.sha256(canonical_request(request).encode()).hexdigest()
    if instance_id:
        return f"{namespace}:{instance_id}:{digest}"
    return f"{namespace}:{digest}"
