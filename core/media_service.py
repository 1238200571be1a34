# Media reference resolution
# Deliverable content lives in the media pipeline; the engine only stores opaque references.

from typing import Optional

from config import app_config


def resolve_media_url(content_ref: Optional[str]) -> Optional[str]:
    """
    Turn a stored media reference into a URL the client can load.

    Absolute http(s) references pass through untouched; storage keys are served
    from MEDIA_BASE_URL.
    """
    if not content_ref:
        return None
    if content_ref.startswith(("http://", "https://")):
        return content_ref
    return f"{app_config.MEDIA_BASE_URL.rstrip('/')}/{content_ref.lstrip('/')}"
