"""Local file storage for profile photos."""

import logging
import uuid
from pathlib import Path
from typing import Optional

from ..config import settings

logger = logging.getLogger("thrive.storage")

PUBLIC_PREFIX = "/uploads"

PHOTO_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def sniff_image_type(payload: bytes) -> Optional[str]:
    """Return the content type implied by the file signature, if known."""
    if payload[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if payload[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if payload[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if payload[:4] == b"RIFF" and payload[8:12] == b"WEBP":
        return "image/webp"
    return None


class PhotoStorage:
    def __init__(self, root: Path = None):
        self.root = Path(root or settings.UPLOAD_DIR)

    def _dir(self) -> Path:
        d = self.root / "profile-photos"
        d.mkdir(parents=True, exist_ok=True)
        return d

    def save(self, user_id: str, payload: bytes, content_type: str) -> str:
        """Write the photo and return its public URL path."""
        name = f"{user_id}-{uuid.uuid4().hex[:12]}{PHOTO_TYPES[content_type]}"
        (self._dir() / name).write_bytes(payload)
        logger.info("stored profile photo %s (%d bytes)", name, len(payload))
        return f"{PUBLIC_PREFIX}/profile-photos/{name}"

    def delete(self, url: Optional[str]) -> None:
        if not url or not url.startswith(f"{PUBLIC_PREFIX}/profile-photos/"):
            return
        path = self._dir() / Path(url).name
        if path.exists():
            path.unlink()
            logger.info("deleted profile photo %s", path.name)
