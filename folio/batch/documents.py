"""Read access to the site's data files, plus the single-file content edit."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List

from ..auth.guard import CONTENT_EDIT, ensure_role
from ..auth.models import SessionUser
from ..github.provider import ContentProvider, to_json_text
from ..utils.exceptions import NotFoundError, UpstreamError, ValidationError
from ..utils.logger import get_logger
from ..utils.timestamps import to_iso, utc_now
from .models import CONTENT_PATH, ITEM_COLLECTIONS
from .mutators import overlay_content

logger = get_logger(__name__)


class DocumentService:
    def __init__(self, provider: ContentProvider, now: Callable[[], datetime] = utc_now):
        self.provider = provider
        self.now = now

    def get_content(self) -> Dict[str, Any]:
        data = self.provider.read_json(CONTENT_PATH, {})
        if not isinstance(data, dict):
            raise UpstreamError("Stored content document has an unexpected shape", reason="corrupt_document")
        return data

    def put_content(self, patch: Dict[str, Any], acting: SessionUser) -> Dict[str, Any]:
        """Overlay ``patch`` onto the stored document and commit it alone."""
        ensure_role(acting, CONTENT_EDIT)
        if not isinstance(patch, dict):
            raise ValidationError("Content must be a JSON object")
        merged = overlay_content(self.get_content(), patch, self.now())
        self.provider.write_file(
            CONTENT_PATH,
            to_json_text(merged),
            f"Update content via admin panel - {merged['updatedAt']}",
        )
        logger.info("Content updated", by=acting.username, keys=sorted(patch))
        return merged

    def list_collection(self, name: str) -> List[Dict[str, Any]]:
        spec = ITEM_COLLECTIONS.get(name)
        if spec is None:
            raise NotFoundError(f"Unknown collection: {name}", reason="unknown_collection")
        data = self.provider.read_json(spec.path, [])
        if not isinstance(data, list):
            raise UpstreamError(f"Stored document {spec.path} has an unexpected shape", reason="corrupt_document")
        return data
