"""
Directory Share Facility

Stands in for an OS share sheet on desktop: "sharing" a file drops a copy
into an outbox directory that the user (or a sync tool) picks up.
"""

from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import structlog

from budget_tracker.config import get_settings
from budget_tracker.services.platform.interface import FacilityError, ShareFacility


logger = structlog.get_logger(__name__)


class DirectoryShareFacility(ShareFacility):
    """Copies shared files into an outbox directory."""

    def __init__(self, outbox_dir: Optional[Path] = None):
        self._outbox = Path(outbox_dir or get_settings().backup.share_outbox_dir)

    @property
    def outbox_dir(self) -> Path:
        return self._outbox

    async def is_available(self) -> bool:
        try:
            await aiofiles.os.makedirs(self._outbox, exist_ok=True)
        except OSError as e:
            logger.warning("share_outbox_unavailable", path=str(self._outbox), error=str(e))
            return False
        return True

    async def share(self, path: Path) -> Path:
        target = self._outbox / Path(path).name
        try:
            await aiofiles.os.makedirs(self._outbox, exist_ok=True)
            async with aiofiles.open(path, "rb") as src:
                content = await src.read()
            async with aiofiles.open(target, "wb") as dst:
                await dst.write(content)
        except OSError as e:
            raise FacilityError(f"Failed to share {path}: {e}") from e

        logger.info("file_shared", source=str(path), target=str(target))
        return target
