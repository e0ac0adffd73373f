"""
Request-scoped temp files.

Every file a request creates or receives (uploads, rendered overlays,
decoded audio) is registered with the request's AssetScope and deleted
exactly once, after the response stream has finished.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import UploadFile
from loguru import logger

from .errors import CleanupFailed, InvalidInput

UPLOAD_CHUNK_SIZE = 1024 * 1024


@dataclass
class TempAsset:
    """A file with a strictly request-scoped lifetime."""
    path: Path
    owner: str
    created_at: datetime = field(default_factory=datetime.now)
    deleted: bool = False

    @property
    def size(self) -> int:
        return self.path.stat().st_size if self.path.exists() else 0


class AssetScope:
    """
    Usage:
        async with AssetScope(settings.temp_dir, owner="composite") as scope:
            video = await scope.save_upload(upload, suffix=".mp4")
            overlay = await scope.write_bytes(png, prefix="overlay", suffix=".png")
            ...
        # both files are gone here
    """

    def __init__(self, root: Path, owner: Optional[str] = None):
        self.root = Path(root)
        self.owner = owner or uuid.uuid4().hex[:8]
        self.assets: list[TempAsset] = []
        self._cleaned = False

    async def __aenter__(self) -> "AssetScope":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cleanup()

    def reserve(self, prefix: str = "asset", suffix: str = "") -> TempAsset:
        """Register a fresh path under the root. The file is not created."""
        if self._cleaned:
            raise RuntimeError("AssetScope already cleaned up")
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / f"{prefix}-{self.owner}-{uuid.uuid4().hex[:8]}{suffix}"
        asset = TempAsset(path=path, owner=self.owner)
        self.assets.append(asset)
        return asset

    async def write_bytes(self, data: bytes, prefix: str = "asset", suffix: str = "") -> TempAsset:
        asset = self.reserve(prefix, suffix)
        await asyncio.to_thread(asset.path.write_bytes, data)
        logger.debug(f"Wrote {len(data)} bytes to {asset.path.name}")
        return asset

    async def save_upload(
        self,
        upload: UploadFile,
        prefix: str = "upload",
        suffix: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> TempAsset:
        """Copy an uploaded file to disk, enforcing an optional size limit."""
        if suffix is None:
            suffix = Path(upload.filename or "").suffix
        asset = self.reserve(prefix, suffix)

        written = 0
        with open(asset.path, "wb") as f:
            while chunk := await upload.read(UPLOAD_CHUNK_SIZE):
                written += len(chunk)
                if max_bytes is not None and written > max_bytes:
                    raise InvalidInput(f"Upload `{upload.filename}` exceeds {max_bytes} bytes")
                await asyncio.to_thread(f.write, chunk)

        logger.info(f"Upload {upload.filename} saved ({written} bytes)")
        return asset

    async def cleanup(self):
        """Delete every registered asset once. Failures are logged, never raised."""
        if self._cleaned:
            return
        self._cleaned = True
        # Runs to completion even if the request task is being cancelled
        await asyncio.shield(asyncio.ensure_future(self._delete_all()))

    async def _delete_all(self):
        for asset in self.assets:
            if asset.deleted:
                continue
            asset.deleted = True
            try:
                await asyncio.to_thread(asset.path.unlink, missing_ok=True)
            except OSError as e:
                err = CleanupFailed(f"Could not delete {asset.path}: {e}")
                logger.warning(f"Error cleaning up temp file: {err}")

        if self.assets:
            logger.debug(f"Cleaned up {len(self.assets)} temp files for {self.owner}")
