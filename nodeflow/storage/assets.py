"""
Local asset storage for media produced by generative runs.

Data URIs (``data:image/png;base64,...``) are decoded and written under
``{base_path}/{project_id}/{subdir}/``; the returned ``SavedAsset`` carries
the path relative to ``base_path`` and a public URL built from it.
"""

import asyncio
import base64
import binascii
import mimetypes
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

from nodeflow.storage.file_store import validate_key

DATA_URI_PATTERN = re.compile(
    r"^data:([a-z]+/[a-z0-9.+-]+);base64,(.*)$", re.IGNORECASE | re.DOTALL
)


@dataclass
class SavedAsset:
    relative_path: str
    public_url: str
    mime_type: str
    size: int
    filename: str


class LocalAssetStorage:
    """Writes asset bytes to the local filesystem."""

    def __init__(self, base_path: str | Path, public_base_url: str = "/uploads"):
        self.base_path = Path(base_path)
        self.public_base_url = public_base_url.rstrip("/")

    async def save_asset(
        self,
        project_id: str,
        data: str | bytes,
        subdir: str = "assets",
        mime_type: str | None = None,
    ) -> SavedAsset:
        """
        Persist a data URI or raw bytes.

        Raises:
            ValueError: If ``data`` is a string that is not a base64 data URI
        """
        validate_key(project_id)
        validate_key(subdir)
        if isinstance(data, str):
            mime_type, payload = decode_data_uri(data)
        else:
            payload = data
            mime_type = mime_type or "application/octet-stream"

        extension = mimetypes.guess_extension(mime_type) or ".bin"
        filename = f"{uuid.uuid4().hex}{extension}"
        target_dir = self.base_path / project_id / subdir
        target = target_dir / filename

        def _write() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)

        await asyncio.to_thread(_write)
        relative = f"{project_id}/{subdir}/{filename}"
        return SavedAsset(
            relative_path=relative,
            public_url=f"{self.public_base_url}/{relative}",
            mime_type=mime_type,
            size=len(payload),
            filename=filename,
        )


def decode_data_uri(value: str) -> tuple[str, bytes]:
    """Split a base64 data URI into (mime type, decoded bytes)."""
    match = DATA_URI_PATTERN.match(value.strip())
    if not match:
        raise ValueError("Not a base64 data URI")
    try:
        payload = base64.b64decode(match.group(2), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return match.group(1).lower(), payload
