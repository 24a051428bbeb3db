"""Catbox.moe file storage client.

Thumbnails are persisted on catbox.moe: generated images arrive as short-lived
provider URLs, so they are copied with an upload-by-URL request and the
returned public URL becomes the asset's thumbnail locator.

Storage Keys:
    The file name in the public URL ("abc123.png" in
    "https://files.catbox.moe/abc123.png") is the key needed for deletion.

Authentication:
    Uploads work anonymously. Deletion requires the user hash of the account
    that owns the file (CATBOX_USERHASH); uploads carry it too when set, so
    the files stay deletable.

Usage:
    client = CatboxClient()
    stored = await client.upload_from_url("https://images.example/tmp.png")
    await client.delete_file(stored.key)
    await client.close()
"""

from dataclasses import dataclass

import httpx

from app.clients.http import DEFAULT_TIMEOUT_SECONDS, send
from app.config import get_catbox_userhash
from app.exceptions import ConfigurationError, TerminalWorkflowError
from app.utils.logging import get_logger

log = get_logger(__name__)

SERVICE_NAME = "catbox"


@dataclass(frozen=True)
class StoredFile:
    key: str
    url: str


def storage_key_from_url(url: str) -> str:
    return url.rstrip("/").rsplit("/", 1)[-1]


class CatboxClient:
    """Client for catbox.moe upload-by-URL and delete-by-key.

    Attributes:
        base_url: catbox.moe API endpoint
        client: Async HTTP client for making requests
        userhash: Account hash (None for anonymous uploads)
    """

    def __init__(self, userhash: str | None = None) -> None:
        self.base_url = "https://catbox.moe/user/api.php"
        self.client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        self.userhash = userhash if userhash is not None else get_catbox_userhash()

    async def upload_from_url(self, source_url: str) -> StoredFile:
        """Copy a remote file into storage.

        Args:
            source_url: Publicly reachable URL of the file

        Returns:
            StoredFile with the storage key and public URL

        Raises:
            TransientExternalError / ExternalServiceError: HTTP failure
            TerminalWorkflowError: Response body is not a file URL
        """
        data = {"reqtype": "urlupload", "url": source_url}
        if self.userhash:
            data["userhash"] = self.userhash

        response = await send(SERVICE_NAME, self.client.post(self.base_url, data=data))

        url = response.text.strip()
        if not url.startswith("https://"):
            raise TerminalWorkflowError(f"Storage upload returned no file URL: {url[:100]!r}")

        stored = StoredFile(key=storage_key_from_url(url), url=url)
        log.info("catbox_upload_success", key=stored.key, url=stored.url)
        return stored

    async def delete_file(self, key: str) -> None:
        """Delete a stored file by key.

        Raises:
            ConfigurationError: CATBOX_USERHASH not configured
            TransientExternalError / ExternalServiceError: HTTP failure
        """
        if not self.userhash:
            raise ConfigurationError("CATBOX_USERHASH is required to delete stored files")

        await send(
            SERVICE_NAME,
            self.client.post(
                self.base_url,
                data={"reqtype": "deletefiles", "userhash": self.userhash, "files": key},
            ),
        )
        log.info("catbox_delete_success", key=key)

    async def close(self) -> None:
        """Close HTTP client connection."""
        await self.client.aclose()
