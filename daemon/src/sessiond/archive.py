"""Credential archival to remote storage.

Provides:
- HttpBlobArchive: uploads credential blobs to an HTTP upload endpoint
- derive_reference: deterministic short reference code for an archive link
"""

import asyncio
import base64
import hashlib
import logging
import re
from typing import Optional

import aiohttp

from sessiond.errors import ArchiveError

logger = logging.getLogger(__name__)

DEFAULT_REFERENCE_PREFIX = "SID~"

# Length of the digest prefix used for unrecognized links (20 base64 chars)
FALLBACK_DIGEST_BYTES = 15

# Object-store style links: https://host/file/<id>#<key>
_FILE_LINK_PATTERN = re.compile(
    r"/file/(?P<id>[A-Za-z0-9_-]+)(?:#(?P<key>[A-Za-z0-9_-]+))?$"
)


def derive_reference(link: str, prefix: str = DEFAULT_REFERENCE_PREFIX) -> str:
    """Derive a short reference code from an archive link.

    Recognized "/file/<id>#<key>" links keep their id and key; any other
    link is reduced to a fixed-length digest of the whole link.

    Args:
        link: Dereferenceable archive link.
        prefix: Namespace tag prepended to every reference.

    Returns:
        Reference code, identical for identical links.

    Examples:
        >>> derive_reference("https://store.example/file/AbC123#k3y")
        "SID~AbC123#k3y"
    """
    if not link:
        raise ValueError("Archive link is empty")

    match = _FILE_LINK_PATTERN.search(link)
    if match:
        token = match.group("id")
        if match.group("key"):
            token = f"{token}#{match.group('key')}"
    else:
        digest = hashlib.sha256(link.encode("utf-8")).digest()
        token = base64.urlsafe_b64encode(digest[:FALLBACK_DIGEST_BYTES]).decode("ascii")

    return f"{prefix}{token}"


class HttpBlobArchive:
    """Uploads blobs to an HTTP endpoint that answers with a link.

    The endpoint receives a multipart form with a single "file" field and
    answers either with JSON carrying a "url" or "link" key, or with the
    link as plain text.
    """

    def __init__(
        self,
        upload_url: str,
        request_timeout: float = 30.0,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize archive client.

        Args:
            upload_url: Endpoint receiving uploads.
            request_timeout: Total timeout per upload in seconds.
            http_session: Optional aiohttp session (for testing).
        """
        self._upload_url = upload_url
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        await self.start()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    @property
    def upload_url(self) -> str:
        """The upload endpoint URL."""
        return self._upload_url

    async def upload(self, data: bytes, name: str) -> str:
        """Upload a blob.

        Args:
            data: Bytes to upload.
            name: File name reported to the endpoint.

        Returns:
            Link to the uploaded blob.

        Raises:
            ArchiveError: If the endpoint rejects the upload, the request
                fails, or the response carries no link.
        """
        if self._session is None:
            raise ArchiveError("Archive not initialized - use async context manager")

        form = aiohttp.FormData()
        form.add_field(
            "file", data, filename=name, content_type="application/octet-stream"
        )

        try:
            async with self._session.post(
                self._upload_url, data=form, timeout=self._timeout
            ) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise ArchiveError(
                        f"Upload rejected with HTTP {resp.status}: {text[:100]}"
                    )
                link = await self._read_link(resp)
        except aiohttp.ClientError as e:
            raise ArchiveError(f"Upload request failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise ArchiveError("Upload timed out") from e

        if not link:
            raise ArchiveError("Upload response did not include a link")

        logger.debug(f"Uploaded {len(data)} bytes as {name}")
        return link

    @staticmethod
    async def _read_link(resp: aiohttp.ClientResponse) -> str:
        if resp.content_type == "application/json":
            body = await resp.json()
            if isinstance(body, dict):
                return str(body.get("url") or body.get("link") or "")
            return ""
        return (await resp.text()).strip()

    async def start(self) -> None:
        """Create the HTTP session unless one was injected."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
