"""Mux client: direct upload creation and text track (transcript) fetch.

Direct uploads are created with public playback and auto-generated English
subtitles, so a `video.asset.track.ready` webhook follows encoding and the
description workflow has a transcript to summarize.

Authentication:
    The Video API uses HTTP basic auth (MUX_TOKEN_ID / MUX_TOKEN_SECRET).
    Text tracks are served from the public stream domain without credentials,
    so credentials are only resolved when an upload is created.
"""

from dataclasses import dataclass

import httpx

from app.clients.http import DEFAULT_TIMEOUT_SECONDS, send
from app.config import get_cors_origin, get_mux_credentials
from app.exceptions import ExternalServiceError, TerminalWorkflowError
from app.utils.logging import get_logger

log = get_logger(__name__)

SERVICE_NAME = "mux"

IMAGE_BASE_URL = "https://image.mux.com"
STREAM_BASE_URL = "https://stream.mux.com"


def thumbnail_locator_for(playback_ref: str) -> str:
    return f"{IMAGE_BASE_URL}/{playback_ref}/thumbnail.jpg"


def preview_locator_for(playback_ref: str) -> str:
    return f"{IMAGE_BASE_URL}/{playback_ref}/animated.gif"


def transcript_locator_for(playback_ref: str, track_ref: str) -> str:
    return f"{STREAM_BASE_URL}/{playback_ref}/text/{track_ref}.txt"


@dataclass(frozen=True)
class DirectUpload:
    """Upload token + destination returned by the provider."""

    upload_id: str
    url: str


class MuxClient:
    def __init__(self, token_id: str | None = None, token_secret: str | None = None):
        self.base_url = "https://api.mux.com"
        self.client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        self._credentials = (token_id, token_secret) if token_id and token_secret else None

    def _auth(self) -> httpx.BasicAuth:
        token_id, token_secret = self._credentials or get_mux_credentials()
        return httpx.BasicAuth(token_id, token_secret)

    async def create_upload(self, cors_origin: str | None = None) -> DirectUpload:
        """Create a direct upload.

        Args:
            cors_origin: Browser origin allowed to PUT the file (config default)

        Returns:
            DirectUpload(upload_id, url)

        Raises:
            ConfigurationError: Credentials not configured
            TransientExternalError / ExternalServiceError: Provider failure
        """
        response = await send(
            SERVICE_NAME,
            self.client.post(
                f"{self.base_url}/video/v1/uploads",
                auth=self._auth(),
                json={
                    "cors_origin": cors_origin or get_cors_origin(),
                    "new_asset_settings": {
                        "playback_policy": ["public"],
                        "input": [
                            {
                                "generated_subtitles": [
                                    {"language_code": "en", "name": "English CC"}
                                ]
                            }
                        ],
                    },
                },
            ),
        )

        data = response.json().get("data") or {}
        upload_id = data.get("id")
        url = data.get("url")
        if not upload_id or not url:
            raise ExternalServiceError(SERVICE_NAME, "Upload response missing id or url")

        log.info("mux_upload_created", upload_token=upload_id)
        return DirectUpload(upload_id=upload_id, url=url)

    async def fetch_transcript(self, playback_ref: str, track_ref: str) -> str:
        """Fetch the plain-text rendition of a generated subtitle track.

        Raises:
            TerminalWorkflowError: Transcript is empty
            TransientExternalError / ExternalServiceError: Provider failure
        """
        response = await send(
            SERVICE_NAME,
            self.client.get(transcript_locator_for(playback_ref, track_ref)),
        )

        transcript = response.text.strip()
        if not transcript:
            raise TerminalWorkflowError("Transcript is empty")

        log.info("mux_transcript_fetched", playback_ref=playback_ref, length=len(transcript))
        return transcript

    async def close(self) -> None:
        await self.client.aclose()
