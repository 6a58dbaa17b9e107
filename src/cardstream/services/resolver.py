"""Resource resolution: external media locator -> host reference."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

import httpx

from cardstream.core.config import Settings, get_settings
from cardstream.core.exceptions import ResourceResolutionError
from cardstream.core.observability import RESOLVE_SPAN, get_tracer, locator_host
from cardstream.schemas.elements import RESOURCE_KINDS
from cardstream.services.interfaces import AssetUploaderProtocol
from cardstream.services.models import AssetUpload, ResolvedResource


logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

PROBE_HEADERS = {
    "User-Agent": "cardstream-resolver/0.1",
    "Accept": "image/*,video/*;q=0.9,*/*;q=0.5",
}

# Servers that refuse HEAD get a GET; the body is never read
HEAD_UNSUPPORTED = {405, 501}


class ResourceResolver:
    """Imports external images and videos into the destination host.

    Stateless apart from its collaborators, so one instance can be shared by
    concurrent sessions. Every failure (probe, upload or host processing) is
    raised as ResourceResolutionError and nothing is retried here; the
    sequencer decides how to degrade.
    """

    def __init__(
        self,
        uploader: AssetUploaderProtocol,
        *,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.uploader = uploader
        self.settings = settings or get_settings()
        self._client = client

    async def resolve(self, locator: str, *, kind: str = "image") -> ResolvedResource:
        if kind not in RESOURCE_KINDS:
            raise ResourceResolutionError(f"Unsupported resource kind: {kind}")

        with tracer.start_as_current_span(RESOLVE_SPAN) as span:
            span.set_attribute("resource.kind", kind)
            span.set_attribute("resource.host", locator_host(locator))

            mime_type = await self.probe_mime_type(locator, kind=kind)
            span.set_attribute("resource.mime_type", mime_type)

            asset = AssetUpload(
                kind=kind,  # type: ignore[arg-type]
                url=locator,
                mime_type=mime_type,
                thumbnail_url=locator,
                ai_disclosure=self.settings.AI_DISCLOSURE,
            )
            try:
                reference = await self.uploader.upload(asset)
            except ResourceResolutionError:
                raise
            except Exception as e:
                raise ResourceResolutionError(
                    f"Upload failed: {type(e).__name__}: {e}"
                ) from e

            if not reference:
                raise ResourceResolutionError("Host returned an empty reference")

            logger.debug("Resolved %s resource on %s", kind, locator_host(locator))
            return ResolvedResource(
                reference=reference, mime_type=mime_type, locator=locator
            )

    async def probe_mime_type(self, locator: str, *, kind: str = "image") -> str:
        """Determine the media type of a locator from its response headers.

        A successful probe without a usable image/video content type falls
        back to the configured default for the kind.
        """
        parsed = urlparse(locator)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ResourceResolutionError("Locator must be an absolute http(s) URL")

        try:
            response = await self._probe(locator)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResourceResolutionError(
                f"Probe failed: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ResourceResolutionError(
                f"Probe failed: {type(e).__name__}: {e}"
            ) from e

        content_type = response.headers.get("content-type", "")
        mime_type = content_type.split(";", 1)[0].strip().lower()
        if mime_type.startswith(("image/", "video/")):
            return mime_type
        return self._default_mime_type(kind)

    async def _probe(self, locator: str) -> httpx.Response:
        if self._client is not None:
            return await self._send_probe(self._client, locator)
        async with httpx.AsyncClient(
            timeout=self.settings.PROBE_TIMEOUT_SECONDS,
            follow_redirects=True,
        ) as client:
            return await self._send_probe(client, locator)

    async def _send_probe(self, client: httpx.AsyncClient, locator: str) -> httpx.Response:
        response = await client.head(locator, headers=PROBE_HEADERS)
        if response.status_code in HEAD_UNSUPPORTED:
            async with client.stream("GET", locator, headers=PROBE_HEADERS) as streamed:
                return streamed
        return response

    def _default_mime_type(self, kind: str) -> str:
        if kind == "video":
            return self.settings.DEFAULT_VIDEO_MIME_TYPE
        return self.settings.DEFAULT_IMAGE_MIME_TYPE
