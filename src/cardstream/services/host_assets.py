"""HTTP adapter for the destination host's asset import API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from cardstream.core.config import Settings, get_settings
from cardstream.core.exceptions import ResourceResolutionError
from cardstream.services.models import AssetUpload


logger = logging.getLogger(__name__)

READY_STATUSES = {"ready", "completed"}
FAILED_STATUSES = {"failed", "error", "rejected"}


class HttpAssetUploader:
    """Submit an external asset to the host and wait until it is usable.

    POST {HOST_API_URL}/assets starts the import and returns a job record
    ``{"id", "status", "ref"?}``. The job is polled at
    ``GET {HOST_API_URL}/assets/{id}`` until the host reports it ready (the
    reference is returned) or failed, bounded by UPLOAD_TIMEOUT_SECONDS.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.base_url = (base_url or self.settings.HOST_API_URL or "").rstrip("/")
        if not self.base_url:
            raise ValueError("HttpAssetUploader requires HOST_API_URL")
        self.token = token if token is not None else self.settings.HOST_API_TOKEN
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def upload(self, asset: AssetUpload) -> str:
        payload = {
            "type": asset.kind,
            "url": asset.url,
            "mime_type": asset.mime_type,
            "thumbnail_url": asset.thumbnail_url,
            "ai_disclosure": asset.ai_disclosure,
        }
        try:
            if self._client is not None:
                return await self._upload(self._client, payload)
            async with httpx.AsyncClient(
                timeout=self.settings.UPLOAD_TIMEOUT_SECONDS
            ) as client:
                return await self._upload(client, payload)
        except httpx.HTTPStatusError as e:
            raise ResourceResolutionError(
                f"Host upload failed: {e.response.status_code} "
                f"{e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise ResourceResolutionError(
                f"Host upload failed: {type(e).__name__}: {e}"
            ) from e

    async def _upload(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> str:
        response = await client.post(
            f"{self.base_url}/assets", json=payload, headers=self._headers()
        )
        response.raise_for_status()
        job = self._parse_job(response)

        try:
            async with asyncio.timeout(self.settings.UPLOAD_TIMEOUT_SECONDS):
                while True:
                    reference = self._reference_if_ready(job)
                    if reference is not None:
                        return reference
                    await asyncio.sleep(self.settings.UPLOAD_POLL_INTERVAL_SECONDS)
                    response = await client.get(
                        f"{self.base_url}/assets/{job['id']}", headers=self._headers()
                    )
                    response.raise_for_status()
                    job = self._parse_job(response)
        except TimeoutError as e:
            raise ResourceResolutionError(
                f"Host did not finish processing asset {job.get('id')} in time"
            ) from e

    @staticmethod
    def _parse_job(response: httpx.Response) -> dict[str, Any]:
        try:
            job = response.json()
        except ValueError as e:
            raise ResourceResolutionError("Host returned a non-JSON upload record") from e
        if not isinstance(job, dict) or not job.get("id"):
            raise ResourceResolutionError("Host upload record is missing an id")
        return job

    @staticmethod
    def _reference_if_ready(job: dict[str, Any]) -> str | None:
        status = str(job.get("status", "")).lower()
        if status in FAILED_STATUSES:
            reason = job.get("error") or "processing failed"
            raise ResourceResolutionError(f"Host rejected asset {job['id']}: {reason}")
        if status in READY_STATUSES:
            reference = job.get("ref")
            if not reference:
                raise ResourceResolutionError(
                    f"Host marked asset {job['id']} ready without a reference"
                )
            return str(reference)
        return None
