"""
Uploader — send a coverage report plus metadata to a remote collector.

One multipart POST per job: the report as ``file`` and every metadata
entry as a form field.  Any 2xx response is success; a non-2xx status
or a transport error raises UploadError.  Whether that error fails the
pipeline is decided by the caller.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional

import httpx

from matrix_runner.errors import UploadError

log = logging.getLogger(__name__)


class CoverageUploader:
    """Posts coverage artifacts to one collector endpoint."""

    def __init__(
        self,
        url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def upload(self, report_path: Path, metadata: Mapping[str, str]) -> int:
        """
        Upload *report_path* tagged with *metadata*.

        Returns the HTTP status code.  Raises UploadError on failure.
        """
        try:
            payload = report_path.read_bytes()
        except OSError as exc:
            raise UploadError(f"cannot read coverage report {report_path}: {exc}") from exc

        files = {"file": (report_path.name, payload, "application/octet-stream")}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    self.url,
                    data=dict(metadata),
                    files=files,
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise UploadError(f"upload to {self.url} failed: {exc}") from exc

        if not resp.is_success:
            raise UploadError(
                f"upload to {self.url} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        log.info("uploaded %s (%d bytes) → %s [%d]",
                 report_path.name, len(payload), self.url, resp.status_code)
        return resp.status_code
