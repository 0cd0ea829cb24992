from __future__ import annotations

import asyncio
import io
import json
import logging
import math
from dataclasses import dataclass
from typing import BinaryIO
from urllib.parse import urljoin

import httpx
from simple_logger.logger import get_logger

from migration_api.libs.exceptions import MissingContinuationUrlError, UploadFailedError
from migration_api.libs.github_client import GithubClient
from migration_api.libs.retry_policy import RetryPolicy
from migration_api.utils.constants import (
    BYTES_PER_MEBIBYTE,
    DEFAULT_MULTIPART_MEBIBYTES,
    LOCATION_HEADER,
    MIN_MULTIPART_MEBIBYTES,
    MULTIPART_MEBIBYTES_ENV,
    OCTET_STREAM_CONTENT_TYPE,
    UPLOAD_PHASE_COMPLETE,
    UPLOAD_PHASE_PART,
    UPLOAD_PHASE_START,
)
from migration_api.utils.helpers import escape_data_string, get_header_value, get_query_param


def resolve_multipart_chunk_size(value: str | int | None, logger: logging.Logger) -> int:
    """
    Turn a configured part size in MiB into a part size in bytes.

    Args:
        value: Raw configured value (env var or config file), may be None
        logger: Logger for rejected values

    Returns:
        The configured size in bytes, or the 100 MiB default when the value is missing, not a
        positive integer, or below the 5 MiB minimum
    """
    default_bytes = DEFAULT_MULTIPART_MEBIBYTES * BYTES_PER_MEBIBYTE

    if value is None or str(value).strip() == "":
        return default_bytes

    try:
        mebibytes = int(str(value).strip())
    except ValueError:
        logger.debug(f"Ignoring non-numeric {MULTIPART_MEBIBYTES_ENV} value: {value}")
        return default_bytes

    if mebibytes <= 0:
        logger.debug(f"Ignoring non-positive {MULTIPART_MEBIBYTES_ENV} value: {value}")
        return default_bytes

    if mebibytes < MIN_MULTIPART_MEBIBYTES:
        logger.warning(
            f"{MULTIPART_MEBIBYTES_ENV} is set to {mebibytes} MiB, but the minimum value is "
            f"{MIN_MULTIPART_MEBIBYTES} MiB. Using default value of {DEFAULT_MULTIPART_MEBIBYTES} MiB."
        )
        return default_bytes

    logger.info(f"Multipart upload part size set to {mebibytes} MiB.")
    return mebibytes * BYTES_PER_MEBIBYTE


@dataclass
class UploadSession:
    """State of one multipart upload. Mutated after each part, never retried as a whole."""

    upload_id: str | None
    next_url: str
    total_bytes: int
    total_parts: int
    bytes_transferred: int = 0
    part_index: int = 0


class ArchiveUploader:
    """
    Upload migration archives into GitHub owned storage.

    Archives up to `stream_size_limit` bytes go up in a single POST. Larger archives use the
    start / upload parts / complete protocol, where each response's Location header is the URL
    of the next step. A failed multipart upload is not resumed.
    """

    def __init__(
        self,
        client: GithubClient,
        uploads_url: str,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
        multipart_mebibytes: str | int | None = None,
    ) -> None:
        self.client = client
        self.uploads_url = uploads_url.rstrip("/")
        self.logger = logger or get_logger(name="archive-uploader")
        self.retry_policy = retry_policy or client.retry_policy
        self.stream_size_limit = resolve_multipart_chunk_size(multipart_mebibytes, self.logger)

    async def upload(self, archive: BinaryIO, archive_name: str, org_database_id: str, size: int | None = None) -> str:
        """
        Upload `archive` and return the storage URI GitHub assigned to it.

        Args:
            archive: Readable binary stream positioned at the start of the archive
            archive_name: File name recorded by GitHub
            org_database_id: Target organization database id
            size: Archive length in bytes (default: measured by seeking the stream)

        Raises:
            UploadFailedError: A multipart phase failed; carries the phase and the cause
            HttpError: The single request upload failed
        """
        if archive is None:
            raise ValueError("The archive content stream cannot be null.")

        total_bytes = size
        if total_bytes is None:
            total_bytes = await asyncio.to_thread(self._measure, archive)
        org_segment = escape_data_string(org_database_id)

        if total_bytes > self.stream_size_limit:
            url = f"{self.uploads_url}/organizations/{org_segment}/gei/archive/blobs/uploads"
            return await self._upload_multipart(archive, archive_name, url, total_bytes)

        url = f"{self.uploads_url}/organizations/{org_segment}/gei/archive?name={escape_data_string(archive_name)}"
        content = await asyncio.to_thread(archive.read)
        response = await self.retry_policy.retry(lambda: self.client.post_with_full_response(url, content))
        return response.json()["uri"]

    async def _upload_multipart(self, archive: BinaryIO, archive_name: str, url: str, total_bytes: int) -> str:
        session = await self._start_upload(url, archive_name, total_bytes)

        # One buffer is reused for every part
        buffer = bytearray(self.stream_size_limit)
        view = memoryview(buffer)

        while True:
            # Disk reads run off the event loop
            bytes_read = await asyncio.to_thread(archive.readinto, buffer)
            if not bytes_read:
                break
            await self._upload_part(session, view[:bytes_read])

        return await self._complete_upload(session)

    async def _start_upload(self, url: str, archive_name: str, total_bytes: int) -> UploadSession:
        self.logger.info(f"Starting archive upload into GitHub owned storage: {archive_name}...")
        body = {"content_type": OCTET_STREAM_CONTENT_TYPE, "name": archive_name, "size": total_bytes}

        try:
            response = await self.retry_policy.retry(lambda: self.client.post_with_full_response(url, body))
            next_url = self._get_next_url(response)
        except Exception as ex:
            self.logger.exception(f"Failed to start upload of {archive_name}")
            raise UploadFailedError(phase=UPLOAD_PHASE_START, cause=ex) from ex

        return UploadSession(
            upload_id=get_query_param(next_url, "guid"),
            next_url=next_url,
            total_bytes=total_bytes,
            total_parts=math.ceil(total_bytes / self.stream_size_limit),
        )

    async def _upload_part(self, session: UploadSession, chunk: memoryview) -> None:
        self.logger.info(f"Uploading part {session.part_index + 1}/{session.total_parts}...")

        try:
            response = await self.client.patch_with_full_response(session.next_url, chunk)
            session.next_url = self._get_next_url(response)
        except Exception as ex:
            self.logger.exception(f"Failed to upload part {session.part_index + 1}/{session.total_parts}")
            raise UploadFailedError(phase=UPLOAD_PHASE_PART, cause=ex) from ex

        session.part_index += 1
        session.bytes_transferred += len(chunk)

    async def _complete_upload(self, session: UploadSession) -> str:
        try:
            response = await self.retry_policy.retry(lambda: self.client.put(session.next_url, ""))
            uri = json.loads(response)["uri"]
        except Exception as ex:
            self.logger.exception("Failed to complete upload")
            raise UploadFailedError(phase=UPLOAD_PHASE_COMPLETE, cause=ex) from ex

        self.logger.info("Finished uploading archive")
        return uri

    def _get_next_url(self, response: httpx.Response) -> str:
        location = get_header_value(response.headers, LOCATION_HEADER)
        if not location:
            raise MissingContinuationUrlError(
                "Location header is missing in the response, unable to retrieve next URL for multipart upload."
            )
        return urljoin(f"{self.uploads_url}/", location)

    @staticmethod
    def _measure(archive: BinaryIO) -> int:
        position = archive.tell()
        end = archive.seek(0, io.SEEK_END)
        archive.seek(position)
        return end - position
