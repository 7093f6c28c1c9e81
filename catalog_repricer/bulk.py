# catalog_repricer/bulk.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp

from .config import BulkSettings
from .errors import BulkSyncError, ErrorCode, Failure, InvalidTransitionError, Ok, StageResult
from .logger import log
from .models import BulkJob, JobStatus
from .retry import poll_until
from .shopify import ShopifyClient

PAYLOAD_FILENAME = "bulk_op_vars.jsonl"
PAYLOAD_MIME_TYPE = "text/jsonl"
UPLOAD_TIMEOUT = 300  # seconds

STAGED_UPLOADS_MUTATION = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters {
        name
        value
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_UPDATE_MUTATION = """
mutation call($input: ProductInput!) {
  productUpdate(input: $input) {
    product {
      id
    }
    userErrors {
      message
      field
    }
  }
}
"""

BULK_RUN_MUTATION = """
mutation bulkOperationRunMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation {
      id
      url
      status
    }
    userErrors {
      message
      field
    }
  }
}
"""

BULK_STATUS_QUERY = """
query bulkOperationStatus($id: ID!) {
  node(id: $id) {
    ... on BulkOperation {
      id
      status
      errorCode
      objectCount
      fileSize
      url
    }
  }
}
"""

# Shopify BulkOperationStatus → job status
PLATFORM_STATUS = {
    "CREATED": JobStatus.CREATED,
    "RUNNING": JobStatus.RUNNING,
    "CANCELING": JobStatus.RUNNING,
    "COMPLETED": JobStatus.COMPLETED,
    "FAILED": JobStatus.FAILED,
    "CANCELED": JobStatus.FAILED,
    "EXPIRED": JobStatus.FAILED,
}


@dataclass(frozen=True)
class StagedTarget:
    url: str
    resource_url: str
    parameters: Tuple[Tuple[str, str], ...]

    @property
    def key(self) -> Optional[str]:
        return dict(self.parameters).get("key")


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class BulkSyncCoordinator:
    """
    Stage → upload → submit → poll, against Shopify's bulk operations API.

    Platform outcomes come back as ``Ok(job)`` / ``Failure``; transport and
    API errors in any phase raise and abort the run. Nothing is retried.
    """

    def __init__(
        self,
        client: ShopifyClient,
        settings: BulkSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.settings = settings
        self._sleep = sleep

    # -------------------------------------------------------------------
    # Phase 1: stage
    # -------------------------------------------------------------------

    async def stage(self) -> StagedTarget:
        data = await self.client.execute(
            STAGED_UPLOADS_MUTATION,
            {
                "input": [
                    {
                        "resource": "BULK_MUTATION_VARIABLES",
                        "filename": PAYLOAD_FILENAME,
                        "mimeType": PAYLOAD_MIME_TYPE,
                        "httpMethod": "POST",
                    }
                ]
            },
            code=ErrorCode.STAGED_UPLOAD,
        )
        result = data.get("stagedUploadsCreate") or {}
        user_errors = result.get("userErrors") or []
        targets = result.get("stagedTargets") or []
        if user_errors or not targets:
            log("staged upload rejected", context="bulk", extra={"userErrors": user_errors}, level="ERROR")
            raise BulkSyncError(
                "Failed to create staged upload target",
                code=ErrorCode.STAGED_UPLOAD,
                detail={"userErrors": user_errors},
            )

        target = targets[0]
        staged = StagedTarget(
            url=str(target.get("url") or ""),
            resource_url=str(target.get("resourceUrl") or ""),
            parameters=tuple(
                (str(p["name"]), str(p["value"])) for p in target.get("parameters") or []
            ),
        )
        if not staged.url or not staged.key:
            raise BulkSyncError(
                "Staged upload target has no URL or storage key",
                code=ErrorCode.STAGED_UPLOAD,
                detail={"target": target},
            )
        return staged

    # -------------------------------------------------------------------
    # Phase 2: upload
    # -------------------------------------------------------------------

    async def upload(self, target: StagedTarget, payload: str) -> str:
        form = aiohttp.FormData()
        for name, value in target.parameters:
            form.add_field(name, value)
        # the file part has to come after the signed policy fields
        form.add_field(
            "file",
            payload.encode("utf-8"),
            filename=PAYLOAD_FILENAME,
            content_type=PAYLOAD_MIME_TYPE,
        )

        try:
            async with self.client.session.post(
                target.url,
                data=form,
                timeout=aiohttp.ClientTimeout(total=UPLOAD_TIMEOUT),
            ) as resp:
                if resp.status not in (200, 201, 204):
                    body = await resp.text()
                    log(
                        f"staged upload failed HTTP {resp.status}",
                        context="bulk",
                        extra={"body": body[:2000]},
                        level="ERROR",
                    )
                    raise BulkSyncError(
                        f"Payload upload failed: HTTP {resp.status}",
                        code=ErrorCode.UPLOAD,
                        detail={"status": resp.status, "body": body[:2000]},
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BulkSyncError(
                f"Payload upload failed: {type(exc).__name__}: {exc}",
                code=ErrorCode.UPLOAD,
            ) from exc

        log(f"Uploaded payload ({len(payload)} chars) to staged target", context="bulk")
        return str(target.key)

    # -------------------------------------------------------------------
    # Phase 3: submit & poll
    # -------------------------------------------------------------------

    async def submit(self, storage_key: str) -> BulkJob:
        data = await self.client.execute(
            BULK_RUN_MUTATION,
            {"mutation": PRODUCT_UPDATE_MUTATION, "stagedUploadPath": storage_key},
            code=ErrorCode.BULK_SUBMIT,
        )
        result = data.get("bulkOperationRunMutation") or {}
        user_errors = result.get("userErrors") or []
        operation = result.get("bulkOperation") or {}
        if user_errors or not operation.get("id"):
            log("bulk mutation rejected", context="bulk", extra={"userErrors": user_errors}, level="ERROR")
            raise BulkSyncError(
                "Bulk mutation was not accepted",
                code=ErrorCode.BULK_SUBMIT,
                detail={"userErrors": user_errors},
            )

        job = BulkJob(id=str(operation["id"]))
        status = PLATFORM_STATUS.get(str(operation.get("status") or ""), JobStatus.CREATED)
        if status is not JobStatus.CREATED:
            job = job.transition(status)

        log(f"Bulk job submitted: {job.id}", context="bulk")
        return job

    async def fetch_job(self, job: BulkJob) -> BulkJob:
        data = await self.client.execute(
            BULK_STATUS_QUERY, {"id": job.id}, code=ErrorCode.BULK_SUBMIT
        )
        node = data.get("node")
        if not node:
            raise BulkSyncError(
                f"Bulk job {job.id} not found",
                code=ErrorCode.BULK_SUBMIT,
            )

        raw_status = str(node.get("status") or "")
        if raw_status not in PLATFORM_STATUS:
            raise BulkSyncError(
                f"Unknown bulk job status: {raw_status}",
                code=ErrorCode.BULK_SUBMIT,
                detail={"node": node},
            )

        try:
            return job.transition(
                PLATFORM_STATUS[raw_status],
                error_code=node.get("errorCode"),
                object_count=_to_int(node.get("objectCount")),
                file_size=_to_int(node.get("fileSize")),
                result_url=node.get("url"),
            )
        except InvalidTransitionError as exc:
            raise BulkSyncError(str(exc), code=ErrorCode.BULK_SUBMIT, detail={"node": node}) from exc

    async def wait(self, job: BulkJob) -> BulkJob:
        if job.status.terminal:
            return job
        current = job

        async def _poll() -> BulkJob:
            nonlocal current
            current = await self.fetch_job(current)
            return current

        outcome = await poll_until(
            _poll,
            lambda j: j.status.terminal,
            interval=self.settings.poll_interval_seconds,
            max_attempts=self.settings.max_poll_attempts,
            sleep=self._sleep,
        )
        if outcome.timed_out:
            return current.transition(JobStatus.TIMED_OUT)
        return current

    async def sync(self, payload: str) -> StageResult[BulkJob]:
        target = await self.stage()
        key = await self.upload(target, payload)
        job = await self.wait(await self.submit(key))

        if job.status is JobStatus.COMPLETED:
            log(
                f"Bulk job completed: objects={job.object_count} size={job.file_size}",
                context="bulk",
                extra={"job_id": job.id, "url": job.result_url},
            )
            return Ok(job)

        if job.status is JobStatus.FAILED:
            log(
                f"Bulk job failed: {job.error_code}",
                context="bulk",
                extra={"job_id": job.id},
                level="ERROR",
            )
            return Failure(
                code=ErrorCode.BULK_FAILED,
                message=f"Bulk job {job.id} failed: {job.error_code or 'unknown error'}",
                detail={"job_id": job.id, "error_code": job.error_code},
            )

        log(f"Bulk job timed out: {job.id}", context="bulk", level="ERROR")
        return Failure(
            code=ErrorCode.BULK_TIMEOUT,
            message=(
                f"Bulk job {job.id} did not finish after "
                f"{self.settings.max_poll_attempts} status checks"
            ),
            detail={"job_id": job.id, "attempts": self.settings.max_poll_attempts},
        )
