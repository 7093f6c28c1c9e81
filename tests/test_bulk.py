from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from catalog_repricer.bulk import BULK_RUN_MUTATION, PRODUCT_UPDATE_MUTATION, BulkSyncCoordinator
from catalog_repricer.config import BulkSettings
from catalog_repricer.errors import BulkSyncError, ErrorCode, Failure, Ok
from catalog_repricer.models import BulkJob, JobStatus

from conftest import http_response

JOB_ID = "gid://shopify/BulkOperation/42"

STAGED = {
    "stagedUploadsCreate": {
        "stagedTargets": [
            {
                "url": "https://uploads.example.com/",
                "resourceUrl": None,
                "parameters": [
                    {"name": "key", "value": "tmp/1/bulk/bulk_op_vars.jsonl"},
                    {"name": "policy", "value": "abc"},
                ],
            }
        ],
        "userErrors": [],
    }
}

SUBMITTED = {
    "bulkOperationRunMutation": {
        "bulkOperation": {"id": JOB_ID, "url": None, "status": "CREATED"},
        "userErrors": [],
    }
}


def status(value, **extra):
    node = {"id": JOB_ID, "status": value, "errorCode": None, "objectCount": "0", "fileSize": None, "url": None}
    node.update(extra)
    return {"node": node}


@pytest.fixture
def client():
    client = MagicMock()
    client.execute = AsyncMock()
    client.session = MagicMock()
    client.session.post = MagicMock(return_value=http_response(status=204))
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def coordinator(client, sleep):
    return BulkSyncCoordinator(client, BulkSettings(poll_interval_seconds=6, max_poll_attempts=300), sleep=sleep)


class TestStage:
    @pytest.mark.asyncio
    async def test_returns_target_with_storage_key(self, coordinator, client):
        client.execute.return_value = STAGED
        target = await coordinator.stage()

        assert target.url == "https://uploads.example.com/"
        assert target.key == "tmp/1/bulk/bulk_op_vars.jsonl"
        assert client.execute.await_args.kwargs["code"] is ErrorCode.STAGED_UPLOAD

    @pytest.mark.asyncio
    async def test_user_errors_are_fatal(self, coordinator, client):
        client.execute.return_value = {
            "stagedUploadsCreate": {"stagedTargets": [], "userErrors": [{"field": "input", "message": "bad"}]}
        }
        with pytest.raises(BulkSyncError) as exc:
            await coordinator.stage()
        assert exc.value.code is ErrorCode.STAGED_UPLOAD
        assert exc.value.detail["userErrors"][0]["message"] == "bad"


class TestUpload:
    @pytest.mark.asyncio
    async def test_posts_multipart_form_to_target(self, coordinator, client):
        client.execute.return_value = STAGED
        target = await coordinator.stage()

        key = await coordinator.upload(target, '{"input":{}}')

        assert key == "tmp/1/bulk/bulk_op_vars.jsonl"
        args, kwargs = client.session.post.call_args
        assert args[0] == "https://uploads.example.com/"
        assert isinstance(kwargs["data"], aiohttp.FormData)

    @pytest.mark.asyncio
    async def test_non_success_status_is_fatal(self, coordinator, client):
        client.execute.return_value = STAGED
        client.session.post.return_value = http_response(status=403, text="<Error>AccessDenied</Error>")
        target = await coordinator.stage()

        with pytest.raises(BulkSyncError) as exc:
            await coordinator.upload(target, "{}")
        assert exc.value.code is ErrorCode.UPLOAD
        assert exc.value.detail["status"] == 403

    @pytest.mark.asyncio
    async def test_transport_error_is_fatal(self, coordinator, client):
        client.execute.return_value = STAGED
        client.session.post.side_effect = aiohttp.ClientConnectionError("reset")
        target = await coordinator.stage()

        with pytest.raises(BulkSyncError) as exc:
            await coordinator.upload(target, "{}")
        assert exc.value.code is ErrorCode.UPLOAD


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submits_product_update_mutation(self, coordinator, client):
        client.execute.return_value = SUBMITTED
        job = await coordinator.submit("tmp/key")

        assert job == BulkJob(id=JOB_ID)
        query, variables = client.execute.await_args.args
        assert query == BULK_RUN_MUTATION
        assert variables == {"mutation": PRODUCT_UPDATE_MUTATION, "stagedUploadPath": "tmp/key"}

    @pytest.mark.asyncio
    async def test_rejected_submission(self, coordinator, client):
        client.execute.return_value = {
            "bulkOperationRunMutation": {
                "bulkOperation": None,
                "userErrors": [{"field": None, "message": "A bulk operation is already in progress"}],
            }
        }
        with pytest.raises(BulkSyncError) as exc:
            await coordinator.submit("tmp/key")
        assert exc.value.code is ErrorCode.BULK_SUBMIT


class TestSync:
    @pytest.mark.asyncio
    async def test_completes_after_six_polls(self, coordinator, client, sleep):
        client.execute.side_effect = (
            [STAGED, SUBMITTED]
            + [status("RUNNING")] * 5
            + [status("COMPLETED", objectCount="120", fileSize="4096", url="https://results.example/out.jsonl")]
        )

        result = await coordinator.sync('{"input":{}}')

        assert isinstance(result, Ok)
        job = result.value
        assert job.status is JobStatus.COMPLETED
        assert job.object_count == 120
        assert job.file_size == 4096
        assert job.result_url == "https://results.example/out.jsonl"
        assert client.execute.await_count == 2 + 6
        assert sleep.await_count == 5

    @pytest.mark.asyncio
    async def test_platform_failure(self, coordinator, client):
        client.execute.side_effect = [STAGED, SUBMITTED, status("RUNNING"), status("FAILED", errorCode="INTERNAL_SERVER_ERROR")]

        result = await coordinator.sync("{}")

        assert isinstance(result, Failure)
        assert result.code is ErrorCode.BULK_FAILED
        assert result.detail["error_code"] == "INTERNAL_SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_canceled_job_counts_as_failed(self, coordinator, client):
        client.execute.side_effect = [STAGED, SUBMITTED, status("CANCELING"), status("CANCELED")]
        result = await coordinator.sync("{}")
        assert result.code is ErrorCode.BULK_FAILED

    @pytest.mark.asyncio
    async def test_times_out_without_a_301st_poll(self, coordinator, client, sleep):
        client.execute.side_effect = [STAGED, SUBMITTED] + [status("RUNNING")] * 300

        result = await coordinator.sync("{}")

        assert isinstance(result, Failure)
        assert result.code is ErrorCode.BULK_TIMEOUT
        assert client.execute.await_count == 302
        assert sleep.await_count == 299

    @pytest.mark.asyncio
    async def test_unknown_status_is_fatal(self, coordinator, client):
        client.execute.side_effect = [STAGED, SUBMITTED, status("PAUSED")]
        with pytest.raises(BulkSyncError):
            await coordinator.sync("{}")

    @pytest.mark.asyncio
    async def test_job_already_finished_at_submission_is_not_polled(self, coordinator, client, sleep):
        finished = {
            "bulkOperationRunMutation": {
                "bulkOperation": {"id": JOB_ID, "url": None, "status": "COMPLETED"},
                "userErrors": [],
            }
        }
        client.execute.side_effect = [STAGED, finished]

        result = await coordinator.sync("{}")

        assert isinstance(result, Ok)
        assert result.value.status is JobStatus.COMPLETED
        assert client.execute.await_count == 2
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_moving_backwards_is_fatal(self, coordinator, client):
        client.execute.side_effect = [STAGED, SUBMITTED, status("RUNNING"), status("CREATED")]
        with pytest.raises(BulkSyncError) as exc:
            await coordinator.sync("{}")
        assert exc.value.code is ErrorCode.BULK_SUBMIT
