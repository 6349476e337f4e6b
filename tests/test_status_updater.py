import pytest
import json
import httpx

from conversion_worker.errors import StatusUpdateError
from conversion_worker.models import CompressionData, JobRecord, JobStatus
from conversion_worker.services.status_updater import ApiJobStatusUpdater, StoreJobStatusUpdater


class TestStoreJobStatusUpdater:
    """Status transitions written into the job store"""

    @pytest.mark.asyncio
    async def test_processing_progress(self, job_store, store_status_updater):
        await job_store.create(JobRecord(job_id='j1'))

        await store_status_updater.update_status('j1', JobStatus.PROCESSING, 25)

        record = await job_store.get('j1')
        assert record.status == JobStatus.PROCESSING
        assert record.progress == 25
        assert record.completed_at is None

    @pytest.mark.asyncio
    async def test_completed_sets_invariants(self, job_store, store_status_updater):
        created = await job_store.create(JobRecord(job_id='j1'))

        await store_status_updater.update_status(
            'j1',
            JobStatus.COMPLETED,
            100,
            download_url='http://files.test/compressed/j1.jpg',
            compression_data=CompressionData.from_sizes(1000, 400)
        )

        record = await job_store.get('j1')
        assert record.status == JobStatus.COMPLETED
        assert record.progress == 100
        assert record.download_url == 'http://files.test/compressed/j1.jpg'
        assert record.completed_at is not None
        assert record.updated_at >= created.updated_at
        assert record.original_file_size == 1000
        assert record.processed_file_size == 400
        assert record.compression_savings == 60.0

    @pytest.mark.asyncio
    async def test_completed_requires_download_url(self, job_store, store_status_updater):
        await job_store.create(JobRecord(job_id='j1'))

        with pytest.raises(StatusUpdateError):
            await store_status_updater.update_status('j1', JobStatus.COMPLETED, 100)

    @pytest.mark.asyncio
    async def test_failed_resets_progress_and_download(self, job_store, store_status_updater):
        await job_store.create(JobRecord(job_id='j1', download_url='http://stale', progress=75))

        await store_status_updater.update_status(
            'j1', JobStatus.FAILED, 50, error_message="Could not decode image"
        )

        record = await job_store.get('j1')
        assert record.status == JobStatus.FAILED
        assert record.progress == 0
        assert record.download_url is None
        assert record.error_message == "Could not decode image"

    @pytest.mark.asyncio
    async def test_repeated_update_is_harmless(self, job_store, store_status_updater):
        await job_store.create(JobRecord(job_id='j1'))

        await store_status_updater.update_status('j1', JobStatus.PROCESSING, 75)
        await store_status_updater.update_status('j1', JobStatus.PROCESSING, 75)

        record = await job_store.get('j1')
        assert record.progress == 75

    @pytest.mark.asyncio
    async def test_unknown_job(self, store_status_updater):
        with pytest.raises(StatusUpdateError) as exc_info:
            await store_status_updater.update_status('missing', JobStatus.PROCESSING, 0)

        assert exc_info.value.job_id == 'missing'


class TestApiJobStatusUpdater:
    """Status reporting through PUT /api/jobs"""

    @pytest.mark.asyncio
    async def test_sends_camel_case_payload(self):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            return httpx.Response(200, json={"success": True})

        updater = ApiJobStatusUpdater("http://api.test/", transport=httpx.MockTransport(handler))

        await updater.update_status(
            'j1',
            JobStatus.COMPLETED,
            100,
            download_url='http://files.test/compressed/j1.png',
            compression_data=CompressionData.from_sizes(200, 50)
        )

        request = requests[0]
        assert request.method == 'PUT'
        assert str(request.url) == 'http://api.test/api/jobs'
        assert json.loads(request.content) == {
            'jobId': 'j1',
            'status': 'completed',
            'progress': 100,
            'downloadUrl': 'http://files.test/compressed/j1.png',
            'originalFileSize': 200,
            'processedFileSize': 50,
            'compressionSavings': 75.0
        }

    @pytest.mark.asyncio
    async def test_failed_payload_carries_error(self):
        updater = ApiJobStatusUpdater("http://api.test")

        payload = updater.build_payload('j1', JobStatus.FAILED, 0, error_message="boom")

        assert payload == {'jobId': 'j1', 'status': 'failed', 'progress': 0, 'errorMessage': 'boom'}

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "db down"}))
        updater = ApiJobStatusUpdater("http://api.test", transport=transport)

        with pytest.raises(StatusUpdateError) as exc_info:
            await updater.update_status('j1', JobStatus.PROCESSING, 25)

        assert exc_info.value.status_code == 500
        assert exc_info.value.job_id == 'j1'

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        updater = ApiJobStatusUpdater("http://api.test", transport=httpx.MockTransport(handler))

        with pytest.raises(StatusUpdateError):
            await updater.update_status('j1', JobStatus.PROCESSING, 25)
