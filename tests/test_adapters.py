import pytest
import io
from unittest.mock import Mock
from botocore.exceptions import ClientError

from conversion_worker.adapters.queue import InMemoryMessageQueue, SqsMessageQueue
from conversion_worker.adapters.storage import LocalFileStorage, S3FileStorage
from conversion_worker.errors import QueueError, StorageError


def _client_error(code, operation):
    return ClientError({'Error': {'Code': code, 'Message': code}}, operation)


class TestInMemoryMessageQueue:
    """Delivery semantics of the in-process queue"""

    @pytest.mark.asyncio
    async def test_delivers_one_message_at_a_time(self):
        queue = InMemoryMessageQueue()
        await queue.send_message('first')
        await queue.send_message('second')

        messages = await queue.poll_messages()

        assert [m.body for m in messages] == ['first']
        assert messages[0].receive_count == 1

    @pytest.mark.asyncio
    async def test_received_message_is_invisible_until_timeout(self):
        queue = InMemoryMessageQueue(visibility_timeout=30)
        await queue.send_message('only')

        assert len(await queue.poll_messages()) == 1
        assert await queue.poll_messages() == []
        assert queue.pending_count == 1

    @pytest.mark.asyncio
    async def test_delete_acknowledges(self):
        queue = InMemoryMessageQueue()
        await queue.send_message('only')

        message = (await queue.poll_messages())[0]
        await queue.delete_message(message.receipt_handle)

        assert queue.pending_count == 0

    @pytest.mark.asyncio
    async def test_stale_receipt_handle_is_ignored(self):
        queue = InMemoryMessageQueue(visibility_timeout=0)
        await queue.send_message('only')

        stale = (await queue.poll_messages())[0]
        await queue.poll_messages()
        await queue.delete_message(stale.receipt_handle)

        assert queue.pending_count == 1

    @pytest.mark.asyncio
    async def test_max_receive_count_moves_to_dead_letters(self):
        queue = InMemoryMessageQueue(visibility_timeout=0, max_receive_count=2)
        await queue.send_message('poison')

        assert len(await queue.poll_messages()) == 1
        assert len(await queue.poll_messages()) == 1
        assert await queue.poll_messages() == []
        assert [m.body for m in queue.dead_letters] == ['poison']
        assert queue.pending_count == 0


class TestSqsMessageQueue:
    """SQS adapter over a mocked boto3 client"""

    @pytest.fixture
    def sqs_client(self):
        client = Mock()
        client.receive_message.return_value = {
            'Messages': [{
                'MessageId': 'm-1',
                'ReceiptHandle': 'rh-1',
                'Body': '{"jobId": "j1"}',
                'Attributes': {'ApproximateReceiveCount': '3'}
            }]
        }
        client.send_message.return_value = {'MessageId': 'm-2'}
        client.get_queue_url.return_value = {'QueueUrl': 'http://localhost:4566/000000000000/jobs'}
        return client

    @pytest.mark.asyncio
    async def test_poll_uses_long_polling(self, sqs_client):
        queue = SqsMessageQueue(queue_url='http://sqs.test/jobs', client=sqs_client)

        messages = await queue.poll_messages()

        kwargs = sqs_client.receive_message.call_args.kwargs
        assert kwargs['QueueUrl'] == 'http://sqs.test/jobs'
        assert kwargs['MaxNumberOfMessages'] == 1
        assert kwargs['WaitTimeSeconds'] == 20
        assert 'VisibilityTimeout' not in kwargs
        assert messages[0].receipt_handle == 'rh-1'
        assert messages[0].receive_count == 3

    @pytest.mark.asyncio
    async def test_empty_poll(self, sqs_client):
        sqs_client.receive_message.return_value = {}
        queue = SqsMessageQueue(queue_url='http://sqs.test/jobs', client=sqs_client)

        assert await queue.poll_messages() == []

    @pytest.mark.asyncio
    async def test_resolves_queue_url_from_name(self, sqs_client):
        queue = SqsMessageQueue(queue_name='jobs', client=sqs_client, visibility_timeout=120)

        await queue.poll_messages()
        await queue.delete_message('rh-1')

        sqs_client.get_queue_url.assert_called_once_with(QueueName='jobs')
        assert sqs_client.receive_message.call_args.kwargs['VisibilityTimeout'] == 120
        sqs_client.delete_message.assert_called_once_with(
            QueueUrl='http://localhost:4566/000000000000/jobs',
            ReceiptHandle='rh-1'
        )

    @pytest.mark.asyncio
    async def test_send_message(self, sqs_client):
        queue = SqsMessageQueue(queue_url='http://sqs.test/jobs', client=sqs_client)

        assert await queue.send_message('{"jobId": "j1"}') == 'm-2'

    @pytest.mark.asyncio
    async def test_client_errors_become_queue_errors(self, sqs_client):
        sqs_client.receive_message.side_effect = _client_error('AWS.SimpleQueueService.NonExistentQueue', 'ReceiveMessage')
        queue = SqsMessageQueue(queue_url='http://sqs.test/jobs', client=sqs_client)

        with pytest.raises(QueueError):
            await queue.poll_messages()

    def test_requires_url_or_name(self):
        with pytest.raises(QueueError):
            SqsMessageQueue(client=Mock())


class TestS3FileStorage:
    """S3 adapter over a mocked boto3 client"""

    @pytest.fixture
    def s3_client(self):
        client = Mock()
        client.get_object.return_value = {'Body': io.BytesIO(b'file-bytes')}
        client.generate_presigned_url.return_value = 'https://signed.test/key?sig=1'
        return client

    @pytest.mark.asyncio
    async def test_get_and_put(self, s3_client):
        storage = S3FileStorage('bucket', client=s3_client)

        assert await storage.get_file('uploads/j1') == b'file-bytes'
        await storage.put_file('processed/j1.png', b'png', 'image/png')

        s3_client.get_object.assert_called_once_with(Bucket='bucket', Key='uploads/j1')
        s3_client.put_object.assert_called_once_with(
            Bucket='bucket', Key='processed/j1.png', Body=b'png', ContentType='image/png'
        )

    @pytest.mark.asyncio
    async def test_missing_object(self, s3_client):
        s3_client.get_object.side_effect = _client_error('NoSuchKey', 'GetObject')
        storage = S3FileStorage('bucket', client=s3_client)

        with pytest.raises(StorageError) as exc_info:
            await storage.get_file('uploads/missing')

        assert exc_info.value.key == 'uploads/missing'
        assert "File not found" in str(exc_info.value)

    def test_download_url_with_endpoint_override(self, s3_client):
        storage = S3FileStorage('bucket', endpoint_url='http://localhost:4566/', client=s3_client)

        assert storage.generate_download_url('processed/j1.png') == 'http://localhost:4566/bucket/processed/j1.png'

    def test_download_url_default(self, s3_client):
        storage = S3FileStorage('bucket', region_name='eu-west-1', client=s3_client)

        assert storage.generate_download_url('k') == 'https://bucket.s3.eu-west-1.amazonaws.com/k'

    def test_download_url_public_base(self, s3_client):
        storage = S3FileStorage('bucket', public_base_url='https://cdn.test', client=s3_client)

        assert storage.generate_download_url('k') == 'https://cdn.test/k'

    def test_presigned_download_url(self, s3_client):
        storage = S3FileStorage('bucket', presigned_url_expiry=3600, client=s3_client)

        assert storage.generate_download_url('k') == 'https://signed.test/key?sig=1'
        s3_client.generate_presigned_url.assert_called_once_with(
            'get_object', Params={'Bucket': 'bucket', 'Key': 'k'}, ExpiresIn=3600
        )


class TestLocalFileStorage:
    """Filesystem adapter"""

    @pytest.mark.asyncio
    async def test_round_trip_with_content_type(self, file_storage):
        await file_storage.put_file('processed/j1.png', b'png-bytes', 'image/png')

        assert await file_storage.get_file('processed/j1.png') == b'png-bytes'
        assert file_storage.get_content_type('processed/j1.png') == 'image/png'

    @pytest.mark.asyncio
    async def test_missing_file(self, file_storage):
        with pytest.raises(StorageError):
            await file_storage.get_file('uploads/missing')

    @pytest.mark.asyncio
    async def test_rejects_escaping_keys(self, file_storage):
        with pytest.raises(StorageError):
            await file_storage.put_file('../outside', b'x', 'text/plain')

    def test_download_url(self, temp_dir):
        storage = LocalFileStorage(str(temp_dir), public_base_url='http://localhost:8080/files/')

        assert storage.generate_download_url('processed/j1.png') == 'http://localhost:8080/files/processed/j1.png'
        assert LocalFileStorage(str(temp_dir)).generate_download_url('a.txt').startswith('file://')
