import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import StorageError

logger = logging.getLogger(__name__)


class FileStorage(ABC):
    """Blob store addressed by string keys"""

    @abstractmethod
    async def get_file(self, key: str) -> bytes:
        """Read a whole object; raises StorageError when it is missing"""

    @abstractmethod
    async def put_file(self, key: str, data: bytes, content_type: str):
        """Write a whole object tagged with its content type"""

    @abstractmethod
    def generate_download_url(self, key: str) -> str:
        """Reference a client can use to download the object"""


class S3FileStorage(FileStorage):
    """Amazon S3 (or LocalStack) object storage"""

    def __init__(
        self,
        bucket_name: str,
        region_name: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
        presigned_url_expiry: int = 0,
        client=None
    ):
        self.bucket_name = bucket_name
        self.region_name = region_name
        self.endpoint_url = endpoint_url.rstrip('/') if endpoint_url else None
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        self.presigned_url_expiry = presigned_url_expiry

        # Endpoint overrides (LocalStack, MinIO) need path-style addressing
        addressing_style = 'path' if endpoint_url else 'auto'
        self.client = client or boto3.client(
            's3',
            region_name=region_name,
            endpoint_url=endpoint_url,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            config=Config(signature_version='s3v4', s3={'addressing_style': addressing_style})
        )

    async def get_file(self, key: str) -> bytes:
        def _get():
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()

        try:
            return await asyncio.to_thread(_get)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code in ('NoSuchKey', '404'):
                raise StorageError(f"File not found: {key}", key=key)
            raise StorageError(f"S3 download failed: {str(e)}", key=key)
        except BotoCoreError as e:
            raise StorageError(f"S3 download failed: {str(e)}", key=key)

    async def put_file(self, key: str, data: bytes, content_type: str):
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 upload failed: {str(e)}", key=key)

    def generate_download_url(self, key: str) -> str:
        if self.presigned_url_expiry > 0:
            return self.client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=self.presigned_url_expiry
            )
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.{self.region_name}.amazonaws.com/{key}"


class LocalFileStorage(FileStorage):
    """Filesystem storage rooted at a directory, for development and tests"""

    CONTENT_TYPE_SUFFIX = '.content-type'

    def __init__(self, root_dir: str, public_base_url: Optional[str] = None):
        self.root_dir = Path(root_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None

    def _path_for(self, key: str) -> Path:
        path = (self.root_dir / key).resolve()
        if path != self.root_dir and self.root_dir not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}", key=key)
        return path

    async def get_file(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise StorageError(f"File not found: {key}", key=key)
        except OSError as e:
            raise StorageError(f"Could not read {key}: {str(e)}", key=key)

    async def put_file(self, key: str, data: bytes, content_type: str):
        path = self._path_for(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            path.with_name(path.name + self.CONTENT_TYPE_SUFFIX).write_text(content_type)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Could not write {key}: {str(e)}", key=key)

    def get_content_type(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        sidecar = path.with_name(path.name + self.CONTENT_TYPE_SUFFIX)
        return sidecar.read_text() if sidecar.exists() else None

    def generate_download_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._path_for(key).as_uri()
