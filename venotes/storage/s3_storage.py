"""
S3-Compatible Storage Manager

Supports AWS S3, MinIO, Wasabi, Backblaze B2, and other S3-compatible services.
"""

from typing import Any, BinaryIO, Dict, Optional
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import BackendError, NotFound
from .storage_interface import ContentStore, StorageBackend


NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3StorageManager(ContentStore):
    """
    S3-compatible content store.

    Keys are stored under an optional prefix so several deployments can
    share one bucket.

    Configuration:
        AWS S3:
            endpoint_url=None (uses AWS defaults)
        MinIO:
            endpoint_url="http://localhost:9000"
        Wasabi:
            endpoint_url="https://s3.wasabisys.com"
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        base_path: str = "",
        client: Any = None
    ):
        """
        Initialize S3 storage manager.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (e.g., us-east-1)
            endpoint_url: Custom S3 endpoint (None = AWS S3)
            aws_access_key_id: AWS access key
            aws_secret_access_key: AWS secret key
            base_path: Key prefix inside the bucket
            client: Pre-built boto3 S3 client (overrides the connection arguments)
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url
        self.base_path = base_path.strip("/")
        self.logger = logging.getLogger(__name__)

        if client is None:
            config = Config(
                region_name=region,
                signature_version='s3v4',
                retries={'max_attempts': 3, 'mode': 'standard'}
            )
            client = boto3.client(
                's3',
                endpoint_url=endpoint_url,
                aws_access_key_id=aws_access_key_id,
                aws_secret_access_key=aws_secret_access_key,
                config=config
            )
        self.s3_client = client

        self.logger.info(f"S3 storage initialized: {self.bucket_name}/{self.base_path}")

    def _get_key(self, key: str) -> str:
        """Construct the full object key for a storage key."""
        if not self.base_path:
            return key
        return f"{self.base_path}/{key}"

    def exists(self, key: str) -> bool:
        """Check if object exists in S3."""
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=self._get_key(key))
            return True
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return False
            self.logger.error(f"Failed to check existence of {key}: {e}")
            raise BackendError(f"Failed to check file existence in S3: {e}") from e
        except BotoCoreError as e:
            self.logger.error(f"Failed to check existence of {key}: {e}")
            raise BackendError(f"Failed to check file existence in S3: {e}") from e

    def put(self, key: str, stream: BinaryIO) -> str:
        """Store an object in S3."""
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=self._get_key(key),
                Body=stream
            )
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Failed to put object {key}: {e}")
            raise BackendError(f"Failed to upload file to S3: {e}") from e

        return key

    def get(self, key: str) -> BinaryIO:
        """Open an object from S3."""
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=self._get_key(key))
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise NotFound(f"Object not found: {key}")
            self.logger.error(f"Failed to get object {key}: {e}")
            raise BackendError(f"Failed to get file from S3: {e}") from e
        except BotoCoreError as e:
            self.logger.error(f"Failed to get object {key}: {e}")
            raise BackendError(f"Failed to get file from S3: {e}") from e

        return response['Body']

    def delete(self, key: str) -> None:
        """Delete an object from S3."""
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=self._get_key(key))
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                self.logger.debug(f"Delete of missing object ignored: {key}")
                return
            self.logger.error(f"Failed to delete object {key}: {e}")
            raise BackendError(f"Failed to delete file from S3: {e}") from e
        except BotoCoreError as e:
            self.logger.error(f"Failed to delete object {key}: {e}")
            raise BackendError(f"Failed to delete file from S3: {e}") from e

    def get_storage_info(self) -> Dict[str, Any]:
        """Get S3 storage information."""
        return {
            'backend': StorageBackend.S3.value,
            'bucket': self.bucket_name,
            'base_path': self.base_path,
            'region': self.region,
            'endpoint': self.endpoint_url or 'AWS S3'
        }
