"""
S3-compatible object store access (AWS S3 or MinIO) through boto3
"""
import time
from typing import BinaryIO, Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from upload_service import logger as log
from upload_service.config import Settings
from upload_service.errors import MalformedReferenceError

REFERENCE_SCHEME = "s3"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def object_key_for(filename: str, now_ns: Optional[int] = None) -> str:
    """Nanosecond upload time followed by the original filename"""
    if now_ns is None:
        now_ns = time.time_ns()
    return f"{now_ns}-{filename}"


def build_reference(bucket: str, key: str) -> str:
    return f"{REFERENCE_SCHEME}://{bucket}/{key}"


def parse_reference(reference: str) -> Tuple[str, str]:
    """
    Split ``s3://bucket/key`` into (bucket, key). The key is taken verbatim,
    so filenames containing ``#``, ``?`` or ``%`` survive.
    """
    prefix = f"{REFERENCE_SCHEME}://"
    if not reference.startswith(prefix):
        raise MalformedReferenceError("Invalid video URL")
    bucket, _, key = reference[len(prefix):].partition("/")
    if not bucket or not key:
        raise MalformedReferenceError("Invalid video URL")
    return bucket, key


class S3Storage:
    def __init__(self, settings: Settings, client=None):
        self.bucket = settings.bucket_name
        self.presign_expiration = settings.presigned_url_expiration
        self.client = client or boto3.client(
            's3',
            endpoint_url=settings.storage_endpoint_url,
            aws_access_key_id=settings.storage_access_key,
            aws_secret_access_key=settings.storage_secret_key,
            region_name=settings.region,
            config=Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
                connect_timeout=settings.storage_connect_timeout,
                read_timeout=settings.storage_read_timeout,
                retries={'max_attempts': 3, 'mode': 'standard'},
            ),
        )

    def ensure_bucket(self) -> bool:
        """Create the bucket if missing; returns True when it was created"""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return False
        except ClientError as e:
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code not in ('404', 'NoSuchBucket', 'NotFound'):
                raise
        self.client.create_bucket(Bucket=self.bucket)
        log.info("Bucket created successfully", fields={"bucket": self.bucket})
        return True

    def put_object(self, key: str, body: BinaryIO, size: int, content_type: Optional[str] = None) -> None:
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentLength=size,
            ContentType=content_type or DEFAULT_CONTENT_TYPE,
        )

    def presign_get(self, bucket: str, key: str, expires_in: Optional[int] = None) -> str:
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': bucket, 'Key': key},
            ExpiresIn=expires_in or self.presign_expiration,
        )

    def reference_for(self, key: str) -> str:
        return build_reference(self.bucket, key)

    def resolve_url(self, reference: str) -> str:
        """Pre-signed download URL for a stored reference"""
        bucket, key = parse_reference(reference)
        return self.presign_get(bucket, key)
