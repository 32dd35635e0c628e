import asyncio

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from nexusdash.storage.base import (
    SavedFile,
    SignedUpload,
    StorageScope,
    StoredFileMetadata,
    UploadedFile,
    create_storage_key,
)
from nexusdash.utils.task_attachment import DEFAULT_MIME_TYPE

MIN_SIGNED_URL_TTL_SECONDS = 60
MAX_SIGNED_URL_TTL_SECONDS = 3600


def clamp_signed_url_ttl(value: int) -> int:
    return min(max(value, MIN_SIGNED_URL_TTL_SECONDS), MAX_SIGNED_URL_TTL_SECONDS)


def r2_endpoint(account_id: str) -> str:
    return f"https://{account_id}.r2.cloudflarestorage.com"


def is_not_found_error(error: ClientError) -> bool:
    err = error.response.get("Error", {})
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return err.get("Code") in ("404", "NoSuchKey", "NotFound") or status == 404


class S3StorageProvider:
    """Attachment bytes in an S3-compatible bucket (AWS S3, Cloudflare R2)."""

    def __init__(
        self,
        bucket_name: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        signed_url_ttl_seconds: int = 300,
        client=None,
    ):
        self.bucket_name = bucket_name
        self.signed_url_ttl_seconds = clamp_signed_url_ttl(signed_url_ttl_seconds)
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region_name or "auto",
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    async def save_file(
        self, scope: StorageScope, owner_id: str, file: UploadedFile
    ) -> SavedFile:
        original_name = file.filename or "file"
        storage_key = create_storage_key(scope, owner_id, original_name)
        mime_type = file.content_type or DEFAULT_MIME_TYPE

        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket_name,
            Key=storage_key,
            Body=file.data,
            ContentType=mime_type,
            ContentLength=len(file.data),
        )

        return SavedFile(
            storage_key=storage_key,
            mime_type=mime_type,
            size_bytes=len(file.data),
            original_name=original_name,
        )

    async def read_file(self, storage_key: str) -> bytes:
        def _read() -> bytes:
            result = self.client.get_object(Bucket=self.bucket_name, Key=storage_key)
            body = result.get("Body")
            if body is None:
                raise ValueError("Attachment file body is missing")
            return body.read()

        return await asyncio.to_thread(_read)

    async def delete_file(self, storage_key: str) -> None:
        await asyncio.to_thread(
            self.client.delete_object, Bucket=self.bucket_name, Key=storage_key
        )

    async def get_signed_download_url(
        self, storage_key: str, content_type: str, content_disposition: str
    ) -> str | None:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            "get_object",
            Params={
                "Bucket": self.bucket_name,
                "Key": storage_key,
                "ResponseContentType": content_type,
                "ResponseContentDisposition": content_disposition,
            },
            ExpiresIn=self.signed_url_ttl_seconds,
        )

    async def create_signed_upload_url(
        self,
        scope: StorageScope,
        owner_id: str,
        original_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> SignedUpload | None:
        storage_key = create_storage_key(scope, owner_id, original_name or "file")
        content_type = mime_type or DEFAULT_MIME_TYPE

        upload_url = await asyncio.to_thread(
            self.client.generate_presigned_url,
            "put_object",
            Params={
                "Bucket": self.bucket_name,
                "Key": storage_key,
                "ContentType": content_type,
            },
            ExpiresIn=self.signed_url_ttl_seconds,
        )

        return SignedUpload(
            storage_key=storage_key,
            upload_url=upload_url,
            expires_in_seconds=self.signed_url_ttl_seconds,
            headers={"Content-Type": content_type},
        )

    async def read_stored_file_metadata(self, storage_key: str) -> StoredFileMetadata | None:
        try:
            result = await asyncio.to_thread(
                self.client.head_object, Bucket=self.bucket_name, Key=storage_key
            )
        except ClientError as e:
            if is_not_found_error(e):
                return None
            raise

        size = result.get("ContentLength")
        return StoredFileMetadata(
            size_bytes=size if isinstance(size, int) else None,
            mime_type=result.get("ContentType"),
        )
