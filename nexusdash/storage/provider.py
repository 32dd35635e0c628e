from functools import lru_cache

from fastapi import Depends
from typing_extensions import Annotated

from nexusdash.core.config import Settings, get_settings
from nexusdash.storage.base import StorageProvider
from nexusdash.storage.errors import StorageConfigurationError
from nexusdash.storage.local import LocalStorageProvider
from nexusdash.storage.s3 import S3StorageProvider, r2_endpoint


def build_storage_provider(settings: Settings) -> StorageProvider:
    if settings.storage_provider == "local":
        return LocalStorageProvider(settings.storage_local_root)

    missing = [
        name
        for name, value in (
            ("S3_BUCKET", settings.s3_bucket),
            ("S3_ACCESS_KEY_ID", settings.s3_access_key_id),
            ("S3_SECRET_ACCESS_KEY", settings.s3_secret_access_key),
        )
        if not value
    ]

    endpoint_url = settings.s3_endpoint_url
    if settings.storage_provider == "r2" and not endpoint_url:
        if settings.r2_account_id:
            endpoint_url = r2_endpoint(settings.r2_account_id)
        else:
            missing.append("R2_ACCOUNT_ID")

    if missing:
        raise StorageConfigurationError(
            f"STORAGE_PROVIDER={settings.storage_provider} requires {', '.join(missing)}"
        )

    return S3StorageProvider(
        bucket_name=settings.s3_bucket,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        endpoint_url=endpoint_url,
        region_name=settings.s3_region,
        signed_url_ttl_seconds=settings.storage_signed_url_ttl_seconds,
    )


@lru_cache
def get_storage_provider() -> StorageProvider:
    return build_storage_provider(get_settings())


StorageDep = Annotated[StorageProvider, Depends(get_storage_provider)]
