"""
Storage Factory Functions

Centralized storage creation from run configuration.
"""

import logging
from typing import TYPE_CHECKING

from ..constants import QINGSTOR_DEFAULT_ENDPOINT, QINGSTOR_ENDPOINT_TEMPLATE
from ..errors import ConfigurationError
from .base import BackendConfig, Storage

if TYPE_CHECKING:
    from ..run_config import StorageConfig

logger = logging.getLogger(__name__)


def qingstor_endpoint(location: str | None) -> str:
    """S3-compatible endpoint of a QingStor zone."""
    if location:
        return QINGSTOR_ENDPOINT_TEMPLATE.format(location=location)
    return QINGSTOR_DEFAULT_ENDPOINT


def create_storage_from_config(storage_config: "StorageConfig") -> Storage:
    """
    Create storage instance based on storage configuration.

    Args:
        storage_config: Complete storage configuration dict

    Returns:
        Storage: Configured storage instance

    Raises:
        ConfigurationError: If storage type is unknown or configuration is invalid
    """
    storage_type = storage_config["type"]
    config = storage_config["config"]

    bucket = config.get("bucket_name")
    if not bucket:
        raise ConfigurationError("Storage requires a bucket name")
    location = config.get("bucket_location")

    match storage_type:
        case "local":
            base_path = config.get("base_path")
            if not base_path:
                raise ConfigurationError("Local storage requires base_path in storage configuration")
            return create_local_storage(base_path, bucket, location)

        case "qingstor":
            access_key = config.get("access_key")
            secret_key = config.get("secret_key")
            if not access_key or not secret_key:
                raise ConfigurationError("QingStor requires QINGSTOR_ACCESS_KEY and QINGSTOR_SECRET_KEY")
            endpoint_url = config.get("endpoint_url") or qingstor_endpoint(location)
            return create_s3_storage(bucket, location, endpoint_url, access_key, secret_key)

        case "s3":
            # Without explicit keys botocore falls back to its own credential chain
            return create_s3_storage(
                bucket, location, config.get("endpoint_url"), config.get("access_key"), config.get("secret_key")
            )

        case _:
            raise ConfigurationError(f"Unknown storage type: {storage_type}")


def create_s3_storage(
    bucket: str,
    location: str | None = None,
    endpoint_url: str | None = None,
    access_key: str | None = None,
    secret_key: str | None = None,
) -> Storage:
    """Create S3-compatible storage instance."""
    logger.debug(f"Creating S3 storage for bucket {bucket} (endpoint={endpoint_url or 'default'})")
    return Storage(BackendConfig.s3(bucket, location, endpoint_url, access_key, secret_key))


def create_local_storage(base_path: str, bucket: str, location: str | None = None) -> Storage:
    """Create local filesystem storage instance."""
    return Storage(BackendConfig.local(base_path, bucket, location))
