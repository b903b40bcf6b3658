#!/usr/bin/env python3
"""
Constants for release-mirror.

Centralized defaults shared by configuration, the GitHub client and the sync pipeline.
"""

# GitHub API
GITHUB_API_URL = "https://api.github.com"
DEFAULT_OWNER = "qingstor"
DEFAULT_PROJECTS = ("qsctl",)

# Releases are listed with the platform's default page size; assets are capped at one page
ASSET_PAGE_SIZE = 100

# Persisted index document
DEFAULT_DATA_FILE = "site/data.json"

# Storage
DEFAULT_STORAGE_TYPE = "qingstor"
DEFAULT_PUBLIC_URL_TEMPLATE = "https://{bucket}.{location}.qingstor.com/{path}"
QINGSTOR_ENDPOINT_TEMPLATE = "https://s3.{location}.qingstor.com"
QINGSTOR_DEFAULT_ENDPOINT = "https://s3.qingstor.com"
MULTIPART_THRESHOLD_BYTES = 64 * 1024 * 1024
DEFAULT_S3_MAX_POOL_CONNECTIONS = 20

# Sync pipeline
DEFAULT_CONCURRENCY = 4
DEFAULT_FAILURE_POLICY = "project"
DEFAULT_DISK_SPACE_THRESHOLD = 0.9

# Network timeouts (seconds)
DEFAULT_REQUEST_TIMEOUT = 60
DEFAULT_DOWNLOAD_TIMEOUT = 1800

# Retry configuration for GitHub API and download requests
REQUEST_MAX_RETRIES = 4
REQUEST_BACKOFF_MIN = 1
REQUEST_BACKOFF_MAX = 60
REQUEST_BACKOFF_MULTIPLIER = 2

# Default public URL template per storage type
PUBLIC_URL_TEMPLATES = {
    "qingstor": DEFAULT_PUBLIC_URL_TEMPLATE,
    "s3": "https://{bucket}.s3.{location}.amazonaws.com/{path}",
    "local": "file://{location}/{bucket}/{path}",
}
