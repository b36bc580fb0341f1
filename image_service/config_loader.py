"""Configuration loader for the image service - loads from environment variables."""

from __future__ import annotations

import os
from typing import Dict

from dotenv import load_dotenv

from .app import ServiceConfig
from .auth import DEFAULT_GUEST_EMAIL_DOMAIN
from .models import MAX_FILE_SIZE
from .vision_client import DEFAULT_MODEL_ID


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env() -> ServiceConfig:
    """
    Load ServiceConfig from environment variables.

    Loads .env file if present and reads configuration values.

    Environment Variables:
        HOST: Server host (default: 127.0.0.1)
        PORT: Server port (default: 8080)
        AWS_REGION: Region for every AWS client (default: us-east-1)
        BUCKET_NAME: Bucket holding uploaded images
        IMAGES_TABLE: Image metadata table (default: images)
        ANALYSIS_TABLE: Analysis results table (default: image_analysis)
        QUEUE_URL: Analysis job queue URL
        BEDROCK_MODEL_ID: Vision model identifier
        USER_POOL_ID: Cognito user pool
        USER_POOL_CLIENT_ID: Cognito app client
        MAX_FILE_SIZE: Maximum upload size in bytes (default: 10485760 = 10MB)
        PRESIGNED_URL_EXPIRY: Download URL lifetime in seconds (default: 3600)
        RUN_ANALYSIS_WORKER: Poll the job queue in-process (default: false)
        ANALYSIS_WORKER_CONCURRENCY: Number of worker tasks (default: 1)
        QUEUE_WAIT_SECONDS: Long-poll wait time (default: 20)
        CLAIMS_HEADER: Header carrying authorizer claims (default: X-Authorizer-Claims)
        GUEST_EMAIL_DOMAIN: Email suffix marking guest accounts (default: @guidepost.guest)

    Returns:
        ServiceConfig object with values from environment
    """
    load_dotenv()

    return ServiceConfig(
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8080")),
        aws_region=os.getenv("AWS_REGION", "us-east-1"),
        bucket_name=os.getenv("BUCKET_NAME", "image-service-bucket"),
        images_table=os.getenv("IMAGES_TABLE", "images"),
        analysis_table=os.getenv("ANALYSIS_TABLE", "image_analysis"),
        queue_url=os.getenv("QUEUE_URL", ""),
        bedrock_model_id=os.getenv("BEDROCK_MODEL_ID", DEFAULT_MODEL_ID),
        user_pool_id=os.getenv("USER_POOL_ID", ""),
        user_pool_client_id=os.getenv("USER_POOL_CLIENT_ID", ""),
        max_file_size=int(os.getenv("MAX_FILE_SIZE", str(MAX_FILE_SIZE))),
        presigned_url_expiry=int(os.getenv("PRESIGNED_URL_EXPIRY", "3600")),
        run_analysis_worker=_env_bool("RUN_ANALYSIS_WORKER"),
        worker_concurrency=int(os.getenv("ANALYSIS_WORKER_CONCURRENCY", "1")),
        queue_wait_seconds=int(os.getenv("QUEUE_WAIT_SECONDS", "20")),
        claims_header=os.getenv("CLAIMS_HEADER", "X-Authorizer-Claims"),
        guest_email_domain=os.getenv("GUEST_EMAIL_DOMAIN", DEFAULT_GUEST_EMAIL_DOMAIN),
    )


def get_service_info() -> Dict[str, str]:
    """
    Get current managed-service wiring for debugging.

    Returns:
        Dictionary with the configured bucket, tables, queue and model
    """
    load_dotenv()

    return {
        "region": os.getenv("AWS_REGION", "us-east-1"),
        "bucket": os.getenv("BUCKET_NAME", ""),
        "images_table": os.getenv("IMAGES_TABLE", "images"),
        "analysis_table": os.getenv("ANALYSIS_TABLE", "image_analysis"),
        "queue_url": os.getenv("QUEUE_URL", ""),
        "model_id": os.getenv("BEDROCK_MODEL_ID", DEFAULT_MODEL_ID),
    }
