"""Upload handler: validate the file, store it, record it, queue its analysis."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, Optional, Union
from urllib.parse import quote

from .errors import ValidationError
from .exif import read_geotag
from .job_queue import JobQueue
from .metadata_store import MetadataStore
from .models import (
    ALLOWED_MIME_TYPES,
    MAX_FILE_SIZE,
    MIME_TO_EXTENSION,
    STATUS_UPLOADED,
    AnalysisJob,
    Claims,
    GeoTag,
    ImageRecord,
    utc_now_iso,
)
from .multipart import decode_body, extract_fields, extract_file
from .object_store import ObjectStore

logger = logging.getLogger(__name__)


def _parse_coordinate(fields: Dict[str, str], name: str, limit: float) -> Optional[float]:
    raw = fields.get(name)
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number")
    if not -limit <= value <= limit:
        raise ValidationError(f"{name} must be between {-limit:g} and {limit:g}")
    return value


def geotag_from_fields(fields: Dict[str, str]) -> GeoTag:
    """Read optional latitude / longitude / capturedAt form fields."""
    captured_at = fields.get("capturedAt") or None
    if captured_at:
        try:
            captured_at = datetime.fromisoformat(captured_at.replace("Z", "+00:00")).isoformat()
        except ValueError:
            raise ValidationError("capturedAt must be an ISO-8601 timestamp")
    return GeoTag(
        latitude=_parse_coordinate(fields, "latitude", 90.0),
        longitude=_parse_coordinate(fields, "longitude", 180.0),
        captured_at=captured_at,
    )


class UploadHandler:
    def __init__(
        self,
        object_store: ObjectStore,
        metadata_store: MetadataStore,
        job_queue: JobQueue,
        max_file_size: int = MAX_FILE_SIZE,
    ):
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.job_queue = job_queue
        self.max_file_size = max_file_size

    async def handle(
        self,
        body: Union[bytes, str, None],
        content_type: Optional[str],
        claims: Claims,
        is_base64: bool = False,
    ) -> ImageRecord:
        correlation_id = str(uuid.uuid4())
        logger.info(f"[{correlation_id}] Upload request received from user {claims.sub}")

        raw = decode_body(body, is_base64)
        upload = extract_file(raw, content_type)
        if upload is None:
            logger.warning(f"[{correlation_id}] Failed to parse multipart data ({len(raw or b'')} bytes)")
            raise ValidationError("No file uploaded or invalid multipart data")

        if upload.content_type not in ALLOWED_MIME_TYPES:
            logger.warning(f"[{correlation_id}] Rejected '{upload.filename}': invalid content_type='{upload.content_type}'")
            raise ValidationError(f"Invalid file type. Allowed types: {', '.join(ALLOWED_MIME_TYPES)}")

        size = len(upload.content)
        if size > self.max_file_size:
            logger.warning(f"[{correlation_id}] Rejected '{upload.filename}': {size} bytes exceeds {self.max_file_size}")
            raise ValidationError(f"File too large. Maximum size: {self.max_file_size // (1024 * 1024)}MB")

        geotag = geotag_from_fields(extract_fields(raw, content_type))
        if geotag.is_empty():
            geotag = read_geotag(upload.content)

        image_id = str(uuid.uuid4())
        stored_filename = f"{image_id}{MIME_TO_EXTENSION.get(upload.content_type, '.jpg')}"
        record = ImageRecord(
            image_id=image_id,
            user_id=claims.sub,
            filename=stored_filename,
            original_name=upload.filename,
            mimetype=upload.content_type,
            size=size,
            uploaded_at=utc_now_iso(),
            s3_key=f"images/{stored_filename}",
            status=STATUS_UPLOADED,
            latitude=geotag.latitude,
            longitude=geotag.longitude,
            captured_at=geotag.captured_at,
        )
        logger.info(f"[{correlation_id}] Processing upload {image_id}: '{upload.filename}', {upload.content_type}, {size} bytes")

        await self.object_store.put_object(
            record.s3_key,
            upload.content,
            upload.content_type,
            metadata={
                "original-name": quote(upload.filename),
                "correlation-id": correlation_id,
                "user-id": claims.sub,
            },
        )
        await self.metadata_store.put_image(record)
        await self.job_queue.send_job(AnalysisJob.for_image(record, correlation_id))

        logger.info(f"[{correlation_id}] Upload {image_id} completed")
        return record
