from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .errors import JobDecodeError


STATUS_UPLOADED = "uploaded"
STATUS_PROCESSING = "processing"
STATUS_ANALYZED = "analyzed"
STATUS_FAILED = "failed"

ANALYSIS_PENDING = "pending"
ANALYSIS_PROCESSING = "processing"
ANALYSIS_COMPLETED = "completed"
ANALYSIS_FAILED = "failed"

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_FILE_SIZE = 10 * 1024 * 1024
MIME_TO_EXTENSION = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    # DynamoDB rejects Python floats
    if value is None:
        return None
    return Decimal(str(value))


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value)


def _drop_none(item: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in item.items() if value is not None}


@dataclass
class GeoTag:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    captured_at: Optional[str] = None

    def is_empty(self) -> bool:
        return self.latitude is None and self.longitude is None and self.captured_at is None


@dataclass
class ImageRecord:
    image_id: str
    user_id: str
    filename: str
    original_name: str
    mimetype: str
    size: int
    uploaded_at: str
    s3_key: str
    status: str = STATUS_UPLOADED
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    captured_at: Optional[str] = None

    @property
    def path(self) -> str:
        return f"/api/images/{self.image_id}"

    def to_item(self) -> Dict[str, Any]:
        return _drop_none({
            "imageId": self.image_id,
            "userId": self.user_id,
            "filename": self.filename,
            "originalName": self.original_name,
            "mimetype": self.mimetype,
            "size": self.size,
            "uploadedAt": self.uploaded_at,
            "s3Key": self.s3_key,
            "status": self.status,
            "latitude": _to_decimal(self.latitude),
            "longitude": _to_decimal(self.longitude),
            "capturedAt": self.captured_at,
        })

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "ImageRecord":
        return cls(
            image_id=item["imageId"],
            user_id=item.get("userId", ""),
            filename=item.get("filename", ""),
            original_name=item.get("originalName", ""),
            mimetype=item.get("mimetype", ""),
            size=_to_int(item.get("size")),
            uploaded_at=item.get("uploadedAt", ""),
            s3_key=item.get("s3Key", ""),
            status=item.get("status", STATUS_UPLOADED),
            latitude=_to_float(item.get("latitude")),
            longitude=_to_float(item.get("longitude")),
            captured_at=item.get("capturedAt"),
        )

    def to_public(self) -> Dict[str, Any]:
        """Client-facing projection returned by upload and query endpoints."""
        return _drop_none({
            "id": self.image_id,
            "userId": self.user_id,
            "filename": self.filename,
            "originalName": self.original_name,
            "mimetype": self.mimetype,
            "size": self.size,
            "uploadedAt": self.uploaded_at,
            "path": self.path,
            "status": self.status,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "capturedAt": self.captured_at,
        })


@dataclass
class AnalysisRecord:
    image_id: str
    user_id: str
    filename: str
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    detected_text: List[str] = field(default_factory=list)
    status: str = ANALYSIS_PENDING
    error: Optional[str] = None
    analyzed_at: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return _drop_none({
            "imageId": self.image_id,
            "userId": self.user_id,
            "filename": self.filename,
            "description": self.description,
            "keywords": list(self.keywords),
            "detectedText": list(self.detected_text),
            "status": self.status,
            "error": self.error,
            "analyzedAt": self.analyzed_at,
        })

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "AnalysisRecord":
        return cls(
            image_id=item["imageId"],
            user_id=item.get("userId", ""),
            filename=item.get("filename", ""),
            description=item.get("description", ""),
            keywords=list(item.get("keywords") or []),
            detected_text=list(item.get("detectedText") or []),
            status=item.get("status", ANALYSIS_PENDING),
            error=item.get("error"),
            analyzed_at=item.get("analyzedAt"),
        )

    def to_public(self) -> Dict[str, Any]:
        return self.to_item()


@dataclass
class AnalysisJob:
    image_id: str
    user_id: str
    filename: str
    s3_key: str
    mimetype: str
    uploaded_at: str
    correlation_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    captured_at: Optional[str] = None

    @classmethod
    def for_image(cls, record: ImageRecord, correlation_id: str) -> "AnalysisJob":
        return cls(
            image_id=record.image_id,
            user_id=record.user_id,
            filename=record.filename,
            s3_key=record.s3_key,
            mimetype=record.mimetype,
            uploaded_at=record.uploaded_at,
            correlation_id=correlation_id,
            latitude=record.latitude,
            longitude=record.longitude,
            captured_at=record.captured_at,
        )

    def to_json(self) -> str:
        return json.dumps(_drop_none({
            "imageId": self.image_id,
            "userId": self.user_id,
            "filename": self.filename,
            "s3Key": self.s3_key,
            "mimetype": self.mimetype,
            "uploadedAt": self.uploaded_at,
            "correlationId": self.correlation_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "capturedAt": self.captured_at,
        }))

    @classmethod
    def from_json(cls, body: str) -> "AnalysisJob":
        try:
            data = json.loads(body)
        except (TypeError, ValueError) as e:
            raise JobDecodeError(f"Message body is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise JobDecodeError("Message body must be a JSON object")
        try:
            return cls(
                image_id=data["imageId"],
                user_id=data.get("userId", ""),
                filename=data["filename"],
                s3_key=data["s3Key"],
                mimetype=data.get("mimetype", "image/jpeg"),
                uploaded_at=data.get("uploadedAt", ""),
                correlation_id=data.get("correlationId", ""),
                latitude=_to_float(data.get("latitude")),
                longitude=_to_float(data.get("longitude")),
                captured_at=data.get("capturedAt"),
            )
        except KeyError as e:
            raise JobDecodeError(f"Message body missing required key {e}") from e


@dataclass
class ExtractedAnalysis:
    description: str
    keywords: List[str]
    detected_text: List[str]


@dataclass
class Claims:
    sub: str
    email: str = ""
    username: Optional[str] = None
    groups: List[str] = field(default_factory=list)
    given_name: str = ""
    family_name: str = ""
    email_verified: bool = False

    @property
    def is_admin(self) -> bool:
        return "admin" in self.groups

    @property
    def role(self) -> str:
        return "admin" if self.is_admin else "user"


@dataclass
class AuthTokens:
    access_token: str
    id_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600

    def to_public(self) -> Dict[str, Any]:
        return _drop_none({
            "accessToken": self.access_token,
            "idToken": self.id_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
        })
