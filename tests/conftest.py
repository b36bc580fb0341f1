"""Shared fixtures: in-memory stand-ins for the managed-service clients."""

from typing import Dict, List, Optional

import pytest

from image_service.errors import ConflictError, NotFoundError
from image_service.job_queue import QueueMessage
from image_service.models import AnalysisJob, AnalysisRecord, AuthTokens, Claims, ImageRecord


class FakeObjectStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.metadata: Dict[str, Dict[str, str]] = {}
        self.deleted: List[str] = []

    async def put_object(self, key, content, content_type, metadata=None):
        self.objects[key] = content
        self.metadata[key] = dict(metadata or {})

    async def get_object(self, key):
        if key not in self.objects:
            raise NotFoundError(f"Object {key} not found")
        return self.objects[key]

    async def delete_object(self, key):
        self.objects.pop(key, None)
        self.deleted.append(key)

    async def delete_objects(self, keys):
        for key in keys:
            await self.delete_object(key)
        return len(keys)

    async def presigned_get_url(self, key, expires_in=3600):
        return f"https://bucket.example.com/{key}?expires={expires_in}"


class FakeMetadataStore:
    def __init__(self):
        self.images: Dict[str, ImageRecord] = {}
        self.analyses: Dict[str, AnalysisRecord] = {}
        self.analysis_history: List[AnalysisRecord] = []

    async def put_image(self, record):
        self.images[record.image_id] = record

    async def get_image(self, image_id):
        return self.images.get(image_id)

    async def update_image_status(self, image_id, status):
        if image_id in self.images:
            self.images[image_id].status = status

    async def list_images(self):
        return list(self.images.values())

    async def list_images_for_user(self, user_id):
        return [image for image in self.images.values() if image.user_id == user_id]

    async def delete_image(self, image_id):
        self.images.pop(image_id, None)

    async def delete_images(self, image_ids):
        for image_id in image_ids:
            self.images.pop(image_id, None)

    async def put_analysis(self, record):
        self.analyses[record.image_id] = record
        self.analysis_history.append(record)

    async def get_analysis(self, image_id):
        return self.analyses.get(image_id)

    async def list_analyses(self):
        return list(self.analyses.values())

    async def list_analyses_for_user(self, user_id):
        return [analysis for analysis in self.analyses.values() if analysis.user_id == user_id]

    async def delete_analysis(self, image_id):
        self.analyses.pop(image_id, None)

    async def delete_analyses(self, image_ids):
        for image_id in image_ids:
            self.analyses.pop(image_id, None)


class FakeJobQueue:
    queue_url = "https://sqs.example.com/jobs"

    def __init__(self):
        self.sent: List[AnalysisJob] = []
        self.pending: List[QueueMessage] = []
        self.deleted: List[QueueMessage] = []

    async def send_job(self, job):
        self.sent.append(job)
        return f"msg-{len(self.sent)}"

    async def receive(self, wait_seconds=20, max_messages=1):
        batch, self.pending = self.pending[:max_messages], self.pending[max_messages:]
        return batch

    async def delete(self, message):
        self.deleted.append(message)


class FakeVisionClient:
    def __init__(self, reply: str = "", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    async def describe_image(self, image_base64, media_type, prompt):
        self.calls.append((image_base64, media_type, prompt))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeIdentity:
    def __init__(self):
        self.users: Dict[str, Dict[str, str]] = {}
        self.deleted: List[str] = []
        self.passwords: Dict[str, str] = {}

    async def sign_up(self, email, password, attributes):
        if email in self.users:
            raise ConflictError("An account with this email already exists")
        self.users[email] = dict(attributes)
        self.passwords[email] = password
        return f"sub-{email}"

    async def password_auth(self, email, password):
        if self.passwords.get(email) != password:
            return None
        return AuthTokens(access_token="access", id_token="id", refresh_token="refresh")

    async def refresh_auth(self, refresh_token):
        if refresh_token != "refresh":
            return None
        return AuthTokens(access_token="access-2", id_token="id-2")

    async def forgot_password(self, email):
        pass

    async def confirm_forgot_password(self, email, code, new_password):
        self.passwords[email] = new_password

    async def delete_user(self, username):
        self.deleted.append(username)

    async def update_attributes(self, username, attributes):
        user = self.users.setdefault(username, {})
        user.update(attributes)
        if "email" in attributes and attributes["email"] != username:
            self.passwords[attributes["email"]] = self.passwords.pop(username, "")

    async def set_password(self, username, password):
        # after an email change the new address is the sign-in name
        email = self.users.get(username, {}).get("email", username)
        self.passwords[email] = password


VALID_REPLY = (
    "DESCRIPTION: A red bicycle leaning against a brick wall.\n"
    "KEYWORDS: bicycle, red, wall, street, urban\n"
    "DETECTED_TEXT: [No text detected]"
)

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg-payload\xff\xd9"


def multipart_body(
    parts: List[tuple],
    boundary: str = "----TestBoundary7MA4YWxkTrZu0gW",
) -> bytes:
    """Build a multipart body from (name, filename, content_type, content) tuples."""
    chunks = []
    for name, filename, content_type, content in parts:
        disposition = f'Content-Disposition: form-data; name="{name}"'
        if filename is not None:
            disposition += f'; filename="{filename}"'
        header = disposition + "\r\n"
        if content_type:
            header += f"Content-Type: {content_type}\r\n"
        if isinstance(content, str):
            content = content.encode("utf-8")
        chunks.append(f"--{boundary}\r\n".encode() + header.encode() + b"\r\n" + content + b"\r\n")
    chunks.append(f"--{boundary}--\r\n".encode())
    return b"".join(chunks)


def multipart_content_type(boundary: str = "----TestBoundary7MA4YWxkTrZu0gW") -> str:
    return f"multipart/form-data; boundary={boundary}"


@pytest.fixture
def object_store():
    return FakeObjectStore()


@pytest.fixture
def metadata_store():
    return FakeMetadataStore()


@pytest.fixture
def job_queue():
    return FakeJobQueue()


@pytest.fixture
def vision_client():
    return FakeVisionClient(reply=VALID_REPLY)


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def user_claims():
    """Claims for an ordinary user."""
    return Claims(sub="user-1", email="alice@example.com", given_name="Alice", family_name="Smith")


@pytest.fixture
def other_claims():
    """Claims for a second ordinary user."""
    return Claims(sub="user-2", email="bob@example.com")


@pytest.fixture
def admin_claims():
    """Claims for a member of the admin group."""
    return Claims(sub="admin-1", email="root@example.com", groups=["admin"])


def make_image(image_id: str, user_id: str, uploaded_at: str = "2024-01-01T00:00:00+00:00") -> ImageRecord:
    return ImageRecord(
        image_id=image_id,
        user_id=user_id,
        filename=f"{image_id}.jpg",
        original_name="photo.jpg",
        mimetype="image/jpeg",
        size=len(JPEG_BYTES),
        uploaded_at=uploaded_at,
        s3_key=f"images/{image_id}.jpg",
    )
