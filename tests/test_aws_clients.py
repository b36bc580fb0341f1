"""Tests for the boto3-backed clients, using mocked SDK clients."""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError, EndpointConnectionError

from image_service.errors import ConflictError, InfrastructureError, NotFoundError, UnauthorizedError
from image_service.identity import IdentityProvider
from image_service.job_queue import JobQueue
from image_service.metadata_store import IMAGES_BY_USER_INDEX, MetadataStore
from image_service.models import AnalysisJob, ImageRecord
from image_service.object_store import ObjectStore
from image_service.vision_client import ANTHROPIC_VERSION, VisionClient

from conftest import make_image


def _client_error(code, message="boom", operation="Operation"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.fixture
def s3_client():
    """Mocked S3 client."""
    return MagicMock()


@pytest.mark.asyncio
async def test_put_object_passes_metadata(s3_client):
    """Objects are written with their content type and metadata."""
    store = ObjectStore("bucket", client=s3_client)

    await store.put_object("images/a.jpg", b"data", "image/jpeg", metadata={"user-id": "u1"})

    s3_client.put_object.assert_called_once_with(
        Bucket="bucket",
        Key="images/a.jpg",
        Body=b"data",
        ContentType="image/jpeg",
        Metadata={"user-id": "u1"},
    )


@pytest.mark.asyncio
async def test_get_object_reads_body(s3_client):
    """Object bytes are read from the streaming body."""
    body = MagicMock()
    body.read.return_value = b"image-bytes"
    s3_client.get_object.return_value = {"Body": body}
    store = ObjectStore("bucket", client=s3_client)

    assert await store.get_object("images/a.jpg") == b"image-bytes"


@pytest.mark.asyncio
async def test_get_missing_object_is_not_found(s3_client):
    """NoSuchKey is a permanent not-found error."""
    s3_client.get_object.side_effect = _client_error("NoSuchKey")
    store = ObjectStore("bucket", client=s3_client)

    with pytest.raises(NotFoundError):
        await store.get_object("images/gone.jpg")


@pytest.mark.asyncio
async def test_unmapped_errors_are_retryable_infrastructure_errors(s3_client):
    """Throttling and connection failures become retryable infrastructure errors."""
    store = ObjectStore("bucket", client=s3_client)

    s3_client.put_object.side_effect = _client_error("SlowDown")
    with pytest.raises(InfrastructureError) as exc_info:
        await store.put_object("k", b"x", "image/png")
    assert exc_info.value.retryable
    assert exc_info.value.service == "s3"

    s3_client.delete_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example.com")
    with pytest.raises(InfrastructureError):
        await store.delete_object("k")


@pytest.mark.asyncio
async def test_delete_objects_batches_by_thousand(s3_client):
    """Bulk deletes are split into requests of at most 1000 keys."""
    store = ObjectStore("bucket", client=s3_client)
    keys = [f"images/{i}.jpg" for i in range(2500)]

    assert await store.delete_objects(keys) == 2500

    sizes = [len(call.kwargs["Delete"]["Objects"]) for call in s3_client.delete_objects.call_args_list]
    assert sizes == [1000, 1000, 500]


@pytest.mark.asyncio
async def test_delete_objects_with_no_keys_makes_no_request(s3_client):
    """Nothing to delete means no request."""
    store = ObjectStore("bucket", client=s3_client)

    assert await store.delete_objects([]) == 0
    s3_client.delete_objects.assert_not_called()


@pytest.mark.asyncio
async def test_presigned_get_url(s3_client):
    """Download URLs are presigned GETs with the requested lifetime."""
    s3_client.generate_presigned_url.return_value = "https://signed.example.com/a"
    store = ObjectStore("bucket", client=s3_client)

    url = await store.presigned_get_url("images/a.jpg", expires_in=900)

    assert url == "https://signed.example.com/a"
    s3_client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "bucket", "Key": "images/a.jpg"},
        ExpiresIn=900,
    )


@pytest.mark.asyncio
async def test_metadata_store_converts_floats_for_dynamodb():
    """Coordinates are stored as Decimal and read back as float."""
    images = MagicMock()
    store = MetadataStore(images_table=images, analysis_table=MagicMock())
    record = make_image("a", "u1")
    record.latitude = 48.5

    await store.put_image(record)

    item = images.put_item.call_args.kwargs["Item"]
    assert item["latitude"] == Decimal("48.5")
    assert "longitude" not in item
    assert ImageRecord.from_item(item).latitude == 48.5


@pytest.mark.asyncio
async def test_metadata_store_follows_pagination():
    """Scans continue from LastEvaluatedKey until exhausted."""
    images = MagicMock()
    images.scan.side_effect = [
        {"Items": [make_image("a", "u1").to_item()], "LastEvaluatedKey": {"imageId": "a"}},
        {"Items": [make_image("b", "u2").to_item()]},
    ]
    store = MetadataStore(images_table=images, analysis_table=MagicMock())

    records = await store.list_images()

    assert [record.image_id for record in records] == ["a", "b"]
    assert images.scan.call_args_list[1].kwargs["ExclusiveStartKey"] == {"imageId": "a"}


@pytest.mark.asyncio
async def test_metadata_store_queries_owner_index():
    """Per-user listings query the owner index."""
    images = MagicMock()
    images.query.return_value = {"Items": []}
    store = MetadataStore(images_table=images, analysis_table=MagicMock())

    await store.list_images_for_user("u1")

    assert images.query.call_args.kwargs["IndexName"] == IMAGES_BY_USER_INDEX


@pytest.mark.asyncio
async def test_metadata_store_missing_item_is_none():
    """A get without an Item returns None."""
    analysis = MagicMock()
    analysis.get_item.return_value = {}
    store = MetadataStore(images_table=MagicMock(), analysis_table=analysis)

    assert await store.get_analysis("nope") is None


@pytest.mark.asyncio
async def test_metadata_store_batch_delete():
    """Bulk record deletes go through the table's batch writer."""
    images = MagicMock()
    writer = images.batch_writer.return_value.__enter__.return_value
    store = MetadataStore(images_table=images, analysis_table=MagicMock())

    await store.delete_images(["a", "b"])

    assert [call.kwargs["Key"] for call in writer.delete_item.call_args_list] == [{"imageId": "a"}, {"imageId": "b"}]


@pytest.mark.asyncio
async def test_job_queue_send_and_receive():
    """Jobs are sent as JSON and received with their receive count."""
    sqs = MagicMock()
    sqs.send_message.return_value = {"MessageId": "m-1"}
    queue = JobQueue("https://sqs.example.com/q", client=sqs)
    job = AnalysisJob.for_image(make_image("a", "u1"), "corr-1")

    assert await queue.send_job(job) == "m-1"
    sent = sqs.send_message.call_args.kwargs
    assert json.loads(sent["MessageBody"])["imageId"] == "a"
    assert sent["MessageAttributes"]["correlationId"]["StringValue"] == "corr-1"

    sqs.receive_message.return_value = {"Messages": [{
        "MessageId": "m-1",
        "ReceiptHandle": "rh",
        "Body": sent["MessageBody"],
        "Attributes": {"ApproximateReceiveCount": "3"},
    }]}
    messages = await queue.receive(wait_seconds=5)

    assert messages[0].receive_count == 3
    assert AnalysisJob.from_json(messages[0].body) == job

    await queue.delete(messages[0])
    sqs.delete_message.assert_called_once_with(QueueUrl="https://sqs.example.com/q", ReceiptHandle="rh")


@pytest.mark.asyncio
async def test_vision_client_returns_first_text_block():
    """The first content block's text is returned from the model reply."""
    bedrock = MagicMock()
    body = MagicMock()
    body.read.return_value = json.dumps({"content": [{"type": "text", "text": "DESCRIPTION: hi"}]}).encode()
    bedrock.invoke_model.return_value = {"body": body}
    client = VisionClient("model-x", client=bedrock)

    text = await client.describe_image("aGVsbG8=", "image/png", "Describe")

    assert text == "DESCRIPTION: hi"
    request = json.loads(bedrock.invoke_model.call_args.kwargs["body"])
    assert request["anthropic_version"] == ANTHROPIC_VERSION
    assert request["messages"][0]["content"][0]["source"]["media_type"] == "image/png"
    assert bedrock.invoke_model.call_args.kwargs["modelId"] == "model-x"


@pytest.mark.asyncio
async def test_vision_client_empty_reply():
    """A reply without content blocks yields empty text."""
    bedrock = MagicMock()
    body = MagicMock()
    body.read.return_value = b'{"content": []}'
    bedrock.invoke_model.return_value = {"body": body}

    assert await VisionClient(client=bedrock).describe_image("", "image/jpeg", "p") == ""


@pytest.mark.asyncio
async def test_identity_error_mapping():
    """Cognito error codes map onto typed service errors."""
    cognito = MagicMock()
    provider = IdentityProvider("pool", "client", client=cognito)

    cognito.sign_up.side_effect = _client_error("UsernameExistsException")
    with pytest.raises(ConflictError):
        await provider.sign_up("a@b.c", "pw", {"email": "a@b.c"})

    cognito.initiate_auth.side_effect = _client_error("NotAuthorizedException", "Incorrect username or password.")
    with pytest.raises(UnauthorizedError, match="Invalid email or password"):
        await provider.password_auth("a@b.c", "wrong")


@pytest.mark.asyncio
async def test_identity_password_auth_tokens():
    """Successful authentication returns the token set."""
    cognito = MagicMock()
    cognito.initiate_auth.return_value = {"AuthenticationResult": {
        "AccessToken": "at", "IdToken": "it", "RefreshToken": "rt", "ExpiresIn": 3600,
    }}
    provider = IdentityProvider("pool", "client", client=cognito)

    tokens = await provider.password_auth("a@b.c", "pw")
    refreshed = await provider.refresh_auth("rt")

    assert tokens.to_public() == {"accessToken": "at", "idToken": "it", "refreshToken": "rt", "expiresIn": 3600}
    assert refreshed.refresh_token is None
    assert cognito.initiate_auth.call_args.kwargs["AuthFlow"] == "REFRESH_TOKEN_AUTH"


@pytest.mark.asyncio
async def test_owner_analysis_listing_includes_in_flight_records():
    """Per-user analysis listings filter on userId, so records without analyzedAt are found."""
    analysis = MagicMock()
    analysis.scan.return_value = {"Items": [
        {"imageId": "img1", "userId": "u1", "filename": "img1.jpg", "status": "processing"},
    ]}
    store = MetadataStore(images_table=MagicMock(), analysis_table=analysis)

    records = await store.list_analyses_for_user("u1")

    assert [(record.image_id, record.status, record.analyzed_at) for record in records] == [("img1", "processing", None)]
    assert analysis.scan.call_args.kwargs["FilterExpression"] == Attr("userId").eq("u1")
    analysis.query.assert_not_called()
