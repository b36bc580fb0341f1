"""SQS queue carrying analysis jobs from the upload handler to the analysis worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List

from .aws import call_service, make_client
from .models import AnalysisJob

logger = logging.getLogger(__name__)


@dataclass
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str
    receive_count: int = 1


class JobQueue:
    def __init__(self, queue_url: str, client: Any = None, region: str = "us-east-1"):
        self.queue_url = queue_url
        self.client = client or make_client("sqs", region)

    async def send_job(self, job: AnalysisJob) -> str:
        response = await call_service(
            "sqs",
            self.client.send_message,
            QueueUrl=self.queue_url,
            MessageBody=job.to_json(),
            MessageAttributes={
                "imageId": {"DataType": "String", "StringValue": job.image_id},
                "correlationId": {"DataType": "String", "StringValue": job.correlation_id},
            },
        )
        message_id = response.get("MessageId", "")
        logger.info(f"[{job.correlation_id}] Analysis job queued for image {job.image_id} (message {message_id})")
        return message_id

    async def receive(self, wait_seconds: int = 20, max_messages: int = 1) -> List[QueueMessage]:
        """Long-poll for up to ``max_messages`` messages."""
        response = await call_service(
            "sqs",
            self.client.receive_message,
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
            AttributeNames=["ApproximateReceiveCount"],
        )
        return [
            QueueMessage(
                message_id=raw.get("MessageId", ""),
                receipt_handle=raw["ReceiptHandle"],
                body=raw.get("Body", ""),
                receive_count=int(raw.get("Attributes", {}).get("ApproximateReceiveCount", 1)),
            )
            for raw in response.get("Messages", [])
        ]

    async def delete(self, message: QueueMessage) -> None:
        await call_service(
            "sqs",
            self.client.delete_message,
            QueueUrl=self.queue_url,
            ReceiptHandle=message.receipt_handle,
        )
