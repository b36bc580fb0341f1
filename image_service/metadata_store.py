"""DynamoDB tables holding image records and analysis records."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from boto3.dynamodb.conditions import Attr, Key

from .aws import call_service, make_table
from .models import AnalysisRecord, ImageRecord

logger = logging.getLogger(__name__)

IMAGES_BY_USER_INDEX = "userId-uploadedAt-index"



async def _collect(operation: Any, **kwargs: Any) -> List[Dict[str, Any]]:
    """Run a scan or query to exhaustion, following LastEvaluatedKey."""
    items: List[Dict[str, Any]] = []
    while True:
        page = await call_service("dynamodb", operation, **kwargs)
        items.extend(page.get("Items", []))
        last_key = page.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


async def _batch_delete(table: Any, image_ids: Sequence[str]) -> None:
    def _run() -> None:
        # batch_writer flushes in groups of 25 and resends unprocessed items
        with table.batch_writer() as batch:
            for image_id in image_ids:
                batch.delete_item(Key={"imageId": image_id})

    await call_service("dynamodb", _run)


class MetadataStore:
    """Image and analysis records keyed by image id, with per-owner indexes."""

    def __init__(
        self,
        images_table: Any = None,
        analysis_table: Any = None,
        images_table_name: str = "images",
        analysis_table_name: str = "image_analysis",
        region: str = "us-east-1",
    ):
        self.images = images_table if images_table is not None else make_table(images_table_name, region)
        self.analysis = analysis_table if analysis_table is not None else make_table(analysis_table_name, region)

    # Images

    async def put_image(self, record: ImageRecord) -> None:
        await call_service("dynamodb", self.images.put_item, Item=record.to_item())
        logger.debug(f"[{record.image_id}] Image record saved with status='{record.status}'")

    async def get_image(self, image_id: str) -> Optional[ImageRecord]:
        response = await call_service("dynamodb", self.images.get_item, Key={"imageId": image_id})
        item = response.get("Item")
        return ImageRecord.from_item(item) if item else None

    async def update_image_status(self, image_id: str, status: str) -> None:
        await call_service(
            "dynamodb",
            self.images.update_item,
            Key={"imageId": image_id},
            UpdateExpression="SET #status = :status",
            ExpressionAttributeNames={"#status": "status"},
            ExpressionAttributeValues={":status": status},
        )
        logger.debug(f"[{image_id}] Image status set to '{status}'")

    async def list_images(self) -> List[ImageRecord]:
        items = await _collect(self.images.scan)
        return [ImageRecord.from_item(item) for item in items]

    async def list_images_for_user(self, user_id: str) -> List[ImageRecord]:
        items = await _collect(
            self.images.query,
            IndexName=IMAGES_BY_USER_INDEX,
            KeyConditionExpression=Key("userId").eq(user_id),
        )
        return [ImageRecord.from_item(item) for item in items]

    async def delete_image(self, image_id: str) -> None:
        await call_service("dynamodb", self.images.delete_item, Key={"imageId": image_id})

    async def delete_images(self, image_ids: Sequence[str]) -> None:
        if image_ids:
            await _batch_delete(self.images, image_ids)

    # Analysis

    async def put_analysis(self, record: AnalysisRecord) -> None:
        await call_service("dynamodb", self.analysis.put_item, Item=record.to_item())
        logger.debug(f"[{record.image_id}] Analysis record saved with status='{record.status}'")

    async def get_analysis(self, image_id: str) -> Optional[AnalysisRecord]:
        response = await call_service("dynamodb", self.analysis.get_item, Key={"imageId": image_id})
        item = response.get("Item")
        return AnalysisRecord.from_item(item) if item else None

    async def list_analyses(self) -> List[AnalysisRecord]:
        items = await _collect(self.analysis.scan)
        return [AnalysisRecord.from_item(item) for item in items]

    async def list_analyses_for_user(self, user_id: str) -> List[AnalysisRecord]:
        # The userId-analyzedAt index skips records without analyzedAt (still processing).
        items = await _collect(self.analysis.scan, FilterExpression=Attr("userId").eq(user_id))
        return [AnalysisRecord.from_item(item) for item in items]

    async def delete_analysis(self, image_id: str) -> None:
        await call_service("dynamodb", self.analysis.delete_item, Key={"imageId": image_id})

    async def delete_analyses(self, image_ids: Sequence[str]) -> None:
        if image_ids:
            await _batch_delete(self.analysis, image_ids)
