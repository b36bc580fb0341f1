"""Analysis handler and the queue worker that drives it."""

from __future__ import annotations

import asyncio
import base64
import logging

from .errors import JobDecodeError
from .job_queue import JobQueue, QueueMessage
from .metadata_store import MetadataStore
from .models import (
    ANALYSIS_COMPLETED,
    ANALYSIS_FAILED,
    ANALYSIS_PROCESSING,
    STATUS_ANALYZED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    AnalysisJob,
    AnalysisRecord,
    utc_now_iso,
)
from .object_store import ObjectStore
from .response_parser import parse_model_response
from .vision_client import VisionClient, media_type_for

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """Analyze this image in detail and provide the following information:

1. DESCRIPTION: Write a detailed description (2-4 sentences) of what is shown in the image. Describe the main subjects, setting, colors, and any notable details.

2. KEYWORDS: List exactly 5 keywords or short phrases that best describe the main elements, objects, themes, or concepts in the image.

3. DETECTED_TEXT: List ALL text visible in the image, including:
   - Signs, labels, or banners
   - Addresses or street names
   - Business names or logos with text
   - Any other readable text
   If no text is visible, respond with "No text detected"

Please format your response EXACTLY as follows (this format is critical for parsing):
DESCRIPTION: [your description here]
KEYWORDS: [keyword1, keyword2, keyword3, keyword4, keyword5]
DETECTED_TEXT: [text1, text2, text3] or [No text detected]"""


class AnalysisHandler:
    def __init__(self, object_store: ObjectStore, metadata_store: MetadataStore, vision_client: VisionClient):
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.vision_client = vision_client

    async def handle_message(self, body: str) -> AnalysisRecord:
        return await self.process(AnalysisJob.from_json(body))

    async def process(self, job: AnalysisJob) -> AnalysisRecord:
        """
        Run one analysis job to completion.

        Any failure is recorded on both records and then re-raised, so the
        queue's redelivery policy decides whether the job is tried again.
        """
        tag = f"[{job.correlation_id}] [{job.image_id}]"
        logger.info(f"{tag} Processing image analysis for '{job.filename}'")

        try:
            await self.metadata_store.update_image_status(job.image_id, STATUS_PROCESSING)
            await self.metadata_store.put_analysis(AnalysisRecord(
                image_id=job.image_id,
                user_id=job.user_id,
                filename=job.filename,
                status=ANALYSIS_PROCESSING,
            ))

            logger.info(f"{tag} Retrieving image from storage: {job.s3_key}")
            image_bytes = await self.object_store.get_object(job.s3_key)
            image_base64 = base64.b64encode(image_bytes).decode("ascii")
            media_type = media_type_for(job.mimetype)

            logger.info(f"{tag} Image retrieved ({len(image_bytes)} bytes), calling model")
            response_text = await self.vision_client.describe_image(image_base64, media_type, ANALYSIS_PROMPT)
            extracted = parse_model_response(response_text)

            record = AnalysisRecord(
                image_id=job.image_id,
                user_id=job.user_id,
                filename=job.filename,
                description=extracted.description,
                keywords=extracted.keywords,
                detected_text=extracted.detected_text,
                status=ANALYSIS_COMPLETED,
                analyzed_at=utc_now_iso(),
            )
            await self.metadata_store.put_analysis(record)
            await self.metadata_store.update_image_status(job.image_id, STATUS_ANALYZED)

            logger.info(
                f"{tag} Analysis completed: keywords={record.keywords}, "
                f"detected_text={len(record.detected_text)} item(s)"
            )
            return record

        except Exception as exc:
            logger.error(f"{tag} Analysis failed: {exc}", exc_info=True)
            await self._record_failure(job, exc)
            raise

    async def _record_failure(self, job: AnalysisJob, exc: Exception) -> None:
        try:
            await self.metadata_store.put_analysis(AnalysisRecord(
                image_id=job.image_id,
                user_id=job.user_id,
                filename=job.filename,
                status=ANALYSIS_FAILED,
                error=str(exc),
                analyzed_at=utc_now_iso(),
            ))
            await self.metadata_store.update_image_status(job.image_id, STATUS_FAILED)
        except Exception as db_error:  # noqa: BLE001
            logger.error(f"[{job.image_id}] Failed to save error status: {db_error}")


class AnalysisWorker:
    """Long-polls the job queue and hands each message to the analysis handler."""

    def __init__(self, job_queue: JobQueue, handler: AnalysisHandler, wait_seconds: int = 20):
        self.job_queue = job_queue
        self.handler = handler
        self.wait_seconds = wait_seconds

    async def handle(self, message: QueueMessage) -> bool:
        """
        Process one message.

        Returns:
            True if the message was consumed (deleted), False if it was left
            for redelivery
        """
        try:
            await self.handler.handle_message(message.body)
        except JobDecodeError as e:
            # Can never succeed; drop it instead of cycling it to the DLQ.
            logger.error(f"Discarding undecodable message {message.message_id}: {e}")
            await self.job_queue.delete(message)
            return True
        except Exception as e:  # noqa: BLE001
            logger.warning(
                f"Message {message.message_id} left for redelivery "
                f"(receive count {message.receive_count}): {e}"
            )
            return False
        await self.job_queue.delete(message)
        return True

    async def poll_once(self) -> int:
        messages = await self.job_queue.receive(wait_seconds=self.wait_seconds, max_messages=1)
        for message in messages:
            await self.handle(message)
        return len(messages)

    async def run(self) -> None:
        logger.info(f"Analysis worker started on {self.job_queue.queue_url}")
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:  # noqa: BLE001
                logger.error(f"Analysis worker poll failed: {e}")
                await asyncio.sleep(1.0)
        logger.info("Analysis worker stopped")
