"""Client for the hosted vision-language model (Bedrock, Anthropic messages format)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from .aws import call_service, make_client

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "anthropic.claude-3-sonnet-20240229-v1:0"
ANTHROPIC_VERSION = "bedrock-2023-05-31"
MAX_TOKENS = 1024
SUPPORTED_MEDIA_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


def media_type_for(mimetype: str) -> str:
    return mimetype if mimetype in SUPPORTED_MEDIA_TYPES else "image/jpeg"


def build_request_body(image_base64: str, media_type: str, prompt: str) -> Dict[str, Any]:
    return {
        "anthropic_version": ANTHROPIC_VERSION,
        "max_tokens": MAX_TOKENS,
        "messages": [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": media_type,
                            "data": image_base64,
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ],
    }


class VisionClient:
    def __init__(self, model_id: str = DEFAULT_MODEL_ID, client: Any = None, region: str = "us-east-1"):
        self.model_id = model_id
        self.client = client or make_client("bedrock-runtime", region)

    async def describe_image(self, image_base64: str, media_type: str, prompt: str) -> str:
        """
        Send one image and prompt to the model.

        Returns:
            The text of the first content block, or "" when the reply has none
        """
        response = await call_service(
            "bedrock",
            self.client.invoke_model,
            modelId=self.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(build_request_body(image_base64, media_type, prompt)),
        )
        raw = await call_service("bedrock", response["body"].read)
        payload = json.loads(raw)
        content = payload.get("content") or []
        text = content[0].get("text", "") if content else ""
        logger.debug(f"Model reply received ({len(text)} chars): {text[:500]}")
        return text
