"""Account operations on top of the identity provider, plus claim helpers."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from .errors import InfrastructureError, UnauthorizedError, ValidationError
from .identity import IdentityProvider
from .metadata_store import MetadataStore
from .models import AuthTokens, Claims
from .object_store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_GUEST_EMAIL_DOMAIN = "@guidepost.guest"
DEFAULT_ROLE = "user"


def _parse_groups(raw: Any) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, (list, tuple)):
        return [str(group) for group in raw]
    text = str(raw).strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(group) for group in parsed]
    # API Gateway flattens arrays to "[a, b]" or "a,b"
    return [group.strip() for group in text.strip("[]").split(",") if group.strip()]


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def extract_claims(raw: Optional[Mapping[str, Any]]) -> Optional[Claims]:
    """Build Claims from an already-validated claims mapping; None without a subject."""
    if not raw or not raw.get("sub"):
        return None
    return Claims(
        sub=str(raw["sub"]),
        email=str(raw.get("email") or ""),
        username=raw.get("cognito:username"),
        groups=_parse_groups(raw.get("cognito:groups")),
        given_name=str(raw.get("given_name") or ""),
        family_name=str(raw.get("family_name") or ""),
        email_verified=_as_bool(raw.get("email_verified", False)),
    )


def auto_confirm_signup(event: Dict[str, Any]) -> Dict[str, Any]:
    """Pre-sign-up trigger: confirm the user and verify their email immediately."""
    email = event.get("request", {}).get("userAttributes", {}).get("email")
    logger.info(f"Pre sign-up trigger invoked for {email}")
    response = event.setdefault("response", {})
    response["autoConfirmUser"] = True
    response["autoVerifyEmail"] = True
    return event


class AuthHandler:
    def __init__(
        self,
        identity: IdentityProvider,
        object_store: ObjectStore,
        metadata_store: MetadataStore,
        guest_email_domain: str = DEFAULT_GUEST_EMAIL_DOMAIN,
    ):
        self.identity = identity
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.guest_email_domain = guest_email_domain

    async def sign_up(self, email: str, password: str, given_name: str, family_name: str) -> str:
        logger.info(f"Signing up user {email}")
        return await self.identity.sign_up(
            email,
            password,
            {
                "email": email,
                "given_name": given_name,
                "family_name": family_name,
                "custom:role": DEFAULT_ROLE,
            },
        )

    async def sign_in(self, email: str, password: str) -> AuthTokens:
        logger.info(f"Signing in user {email}")
        tokens = await self.identity.password_auth(email, password)
        if tokens is None:
            raise UnauthorizedError("Authentication failed")
        return tokens

    async def refresh(self, refresh_token: str) -> AuthTokens:
        tokens = await self.identity.refresh_auth(refresh_token)
        if tokens is None:
            raise UnauthorizedError("Token refresh failed")
        return tokens

    async def forgot_password(self, email: str) -> None:
        logger.info(f"Initiating password reset for {email}")
        await self.identity.forgot_password(email)

    async def confirm_forgot_password(self, email: str, code: str, new_password: str) -> None:
        logger.info(f"Confirming password reset for {email}")
        await self.identity.confirm_forgot_password(email, code, new_password)

    def profile(self, claims: Claims) -> Dict[str, str]:
        return {
            "userId": claims.sub,
            "email": claims.email,
            "givenName": claims.given_name,
            "familyName": claims.family_name,
            "role": claims.role,
        }

    async def delete_account(self, claims: Claims) -> Dict[str, int]:
        """Remove every image, record and analysis the user owns, then the user."""
        user_id = claims.sub
        logger.info(f"Deleting account {user_id}")

        images = await self.metadata_store.list_images_for_user(user_id)
        await self.object_store.delete_objects([image.s3_key for image in images])
        await self.metadata_store.delete_images([image.image_id for image in images])

        # An analysis shares its image's id; delete by both so none is left behind.
        analyses = await self.metadata_store.list_analyses_for_user(user_id)
        analysis_ids = {image.image_id for image in images} | {analysis.image_id for analysis in analyses}
        await self.metadata_store.delete_analyses(sorted(analysis_ids))

        await self.identity.delete_user(claims.email or claims.username or user_id)
        logger.info(f"Account {user_id} deleted: {len(images)} image(s), {len(analyses)} analysis record(s)")
        return {"imagesDeleted": len(images), "analysisDeleted": len(analyses)}

    async def upgrade(
        self,
        claims: Claims,
        email: str,
        password: str,
        given_name: str,
        family_name: str,
    ) -> AuthTokens:
        """Turn a guest account into a regular one and sign in with the new credentials."""
        if not claims.email.endswith(self.guest_email_domain):
            raise ValidationError("Only guest accounts can be upgraded")

        logger.info(f"Upgrading guest account {claims.sub} to {email}")
        username = claims.email
        await self.identity.update_attributes(
            username,
            {
                "email": email,
                "email_verified": "true",
                "given_name": given_name,
                "family_name": family_name,
            },
        )
        await self.identity.set_password(username, password)

        tokens = await self.identity.password_auth(email, password)
        if tokens is None:
            raise InfrastructureError("Failed to generate new tokens", service="cognito")
        logger.info(f"Guest account {claims.sub} upgraded")
        return tokens
