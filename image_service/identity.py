"""Cognito user pool client used by the auth endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .aws import ErrorMap, call_service, make_client
from .errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError
from .models import AuthTokens

logger = logging.getLogger(__name__)

COGNITO_ERRORS: ErrorMap = {
    "UsernameExistsException": (ConflictError, "An account with this email already exists"),
    "AliasExistsException": (ConflictError, "An account with this email already exists"),
    "NotAuthorizedException": (UnauthorizedError, "Invalid email or password"),
    "UserNotFoundException": (NotFoundError, "User not found"),
    "CodeMismatchException": (ValidationError, "Invalid confirmation code"),
    "ExpiredCodeException": (ValidationError, "Confirmation code has expired"),
    "InvalidPasswordException": (ValidationError, "Password does not meet requirements"),
    "InvalidParameterException": (ValidationError, None),
}


def _attributes(values: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"Name": name, "Value": value} for name, value in values.items()]


def _tokens(response: Dict[str, Any]) -> Optional[AuthTokens]:
    result = response.get("AuthenticationResult")
    if not result:
        return None
    return AuthTokens(
        access_token=result.get("AccessToken", ""),
        id_token=result.get("IdToken", ""),
        refresh_token=result.get("RefreshToken"),
        expires_in=result.get("ExpiresIn") or 3600,
    )


class IdentityProvider:
    def __init__(
        self,
        user_pool_id: str,
        client_id: str,
        client: Any = None,
        region: str = "us-east-1",
    ):
        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.client = client or make_client("cognito-idp", region)

    async def _call(self, operation: Any, **kwargs: Any) -> Dict[str, Any]:
        return await call_service("cognito", operation, error_map=COGNITO_ERRORS, **kwargs)

    async def sign_up(self, email: str, password: str, attributes: Dict[str, str]) -> str:
        response = await self._call(
            self.client.sign_up,
            ClientId=self.client_id,
            Username=email,
            Password=password,
            UserAttributes=_attributes(attributes),
        )
        logger.info(f"User signed up: {email} (confirmed={response.get('UserConfirmed')})")
        return response.get("UserSub", "")

    async def password_auth(self, email: str, password: str) -> Optional[AuthTokens]:
        response = await self._call(
            self.client.initiate_auth,
            ClientId=self.client_id,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters={"USERNAME": email, "PASSWORD": password},
        )
        return _tokens(response)

    async def refresh_auth(self, refresh_token: str) -> Optional[AuthTokens]:
        response = await self._call(
            self.client.initiate_auth,
            ClientId=self.client_id,
            AuthFlow="REFRESH_TOKEN_AUTH",
            AuthParameters={"REFRESH_TOKEN": refresh_token},
        )
        tokens = _tokens(response)
        if tokens is not None:
            # Cognito does not rotate refresh tokens; the client keeps its own.
            tokens.refresh_token = None
        return tokens

    async def forgot_password(self, email: str) -> None:
        await self._call(self.client.forgot_password, ClientId=self.client_id, Username=email)

    async def confirm_forgot_password(self, email: str, code: str, new_password: str) -> None:
        await self._call(
            self.client.confirm_forgot_password,
            ClientId=self.client_id,
            Username=email,
            ConfirmationCode=code,
            Password=new_password,
        )

    async def delete_user(self, username: str) -> None:
        await self._call(self.client.admin_delete_user, UserPoolId=self.user_pool_id, Username=username)

    async def update_attributes(self, username: str, attributes: Dict[str, str]) -> None:
        await self._call(
            self.client.admin_update_user_attributes,
            UserPoolId=self.user_pool_id,
            Username=username,
            UserAttributes=_attributes(attributes),
        )

    async def set_password(self, username: str, password: str) -> None:
        await self._call(
            self.client.admin_set_user_password,
            UserPoolId=self.user_pool_id,
            Username=username,
            Password=password,
            Permanent=True,
        )
