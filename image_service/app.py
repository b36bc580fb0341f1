from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from jose import JWTError, jwt
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .__version__ import __version__
from .analysis import AnalysisHandler, AnalysisWorker
from .auth import DEFAULT_GUEST_EMAIL_DOMAIN, AuthHandler, extract_claims
from .errors import InfrastructureError, ServiceError, UnauthorizedError
from .identity import IdentityProvider
from .job_queue import JobQueue
from .metadata_store import MetadataStore
from .models import MAX_FILE_SIZE, Claims
from .object_store import ObjectStore
from .query import QueryHandler
from .upload import UploadHandler
from .vision_client import DEFAULT_MODEL_ID, VisionClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "image-service"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "Content-Type,Authorization,X-Api-Key,X-Amz-Date,X-Amz-Security-Token,Accept,Accept-Encoding"
    ),
    "Access-Control-Allow-Methods": "GET,POST,PUT,PATCH,DELETE,OPTIONS",
}


@dataclass
class ServiceConfig:
    host: str = "127.0.0.1"
    port: int = 8080
    aws_region: str = "us-east-1"
    # Managed services
    bucket_name: str = "image-service-bucket"
    images_table: str = "images"
    analysis_table: str = "image_analysis"
    queue_url: str = ""
    bedrock_model_id: str = DEFAULT_MODEL_ID
    user_pool_id: str = ""
    user_pool_client_id: str = ""
    # Upload and query behaviour
    max_file_size: int = MAX_FILE_SIZE
    presigned_url_expiry: int = 3600
    # Analysis worker
    run_analysis_worker: bool = False
    worker_concurrency: int = 1
    queue_wait_seconds: int = 20
    # Auth
    claims_header: str = "X-Authorizer-Claims"
    guest_email_domain: str = DEFAULT_GUEST_EMAIL_DOMAIN


@dataclass
class ServiceClients:
    object_store: ObjectStore
    metadata_store: MetadataStore
    job_queue: JobQueue
    vision_client: VisionClient
    identity: IdentityProvider


@dataclass
class ServiceState:
    config: ServiceConfig
    clients: ServiceClients
    upload_handler: UploadHandler
    analysis_handler: AnalysisHandler
    query_handler: QueryHandler
    auth_handler: AuthHandler
    worker: AnalysisWorker
    workers: List[asyncio.Task] = field(default_factory=list)


def build_services(config: ServiceConfig) -> ServiceClients:
    """Create one client per managed service."""
    region = config.aws_region
    return ServiceClients(
        object_store=ObjectStore(config.bucket_name, region=region),
        metadata_store=MetadataStore(
            images_table_name=config.images_table,
            analysis_table_name=config.analysis_table,
            region=region,
        ),
        job_queue=JobQueue(config.queue_url, region=region),
        vision_client=VisionClient(config.bedrock_model_id, region=region),
        identity=IdentityProvider(config.user_pool_id, config.user_pool_client_id, region=region),
    )


def build_state(config: ServiceConfig, clients: ServiceClients) -> ServiceState:
    analysis_handler = AnalysisHandler(clients.object_store, clients.metadata_store, clients.vision_client)
    return ServiceState(
        config=config,
        clients=clients,
        upload_handler=UploadHandler(
            clients.object_store,
            clients.metadata_store,
            clients.job_queue,
            max_file_size=config.max_file_size,
        ),
        analysis_handler=analysis_handler,
        query_handler=QueryHandler(
            clients.object_store,
            clients.metadata_store,
            url_expiry=config.presigned_url_expiry,
        ),
        auth_handler=AuthHandler(
            clients.identity,
            clients.object_store,
            clients.metadata_store,
            guest_email_domain=config.guest_email_domain,
        ),
        worker=AnalysisWorker(clients.job_queue, analysis_handler, wait_seconds=config.queue_wait_seconds),
    )


# Request bodies


class SignUpRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)
    given_name: str = Field(alias="givenName", min_length=1)
    family_name: str = Field(alias="familyName", min_length=1)


class SignInRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(alias="refreshToken", min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=1)


class ConfirmForgotPasswordRequest(BaseModel):
    email: str = Field(min_length=1)
    confirmation_code: str = Field(alias="confirmationCode", min_length=1)
    new_password: str = Field(alias="newPassword", min_length=1)


# Helpers


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> JSONResponse:
    content: Dict[str, Any] = {"success": True}
    if message:
        content["message"] = message
    if data is not None:
        content["data"] = data
    return JSONResponse(content=content, status_code=status_code)


def error_envelope(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(content={"success": False, "error": error}, status_code=status_code)


def get_state(request: Request) -> ServiceState:
    return request.app.state.service


def resolve_claims(request: Request, claims_header: str) -> Optional[Claims]:
    """
    Read the caller's claims as validated by the upstream authorizer.

    The authorizer forwards them as a JSON object in the configured claims
    header. Without it, the bearer token payload is read as-is; its signature
    was already checked upstream.
    """
    header = request.headers.get(claims_header)
    if header:
        try:
            raw = json.loads(header)
        except ValueError:
            logger.warning("Ignoring malformed claims header")
            return None
        return extract_claims(raw) if isinstance(raw, dict) else None

    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        try:
            return extract_claims(jwt.get_unverified_claims(token.strip()))
        except JWTError:
            logger.warning("Ignoring unreadable bearer token")
    return None


def get_claims(request: Request, state: ServiceState = Depends(get_state)) -> Claims:
    claims = resolve_claims(request, state.config.claims_header)
    if claims is None:
        raise UnauthorizedError("Unauthorized")
    return claims


# Endpoints


async def health_check() -> JSONResponse:
    return JSONResponse({
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def upload_image(
    request: Request,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
    content_type: Optional[str] = Header(None),
    content_transfer_encoding: Optional[str] = Header(None),
) -> JSONResponse:
    # The multipart body is parsed by hand; API Gateway may hand it over base64 encoded.
    body = await request.body()
    record = await state.upload_handler.handle(
        body,
        content_type,
        claims,
        is_base64=(content_transfer_encoding or "").lower() == "base64",
    )
    return envelope(record.to_public(), message="Image uploaded successfully", status_code=201)


async def list_images(
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    images = await state.query_handler.list_images(claims)
    return envelope([image.to_public() for image in images])


async def download_image(
    image_id: str,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> Response:
    url = await state.query_handler.get_image_url(claims, image_id)
    return RedirectResponse(url=url, status_code=302)


async def image_info(
    image_id: str,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    image = await state.query_handler.get_image(claims, image_id)
    return envelope(image.to_public())


async def delete_image(
    image_id: str,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    await state.query_handler.delete_image(claims, image_id)
    return envelope({"id": image_id}, message="Image deleted successfully")


async def list_analyses(
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    analyses = await state.query_handler.list_analyses(claims)
    return envelope([analysis.to_public() for analysis in analyses])


async def get_analysis(
    image_id: str,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    analysis = await state.query_handler.get_analysis(claims, image_id)
    return envelope(analysis.to_public())


async def sign_up(body: SignUpRequest, state: ServiceState = Depends(get_state)) -> JSONResponse:
    user_id = await state.auth_handler.sign_up(body.email, body.password, body.given_name, body.family_name)
    return envelope(
        {"userId": user_id, "message": "You can now sign in with your credentials"},
        message="Account created successfully. You can now sign in.",
        status_code=201,
    )


async def sign_in(body: SignInRequest, state: ServiceState = Depends(get_state)) -> JSONResponse:
    tokens = await state.auth_handler.sign_in(body.email, body.password)
    return envelope(tokens.to_public(), message="Signed in successfully")


async def refresh_token(body: RefreshTokenRequest, state: ServiceState = Depends(get_state)) -> JSONResponse:
    tokens = await state.auth_handler.refresh(body.refresh_token)
    return envelope(tokens.to_public(), message="Token refreshed successfully")


async def forgot_password(body: ForgotPasswordRequest, state: ServiceState = Depends(get_state)) -> JSONResponse:
    await state.auth_handler.forgot_password(body.email)
    return envelope(
        {"message": "A confirmation code has been sent to your email"},
        message="Password reset initiated",
    )


async def confirm_forgot_password(
    body: ConfirmForgotPasswordRequest,
    state: ServiceState = Depends(get_state),
) -> JSONResponse:
    await state.auth_handler.confirm_forgot_password(body.email, body.confirmation_code, body.new_password)
    return envelope(
        {"message": "You can now sign in with your new password"},
        message="Password reset successfully",
    )


async def get_me(
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    return envelope(state.auth_handler.profile(claims))


async def delete_me(
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    await state.auth_handler.delete_account(claims)
    return envelope(
        {"message": "Your account and all associated data have been permanently deleted"},
        message="Account deleted successfully",
    )


async def upgrade_account(
    body: SignUpRequest,
    state: ServiceState = Depends(get_state),
    claims: Claims = Depends(get_claims),
) -> JSONResponse:
    tokens = await state.auth_handler.upgrade(
        claims, body.email, body.password, body.given_name, body.family_name
    )
    return envelope({"tokens": tokens.to_public()}, message="Account upgraded successfully")


Endpoint = Callable[..., Awaitable[Response]]

ROUTES: List[tuple[str, str, Endpoint]] = [
    ("GET", "/health", health_check),
    ("POST", "/api/upload", upload_image),
    ("GET", "/api/images", list_images),
    ("GET", "/api/images/{image_id}/info", image_info),
    ("GET", "/api/images/{image_id}", download_image),
    ("DELETE", "/api/images/{image_id}", delete_image),
    ("GET", "/api/analysis", list_analyses),
    ("GET", "/api/analysis/{image_id}", get_analysis),
    ("POST", "/api/auth/signup", sign_up),
    ("POST", "/api/auth/signin", sign_in),
    ("POST", "/api/auth/refresh", refresh_token),
    ("POST", "/api/auth/forgot-password", forgot_password),
    ("POST", "/api/auth/confirm-forgot-password", confirm_forgot_password),
    ("GET", "/api/auth/me", get_me),
    ("DELETE", "/api/auth/me", delete_me),
    ("PATCH", "/api/auth/upgrade", upgrade_account),
]

# 400 message per route when its request body fails validation
BODY_ERRORS: Dict[str, str] = {
    "/api/auth/signup": "Email, password, givenName, and familyName are required",
    "/api/auth/signin": "Email and password are required",
    "/api/auth/refresh": "refreshToken is required",
    "/api/auth/forgot-password": "Email is required",
    "/api/auth/confirm-forgot-password": "Email, confirmationCode, and newPassword are required",
    "/api/auth/upgrade": "Email, password, givenName, and familyName are required",
}
DEFAULT_BODY_ERROR = "Malformed request"


def create_app(config: Optional[ServiceConfig] = None, services: Optional[ServiceClients] = None) -> FastAPI:
    cfg = config or ServiceConfig()
    state = build_state(cfg, services or build_services(cfg))

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN001
        if cfg.run_analysis_worker:
            for _ in range(max(1, cfg.worker_concurrency)):
                state.workers.append(asyncio.create_task(state.worker.run()))
            logger.info(f"Started {len(state.workers)} analysis worker(s)")
        try:
            yield
        finally:
            for task in state.workers:
                task.cancel()
            for task in state.workers:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            state.workers.clear()

    app = FastAPI(title="Image Analysis Service", version=__version__, lifespan=lifespan)
    app.state.service = state

    for method, path, endpoint in ROUTES:
        app.add_api_route(path, endpoint, methods=[method])

    @app.middleware("http")
    async def cors_and_errors(request: Request, call_next):  # noqa: ANN001
        if request.method == "OPTIONS":
            response: Response = Response(status_code=204)
        else:
            try:
                response = await call_next(request)
            except Exception:  # noqa: BLE001
                logger.exception(f"Unhandled error on {request.method} {request.url.path}")
                response = error_envelope(500, "Internal server error")
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
        if isinstance(exc, InfrastructureError):
            logger.error(f"{request.method} {request.url.path} failed on {exc.service}: {exc.message}")
            return error_envelope(exc.status_code, "Internal server error")
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return error_envelope(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        logger.warning(f"{request.method} {path} rejected: {exc.errors()}")
        return error_envelope(400, BODY_ERRORS.get(path, DEFAULT_BODY_ERROR))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return error_envelope(404, "Route not found")
        return error_envelope(exc.status_code, str(exc.detail))

    return app
