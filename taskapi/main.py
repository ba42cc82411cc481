import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskapi.auth import AuthGateway
from taskapi.config import Settings, get_settings
from taskapi.files import FileService
from taskapi.identity import IdentityProvider, LocalIdentityProvider
from taskapi.models import (
    FileUpload,
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TaskCreate,
    TaskUpdate,
)
from taskapi.repository import SQLiteRecordStore, utc_now
from taskapi.responses import error_response, json_response, render
from taskapi.routing import route_not_found
from taskapi.storage import LocalBlobStore
from taskapi.tasks import TaskService

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    identity_provider: IdentityProvider | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    clock = clock or utc_now
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    records = SQLiteRecordStore(settings.database_path, settings.table_name, key_field="task_id")
    blobs = LocalBlobStore(settings.blob_dir)
    identity = identity_provider or LocalIdentityProvider(
        settings.identity_database_path,
        secret_key=settings.token_secret_key,
        user_pool_id=settings.user_pool_id,
        client_id=settings.client_id,
        access_token_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.refresh_token_ttl_seconds,
        reset_code_ttl_seconds=settings.reset_code_ttl_seconds,
    )

    task_service = TaskService(records, clock=clock)
    file_service = FileService(
        blobs,
        task_service,
        max_upload_size_bytes=settings.max_upload_size_bytes,
        public_base_url=settings.public_base_url,
        clock=clock,
    )
    auth_gateway = AuthGateway(identity)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        for db_path in (settings.database_path, settings.identity_database_path):
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        records.init()
        blobs.init()
        identity.init()
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.records = records
    app.state.blobs = blobs
    app.state.identity = identity

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(_: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(error.get("type") == "json_invalid" for error in errors):
            message = "request body must be valid JSON"
        else:
            fields = [
                ".".join(str(item) for item in error["loc"] if item != "body")
                for error in errors
            ]
            message = f"invalid request parameters: {', '.join(field for field in fields if field)}"
        return error_response(400, message, "bad_request")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            return route_not_found(request.method, request.url.path)
        message = str(exc.detail) if exc.detail else "request failed"
        return error_response(exc.status_code, message, "error")

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return error_response(500, f"Internal server error: {exc}", "internal_error")

    @app.get("/health")
    def health():
        return json_response(200, {"status": "ok", "environment": settings.app_env})

    @app.get("/tasks")
    def list_tasks():
        return render(task_service.list_tasks())

    @app.post("/tasks")
    def create_task(payload: TaskCreate | None = None):
        return render(task_service.create_task(payload))

    @app.get("/tasks/{task_id}")
    def get_task(task_id: str):
        return render(task_service.get_task(task_id))

    @app.put("/tasks/{task_id}")
    def update_task(task_id: str, payload: TaskUpdate | None = None):
        return render(task_service.update_task(task_id, payload))

    @app.delete("/tasks/{task_id}")
    def delete_task(task_id: str):
        return render(task_service.delete_task(task_id))

    @app.post("/tasks/{task_id}/files")
    def upload_file(task_id: str, payload: FileUpload | None = None):
        return render(file_service.upload_file(task_id, payload))

    @app.get("/tasks/{task_id}/files")
    def list_files(task_id: str):
        return render(file_service.list_files(task_id))

    @app.get("/files/{file_id}")
    def download_file(file_id: str):
        return render(file_service.download_file(file_id))

    @app.delete("/files/{file_id}")
    def delete_file(file_id: str):
        return render(file_service.delete_file(file_id))

    @app.post("/auth/register")
    def register(payload: RegisterRequest | None = None):
        return render(auth_gateway.register(payload))

    @app.post("/auth/login")
    def login(payload: LoginRequest | None = None):
        return render(auth_gateway.login(payload))

    @app.get("/auth/user")
    def get_profile(authorization: str | None = Header(default=None)):
        return render(auth_gateway.get_profile(authorization))

    @app.post("/auth/forgot-password")
    def forgot_password(payload: ForgotPasswordRequest | None = None):
        return render(auth_gateway.forgot_password(payload))

    @app.post("/auth/reset-password")
    def reset_password(payload: ResetPasswordRequest | None = None):
        return render(auth_gateway.reset_password(payload))

    return app


app = create_app()
