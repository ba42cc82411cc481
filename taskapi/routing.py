from dataclasses import dataclass

from fastapi.responses import JSONResponse

from taskapi.responses import error_response

TASKS = "tasks"
FILES = "files"
AUTH = "auth"


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    operation: str


ROUTES: dict[str, tuple[Route, ...]] = {
    TASKS: (
        Route("GET", "/tasks", "list_tasks"),
        Route("POST", "/tasks", "create_task"),
        Route("GET", "/tasks/{task_id}", "get_task"),
        Route("PUT", "/tasks/{task_id}", "update_task"),
        Route("DELETE", "/tasks/{task_id}", "delete_task"),
    ),
    FILES: (
        Route("POST", "/tasks/{task_id}/files", "upload_file"),
        Route("GET", "/tasks/{task_id}/files", "list_files"),
        Route("GET", "/files/{file_id}", "download_file"),
        Route("DELETE", "/files/{file_id}", "delete_file"),
    ),
    AUTH: (
        Route("POST", "/auth/register", "register"),
        Route("POST", "/auth/login", "login"),
        Route("GET", "/auth/user", "get_profile"),
        Route("POST", "/auth/forgot-password", "forgot_password"),
        Route("POST", "/auth/reset-password", "reset_password"),
    ),
}


def classify(path: str) -> str | None:
    """Name the service a path belongs to, or None if it matches none."""
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return None
    head = segments[0]
    if head == AUTH:
        return AUTH
    if head == FILES or (head == TASKS and len(segments) >= 3 and segments[2] == FILES):
        return FILES
    if head == TASKS:
        return TASKS
    return None


def available_routes(service: str | None) -> list[dict[str, str]]:
    services = [service] if service else list(ROUTES)
    return [
        {"method": route.method, "path": route.path}
        for name in services
        for route in ROUTES[name]
    ]


def route_not_found(method: str, path: str) -> JSONResponse:
    return error_response(
        404,
        f"Route not found: {method} {path}",
        "not_found",
        available_routes=available_routes(classify(path)),
    )
