
from pydantic import BaseModel

DEFAULT_TASK_TITLE = "Untitled Task"
DEFAULT_TASK_STATUS = "pending"


class Task(BaseModel):
    task_id: str
    title: str
    description: str
    status: str
    created_at: str
    updated_at: str


class TaskCreate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: str | None = None


class TaskUpdate(BaseModel):
    """Only the fields a client actually sends are merged into the record."""

    title: str | None = None
    description: str | None = None
    status: str | None = None

    def changes(self) -> dict[str, str]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class FileUpload(BaseModel):
    file_name: str | None = None
    file_content: str | None = None
    description: str | None = None


class FileSummary(BaseModel):
    file_id: str
    task_id: str
    file_name: str
    description: str
    file_size: int
    content_type: str
    uploaded_at: str
    download_url: str


class RegisterRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ForgotPasswordRequest(BaseModel):
    email: str | None = None


class ResetPasswordRequest(BaseModel):
    email: str | None = None
    code: str | None = None
    new_password: str | None = None
