import logging
from dataclasses import asdict

from taskapi.identity import (
    CodeMismatchError,
    ExpiredCodeError,
    IdentityProvider,
    IdentityProviderError,
    InvalidParameterError,
    InvalidPasswordError,
    NotAuthorizedError,
    UserNotConfirmedError,
    UserNotFoundError,
    UsernameExistsError,
)
from taskapi.models import ForgotPasswordRequest, LoginRequest, RegisterRequest, ResetPasswordRequest
from taskapi.results import Result, Success, conflict, unauthorized, upstream_failure, validation_error

logger = logging.getLogger(__name__)

BEARER_FORMAT = "Authorization: Bearer <access_token>"


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthGateway:
    """Pass-through to the identity provider.

    Accounts are addressed by email, which doubles as the provider username.
    """

    def __init__(self, provider: IdentityProvider):
        self.provider = provider

    def register(self, payload: RegisterRequest | None) -> Result:
        payload = payload or RegisterRequest()
        if not payload.email or not payload.password:
            return validation_error("email and password are required")
        email = payload.email.strip()
        name = payload.name or email.split("@")[0]

        try:
            self.provider.admin_create_user(email, email=email, name=name)
        except UsernameExistsError:
            return conflict("User already exists")
        except InvalidParameterError as exc:
            return validation_error(str(exc))
        except IdentityProviderError as exc:
            logger.error("User creation failed for %s: %s", email, exc)
            return upstream_failure(f"Registration failed: {exc}")

        try:
            self.provider.admin_set_user_password(email, payload.password, permanent=True)
        except IdentityProviderError as exc:
            self._discard(email)
            if isinstance(exc, (InvalidPasswordError, InvalidParameterError)):
                return validation_error(f"Password does not meet requirements: {exc}")
            logger.error("Setting password failed for %s: %s", email, exc)
            return upstream_failure(f"Registration failed: {exc}")

        logger.info("Registered user %s", email)
        return Success(
            {
                "message": "User registered successfully",
                "user": {"username": email, "email": email, "name": name},
                "next_step": "Log in with POST /auth/login",
            },
            status_code=201,
        )

    def _discard(self, username: str) -> None:
        try:
            self.provider.admin_delete_user(username)
        except IdentityProviderError as exc:
            logger.warning("Could not roll back user %s: %s", username, exc)

    def login(self, payload: LoginRequest | None) -> Result:
        payload = payload or LoginRequest()
        if not payload.email or not payload.password:
            return validation_error("email and password are required")
        email = payload.email.strip()

        try:
            tokens = self.provider.initiate_auth(email, payload.password)
            profile = self.provider.get_user(tokens.access_token)
        except NotAuthorizedError:
            return unauthorized("Invalid email or password")
        except UserNotConfirmedError:
            return unauthorized("User account is not confirmed", reason="user_not_confirmed")
        except IdentityProviderError as exc:
            logger.error("Login failed for %s: %s", email, exc)
            return upstream_failure(f"Login failed: {exc}")

        logger.info("User %s logged in", email)
        return Success(
            {
                "message": "Login successful",
                "tokens": asdict(tokens),
                "user": {"email": profile.email, "name": profile.name, "sub": profile.sub},
            }
        )

    def get_profile(self, authorization: str | None) -> Result:
        token = bearer_token(authorization)
        if token is None:
            return unauthorized("Missing or malformed Authorization header", expected_format=BEARER_FORMAT)

        try:
            profile = self.provider.get_user(token)
        except NotAuthorizedError as exc:
            return unauthorized(f"Invalid or expired token: {exc}")
        except IdentityProviderError as exc:
            logger.error("Profile lookup failed: %s", exc)
            return upstream_failure(f"Failed to get user profile: {exc}")

        return Success({"message": "User profile retrieved successfully", "user": asdict(profile)})

    def forgot_password(self, payload: ForgotPasswordRequest | None) -> Result:
        payload = payload or ForgotPasswordRequest()
        if not payload.email:
            return validation_error("email is required")
        email = payload.email.strip()

        try:
            self.provider.forgot_password(email)
        except (UserNotFoundError, InvalidParameterError, NotAuthorizedError):
            logger.info("Password reset requested for unknown or unusable account")
        except IdentityProviderError as exc:
            logger.error("Password reset request failed: %s", exc)
            return upstream_failure(f"Password reset request failed: {exc}")

        return Success(
            {
                "message": "If an account exists for this email, a password reset code has been sent",
                "next_step": "Submit the code with POST /auth/reset-password",
            }
        )

    def reset_password(self, payload: ResetPasswordRequest | None) -> Result:
        payload = payload or ResetPasswordRequest()
        if not payload.email or not payload.code or not payload.new_password:
            return validation_error("email, code and new_password are required")
        email = payload.email.strip()

        try:
            self.provider.confirm_forgot_password(email, payload.code.strip(), payload.new_password)
        except (CodeMismatchError, UserNotFoundError):
            return validation_error("Invalid verification code", reason="code_mismatch")
        except ExpiredCodeError:
            return validation_error("Verification code has expired", reason="code_expired")
        except (InvalidPasswordError, InvalidParameterError) as exc:
            return validation_error(f"Password does not meet requirements: {exc}")
        except IdentityProviderError as exc:
            logger.error("Password reset failed: %s", exc)
            return upstream_failure(f"Password reset failed: {exc}")

        logger.info("Password reset completed for %s", email)
        return Success({"message": "Password reset successfully"})
