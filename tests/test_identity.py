import pytest

from taskapi.identity import (
    CodeMismatchError,
    ExpiredCodeError,
    InvalidParameterError,
    InvalidPasswordError,
    LocalIdentityProvider,
    NotAuthorizedError,
    UserNotConfirmedError,
    UserNotFoundError,
    UsernameExistsError,
    check_password_policy,
    mask_destination,
)

EMAIL = "grace@example.com"
PASSWORD = "C0bolRules"


def build_provider(tmp_path, codes=None, **overrides):
    options = {
        "secret_key": "test-secret",
        "user_pool_id": "pool-1",
        "client_id": "client-1",
        **overrides,
    }
    sink = codes.__setitem__ if codes is not None else None
    provider = LocalIdentityProvider(str(tmp_path / "identity.db"), code_sink=sink, **options)
    provider.init()
    return provider


def confirmed_user(provider):
    provider.admin_create_user(EMAIL, email=EMAIL, name="Grace")
    provider.admin_set_user_password(EMAIL, PASSWORD, permanent=True)


@pytest.mark.parametrize("password", ["Sh0rt", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
def test_password_policy_rejects_weak_passwords(password):
    with pytest.raises(InvalidPasswordError):
        check_password_policy(password)


def test_mask_destination():
    assert mask_destination("grace@example.com") == "g***@example.com"
    assert mask_destination("not-an-email") == "***"


def test_create_user_rejects_duplicates_and_bad_email(tmp_path):
    provider = build_provider(tmp_path)
    profile = provider.admin_create_user(EMAIL, email=EMAIL, name="Grace")
    assert profile.username == EMAIL
    assert profile.email_verified is True

    with pytest.raises(UsernameExistsError):
        provider.admin_create_user(EMAIL, email=EMAIL, name="Grace")
    with pytest.raises(InvalidParameterError):
        provider.admin_create_user("nope", email="nope", name="nope")


def test_user_without_permanent_password_is_not_confirmed(tmp_path):
    provider = build_provider(tmp_path)
    provider.admin_create_user(EMAIL, email=EMAIL, name="Grace")
    provider.admin_set_user_password(EMAIL, PASSWORD, permanent=False)

    with pytest.raises(UserNotConfirmedError):
        provider.initiate_auth(EMAIL, PASSWORD)


def test_created_user_without_password_cannot_log_in(tmp_path):
    provider = build_provider(tmp_path)
    provider.admin_create_user(EMAIL, email=EMAIL, name="Grace")
    with pytest.raises(NotAuthorizedError):
        provider.initiate_auth(EMAIL, PASSWORD)


def test_tokens_resolve_to_profile(tmp_path):
    provider = build_provider(tmp_path)
    confirmed_user(provider)

    tokens = provider.initiate_auth(EMAIL, PASSWORD)
    profile = provider.get_user(tokens.access_token)
    assert profile.email == EMAIL
    assert profile.name == "Grace"

    with pytest.raises(NotAuthorizedError):
        provider.get_user(tokens.refresh_token)


def test_expired_access_token_is_rejected(tmp_path):
    provider = build_provider(tmp_path, access_token_ttl_seconds=-60)
    confirmed_user(provider)
    tokens = provider.initiate_auth(EMAIL, PASSWORD)

    with pytest.raises(NotAuthorizedError, match="expired"):
        provider.get_user(tokens.access_token)


def test_token_for_another_client_is_rejected(tmp_path):
    issuer = build_provider(tmp_path)
    confirmed_user(issuer)
    tokens = issuer.initiate_auth(EMAIL, PASSWORD)

    other_client = build_provider(tmp_path, client_id="client-2")
    with pytest.raises(NotAuthorizedError):
        other_client.get_user(tokens.access_token)


def test_deleted_user_token_is_rejected(tmp_path):
    provider = build_provider(tmp_path)
    confirmed_user(provider)
    tokens = provider.initiate_auth(EMAIL, PASSWORD)
    provider.admin_delete_user(EMAIL)

    with pytest.raises(NotAuthorizedError):
        provider.get_user(tokens.access_token)
    with pytest.raises(UserNotFoundError):
        provider.admin_delete_user(EMAIL)


def test_forgot_password_for_unknown_user(tmp_path):
    provider = build_provider(tmp_path)
    with pytest.raises(UserNotFoundError):
        provider.forgot_password("ghost@example.com")


def test_reset_code_is_single_use(tmp_path):
    codes = {}
    provider = build_provider(tmp_path, codes)
    confirmed_user(provider)

    delivery = provider.forgot_password(EMAIL)
    assert delivery.destination == "g***@example.com"
    provider.confirm_forgot_password(EMAIL, codes[EMAIL], "N3wPassword")
    provider.initiate_auth(EMAIL, "N3wPassword")

    with pytest.raises(CodeMismatchError):
        provider.confirm_forgot_password(EMAIL, codes[EMAIL], "An0therPassword")


def test_expired_reset_code(tmp_path):
    codes = {}
    provider = build_provider(tmp_path, codes, reset_code_ttl_seconds=-1)
    confirmed_user(provider)
    provider.forgot_password(EMAIL)

    with pytest.raises(ExpiredCodeError):
        provider.confirm_forgot_password(EMAIL, codes[EMAIL], "N3wPassword")


def test_reset_enforces_password_policy(tmp_path):
    codes = {}
    provider = build_provider(tmp_path, codes)
    confirmed_user(provider)
    provider.forgot_password(EMAIL)

    with pytest.raises(InvalidPasswordError):
        provider.confirm_forgot_password(EMAIL, codes[EMAIL], "weak")
    provider.initiate_auth(EMAIL, PASSWORD)


def test_concurrent_create_of_same_user_is_conflict(tmp_path):
    first = build_provider(tmp_path)
    second = build_provider(tmp_path)
    first.admin_create_user(EMAIL, email=EMAIL, name="Grace")

    with pytest.raises(UsernameExistsError):
        second.admin_create_user(EMAIL, email=EMAIL, name="Grace Hopper")
    first.admin_set_user_password(EMAIL, PASSWORD, permanent=True)
    tokens = first.initiate_auth(EMAIL, PASSWORD)
    assert second.get_user(tokens.access_token).name == "Grace"
