import json
from types import SimpleNamespace

from taskapi import handler as handler_module
from taskapi.config import get_settings


def proxy_event(method, path, body=None):
    return {
        "resource": "/{proxy+}",
        "path": path,
        "httpMethod": method,
        "headers": {"content-type": "application/json", "host": "api.example.com"},
        "multiValueHeaders": {},
        "queryStringParameters": None,
        "multiValueQueryStringParameters": None,
        "requestContext": {"identity": {"sourceIp": "203.0.113.10"}},
        "body": json.dumps(body) if body is not None else "",
        "isBase64Encoded": False,
    }


def test_gateway_events_reach_the_api(tmp_path, monkeypatch):
    monkeypatch.setenv("TASKAPI_DATABASE_PATH", str(tmp_path / "tasks.db"))
    monkeypatch.setenv("TASKAPI_BLOB_DIR", str(tmp_path / "blobs"))
    monkeypatch.setenv("TASKAPI_IDENTITY_DATABASE_PATH", str(tmp_path / "identity.db"))
    get_settings.cache_clear()
    monkeypatch.setattr(handler_module, "_asgi_handler", None)
    context = SimpleNamespace(function_name="task-api", aws_request_id="req-1")

    created = handler_module.handler(proxy_event("POST", "/tasks", {"title": "From gateway"}), context)
    assert created["statusCode"] == 201
    task_id = json.loads(created["body"])["task"]["task_id"]

    fetched = handler_module.handler(proxy_event("GET", f"/tasks/{task_id}"), context)
    assert fetched["statusCode"] == 200
    assert json.loads(fetched["body"])["task"]["title"] == "From gateway"

    missing = handler_module.handler(proxy_event("GET", "/nowhere"), context)
    assert missing["statusCode"] == 404
    get_settings.cache_clear()
