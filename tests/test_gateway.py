import json
import threading

import httpx
import pytest

from metersync.core.config import Settings
from metersync.schemas.meter import NewMeterRead, OldMeterRead
from metersync.services import gateway as gateway_module
from metersync.services.credentials import StaticCredentialProvider
from metersync.services.gateway import (
    HttpUploadGateway,
    MISSING_TOKEN,
    build_image_files,
    build_new_meter_form,
    build_old_meter_form,
)

CONFIG = Settings(
    API_BASE_URL="https://backend.test/api",
    MOBILE_APP_API_URL="https://backend.test/mobile-app/api",
)


def make_gateway(handler, token="tok-123", user_id="42"):
    return HttpUploadGateway(
        StaticCredentialProvider(token, user_id),
        CONFIG,
        transport=httpx.MockTransport(handler),
    )


def old_record(**overrides):
    values = {
        "id": 1,
        "account_id": "A1",
        "created_at": "2024-01-01T00:00:00+00:00",
        "serial_no_old": "OLD-1",
        "final_reading": "100",
        "created_by": "0",
    }
    values.update(overrides)
    return OldMeterRead(**values)


def new_record(**overrides):
    values = {"id": 2, "account_id": "A1", "created_at": "2024-01-01T00:00:00+00:00", "serial_no_new": "NEW-1"}
    values.update(overrides)
    return NewMeterRead(**values)


# ==================== FORM BUILDERS ====================

def test_old_meter_form_fills_creator_from_credentials():
    form = build_old_meter_form(old_record(), user_id="42")
    assert form["account_id"] == "A1"
    assert form["serial_no_old"] == "OLD-1"
    assert form["category"] == "EM"
    assert form["created_by"] == "42"

    assert build_old_meter_form(old_record(created_by="7"), user_id="42")["created_by"] == "7"


def test_new_meter_form_defaults():
    form = build_new_meter_form(new_record(initial_reading_kwh="12.5"), user_id="42")
    assert form["initial_reading_kwh"] == "12.5"
    assert form["initial_reading_kvah"] == "12.5"
    assert form["lat"] == "0.0"
    assert form["lon"] == "0.0"

    blank = build_new_meter_form(new_record(), user_id=None)
    assert blank["initial_reading_kwh"] == "0"
    assert blank["created_by"] == "0"


def test_build_image_files_skips_missing(tmp_path):
    image = tmp_path / "meter.jpg"
    image.write_bytes(b"\xff\xd8jpeg")

    files = build_image_files({
        "image_1_old": f"file://{image}",
        "image_2_old": str(tmp_path / "gone.jpg"),
        "image_3": None,
    })
    assert len(files) == 1
    field, (name, content, content_type) = files[0]
    assert field == "image_1_old"
    assert name == "meter.jpg"
    assert content == b"\xff\xd8jpeg"
    assert content_type == "image/jpeg"


# ==================== ACCOUNT INSTANCE ====================

async def test_create_account_instance_success():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"status": "success"})

    response = await make_gateway(handler).create_account_instance("A1")
    assert response.success
    assert seen["url"].path == "/mobile-app/api/fe/account_id_rr_no/search"
    assert seen["url"].params["account_id"] == "A1"
    assert seen["auth"] == "Bearer tok-123"


@pytest.mark.parametrize(
    "status, body, error, is_auth",
    [
        (401, {"message": "Unauthenticated"}, "Authentication failed", True),
        (404, {"message": "nope"}, "Account not found", False),
        (500, {"message": "DB down"}, "DB down", False),
        (502, None, "Server error: 502", False),
    ],
)
async def test_create_account_instance_failures(status, body, error, is_auth):
    def handler(request):
        if body is None:
            return httpx.Response(status, text="")
        return httpx.Response(status, json=body)

    response = await make_gateway(handler).create_account_instance("A1")
    assert not response.success
    assert response.status == status
    assert response.error == error
    assert response.is_auth_error is is_auth


async def test_create_account_instance_timeout_is_network_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    response = await make_gateway(handler).create_account_instance("A1")
    assert not response.success
    assert response.is_network_error
    assert response.error == "Request timed out"


async def test_missing_token_is_auth_error_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    gateway = make_gateway(handler, token=None)
    instance = await gateway.create_account_instance("A1")
    upload = await gateway.upload_old_meter(old_record())

    assert instance.is_auth_error and instance.error == MISSING_TOKEN
    assert upload.is_auth_error
    assert calls == []


async def test_create_account_instance_rejects_blank_account():
    response = await make_gateway(lambda request: httpx.Response(200, json={})).create_account_instance(" ")
    assert not response.success
    assert response.status == 400


# ==================== UPLOADS ====================

async def test_upload_old_meter_posts_form():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = request.content
        return httpx.Response(200, json={"status": "success", "id": 9})

    response = await make_gateway(handler).upload_old_meter(old_record())
    assert response.success
    assert response.data == {"status": "success", "id": 9}
    assert seen["method"] == "POST"
    assert seen["path"] == "/api/old-meter-upload"
    assert b"account_id=A1" in seen["body"]
    assert b"serial_no_old=OLD-1" in seen["body"]


async def test_upload_with_images_is_multipart(tmp_path):
    image = tmp_path / "front.jpg"
    image.write_bytes(b"\xff\xd8jpeg")
    seen = {}

    def handler(request):
        seen["body"] = request.content
        seen["content_type"] = request.headers["Content-Type"]
        return httpx.Response(200, json={"status": "success"})

    response = await make_gateway(handler).upload_old_meter(old_record(image_1_old=str(image)))
    assert response.success
    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="account_id"' in seen["body"]
    assert b'name="image_1_old"; filename="front.jpg"' in seen["body"]


async def test_upload_non_json_success_is_a_failure():
    response = await make_gateway(lambda request: httpx.Response(200, text="<html>ok</html>")).upload_new_meter(
        new_record()
    )
    assert not response.success
    assert response.error == "Invalid response format"


async def test_upload_error_status_carries_message():
    def handler(request):
        return httpx.Response(422, content=json.dumps({"message": "The serial no new has already been taken."}))

    response = await make_gateway(handler).upload_new_meter(new_record())
    assert not response.success
    assert response.status == 422
    assert response.error == "The serial no new has already been taken."
    assert response.data["message"].startswith("The serial")


async def test_upload_server_error_without_body():
    response = await make_gateway(lambda request: httpx.Response(500)).upload_old_meter(old_record())
    assert response.status == 500
    assert response.error == "Request failed with status 500"
    assert not response.is_auth_error


async def test_upload_connection_error_is_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    response = await make_gateway(handler).upload_old_meter(old_record())
    assert response.is_network_error
    assert not response.success


async def test_image_files_are_read_off_the_event_loop(tmp_path, monkeypatch):
    image = tmp_path / "after.jpg"
    image.write_bytes(b"\xff\xd8jpeg")
    reader_threads = []

    def tracking_build(images):
        reader_threads.append(threading.get_ident())
        return build_image_files(images)

    monkeypatch.setattr(gateway_module, "build_image_files", tracking_build)
    handler = lambda request: httpx.Response(200, json={"status": "success"})

    response = await make_gateway(handler).upload_new_meter(new_record(image_1_new=str(image)))
    assert response.success
    assert reader_threads and reader_threads[0] != threading.get_ident()
