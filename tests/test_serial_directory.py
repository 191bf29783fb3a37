import httpx
import pytest

from metersync.core.config import Settings
from metersync.schemas.sync import SerialOwnerBlock
from metersync.services.connectivity import HttpConnectivityOracle
from metersync.services.credentials import StaticCredentialProvider
from metersync.services.errors import AuthError, FormatError, NetworkError
from metersync.services.serial_directory import (
    HttpSerialDirectory,
    flatten_serials,
    parse_directory_payload,
    split_serials,
)

CONFIG = Settings(API_BASE_URL="https://backend.test/api")


def make_directory(handler, token="tok-123"):
    return HttpSerialDirectory(
        StaticCredentialProvider(token),
        CONFIG,
        transport=httpx.MockTransport(handler),
    )


def test_split_and_flatten():
    assert split_serials("S1, S2,S1, ,") == ["S1", "S2", "S1"]
    assert split_serials(None) == []
    blocks = [SerialOwnerBlock(serials_csv="S1, S2"), SerialOwnerBlock(serials_csv="S2,S3 ")]
    assert flatten_serials(blocks) == {"S1", "S2", "S3"}


def test_parse_directory_payload():
    blocks = parse_directory_payload({
        "status": "success",
        "user_information": [{"id": 7, "box_id": 3, "unused_meter_serial_no": "A, B"}, {"id": 8}],
    })
    assert blocks[0].owner_id == "7"
    assert blocks[0].box_id == "3"
    assert blocks[1].serials_csv == ""

    with pytest.raises(FormatError):
        parse_directory_payload({"status": "error", "user_information": []})
    with pytest.raises(FormatError):
        parse_directory_payload({"status": "success"})
    with pytest.raises(FormatError):
        parse_directory_payload([])


async def test_fetch_remote_serials():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={
            "status": "success",
            "user_information": [{"id": 1, "box_id": 2, "unused_meter_serial_no": "S1, S2"}],
        })

    blocks = await make_directory(handler).fetch_remote_serials()
    assert flatten_serials(blocks) == {"S1", "S2"}
    assert seen["path"] == "/api/Contractort_meter_information"
    assert seen["auth"] == "Bearer tok-123"


async def test_fetch_without_token_is_auth_error():
    with pytest.raises(AuthError):
        await make_directory(lambda request: httpx.Response(200, json={}), token=None).fetch_remote_serials()


@pytest.mark.parametrize("status, error", [(401, AuthError), (403, AuthError), (500, NetworkError)])
async def test_fetch_status_errors(status, error):
    with pytest.raises(error):
        await make_directory(lambda request: httpx.Response(status, json={})).fetch_remote_serials()


async def test_fetch_transport_error_and_bad_json():
    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        await make_directory(broken).fetch_remote_serials()
    with pytest.raises(FormatError):
        await make_directory(lambda request: httpx.Response(200, text="not json")).fetch_remote_serials()


# ==================== CONNECTIVITY ====================

async def test_connectivity_falls_back_to_next_probe():
    probed = []

    def handler(request):
        probed.append(request.url.host)
        if request.url.host == "backend.test":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(405)

    oracle = HttpConnectivityOracle(
        ["https://backend.test/api/ping", "https://fallback.test"],
        transport=httpx.MockTransport(handler),
    )
    assert await oracle.is_connected()
    assert probed == ["backend.test", "fallback.test"]
    assert oracle.last_state is True


async def test_connectivity_false_when_nothing_answers():
    def handler(request):
        raise httpx.ConnectTimeout("timeout", request=request)

    oracle = HttpConnectivityOracle(["https://a.test", "https://b.test"], transport=httpx.MockTransport(handler))
    assert not await oracle.is_connected()
    assert oracle.last_state is False
