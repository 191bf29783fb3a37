from metersync.schemas.sync import GatewayResponse
from metersync.services.errors import ErrorKind, classify_failure, classify_stored_error
from metersync.services.retry import is_transient, retry_with_fixed_delay


# ==================== CLASSIFICATION ====================

def test_classify_auth_before_anything_else():
    result = classify_failure(401, "already exists")
    assert result.kind == ErrorKind.AUTH
    assert result.is_auth_error
    assert classify_failure(None, "x", is_auth_error=True).is_auth_error


def test_classify_duplicate_from_message_or_body():
    assert classify_failure(422, "Serial already exists").is_duplicate_error
    result = classify_failure(422, None, {"message": "The serial no has already been taken."})
    assert result.kind == ErrorKind.DUPLICATE
    assert not result.is_retryable


def test_classify_server_and_storage():
    server = classify_failure(500, "Internal error")
    assert server.kind == ErrorKind.SERVER
    assert server.is_storage_error

    storage = classify_failure(400, "Unable to write file to disk")
    assert storage.kind == ErrorKind.STORAGE
    assert classify_failure(503, "busy").kind == ErrorKind.SERVER


def test_classify_network_and_generic():
    assert classify_failure(None, "Request timed out", is_network_error=True).kind == ErrorKind.NETWORK
    generic = classify_failure(422, "bad reading")
    assert generic.kind == ErrorKind.GENERIC
    assert not generic.is_duplicate_error and not generic.is_storage_error and not generic.is_auth_error


def test_classify_stored_error_text():
    skipped = classify_stored_error("skipped: old meter upload failed for this account")
    assert skipped.kind == ErrorKind.SKIPPED_DEPENDENCY
    assert classify_stored_error("invalid account id").kind == ErrorKind.VALIDATION
    assert classify_stored_error("Authentication failed: Authentication failed").is_auth_error
    assert classify_stored_error("The serial no new has already been taken.").is_duplicate_error
    assert classify_stored_error("Request failed with status 500").is_retryable


# ==================== RETRY ====================

def test_is_transient():
    assert is_transient(GatewayResponse(success=False, status=500))
    assert is_transient(GatewayResponse(success=False, is_network_error=True))
    assert not is_transient(GatewayResponse(success=False, status=401, is_auth_error=True))
    assert not is_transient(GatewayResponse(success=False, status=422))
    assert not is_transient(GatewayResponse(success=True, status=200))


async def test_retry_stops_on_success(fake_sleep):
    responses = [GatewayResponse(success=False, status=502), GatewayResponse(success=True, status=200)]
    calls = []

    async def operation():
        calls.append(1)
        return responses[len(calls) - 1]

    result = await retry_with_fixed_delay(operation, retries=3, delay=2.0, sleep=fake_sleep)
    assert result.success
    assert len(calls) == 2
    assert fake_sleep.delays == [2.0]


async def test_retry_gives_up_after_cap_and_returns_last_result(fake_sleep):
    calls = []

    async def operation():
        calls.append(1)
        return GatewayResponse(success=False, status=500, error=f"attempt {len(calls)}")

    result = await retry_with_fixed_delay(operation, retries=2, delay=3.0, sleep=fake_sleep)
    assert len(calls) == 3
    assert result.error == "attempt 3"
    assert fake_sleep.delays == [3.0, 3.0]


async def test_retry_skips_non_transient(fake_sleep):
    calls = []

    async def operation():
        calls.append(1)
        return GatewayResponse(success=False, status=401, is_auth_error=True)

    await retry_with_fixed_delay(operation, retries=3, delay=1.0, sleep=fake_sleep)
    assert len(calls) == 1
    assert fake_sleep.delays == []
