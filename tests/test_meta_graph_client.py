import httpx
import pytest

from services.channelServices.meta_graph_client import MetaGraphClient
from utils.errors import InvalidToken, ProviderRequestError, ProviderUnavailable


@pytest.mark.asyncio
async def test_get_returns_decoded_json_and_passes_params(graph_client, graph_api):
    graph_api.on("me", {"id": "42", "name": "Owner"})

    data = await graph_client.get("me", params={"access_token": "tok", "fields": "id,name"})

    assert data == {"id": "42", "name": "Owner"}
    assert graph_api.called("me") == [{"access_token": "tok", "fields": "id,name"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code, code, expected", [
    (500, 1, ProviderUnavailable),
    (503, None, ProviderUnavailable),
    (400, 4, ProviderUnavailable),
    (400, 613, ProviderUnavailable),
    (401, None, InvalidToken),
    (400, 190, InvalidToken),
    (400, 463, InvalidToken),
    (400, 100, ProviderRequestError),
    (403, 10, ProviderRequestError),
])
async def test_error_classification(graph_client, graph_api, status_code, code, expected):
    body = {"error": {"message": "nope", "type": "OAuthException"}}
    if code is not None:
        body["error"]["code"] = code
    graph_api.on("me", body, status_code=status_code)

    with pytest.raises(expected):
        await graph_client.get("me")


@pytest.mark.asyncio
async def test_timeout_is_provider_unavailable(graph_client, graph_api):
    graph_api.on("me", raises=httpx.ReadTimeout("timed out"))

    with pytest.raises(ProviderUnavailable):
        await graph_client.get("me")


@pytest.mark.asyncio
async def test_connection_error_is_provider_unavailable(graph_client, graph_api):
    graph_api.on("me", raises=httpx.ConnectError("connection refused"))

    with pytest.raises(ProviderUnavailable):
        await graph_client.get("me")


@pytest.mark.asyncio
async def test_non_json_success_body_is_request_error(provider_config):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops</html>"))
    client = MetaGraphClient(provider_config, transport=transport)

    with pytest.raises(ProviderRequestError):
        await client.get("me")


def test_versioned_base_url_and_app_token(provider_config):
    assert provider_config.versioned_base_url == "https://graph.facebook.com/v24.0"
    assert provider_config.app_access_token == "1234567890|test-app-secret"
