"""Tests for the tool HTTP client."""

import json

import httpx
import pytest

from cointext.adapters.tool_client import (
    ToolHttpClient,
    build_external_request,
    normalize_chain,
    unwrap_envelope,
)
from cointext.infra.error_handler import ToolCallError
from cointext.models.tool import ToolDefinition


def make_client(handler, **kwargs):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ToolHttpClient(http_client=http_client, internal_base_url="http://internal", **kwargs)


class RecordingHandler:
    """MockTransport handler remembering every request."""
    
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = {} if body is None else body
        self.requests = []
    
    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


@pytest.fixture
def debank_tool():
    return ToolDefinition(
        name="debank.user.total_balance",
        category="debank",
        endpoint="https://pro-openapi.debank.com/v1/user/total_balance",
    )


@pytest.fixture
def nansen_tool():
    return ToolDefinition(
        name="nansen.smart.holdings",
        category="nansen",
        method="POST",
        endpoint="https://api.nansen.ai/api/v1/smart-money/holdings",
    )


@pytest.fixture
def dex_pair_tool():
    return ToolDefinition(
        name="dex.pair",
        category="dex",
        endpoint="https://api.dexscreener.com/latest/dex/pairs/{chainId}/{pairId}",
    )


class TestBuildExternalRequest:
    
    def test_debank_query_string_and_access_key(self, debank_tool):
        request = build_external_request(debank_tool, {"id": "0xabc", "is_all": True}, debank_api_key="dk")
        
        assert request.url == "https://pro-openapi.debank.com/v1/user/total_balance?id=0xabc&is_all=true"
        assert request.headers["AccessKey"] == "dk"
        assert request.json_body is None
    
    def test_nansen_chains_normalized(self, nansen_tool):
        request = build_external_request(nansen_tool, {"chains": ["Binance", "Ethereum"]}, nansen_api_key="nk")
        
        assert request.json_body == {"chains": ["bnb", "ethereum"]}
        assert request.headers["apiKey"] == "nk"
    
    def test_nansen_single_chain_becomes_list(self, nansen_tool):
        request = build_external_request(nansen_tool, {"chains": "basecoin"})
        
        assert request.json_body["chains"] == ["base"]
    
    def test_dex_placeholders_and_search(self, dex_pair_tool):
        request = build_external_request(dex_pair_tool, {"chainId": "solana", "pairId": "abc123"})
        
        assert request.url == "https://api.dexscreener.com/latest/dex/pairs/solana/abc123"
        
        search = ToolDefinition(name="dex.search", category="dex", endpoint="https://api.dexscreener.com/latest/dex/search")
        request = build_external_request(search, {"q": "ADA USDT"})
        assert request.url == "https://api.dexscreener.com/latest/dex/search?q=ADA+USDT"
    
    def test_unknown_category_posts_json(self):
        tool = ToolDefinition(name="finance.quote", category="finance", method="POST", endpoint="https://example.com/quote")
        
        request = build_external_request(tool, {"symbol": "ADA"})
        
        assert request.json_body == {"symbol": "ADA"}
        assert request.headers["Content-Type"] == "application/json"


def test_normalize_chain():
    assert normalize_chain("BINANCE") == "bnb"
    assert normalize_chain("eth") == "eth"
    assert normalize_chain(1) == 1


def test_unwrap_envelope():
    assert unwrap_envelope({"context": {"a": 1}, "data": {"b": 2}}) == {"a": 1}
    assert unwrap_envelope({"data": [1, 2]}) == [1, 2]
    assert unwrap_envelope({"value": 3}) == {"value": 3}
    assert unwrap_envelope([1]) == [1]


class TestExternalCalls:
    
    @pytest.mark.asyncio
    async def test_success(self, debank_tool):
        handler = RecordingHandler(body={"total_usd_value": 1234.5})
        client = make_client(handler, debank_api_key="dk")
        
        result = await client.call(debank_tool, {"id": "0xabc"})
        
        assert result.success is True
        assert result.data == {"total_usd_value": 1234.5}
        assert result.tool == "debank.user.total_balance"
        assert handler.requests[0].headers["AccessKey"] == "dk"
        assert handler.requests[0].url.params["id"] == "0xabc"
    
    @pytest.mark.asyncio
    async def test_parameters_not_mutated(self, nansen_tool):
        handler = RecordingHandler(body={"data": []})
        client = make_client(handler)
        parameters = {"chains": ["Binance"]}
        
        await client.call(nansen_tool, parameters)
        
        assert parameters == {"chains": ["Binance"]}
        assert json.loads(handler.requests[0].content) == {"chains": ["bnb"]}
    
    @pytest.mark.asyncio
    async def test_unresolved_placeholder_fails_without_request(self, dex_pair_tool):
        handler = RecordingHandler()
        client = make_client(handler)
        
        result = await client.call(dex_pair_tool, {"chainId": "solana"})
        
        assert result.success is False
        assert "pairId" in result.error
        assert handler.requests == []
    
    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self, debank_tool):
        client = make_client(RecordingHandler(status_code=429, body={"error": "slow down"}))
        
        result = await client.call(debank_tool, {})
        
        assert result.success is False
        assert "slow down" in result.error
    
    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self, debank_tool):
        def handler(request):
            raise httpx.ConnectError("connection refused")
        
        client = make_client(handler)
        
        result = await client.call(debank_tool, {})
        
        assert result.success is False
        assert "ConnectError" in result.error


class TestInternalCalls:
    
    @pytest.fixture
    def internal_get(self):
        return ToolDefinition(name="internal.rag", category="internal", endpoint="/api/rag/lookup", is_external=False)
    
    @pytest.mark.asyncio
    async def test_get_sends_query_string_and_unwraps(self, internal_get):
        handler = RecordingHandler(body={"data": {"answer": 42}})
        client = make_client(handler)
        
        result = await client.call(internal_get, {"query": "ada", "limit": 3})
        
        request = handler.requests[0]
        assert str(request.url) == "http://internal/api/rag/lookup?query=ada&limit=3"
        assert request.content == b""
        assert result.success is True
        assert result.data == {"answer": 42}
    
    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        tool = ToolDefinition(name="internal.rag", category="internal", method="POST", endpoint="/api/rag/retrieve", is_external=False)
        handler = RecordingHandler(body={"context": "text"})
        client = make_client(handler)
        
        result = await client.call(tool, {"query": "ada"})
        
        assert json.loads(handler.requests[0].content) == {"query": "ada"}
        assert result.data == "text"
    
    @pytest.mark.asyncio
    async def test_reported_failure(self, internal_get):
        client = make_client(RecordingHandler(body={"success": False, "error": "bad input"}))
        
        result = await client.call(internal_get, {})
        
        assert result.success is False
        assert result.error == "bad input"
    
    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, internal_get):
        client = make_client(RecordingHandler(status_code=500))
        
        with pytest.raises(ToolCallError) as exc_info:
            await client.call(internal_get, {})
        
        assert exc_info.value.status_code == 500
        assert "HTTP 500" in str(exc_info.value)
    
    @pytest.mark.asyncio
    async def test_error_without_success_flag(self, internal_get):
        client = make_client(RecordingHandler(body={"error": "index offline"}))
        
        result = await client.call(internal_get, {})
        
        assert result.success is False
        assert result.error == "index offline"
