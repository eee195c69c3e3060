"""HTTP client that invokes registered tools.

External tools are called per category (calling convention); internal
tools are endpoints of this service reached through INTERNAL_BASE_URL.
"""

import copy
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from cointext.infra.config import Config
from cointext.infra.error_handler import ToolCallError
from cointext.infra.metrics import tool_calls_total, tool_call_duration
from cointext.models.results import ToolCallResult
from cointext.models.tool import ToolDefinition

logger = logging.getLogger(__name__)

NANSEN_CHAIN_ALIASES = {
    "binance": "bnb",
    "basecoin": "base",
}

DEX_PATH_PARAMETERS = ("chainId", "pairId", "tokenAddresses")

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


@dataclass
class ToolRequest:
    """A fully built HTTP request for one tool call."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None


def normalize_chain(chain: Any) -> Any:
    """Map chain names to the identifiers Nansen expects."""
    if not isinstance(chain, str):
        return chain
    lowered = chain.lower()
    return NANSEN_CHAIN_ALIASES.get(lowered, lowered)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def build_query_string(parameters: Dict[str, Any]) -> str:
    """Serialize parameters, skipping None values."""
    pairs = [
        (key, _query_value(value))
        for key, value in parameters.items()
        if value is not None
    ]
    return urlencode(pairs)


def _append_query(url: str, query_string: str) -> str:
    if not query_string:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query_string}"


def build_external_request(
    tool: ToolDefinition,
    parameters: Dict[str, Any],
    debank_api_key: Optional[str] = None,
    nansen_api_key: Optional[str] = None,
) -> ToolRequest:
    """
    Build the HTTP request for an external tool according to its category.
    
    `parameters` may be modified (chain normalization); pass a copy.
    """
    method = (tool.method or "GET").upper()
    url = tool.endpoint
    category = (tool.category or "").lower()
    
    if category == "debank":
        headers = {
            "AccessKey": debank_api_key or "",
            "accept": "application/json",
        }
        if method == "GET":
            return ToolRequest(method, _append_query(url, build_query_string(parameters)), headers)
        return ToolRequest(method, url, headers, json_body=parameters)
    
    if category == "nansen":
        headers = {
            "apiKey": nansen_api_key or "",
            "Content-Type": "application/json",
            "Accept": "*/*",
        }
        chains = parameters.get("chains")
        if isinstance(chains, list):
            parameters["chains"] = [normalize_chain(chain) for chain in chains]
        elif isinstance(chains, str):
            parameters["chains"] = [normalize_chain(chains)]
        if method == "GET":
            return ToolRequest(method, _append_query(url, build_query_string(parameters)), headers)
        return ToolRequest(method, url, headers, json_body=parameters)
    
    if category == "dex":
        headers = {"Accept": "*/*"}
        for name in DEX_PATH_PARAMETERS:
            placeholder = "{" + name + "}"
            if placeholder in url and parameters.get(name):
                url = url.replace(placeholder, quote(str(parameters[name]), safe=","))
        if parameters.get("q"):
            url = _append_query(url, urlencode({"q": parameters["q"]}))
        return ToolRequest(method, url, headers)
    
    # finance and any unrecognized category
    headers = {
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    if method == "GET":
        return ToolRequest(method, _append_query(url, build_query_string(parameters)), headers)
    return ToolRequest(method, url, headers, json_body=parameters)


def unwrap_envelope(body: Any) -> Any:
    """Unwrap the conventional {context: ...} / {data: ...} envelope."""
    if isinstance(body, dict):
        if body.get("context"):
            return body["context"]
        if body.get("data") is not None:
            return body["data"]
    return body


class ToolHttpClient:
    """Invokes tools over HTTP. One shared connection pool per process."""
    
    def __init__(
        self,
        debank_api_key: Optional[str] = None,
        nansen_api_key: Optional[str] = None,
        internal_base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.debank_api_key = debank_api_key
        self.nansen_api_key = nansen_api_key
        self.internal_base_url = internal_base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
    
    @classmethod
    def from_config(cls, cfg: Config) -> "ToolHttpClient":
        return cls(
            debank_api_key=cfg.DEBANK_API_KEY,
            nansen_api_key=cfg.NANSEN_API_KEY,
            internal_base_url=cfg.INTERNAL_BASE_URL,
            timeout=cfg.TOOL_CALL_TIMEOUT_SECONDS,
        )
    
    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client
    
    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
    
    async def call(self, tool: ToolDefinition, parameters: Optional[Dict[str, Any]]) -> ToolCallResult:
        """
        Invoke a tool.
        
        External failures are returned as `success=False` results; internal
        endpoint failures raise ToolCallError.
        """
        params = copy.deepcopy(parameters or {})
        start_time = time.time()
        status = "failure"
        try:
            if tool.is_external:
                result = await self.call_external(tool, params)
            else:
                result = await self.call_internal(tool, params)
            status = "success" if result.success else "failure"
            return result
        finally:
            latency = time.time() - start_time
            tool_calls_total.labels(tool_name=tool.name, category=tool.category, status=status).inc()
            tool_call_duration.labels(tool_name=tool.name, category=tool.category).observe(latency)
            logger.info(
                "Tool call finished",
                extra={
                    "tool_name": tool.name,
                    "category": tool.category,
                    "status": status,
                    "latency_ms": int(latency * 1000),
                },
            )
    
    async def call_external(self, tool: ToolDefinition, parameters: Dict[str, Any]) -> ToolCallResult:
        request = build_external_request(
            tool,
            parameters,
            debank_api_key=self.debank_api_key,
            nansen_api_key=self.nansen_api_key,
        )
        
        unresolved = _PLACEHOLDER_RE.findall(request.url)
        if unresolved:
            return ToolCallResult.failure(
                f"Missing path parameters: {', '.join(unresolved)}",
                tool=tool.name,
                parameters=parameters,
            )
        
        logger.debug(
            "Calling external API",
            extra={"tool_name": tool.name, "method": request.method, "url": request.url},
        )
        
        try:
            response = await self.http_client.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.json_body,
            )
        except httpx.HTTPError as e:
            return ToolCallResult.failure(
                f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                tool=tool.name,
                parameters=parameters,
            )
        
        if not response.is_success:
            logger.warning(
                "External API returned an error",
                extra={"tool_name": tool.name, "status_code": response.status_code},
            )
            return ToolCallResult.failure(
                response.text or f"HTTP {response.status_code}",
                tool=tool.name,
                parameters=parameters,
            )
        
        try:
            data = response.json()
        except ValueError:
            return ToolCallResult.failure(
                "Response is not valid JSON",
                tool=tool.name,
                parameters=parameters,
            )
        
        return ToolCallResult(success=True, data=data, tool=tool.name, parameters=parameters)
    
    async def call_internal(self, tool: ToolDefinition, parameters: Dict[str, Any]) -> ToolCallResult:
        """
        Call one of this service's own endpoints.
        
        GET parameters are sent as a query string; other methods send a JSON body.
        """
        method = (tool.method or "GET").upper()
        url = f"{self.internal_base_url}{tool.endpoint}"
        
        if method == "GET":
            url = _append_query(url, build_query_string(parameters))
            json_body = None
        else:
            json_body = parameters
        
        try:
            response = await self.http_client.request(
                method,
                url,
                headers={"Content-Type": "application/json"},
                json=json_body,
            )
        except httpx.HTTPError as e:
            raise ToolCallError(tool.name, f"Tool call failed: {e}")
        
        if not response.is_success:
            raise ToolCallError(
                tool.name,
                f"Tool call failed: HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        
        try:
            body = response.json()
        except ValueError:
            raise ToolCallError(tool.name, "Tool call failed: response is not valid JSON")
        
        data = unwrap_envelope(body)
        if isinstance(data, dict) and "success" not in data and data.get("error"):
            return ToolCallResult(success=False, error=str(data["error"]), data=data, tool=tool.name)
        if isinstance(data, dict) and "success" in data and not data["success"]:
            return ToolCallResult(
                success=False,
                error=str(data.get("error") or data.get("message") or "Tool reported failure"),
                data=data,
                tool=tool.name,
            )
        return ToolCallResult(success=True, data=data, tool=tool.name)
