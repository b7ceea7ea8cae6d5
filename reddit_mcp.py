"""Reddit MCP server.

Read-only Reddit tools (search, post with comments, trending) served as
line-delimited JSON-RPC over stdio, backed by Reddit's public JSON API.
"""
import asyncio
import dataclasses
import json
import logging
import os
import re
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, TextIO
from urllib.parse import urlencode

import httpx
from dotenv import load_dotenv
from mcp import types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS

from reddit_formatters import (
    FETCH_FAILED,
    NOT_FOUND,
    POST_DATA_MISSING,
    OutputKind,
    Verbosity,
    get_formatter,
    listing_children,
    node_data,
)

__version__ = "1.0.0"

# Load environment variables
load_dotenv()


def _log_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


# Configure logging (stdout carries the protocol)
logging.basicConfig(
    level=_log_level(os.getenv("REDDIT_MCP_LOG_LEVEL", "INFO")),
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

SERVER_NAME = "reddit-mcp"
DEFAULT_USER_AGENT = "RedditMCP/1.0 (MCP Server)"
REDDIT_BASE_URL = "https://www.reddit.com"

SEARCH_SORTS = ("relevance", "hot", "top", "new")
SEARCH_TIMES = ("hour", "day", "week", "month", "year", "all")
TRENDING_TIMES = ("hour", "day", "week", "month", "year", "all")
OUTPUT_KINDS = tuple(kind.value for kind in OutputKind)
VERBOSITIES = tuple(level.value for level in Verbosity)

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 25
DEFAULT_TRENDING_LIMIT = 10
MAX_TRENDING_LIMIT = 25
DEFAULT_COMMENT_LIMIT = 15
MAX_COMMENT_LIMIT = 200
DEFAULT_COMMENT_DEPTH = 2
MAX_COMMENT_DEPTH = 5


# Configuration
@dataclass(frozen=True)
class ServerConfig:
    """Process-wide settings, built once at startup."""
    user_agent: str = DEFAULT_USER_AGENT
    output_kind: OutputKind = OutputKind.TEXT
    verbosity: Verbosity = Verbosity.COMPACT
    max_retries: int = 3
    backoff: float = 1.0               # retry n sleeps backoff * 2**n seconds
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    base_url: str = REDDIT_BASE_URL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """Read overrides from the environment, falling back on bad values."""
        env = os.environ if environ is None else environ

        raw_kind = env.get("REDDIT_MCP_FORMAT")
        output_kind = OutputKind.parse(raw_kind, OutputKind.TEXT)
        if raw_kind is not None and raw_kind != output_kind.value:
            logger.warning(f"Ignoring invalid REDDIT_MCP_FORMAT={raw_kind!r}, using {output_kind.value}")

        raw_verbosity = env.get("REDDIT_MCP_VERBOSITY")
        verbosity = Verbosity.parse(raw_verbosity, Verbosity.COMPACT)
        if raw_verbosity is not None and raw_verbosity != verbosity.value:
            logger.warning(f"Ignoring invalid REDDIT_MCP_VERBOSITY={raw_verbosity!r}, using {verbosity.value}")

        return cls(
            user_agent=env.get("REDDIT_MCP_USER_AGENT") or DEFAULT_USER_AGENT,
            output_kind=output_kind,
            verbosity=verbosity,
            max_retries=clamp_int(env.get("REDDIT_MCP_RETRIES"), 3, 0, 10),
        )


# Input Validation
class ValidationError(Exception):
    """Raised when tool arguments are rejected before any network call."""
    pass


_SUBREDDIT_RE = re.compile(r"[A-Za-z0-9_]+")
_POST_ID_RE = re.compile(r"[A-Za-z0-9]+")
_SUBREDDIT_PREFIX_RE = re.compile(r"^r/", re.IGNORECASE)
_POST_ID_PREFIX_RE = re.compile(r"^t3_", re.IGNORECASE)


def _clean(value: Any) -> str:
    return "" if value is None else str(value).strip()


def normalize_query(value: Any) -> Optional[str]:
    """Trimmed query, or None when empty."""
    query = _clean(value)
    return query or None


def normalize_subreddit(value: Any) -> Optional[str]:
    """Strip whitespace and a leading ``r/``; None unless the rest is a valid name."""
    name = _SUBREDDIT_PREFIX_RE.sub("", _clean(value), count=1)
    if not name or not _SUBREDDIT_RE.fullmatch(name):
        return None
    return name


def normalize_post_id(value: Any) -> Optional[str]:
    """Strip whitespace and a leading ``t3_``; case is preserved."""
    post_id = _POST_ID_PREFIX_RE.sub("", _clean(value), count=1)
    if not post_id or not _POST_ID_RE.fullmatch(post_id):
        return None
    return post_id


def clamp_int(value: Any, default: int, minimum: int, maximum: int) -> int:
    """Parse an integer and clamp it into [minimum, maximum].

    Unparseable values (including booleans) yield ``default``; this never
    rejects.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return max(minimum, min(maximum, number))


def validate_enum(value: Any, allowed: Sequence[str], default: str, name: str) -> str:
    """Return ``value`` if allowed, ``default`` if absent, else reject."""
    if value is None:
        return default
    if value not in allowed:
        raise ValidationError(f"{name} must be one of: {', '.join(allowed)}")
    return value


@dataclass(frozen=True)
class SearchRequest:
    query: str
    subreddit: Optional[str]
    sort: str
    time_filter: str
    limit: int
    output_kind: OutputKind
    verbosity: Verbosity


@dataclass(frozen=True)
class PostRequest:
    post_id: str
    comment_limit: int
    comment_depth: int
    output_kind: OutputKind
    verbosity: Verbosity


@dataclass(frozen=True)
class TrendingRequest:
    subreddit: str
    time_filter: str
    limit: int
    output_kind: OutputKind
    verbosity: Verbosity


def _rendering_args(args: Dict[str, Any], config: ServerConfig):
    output_kind = validate_enum(args.get("format"), OUTPUT_KINDS, config.output_kind.value, "format")
    verbosity = validate_enum(args.get("verbosity"), VERBOSITIES, config.verbosity.value, "verbosity")
    return OutputKind(output_kind), Verbosity(verbosity)


def parse_search_args(args: Dict[str, Any], config: ServerConfig) -> SearchRequest:
    query = normalize_query(args.get("query"))
    if query is None:
        raise ValidationError("query is required")

    subreddit = None
    if args.get("subreddit") is not None:
        subreddit = normalize_subreddit(args["subreddit"])
        if subreddit is None:
            raise ValidationError("subreddit must be a valid name")

    sort = validate_enum(args.get("sort"), SEARCH_SORTS, "relevance", "sort")
    time_filter = validate_enum(args.get("time"), SEARCH_TIMES, "all", "time")
    limit = clamp_int(args.get("limit"), DEFAULT_SEARCH_LIMIT, 1, MAX_SEARCH_LIMIT)
    output_kind, verbosity = _rendering_args(args, config)
    return SearchRequest(query, subreddit, sort, time_filter, limit, output_kind, verbosity)


def parse_post_args(args: Dict[str, Any], config: ServerConfig) -> PostRequest:
    post_id = normalize_post_id(args.get("post_id"))
    if post_id is None:
        raise ValidationError("post_id is required and must be alphanumeric")

    comment_limit = clamp_int(args.get("comment_limit"), DEFAULT_COMMENT_LIMIT, 1, MAX_COMMENT_LIMIT)
    comment_depth = clamp_int(args.get("comment_depth"), DEFAULT_COMMENT_DEPTH, 1, MAX_COMMENT_DEPTH)
    output_kind, verbosity = _rendering_args(args, config)
    return PostRequest(post_id, comment_limit, comment_depth, output_kind, verbosity)


def parse_trending_args(args: Dict[str, Any], config: ServerConfig) -> TrendingRequest:
    subreddit = normalize_subreddit(args.get("subreddit"))
    if subreddit is None:
        raise ValidationError("subreddit is required and must be a valid name")

    time_filter = validate_enum(args.get("time"), TRENDING_TIMES, "week", "time")
    limit = clamp_int(args.get("limit"), DEFAULT_TRENDING_LIMIT, 1, MAX_TRENDING_LIMIT)
    output_kind, verbosity = _rendering_args(args, config)
    return TrendingRequest(subreddit, time_filter, limit, output_kind, verbosity)


# Reddit JSON client
class FetchError(Exception):
    """Raised when a Reddit URL could not be fetched as JSON."""
    pass


class RetryableFetchError(FetchError):
    pass


class RedditClient:
    """Fetches Reddit JSON with retries and exponential backoff."""

    RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

    def __init__(self, config: ServerConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": self.config.user_agent},
            timeout=httpx.Timeout(self.config.read_timeout, connect=self.config.connect_timeout),
            follow_redirects=True,
            transport=self._transport,
        )

    async def get_json(self, url: str) -> Any:
        """Return the parsed JSON body at ``url`` or raise FetchError."""
        retries = self.config.max_retries
        async with self._http_client() as client:
            for attempt in range(1, retries + 2):
                try:
                    return await self._get_once(client, url)
                except RetryableFetchError as e:
                    if attempt > retries:
                        logger.error(f"Failed after {retries} retries: {e}")
                        raise
                    delay = self.config.backoff * 2 ** attempt
                    logger.warning(f"Reddit fetch failed (attempt {attempt}): {e}. Retrying in {delay}s")
                    await asyncio.sleep(delay)

    async def _get_once(self, client: httpx.AsyncClient, url: str) -> Any:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            raise RetryableFetchError(f"{type(e).__name__}: {e}") from e

        if response.status_code in self.RETRYABLE_STATUSES:
            raise RetryableFetchError(f"HTTP {response.status_code}")
        if response.status_code != 200:
            logger.error(f"HTTP error {response.status_code} for {url}")
            raise FetchError(f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise RetryableFetchError(f"Malformed JSON body: {e}") from e


# URL construction
def build_search_url(base_url: str, query: str, subreddit: Optional[str], sort: str,
                     time_filter: str, limit: int) -> str:
    if subreddit:
        params = {"q": query, "restrict_sr": 1, "sort": sort, "t": time_filter, "limit": limit}
        return f"{base_url}/r/{subreddit}/search.json?{urlencode(params)}"
    params = {"q": query, "sort": sort, "t": time_filter, "limit": limit}
    return f"{base_url}/search.json?{urlencode(params)}"


def build_post_url(base_url: str, post_id: str, comment_limit: int, comment_depth: int) -> str:
    params = {"limit": comment_limit, "depth": comment_depth, "sort": "top"}
    return f"{base_url}/comments/{post_id}.json?{urlencode(params)}"


def build_trending_url(base_url: str, subreddit: str, time_filter: str, limit: int) -> str:
    params = {"t": time_filter, "limit": limit}
    return f"{base_url}/r/{subreddit}/top.json?{urlencode(params)}"


# Tool service
class RedditService:
    """The three Reddit tools, returning rendered text or JSON strings.

    Fetch failures, unexpected response shapes and empty listings are
    rendered as result fragments rather than raised.
    """

    def __init__(self, client, config: Optional[ServerConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.config = config or ServerConfig()
        self.clock = clock

    async def search(self, query: str, subreddit: Optional[str] = None, sort: str = "relevance",
                     time_filter: str = "all", limit: int = DEFAULT_SEARCH_LIMIT,
                     output_kind: OutputKind = OutputKind.TEXT,
                     verbosity: Verbosity = Verbosity.COMPACT) -> str:
        formatter = get_formatter(output_kind, self.clock)
        url = build_search_url(self.config.base_url, query, subreddit, sort, time_filter, limit)
        logger.info(f"Searching Reddit for {query!r} in {f'r/{subreddit}' if subreddit else 'all'}")

        try:
            data = await self.client.get_json(url)
        except FetchError as e:
            logger.warning(f"Search fetch failed: {e}")
            return formatter.error(FETCH_FAILED, "Could not fetch search results")

        posts = listing_children(data)
        if not posts:
            return formatter.empty_result()
        return formatter.format_search(posts, query=query, subreddit=subreddit, verbosity=verbosity)

    async def post(self, post_id: str, comment_limit: int = DEFAULT_COMMENT_LIMIT,
                   comment_depth: int = DEFAULT_COMMENT_DEPTH,
                   output_kind: OutputKind = OutputKind.TEXT,
                   verbosity: Verbosity = Verbosity.COMPACT) -> str:
        formatter = get_formatter(output_kind, self.clock)
        url = build_post_url(self.config.base_url, post_id, comment_limit, comment_depth)
        logger.info(f"Fetching post {post_id} (limit {comment_limit}, depth {comment_depth})")

        try:
            data = await self.client.get_json(url)
        except FetchError as e:
            logger.warning(f"Post fetch failed for {post_id}: {e}")
            return formatter.error(FETCH_FAILED, f"Could not fetch post {post_id}")

        # Reddit answers with [post_listing, comments_listing]
        if not isinstance(data, list) or len(data) < 2:
            return formatter.error(NOT_FOUND, "Post not found")

        post_nodes = listing_children(data[0])
        post_data = node_data(post_nodes[0]) if post_nodes else None
        if post_data is None:
            return formatter.error(POST_DATA_MISSING, "Post data not found")

        return formatter.format_post(
            post_data,
            listing_children(data[1]),
            comment_depth=comment_depth,
            comment_limit=comment_limit,
            verbosity=verbosity,
        )

    async def trending(self, subreddit: str, time_filter: str = "week",
                       limit: int = DEFAULT_TRENDING_LIMIT,
                       output_kind: OutputKind = OutputKind.TEXT,
                       verbosity: Verbosity = Verbosity.COMPACT) -> str:
        formatter = get_formatter(output_kind, self.clock)
        url = build_trending_url(self.config.base_url, subreddit, time_filter, limit)
        logger.info(f"Fetching top posts of r/{subreddit} ({time_filter})")

        try:
            data = await self.client.get_json(url)
        except FetchError as e:
            logger.warning(f"Trending fetch failed for r/{subreddit}: {e}")
            return formatter.error(FETCH_FAILED, f"Could not fetch r/{subreddit}")

        posts = listing_children(data)
        if not posts:
            return formatter.empty_result()
        return formatter.format_trending(posts, subreddit=subreddit, time_filter=time_filter,
                                         verbosity=verbosity)


# Tool definitions
def _rendering_schema() -> Dict[str, Any]:
    return {
        "format": {
            "type": "string",
            "enum": list(OUTPUT_KINDS),
            "description": "Output encoding (defaults to the server setting)",
        },
        "verbosity": {
            "type": "string",
            "enum": list(VERBOSITIES),
            "description": "Detail level (defaults to the server setting)",
        },
    }


TOOLS = [
    types.Tool(
        name="reddit_search",
        description="Search Reddit for posts. Returns titles, scores, and content previews.",
        inputSchema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "subreddit": {"type": "string", "description": "Subreddit to search in (optional, omit for all)"},
                "sort": {"type": "string", "enum": list(SEARCH_SORTS), "default": "relevance"},
                "time": {"type": "string", "enum": list(SEARCH_TIMES), "default": "all"},
                "limit": {"type": "integer", "default": DEFAULT_SEARCH_LIMIT, "minimum": 1,
                          "maximum": MAX_SEARCH_LIMIT},
                **_rendering_schema(),
            },
            "required": ["query"],
        },
    ),
    types.Tool(
        name="reddit_post",
        description="Get a Reddit post with comments. Use comment_limit/comment_depth to fetch more.",
        inputSchema={
            "type": "object",
            "properties": {
                "post_id": {"type": "string", "description": "Reddit post ID (e.g., '1abc123')"},
                "comment_limit": {"type": "integer", "default": DEFAULT_COMMENT_LIMIT, "minimum": 1,
                                  "maximum": MAX_COMMENT_LIMIT},
                "comment_depth": {"type": "integer", "default": DEFAULT_COMMENT_DEPTH, "minimum": 1,
                                  "maximum": MAX_COMMENT_DEPTH},
                **_rendering_schema(),
            },
            "required": ["post_id"],
        },
    ),
    types.Tool(
        name="reddit_trending",
        description="Get trending/top posts from a subreddit. Good for understanding what's popular.",
        inputSchema={
            "type": "object",
            "properties": {
                "subreddit": {"type": "string", "description": "Subreddit name (e.g., 'selfhosted')"},
                "time": {"type": "string", "enum": list(TRENDING_TIMES), "default": "week"},
                "limit": {"type": "integer", "default": DEFAULT_TRENDING_LIMIT, "minimum": 1,
                          "maximum": MAX_TRENDING_LIMIT},
                **_rendering_schema(),
            },
            "required": ["subreddit"],
        },
    ),
]

# tool name -> (argument parser, service method)
TOOL_HANDLERS = {
    "reddit_search": (parse_search_args, "search"),
    "reddit_post": (parse_post_args, "post"),
    "reddit_trending": (parse_trending_args, "trending"),
}


# JSON-RPC server
def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def jsonrpc_result(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def jsonrpc_error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    error = types.ErrorData(code=code, message=message)
    return {"jsonrpc": "2.0", "id": request_id, "error": _dump(error)}


class RedditMCPServer:
    """Routes JSON-RPC requests to the Reddit tools, one line at a time."""

    def __init__(self, config: Optional[ServerConfig] = None,
                 service: Optional[RedditService] = None):
        self.config = config or ServerConfig()
        self.service = service or RedditService(RedditClient(self.config), self.config)
        self.tools = {tool.name: tool for tool in TOOLS}

    async def handle_line(self, line: str) -> Optional[Dict[str, Any]]:
        """Parse one input line and return the response, if any."""
        try:
            request = json.loads(line)
        except ValueError:
            return jsonrpc_error(None, types.PARSE_ERROR, "Parse error")
        return await self.handle_request(request)

    async def handle_request(self, request: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(request, dict):
            return jsonrpc_error(None, types.INVALID_REQUEST, "Invalid Request")

        request_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str):
            return jsonrpc_error(request_id, types.INVALID_REQUEST, "Invalid Request")

        params = request.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return jsonrpc_error(request_id, types.INVALID_PARAMS, "Params must be an object")

        # Notifications never get a response
        if "id" not in request or method.startswith("notifications/"):
            logger.debug(f"Received notification {method}")
            return None

        try:
            if method == "initialize":
                return jsonrpc_result(request_id, self.handle_initialize(params))
            if method == "ping":
                return jsonrpc_result(request_id, {})
            if method == "tools/list":
                return jsonrpc_result(request_id, self.handle_tools_list())
            if method == "tools/call":
                return await self.handle_tool_call(request_id, params)
        except Exception as e:
            logger.exception(f"Unexpected error handling {method}: {e}")
            return jsonrpc_error(request_id, types.INTERNAL_ERROR, "Internal error")

        return jsonrpc_error(request_id, types.METHOD_NOT_FOUND, f"Method not found: {method}")

    def handle_initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            version = requested
        else:
            version = types.LATEST_PROTOCOL_VERSION
        result = types.InitializeResult(
            protocolVersion=version,
            capabilities=types.ServerCapabilities(tools=types.ToolsCapability(listChanged=False)),
            serverInfo=types.Implementation(name=SERVER_NAME, version=__version__),
        )
        return _dump(result)

    def handle_tools_list(self) -> Dict[str, Any]:
        return {"tools": [_dump(tool) for tool in self.tools.values()]}

    async def handle_tool_call(self, request_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        args = params.get("arguments")
        if args is None:
            args = {}

        if not isinstance(name, str) or name not in TOOL_HANDLERS:
            return jsonrpc_error(request_id, types.METHOD_NOT_FOUND, f"Tool not found: {name}")
        if not isinstance(args, dict):
            return jsonrpc_error(request_id, types.INVALID_PARAMS, "Arguments must be an object")

        parse_args, operation = TOOL_HANDLERS[name]
        try:
            tool_request = parse_args(args, self.config)
        except ValidationError as e:
            logger.warning(f"Validation failed for {name}: {e}")
            return jsonrpc_error(request_id, types.INVALID_PARAMS, str(e))

        text = await getattr(self.service, operation)(**dataclasses.asdict(tool_request))
        result = types.CallToolResult(content=[types.TextContent(type="text", text=text)])
        return jsonrpc_result(request_id, _dump(result))

    async def serve(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        """Answer requests from ``stdin`` until EOF, one at a time."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        loop = asyncio.get_running_loop()

        while True:
            line = await loop.run_in_executor(None, stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            response = await self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
                stdout.flush()


def main() -> None:
    config = ServerConfig.from_env()
    logger.info("Starting Reddit MCP Server...")
    logger.info(f"Server name: {SERVER_NAME}")
    logger.info("Transport: stdio")
    logger.info(f"Defaults: format={config.output_kind.value}, verbosity={config.verbosity.value}")
    try:
        asyncio.run(RedditMCPServer(config).serve())
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
