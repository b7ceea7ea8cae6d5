"""Renderers for Reddit listings, posts and comment trees.

Every tool result passes through one of two formatters (text or JSON), each
parameterized by a verbosity level. Comment trees are reduced by a single
depth-first traversal that takes a per-verbosity comment style as its
strategy.
"""
import json
import re
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

COMMENT_BODY_LIMIT = 800
POST_BODY_LIMIT = 2000
FULL_PREVIEW_LIMIT = 200
PREVIEW_LIMIT = 150

FETCH_FAILED = "fetch_failed"
NOT_FOUND = "not_found"
POST_DATA_MISSING = "post_data_missing"

FULL_FOOTER = "\n---\nUse `reddit_post` with a post_id to see full content and comments."
NO_COMMENTS = "_No comments yet_\n"

_WHITESPACE = re.compile(r"\s+")
_BLANK_RUNS = re.compile(r"\n{3,}")
_LINE_BREAK = re.compile(r"(?<=\n)")


class Verbosity(str, Enum):
    MINIMAL = "minimal"
    COMPACT = "compact"
    FULL = "full"

    @classmethod
    def parse(cls, value: Any, default: "Verbosity" = None) -> "Verbosity":
        """Return the matching member, or ``default`` for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return default if default is not None else cls.COMPACT


class OutputKind(str, Enum):
    TEXT = "text"
    JSON = "json"

    @classmethod
    def parse(cls, value: Any, default: "OutputKind" = None) -> "OutputKind":
        """Return the matching member, or ``default`` for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return default if default is not None else cls.TEXT


# Text helpers

def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", str(text)).strip()


def truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def preview_text(text: Optional[str], max_len: int) -> str:
    """One-line preview of a post body, empty when there is nothing to show."""
    return truncate(collapse_whitespace(text), max_len)


def truncate_body(text: Any, max_len: int = COMMENT_BODY_LIMIT) -> str:
    """Collapse 3+ line breaks to one blank line, then cut at ``max_len``."""
    if text is None:
        return ""
    return truncate(_BLANK_RUNS.sub("\n\n", str(text)), max_len)


def body_lines(text: str) -> List[str]:
    """Split on ``\\n`` only, keeping the line endings."""
    return [line for line in _LINE_BREAK.split(text) if line]


def time_ago(utc: Any, now: Optional[float] = None) -> str:
    """Humanize a unix timestamp relative to ``now``."""
    if utc is None:
        return "unknown"
    try:
        posted = int(utc)
    except (TypeError, ValueError):
        return "unknown"
    current = int(time.time() if now is None else now)
    diff = current - posted
    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    if diff < 2592000:
        return f"{diff // 86400}d ago"
    return f"{diff // 2592000}mo ago"


def to_json(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"), default=str)


# Listing helpers

def listing_children(listing: Any) -> List[Any]:
    """Return ``listing["data"]["children"]`` or an empty list."""
    if not isinstance(listing, dict):
        return []
    data = listing.get("data")
    if not isinstance(data, dict):
        return []
    children = data.get("children")
    return children if isinstance(children, list) else []


def node_data(node: Any) -> Optional[Dict[str, Any]]:
    """Unwrap a ``{"data": {...}}`` node."""
    if not isinstance(node, dict):
        return None
    data = node.get("data")
    return data if isinstance(data, dict) else None


def external_link(post: Dict[str, Any]) -> Optional[str]:
    url = post.get("url")
    if url and "reddit.com" not in url:
        return url
    return None


def _author(item: Dict[str, Any]) -> str:
    return item.get("author") or "[deleted]"


def _score(item: Dict[str, Any]) -> Any:
    return item.get("score", 0)


# Comment styles

class CommentStyle:
    """How one comment is rendered and how its replies attach to it.

    ``render`` builds the entry for a single comment at nesting ``level``;
    ``attach`` returns the entries to emit for that comment once its
    children have been reduced.
    """

    def render(self, comment: Dict[str, Any], level: int) -> Any:
        raise NotImplementedError

    def attach(self, entry: Any, children: List[Any]) -> List[Any]:
        return [entry] + children


class TextFullComment(CommentStyle):
    def render(self, comment, level):
        prefix = "  " * level
        body = truncate_body(comment.get("body"))
        output = f"{prefix}**u/{_author(comment)}** ({_score(comment)} pts):\n"
        for line in body_lines(body):
            output += f"{prefix}> {line}"
        return output + "\n\n"


class TextCompactComment(CommentStyle):
    def render(self, comment, level):
        prefix = "  " * level
        lines = body_lines(truncate_body(comment.get("body")))
        first = lines[0].strip() if lines else ""
        output = f"{prefix}[{_score(comment)}p] {first}"
        for line in lines[1:]:
            output += f"\n{prefix}{line.rstrip()}"
        return output + "\n\n"


class TextMinimalComment(CommentStyle):
    def render(self, comment, level):
        prefix = "  " * level
        lines = body_lines(truncate_body(comment.get("body")))
        first = lines[0].strip() if lines else ""
        output = f"{prefix}- {first}"
        for line in lines[1:]:
            output += f"\n{prefix}  {line.rstrip()}"
        return output + "\n"


class JsonFullComment(CommentStyle):
    def render(self, comment, level):
        return {
            "p": _score(comment),
            "a": _author(comment),
            "b": truncate_body(comment.get("body")),
        }

    def attach(self, entry, children):
        if children:
            entry["replies"] = children
        return [entry]


class JsonCompactComment(CommentStyle):
    def render(self, comment, level):
        return [_score(comment), truncate_body(comment.get("body"))]

    def attach(self, entry, children):
        if children:
            entry.append(children)
        return [entry]


class JsonMinimalComment(JsonCompactComment):
    def render(self, comment, level):
        return [truncate_body(comment.get("body"))]


def reply_children(comment: Dict[str, Any]) -> List[Any]:
    """Children of a comment's replies listing; ``""`` means no replies."""
    return listing_children(comment.get("replies"))


def reduce_comments(
    nodes: List[Any],
    max_depth: int,
    max_count: int,
    style: CommentStyle,
    level: int = 0,
) -> Tuple[List[Any], int]:
    """Depth-first, pre-order reduction of a comment forest.

    ``max_count`` is the budget remaining for the whole tree, so each
    recursive call receives what its ancestors and earlier siblings left.
    Nodes without a body (``more`` stubs) are skipped and not counted.
    Replies of a node at the last allowed level are never visited.

    Returns the emitted entries and the number of comments they contain.
    """
    entries: List[Any] = []
    count = 0
    for node in nodes or []:
        if count >= max_count:
            break
        comment = node_data(node)
        if comment is None or comment.get("body") is None:
            continue
        entry = style.render(comment, level)
        count += 1
        children: List[Any] = []
        if max_depth > 1:
            replies = reply_children(comment)
            if replies:
                children, child_count = reduce_comments(
                    replies, max_depth - 1, max_count - count, style, level + 1
                )
                count += child_count
        entries.extend(style.attach(entry, children))
    return entries, count


# Formatters

class BaseFormatter:
    """Shared plumbing for the text and JSON formatters."""

    comment_styles: Dict[Verbosity, CommentStyle] = {}

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def comment_style(self, verbosity: Verbosity) -> CommentStyle:
        return self.comment_styles[Verbosity(verbosity)]

    def format_comments(
        self, nodes: List[Any], max_depth: int, max_count: int, verbosity: Verbosity
    ) -> Tuple[List[Any], int]:
        return reduce_comments(nodes, max_depth, max_count, self.comment_style(verbosity))

    def format_search(self, posts, *, query, subreddit, verbosity) -> str:
        raise NotImplementedError

    def format_trending(self, posts, *, subreddit, time_filter, verbosity) -> str:
        raise NotImplementedError

    def format_post(self, post, comments, *, comment_depth, comment_limit, verbosity) -> str:
        raise NotImplementedError

    def error(self, code: str, message: str) -> str:
        raise NotImplementedError

    def empty_result(self) -> str:
        raise NotImplementedError


class TextFormatter(BaseFormatter):
    """Markdown-flavoured text output."""

    comment_styles = {
        Verbosity.FULL: TextFullComment(),
        Verbosity.COMPACT: TextCompactComment(),
        Verbosity.MINIMAL: TextMinimalComment(),
    }

    def format_search(self, posts, *, query, subreddit, verbosity):
        query = collapse_whitespace(query)
        if verbosity == Verbosity.FULL:
            scope = f"in r/{subreddit}" if subreddit else "(all Reddit)"
            header = f'# Search results for "{query}" {scope}\n\n'
        else:
            scope = f"r/{subreddit}" if subreddit else "all"
            header = f"{query} @ {scope}\n\n"
        return self._format_listing(header, posts, verbosity)

    def format_trending(self, posts, *, subreddit, time_filter, verbosity):
        if verbosity == Verbosity.FULL:
            header = f"# Trending in r/{subreddit} (top {time_filter})\n\n"
        else:
            header = f"r/{subreddit} top {time_filter}\n\n"
        return self._format_listing(header, posts, verbosity)

    def _format_listing(self, header, posts, verbosity):
        items = [post for post in (node_data(node) for node in posts) if post is not None]
        if not items:
            return self.empty_result()

        output = header
        for index, post in enumerate(items, 1):
            output += self.format_post_preview(post, index, verbosity)
        if verbosity == Verbosity.FULL:
            output += FULL_FOOTER
        return output

    def format_post_preview(self, post: Dict[str, Any], index: int, verbosity: Verbosity) -> str:
        title, post_id = post.get("title", ""), post.get("id", "")
        score, num_comments = _score(post), post.get("num_comments", 0)
        if verbosity == Verbosity.FULL:
            result = f"### {index}. {title}\n"
            result += (
                f"**r/{post.get('subreddit', '')}** | {score} pts | "
                f"{num_comments} comments | id: `{post_id}`\n"
            )
            preview = preview_text(post.get("selftext"), FULL_PREVIEW_LIMIT)
            if preview:
                result += f"> {preview}\n"
            return result + "\n"

        # compact and minimal share the one-line listing form
        result = f"{index}. {title} [{post_id}] {score}p {num_comments}c"
        preview = preview_text(post.get("selftext"), PREVIEW_LIMIT)
        if preview:
            result += f"\n   {preview}"
        return result + "\n"

    def format_full_post(self, post: Dict[str, Any], verbosity: Verbosity) -> str:
        title, subreddit = post.get("title", ""), post.get("subreddit", "")
        score, num_comments = _score(post), post.get("num_comments", 0)
        selftext = post.get("selftext") or ""
        link = external_link(post)

        if verbosity == Verbosity.FULL:
            output = f"# {title}\n\n"
            output += (
                f"**Subreddit:** r/{subreddit} | **Score:** {score} | "
                f"**Comments:** {num_comments}\n"
            )
            output += (
                f"**Author:** u/{_author(post)} | "
                f"**Posted:** {time_ago(post.get('created_utc'), self.clock())}\n\n"
            )
            if selftext:
                if len(selftext) > POST_BODY_LIMIT:
                    output += f"## Content (truncated)\n\n{truncate(selftext, POST_BODY_LIMIT)}\n\n"
                else:
                    output += f"## Content\n\n{selftext}\n\n"
            elif link:
                output += f"**Link:** {link}\n\n"
            return output

        output = f"{title}\nr/{subreddit} | {score}p {num_comments}c\n\n"
        if selftext:
            output += f"{truncate(selftext, POST_BODY_LIMIT)}\n\n"
        elif link:
            output += f"Link: {link}\n\n"
        return output

    def format_post(self, post, comments, *, comment_depth, comment_limit, verbosity):
        output = self.format_full_post(post, verbosity)
        output += "\n## Top Comments\n\n" if verbosity == Verbosity.FULL else "---\nComments:\n\n"

        entries, count = self.format_comments(comments, comment_depth, comment_limit, verbosity)
        if not entries:
            return output + NO_COMMENTS

        output += "".join(entries)
        if verbosity == Verbosity.FULL:
            output += (
                f"\n---\nShowing {count} comments "
                f"(depth {comment_depth}, limit {comment_limit})."
            )
        return output

    def error(self, code, message):
        return f"Error: {message} ({code})"

    def empty_result(self):
        return "No results found"


class JsonFormatter(BaseFormatter):
    """Compact JSON output with short keys."""

    comment_styles = {
        Verbosity.FULL: JsonFullComment(),
        Verbosity.COMPACT: JsonCompactComment(),
        Verbosity.MINIMAL: JsonMinimalComment(),
    }

    def format_search(self, posts, *, query, subreddit, verbosity):
        return self.format_post_list(posts, verbosity)

    def format_trending(self, posts, *, subreddit, time_filter, verbosity):
        return self.format_post_list(posts, verbosity)

    def format_post_list(self, posts: List[Any], verbosity: Verbosity) -> str:
        results = [
            self.format_post_preview(post, verbosity)
            for post in (node_data(node) for node in posts)
            if post is not None
        ]
        return to_json(results)

    def format_post_preview(self, post: Dict[str, Any], verbosity: Verbosity) -> Dict[str, Any]:
        result = {
            "t": post.get("title"),
            "id": post.get("id"),
            "p": _score(post),
            "c": post.get("num_comments", 0),
        }
        preview = preview_text(post.get("selftext"), PREVIEW_LIMIT)
        if preview:
            result["s"] = preview
        if verbosity == Verbosity.FULL:
            result["r"] = post.get("subreddit")
            result["a"] = _author(post)
        return result

    def format_full_post(self, post: Dict[str, Any], verbosity: Verbosity) -> Dict[str, Any]:
        result = {
            "t": post.get("title"),
            "r": post.get("subreddit"),
            "p": _score(post),
            "c": post.get("num_comments", 0),
        }
        selftext = post.get("selftext") or ""
        link = external_link(post)
        if selftext:
            result["b"] = truncate(selftext, POST_BODY_LIMIT)
        elif link:
            result["u"] = link
        if verbosity == Verbosity.FULL:
            result["a"] = _author(post)
            result["ts"] = post.get("created_utc")
        return result

    def format_post(self, post, comments, *, comment_depth, comment_limit, verbosity):
        result = self.format_full_post(post, verbosity)
        entries, count = self.format_comments(comments, comment_depth, comment_limit, verbosity)
        if entries:
            result["comments"] = entries
            if verbosity == Verbosity.FULL:
                result["n"] = count
        return to_json(result)

    def error(self, code, message):
        return to_json({"error": code, "message": message})

    def empty_result(self):
        return "[]"


FORMATTERS = {
    OutputKind.TEXT: TextFormatter,
    OutputKind.JSON: JsonFormatter,
}


def get_formatter(kind: OutputKind, clock: Callable[[], float] = time.time) -> BaseFormatter:
    """Instantiate the formatter for an output kind."""
    return FORMATTERS[OutputKind(kind)](clock=clock)
