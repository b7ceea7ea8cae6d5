"""Shared pytest fixtures for Reddit MCP tests."""
import os
import pytest
from unittest.mock import AsyncMock, MagicMock

# Ensure we can import from the main modules
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

FIXED_NOW = 1703620800.0


@pytest.fixture
def fixed_clock():
    """Clock returning a fixed timestamp."""
    return lambda: FIXED_NOW


@pytest.fixture
def make_comment():
    """Factory for comment nodes shaped like Reddit's listing children."""
    def _make_comment(author, body, score=1, replies=None):
        data = {"author": author, "score": score, "body": body}
        if replies is None:
            data["replies"] = ""
        else:
            data["replies"] = {"kind": "Listing", "data": {"children": replies}}
        return {"kind": "t1", "data": data}
    return _make_comment


@pytest.fixture
def make_stub():
    """Factory for "load more" placeholder nodes (no body)."""
    def _make_stub(count=3):
        return {"kind": "more", "data": {"count": count, "children": ["x1", "x2"]}}
    return _make_stub


@pytest.fixture
def make_post():
    """Factory for post dicts."""
    def _make_post(**overrides):
        post = {
            "id": "abc123",
            "title": "Test post",
            "subreddit": "ruby",
            "score": 42,
            "num_comments": 2,
            "author": "author",
            "created_utc": FIXED_NOW - 7200,
            "selftext": "",
            "url": "https://www.reddit.com/r/ruby/comments/abc123/test_post/",
        }
        post.update(overrides)
        return post
    return _make_post


@pytest.fixture
def make_listing():
    """Wrap data dicts as a Reddit listing."""
    def _make_listing(*items):
        return {"kind": "Listing", "data": {"children": [{"kind": "t3", "data": item} for item in items]}}
    return _make_listing


@pytest.fixture
def sample_comments(make_comment):
    """Parent (score 5) with one child (score 2), plus a sibling (score 3)."""
    return [
        make_comment("parent", "Parent comment", score=5, replies=[
            make_comment("child", "Child comment", score=2),
        ]),
        make_comment("second", "Second comment", score=3),
    ]


@pytest.fixture
def post_payload(make_post, sample_comments):
    """Two-element response of the comments endpoint."""
    post_listing = {"kind": "Listing", "data": {"children": [{"kind": "t3", "data": make_post()}]}}
    comments_listing = {"kind": "Listing", "data": {"children": sample_comments}}
    return [post_listing, comments_listing]


@pytest.fixture
def mock_client():
    """Fetch client whose get_json is an AsyncMock."""
    client = MagicMock()
    client.get_json = AsyncMock()
    return client
