"""Unit tests for input validation functions."""
import pytest

from reddit_formatters import OutputKind, Verbosity


class TestNormalizeSubreddit:
    """Tests for normalize_subreddit() function."""

    def test_prefix_is_stripped(self):
        """r/ prefix should be removed, in any case."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("r/ruby") == "ruby"
        assert normalize_subreddit("R/ruby") == "ruby"
        assert normalize_subreddit("ruby") == "ruby"

    def test_whitespace_is_trimmed(self):
        """Surrounding whitespace should be ignored."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("  r/selfhosted \n") == "selfhosted"

    def test_underscores_and_digits_allowed(self):
        """Names may contain letters, digits and underscores."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("Python_3") == "Python_3"

    def test_invalid_names_return_none(self):
        """Spaces, hyphens and empty values should be rejected."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("has spaces") is None
        assert normalize_subreddit("") is None
        assert normalize_subreddit("invalid-name") is None
        assert normalize_subreddit("r/") is None
        assert normalize_subreddit(None) is None

    def test_only_one_prefix_is_stripped(self):
        """r/r/name leaves a slash behind and is rejected."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("r/r/ruby") is None

    def test_non_ascii_letters_rejected(self):
        """Letters that case-fold to ASCII (Kelvin sign, dotted I, long s) are not valid."""
        from reddit_mcp import normalize_subreddit
        assert normalize_subreddit("\u212aelvin") is None
        assert normalize_subreddit("\u0130stanbul") is None
        assert normalize_subreddit("d\u0131ary") is None
        assert normalize_subreddit("clas\u017f") is None


class TestNormalizePostId:
    """Tests for normalize_post_id() function."""

    def test_t3_prefix_is_stripped(self):
        """t3_ fullname prefix should be removed."""
        from reddit_mcp import normalize_post_id
        assert normalize_post_id("t3_abc123") == "abc123"
        assert normalize_post_id("T3_abc123") == "abc123"

    def test_case_is_preserved(self):
        """Mixed-case IDs are accepted unchanged."""
        from reddit_mcp import normalize_post_id
        assert normalize_post_id(" AbC123 ") == "AbC123"

    def test_invalid_ids_return_none(self):
        """Non-alphanumeric or empty IDs should be rejected."""
        from reddit_mcp import normalize_post_id
        assert normalize_post_id("invalid-id") is None
        assert normalize_post_id("") is None
        assert normalize_post_id("t3_") is None
        assert normalize_post_id("abc_123") is None
        assert normalize_post_id(None) is None

    def test_non_ascii_letters_rejected(self):
        """Long s and Kelvin sign fold to ASCII letters but are not valid ID characters."""
        from reddit_mcp import normalize_post_id
        assert normalize_post_id("ab\u017f1") is None
        assert normalize_post_id("\u212a9x") is None
        assert normalize_post_id("t3_ab\u0131") is None


class TestNormalizeQuery:
    """Tests for normalize_query() function."""

    def test_trims(self):
        from reddit_mcp import normalize_query
        assert normalize_query("  rails 8  ") == "rails 8"

    def test_empty_returns_none(self):
        from reddit_mcp import normalize_query
        assert normalize_query("   ") is None
        assert normalize_query(None) is None


class TestClampInt:
    """Tests for clamp_int() function."""

    def test_in_range_value_is_kept(self):
        from reddit_mcp import clamp_int
        assert clamp_int(7, 10, 1, 25) == 7

    def test_above_maximum_clamps(self):
        """999 with max 25 should clamp to 25."""
        from reddit_mcp import clamp_int
        assert clamp_int(999, 10, 1, 25) == 25

    def test_below_minimum_clamps(self):
        from reddit_mcp import clamp_int
        assert clamp_int(0, 10, 1, 25) == 1
        assert clamp_int(-5, 2, 1, 5) == 1

    def test_numeric_strings_are_parsed(self):
        from reddit_mcp import clamp_int
        assert clamp_int("12", 10, 1, 25) == 12
        assert clamp_int(" 3 ", 10, 1, 25) == 3

    def test_unparseable_values_fall_back_to_default(self):
        """Non-integers never reject; they yield the default."""
        from reddit_mcp import clamp_int
        assert clamp_int("ten", 10, 1, 25) == 10
        assert clamp_int("3.5", 10, 1, 25) == 10
        assert clamp_int(None, 15, 1, 200) == 15
        assert clamp_int([], 15, 1, 200) == 15
        assert clamp_int(True, 2, 1, 5) == 2


class TestValidateEnum:
    """Tests for validate_enum() function."""

    def test_absent_uses_default(self):
        from reddit_mcp import validate_enum
        assert validate_enum(None, ("a", "b"), "a", "sort") == "a"

    def test_member_is_returned(self):
        from reddit_mcp import validate_enum
        assert validate_enum("b", ("a", "b"), "a", "sort") == "b"

    def test_unknown_value_is_rejected(self):
        """Enums are strict: an unknown value is an error, not the default."""
        from reddit_mcp import validate_enum, ValidationError
        with pytest.raises(ValidationError, match="sort must be one of: a, b"):
            validate_enum("bogus", ("a", "b"), "a", "sort")


class TestParseSearchArgs:
    """Tests for parse_search_args()."""

    def test_defaults(self):
        from reddit_mcp import parse_search_args, ServerConfig
        request = parse_search_args({"query": " rails "}, ServerConfig())
        assert request.query == "rails"
        assert request.subreddit is None
        assert request.sort == "relevance"
        assert request.time_filter == "all"
        assert request.limit == 10
        assert request.output_kind == OutputKind.TEXT
        assert request.verbosity == Verbosity.COMPACT

    def test_missing_query_rejected(self):
        from reddit_mcp import parse_search_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="query is required"):
            parse_search_args({"query": "  "}, ServerConfig())

    def test_bogus_sort_rejected(self):
        """An unknown sort is a hard rejection."""
        from reddit_mcp import parse_search_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="sort must be one of"):
            parse_search_args({"query": "x", "sort": "bogus"}, ServerConfig())

    def test_bogus_time_rejected(self):
        from reddit_mcp import parse_search_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="time must be one of"):
            parse_search_args({"query": "x", "time": "decade"}, ServerConfig())

    def test_limit_is_clamped_not_rejected(self):
        from reddit_mcp import parse_search_args, ServerConfig
        assert parse_search_args({"query": "x", "limit": 999}, ServerConfig()).limit == 25
        assert parse_search_args({"query": "x", "limit": "lots"}, ServerConfig()).limit == 10

    def test_invalid_subreddit_rejected(self):
        from reddit_mcp import parse_search_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="subreddit"):
            parse_search_args({"query": "x", "subreddit": "not valid"}, ServerConfig())

    def test_null_subreddit_means_all(self):
        from reddit_mcp import parse_search_args, ServerConfig
        assert parse_search_args({"query": "x", "subreddit": None}, ServerConfig()).subreddit is None

    def test_rendering_defaults_come_from_config(self):
        from reddit_mcp import parse_search_args, ServerConfig
        config = ServerConfig(output_kind=OutputKind.JSON, verbosity=Verbosity.FULL)
        request = parse_search_args({"query": "x"}, config)
        assert request.output_kind == OutputKind.JSON
        assert request.verbosity == Verbosity.FULL

    def test_unknown_verbosity_rejected(self):
        from reddit_mcp import parse_search_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="verbosity must be one of"):
            parse_search_args({"query": "x", "verbosity": "loud"}, ServerConfig())


class TestParsePostArgs:
    """Tests for parse_post_args()."""

    def test_defaults_and_prefix(self):
        from reddit_mcp import parse_post_args, ServerConfig
        request = parse_post_args({"post_id": "t3_abc123"}, ServerConfig())
        assert request.post_id == "abc123"
        assert request.comment_limit == 15
        assert request.comment_depth == 2

    def test_bounds_are_clamped(self):
        from reddit_mcp import parse_post_args, ServerConfig
        request = parse_post_args(
            {"post_id": "abc123", "comment_limit": 1000, "comment_depth": 0}, ServerConfig()
        )
        assert request.comment_limit == 200
        assert request.comment_depth == 1

    def test_empty_post_id_rejected(self):
        from reddit_mcp import parse_post_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="post_id"):
            parse_post_args({"post_id": ""}, ServerConfig())


class TestParseTrendingArgs:
    """Tests for parse_trending_args()."""

    def test_defaults(self):
        from reddit_mcp import parse_trending_args, ServerConfig
        request = parse_trending_args({"subreddit": "r/selfhosted"}, ServerConfig())
        assert request.subreddit == "selfhosted"
        assert request.time_filter == "week"
        assert request.limit == 10

    def test_missing_subreddit_rejected(self):
        from reddit_mcp import parse_trending_args, ServerConfig, ValidationError
        with pytest.raises(ValidationError, match="subreddit is required"):
            parse_trending_args({}, ServerConfig())
