"""Tests for domain classification."""

from screentime.classify import (
    DEFAULT_CATEGORY,
    categories,
    classify,
    domain_from_url,
    should_record_minute,
)


class TestClassify:
    """Tests for classify()."""

    def test_known_domains(self):
        assert classify("github.com") == "Work"
        assert classify("youtube.com") == "Entertainment"
        assert classify("reddit.com") == "Social"
        assert classify("wikipedia.org") == "Utilities"

    def test_subdomain_matches_by_containment(self):
        """Substring containment catches subdomains."""
        assert classify("gist.github.com") == "Work"
        assert classify("m.youtube.com") == "Entertainment"

    def test_case_insensitive(self):
        assert classify("GitHub.COM") == "Work"

    def test_unknown_falls_back_to_other(self):
        assert classify("example.org") == DEFAULT_CATEGORY

    def test_empty_subject_is_other(self):
        assert classify("") == "Other"

    def test_first_matching_category_wins(self):
        """A subject matching two rows takes the earlier one."""
        table = [("Study", ["docs"]), ("Utilities", ["google.com"])]
        assert classify("docs.google.com", table) == "Study"

    def test_custom_table_patterns_are_case_insensitive(self):
        table = [("Work", ["Intranet.Corp"])]
        assert classify("intranet.corp.example", table) == "Work"


class TestCategories:
    """Tests for the ordered category set."""

    def test_default_order_ends_with_other(self):
        assert categories() == ["Entertainment", "Social", "Work", "Utilities", "Other"]

    def test_other_not_duplicated(self):
        table = [("Other", ["misc"]), ("Work", ["github.com"])]
        assert categories(table) == ["Other", "Work"]

    def test_duplicate_rows_collapse(self):
        table = [("Work", ["a"]), ("Work", ["b"])]
        assert categories(table) == ["Work", "Other"]


class TestDomainFromUrl:
    """Tests for domain_from_url()."""

    def test_extracts_hostname(self):
        assert domain_from_url("https://github.com/user/repo?tab=1") == "github.com"

    def test_lowercases_hostname(self):
        assert domain_from_url("https://News.YCombinator.com/") == "news.ycombinator.com"

    def test_no_hostname_is_unknown(self):
        assert domain_from_url("not a url") == "unknown"

    def test_malformed_url_is_unknown(self):
        assert domain_from_url("http://[::1") == "unknown"


class TestShouldRecordMinute:
    """Tests for the minute recording predicate."""

    def test_records_when_focused_visible_and_active(self):
        assert should_record_minute(focused=True, visible=True, idle=False) is True

    def test_skips_when_any_condition_fails(self):
        assert should_record_minute(focused=False, visible=True, idle=False) is False
        assert should_record_minute(focused=True, visible=False, idle=False) is False
        assert should_record_minute(focused=True, visible=True, idle=True) is False
