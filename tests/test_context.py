"""Tests for prompt context, output cleanup and fallback text."""
from datetime import timedelta

from devcast.content.context import (
    build_context,
    clean_generated_text,
    fallback_text,
    instruction_prefix,
    largest_group,
    time_ago,
)
from devcast.store.models import ActivityType

from conftest import NOW


class TestBuildContext:
    """Tests for build_context."""

    def test_summary_and_lines(self, make_activity):
        """Test counts, recency and one line per activity."""
        activities = [
            make_activity(title="Add scheduler", minutes_ago=120, description="Runs jobs on a timer"),
            make_activity(activity_type=ActivityType.PR, title="Retry policy", external_id="4", minutes_ago=180),
            make_activity(activity_type=ActivityType.RELEASE, title="v1.0.0", external_id="v1.0.0", minutes_ago=240),
        ]
        context = build_context("alice/devcast", activities, now=NOW)

        assert "Repository: alice/devcast" in context
        assert "Project: devcast" in context
        assert "Activity Summary: 1 commits, 1 pull requests, 0 issues, 1 releases" in context
        assert "Time Frame: Most recent activity 2 hours ago" in context
        assert "- [COMMIT] Add scheduler: Runs jobs on a timer" in context
        assert "- [PR] Retry policy" in context

    def test_long_description_excerpted(self, make_activity):
        """Test descriptions are cut to their first 50 characters."""
        activity = make_activity(title="Refactor", description="x" * 80 + "\nsecond line")
        context = build_context("alice/devcast", [activity], now=NOW)
        assert f"- [COMMIT] Refactor: {'x' * 50}..." in context


class TestTimeAgo:
    """Tests for humanized durations."""

    def test_units(self):
        """Test each unit boundary."""
        assert time_ago(NOW - timedelta(seconds=10), NOW) == "less than a minute ago"
        assert time_ago(NOW - timedelta(minutes=1), NOW) == "1 minute ago"
        assert time_ago(NOW - timedelta(hours=5), NOW) == "5 hours ago"
        assert time_ago(NOW - timedelta(days=2), NOW) == "2 days ago"


class TestGrouping:
    """Tests for repository grouping."""

    def test_tie_goes_to_first_seen(self, make_activity):
        """Test equal groups resolve to the first repository encountered."""
        activities = [make_activity(repository="a/one"), make_activity(repository="a/two")]
        repository, group = largest_group(activities)
        assert repository == "a/one"
        assert len(group) == 1


class TestCleanGeneratedText:
    """Tests for output cleanup."""

    def test_strips_quotes_and_prefix(self):
        """Test surrounding quotes and framing prefixes are removed."""
        text, actions = clean_generated_text('"Tweet: Shipped v2!"', "prompt")
        assert text == "Shipped v2!"
        assert len(actions) == 2

    def test_strips_echoed_instruction(self):
        """Test a prompt clause echoed at the start is removed."""
        prompt = "WRITE THE FOLLOWING CONTENT: announce the new scheduler"
        text, _ = clean_generated_text("announce the new scheduler: It runs every hour now.", prompt)
        assert text == "It runs every hour now."

    def test_clean_text_untouched(self):
        """Test text without framing is returned as-is."""
        text, actions = clean_generated_text("Nothing to clean #devwork", "prompt")
        assert text == "Nothing to clean #devwork"
        assert actions == []


class TestFallbackText:
    """Tests for deterministic fallback text."""

    def test_commit_summary(self, make_activity):
        """Test counts, latest title and hashtags."""
        activities = [make_activity(title="Add CLI", minutes_ago=1), make_activity(minutes_ago=2)]
        text = fallback_text("alice/dev-cast", activities)
        assert text == "Just made progress on dev-cast! Added 2 commits. Latest: Add CLI and more. #devcast #devwork"

    def test_release_version(self, make_activity):
        """Test releases announce their version."""
        activities = [make_activity(activity_type=ActivityType.RELEASE, title="Release 1.4.2", external_id="v1.4.2")]
        text = fallback_text("alice/devcast", activities)
        assert "🚀 Released v1.4.2." in text

    def test_never_exceeds_limit(self, make_activity):
        """Test the fallback respects the length limit."""
        activities = [make_activity(title="t" * 200)]
        assert len(fallback_text("alice/" + "r" * 200, activities, 280)) <= 280

    def test_instruction_prefix(self):
        """Test instruction lead-ins."""
        assert instruction_prefix("tweet about the launch", "alice/devcast") == "Tweet about devcast: "
        assert instruction_prefix("'celebrate 100 stars'", "alice/devcast") == "Celebrate 100 stars: "
        assert instruction_prefix("  ", "alice/devcast") == ""
