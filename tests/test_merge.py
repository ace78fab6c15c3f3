"""
Tests for the three-way merge.
"""

import pytest

from lexisync.models.translation import Tag, TranslationEntry
from lexisync.sync.merge import (
    ConflictOutcome,
    ConflictResolution,
    apply_resolutions,
    merge,
    resolve_all,
)
from lexisync.utils.errors import MergeConflictError
from tests.fixtures import TranslationFixtures


def make(entries, lineage_id=None):
    return TranslationFixtures.create_map(entries, lineage_id=lineage_id)


class TestMergeRules:
    """Test per-key merge outcomes."""

    def test_identical_sides(self):
        """X, X, X keeps X."""
        base = {"Hello": "Bonjour"}
        result = merge(make(base), make(base), make(base))

        assert result.merged.get("Hello") == TranslationEntry("Bonjour")
        assert result.statistics.unchanged == 1
        assert not result.has_conflicts

    def test_local_change_kept(self):
        """Local X→Y with remote unchanged keeps Y."""
        result = merge(
            make({"Hello": "Salut"}),
            make({"Hello": "Bonjour"}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello").value == "Salut"
        assert result.statistics.local_modified == 1

    def test_remote_change_taken(self):
        """Remote X→Z with local unchanged takes Z."""
        result = merge(
            make({"Hello": "Bonjour"}),
            make({"Hello": "Coucou"}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello").value == "Coucou"
        assert result.statistics.remote_updated == 1

    def test_added_on_either_side(self):
        result = merge(
            make({"Mine": "A moi"}),
            make({"Theirs": "A eux"}),
            make({}),
        )
        assert set(result.merged) == {"Mine", "Theirs"}
        assert result.statistics.local_added == 1
        assert result.statistics.remote_added == 1

    def test_missing_key_means_unchanged(self):
        """A key absent on one side is never treated as deleted."""
        result = merge(
            make({}),
            make({"Hello": "Coucou"}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello").value == "Coucou"
        assert not result.has_conflicts

    def test_same_value_converges_to_higher_tag(self):
        result = merge(
            make({"Hello": ("Salut", Tag.AI)}),
            make({"Hello": ("Salut", Tag.VALIDATED)}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello") == TranslationEntry("Salut", Tag.VALIDATED)
        assert result.statistics.converged == 1
        assert not result.has_conflicts

    def test_human_beats_ai(self):
        """Both sides changed; the higher tag wins without asking."""
        result = merge(
            make({"Hello": ("Salut", Tag.HUMAN)}),
            make({"Hello": ("Coucou", Tag.AI)}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello").value == "Salut"
        assert result.statistics.auto_resolved_by_tag == 1
        assert result.resolved[0].outcome is ConflictOutcome.LOCAL
        assert not result.has_conflicts

    def test_remote_validated_beats_local_capture(self):
        result = merge(
            make({"Hello": TranslationEntry.capture()}),
            make({"Hello": ("Coucou", Tag.VALIDATED)}),
            make({"Hello": "Bonjour"}),
        )
        assert result.merged.get("Hello").value == "Coucou"
        assert result.resolved[0].outcome is ConflictOutcome.REMOTE

    def test_equal_tags_conflict(self):
        """Equal tags with different values stay undecided and out of the merged map."""
        result = merge(
            make({"Hello": ("Salut", Tag.HUMAN), "Bye": "Au revoir"}),
            make({"Hello": ("Coucou", Tag.HUMAN), "Bye": "Au revoir"}),
            make({"Hello": "Bonjour", "Bye": "Au revoir"}),
        )
        assert result.has_conflicts
        conflict = result.conflicts[0]
        assert conflict.key == "Hello"
        assert conflict.local.value == "Salut"
        assert conflict.remote.value == "Coucou"
        assert conflict.ancestor.value == "Bonjour"
        assert conflict.outcome is ConflictOutcome.UNDECIDED
        assert "Hello" not in result.merged
        assert "Bye" in result.merged

    def test_no_ancestor(self):
        """Without an ancestor every differing key is a both-sides change."""
        result = merge(
            make({"Hello": ("Salut", Tag.AI), "Same": "Pareil"}),
            make({"Hello": ("Coucou", Tag.AI), "Same": "Pareil"}),
            None,
        )
        assert [c.key for c in result.conflicts] == ["Hello"]
        assert result.merged.get("Same").value == "Pareil"

    def test_conflicts_sorted_by_key(self):
        keys = ["zeta", "alpha", "mid"]
        result = merge(
            make({k: "local" for k in keys}),
            make({k: "remote" for k in keys}),
            make({k: "base" for k in keys}),
        )
        assert [c.key for c in result.conflicts] == sorted(keys)

    def test_merged_keeps_local_lineage(self):
        other = TranslationFixtures.new_lineage()
        result = merge(make({"a": "1"}), make({"b": "2"}, lineage_id=other), None)
        assert result.merged.lineage_id == TranslationFixtures.LINEAGE_ID


class TestResolutions:
    """Test applying user choices to undecided keys."""

    @pytest.fixture
    def conflicted(self):
        return merge(
            make({"a": "local a", "b": "local b"}),
            make({"a": "remote a", "b": "remote b"}),
            make({"a": "base a", "b": "base b"}),
        )

    def test_ensure_resolved_raises(self, conflicted):
        with pytest.raises(MergeConflictError) as exc_info:
            conflicted.ensure_resolved()
        assert exc_info.value.keys == ["a", "b"]

    def test_partial_resolution(self, conflicted):
        result = apply_resolutions(conflicted, {"a": ConflictResolution.TAKE_REMOTE})

        assert result.merged.get("a").value == "remote a"
        assert [c.key for c in result.conflicts] == ["b"]
        assert result.statistics.resolved == 1
        assert result.statistics.unresolved == 1
        # Input untouched
        assert len(conflicted.conflicts) == 2
        assert "a" not in conflicted.merged

    def test_unknown_keys_ignored(self, conflicted):
        result = apply_resolutions(conflicted, {"nope": ConflictResolution.KEEP_LOCAL})
        assert len(result.conflicts) == 2
        assert "nope" not in result.merged

    def test_resolve_all(self, conflicted):
        result = resolve_all(conflicted, ConflictResolution.KEEP_LOCAL)

        merged = result.ensure_resolved()
        assert merged.get("a").value == "local a"
        assert merged.get("b").value == "local b"
        assert all(c.outcome is ConflictOutcome.LOCAL for c in result.resolved)


class TestMergeStatistics:
    """Test merge summaries."""

    def test_summary(self):
        result = merge(
            make({"kept": "mine", "conflict": "mine"}),
            make({"new": "theirs", "conflict": "theirs"}),
            make({"kept": "base", "conflict": "base"}),
        )
        summary = result.statistics.summary()

        assert "+1 new" in summary
        assert "1 local kept" in summary
        assert "!1 conflicts" in summary

    def test_no_changes(self):
        result = merge(make({"a": "1"}), make({"a": "1"}), make({"a": "1"}))
        assert result.statistics.summary() == "No changes"
        assert result.statistics.auto_kept == 1
