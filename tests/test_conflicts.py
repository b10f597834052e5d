"""Tests for conflict detection, resolution and transfer planning."""

import pytest

from stampsync.bidirectional.confirm import InteractiveConfirmer, StaticConfirmer
from stampsync.bidirectional.conflict_detector import ConflictDetector
from stampsync.bidirectional.conflict_resolver import (
    CONFLICT_MARKER,
    ConflictResolver,
    ResolutionStrategy,
    conflict_name,
)
from stampsync.bidirectional.planner import TransferPlanner
from stampsync.core.errors import ConflictBlocked
from stampsync.core.models import DeletionSet, Direction
from tests.conftest import write_file


class TestConflictDetector:
    """Tests for ConflictDetector."""

    def test_intersection_only(self):
        conflicts = ConflictDetector().detect({"a", "b", "c"}, {"b", "c", "d"})

        assert conflicts == {"b", "c"}

    @pytest.mark.parametrize("local,remote", [
        (set(), set()),
        ({"x"}, set()),
        ({"x", "y/z"}, {"y/z", "w"}),
        ({"same"}, {"same"}),
    ])
    def test_symmetric(self, local, remote):
        detector = ConflictDetector()

        assert detector.detect(local, remote) == detector.detect(remote, local)


class TestConflictName:
    """Tests for conflict copy naming."""

    def test_format(self):
        assert conflict_name("docs/report.txt", "laptop", 1700000000) == (
            "docs/report.txt_SYNC_CONFLICT_laptop_1700000000"
        )

    def test_slashes_in_host_replaced(self):
        assert conflict_name("a", "x/y", 5) == "a_SYNC_CONFLICT_x_y_5"


class TestConflictResolver:
    """Tests for ConflictResolver."""

    def test_block_raises_without_touching_files(self, tmp_path):
        write_file(tmp_path / "a.txt", "local")
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.BLOCK)

        with pytest.raises(ConflictBlocked) as exc_info:
            resolver.resolve({"a.txt"}, 100)

        assert exc_info.value.paths == ["a.txt"]
        assert (tmp_path / "a.txt").read_text() == "local"

    def test_no_conflicts_is_noop(self, tmp_path):
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.BLOCK)

        assert resolver.resolve(set(), 100) == {}

    def test_rename_moves_local_copy_aside(self, tmp_path):
        write_file(tmp_path / "dir" / "a.txt", "local")
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.RENAME)

        renamed = resolver.resolve({"dir/a.txt"}, 100)

        assert renamed == {"dir/a.txt": "dir/a.txt_SYNC_CONFLICT_laptop_100"}
        assert not (tmp_path / "dir" / "a.txt").exists()
        assert (tmp_path / "dir" / "a.txt_SYNC_CONFLICT_laptop_100").read_text() == "local"

    def test_rename_collision_gets_suffix(self, tmp_path):
        write_file(tmp_path / "a.txt", "new")
        write_file(tmp_path / "a.txt_SYNC_CONFLICT_laptop_100", "earlier")
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.RENAME)

        renamed = resolver.resolve({"a.txt"}, 100)

        assert renamed == {"a.txt": "a.txt_SYNC_CONFLICT_laptop_100_1"}
        assert (tmp_path / "a.txt_SYNC_CONFLICT_laptop_100").read_text() == "earlier"

    def test_rename_failure_blocks(self, tmp_path):
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.RENAME)

        with pytest.raises(ConflictBlocked):
            resolver.resolve({"missing.txt"}, 100)

    def test_rename_failure_undoes_earlier_renames(self, tmp_path):
        write_file(tmp_path / "a.txt", "local a")
        resolver = ConflictResolver(str(tmp_path), "laptop", ResolutionStrategy.RENAME)

        # a.txt is renamed first, then b.txt fails
        with pytest.raises(ConflictBlocked) as exc_info:
            resolver.resolve({"a.txt", "b.txt"}, 100)

        assert exc_info.value.paths == ["a.txt", "b.txt"]
        assert (tmp_path / "a.txt").read_text() == "local a"
        assert not any(CONFLICT_MARKER in p.name for p in tmp_path.iterdir())


class TestTransferPlanner:
    """Tests for TransferPlanner."""

    def test_disjoint_directions(self):
        plan = TransferPlanner().plan({"a", "both"}, {"b", "both"}, {"both"})

        assert plan.push == {"a"}
        assert plan.pull == {"b"}
        assert plan.conflicts == {"both"}
        assert not plan.pull & plan.push

    def test_marker_never_planned(self):
        plan = TransferPlanner().plan({".sync_time", "a"}, {".sync_time"}, set())

        assert plan.push == {"a"}
        assert plan.pull == frozenset()

    def test_renamed_conflicts(self):
        plan = TransferPlanner().plan(
            {"a", "both"},
            {"both"},
            {"both"},
            renamed={"both": "both_SYNC_CONFLICT_h_1"}
        )

        assert plan.pull == {"both"}
        assert plan.push == {"a", "both_SYNC_CONFLICT_h_1"}
        assert plan.conflicts == frozenset()

    def test_unresolved_overlap_rejected(self):
        with pytest.raises(ValueError):
            TransferPlanner().plan({"x"}, {"x"}, set())

    def test_empty_plan(self):
        assert TransferPlanner().plan(set(), set(), set()).is_empty()


class TestConfirmers:
    """Tests for the confirmation callbacks."""

    def test_static_per_direction(self):
        confirmer = StaticConfirmer(deletions={Direction.LOCAL: True})

        assert confirmer.confirm_deletions(DeletionSet(Direction.LOCAL, ["a"]))
        assert not confirmer.confirm_deletions(DeletionSet(Direction.REMOTE, ["b"]))
        assert confirmer.asked == [(Direction.LOCAL, ("a",)), (Direction.REMOTE, ("b",))]

    def test_interactive_assume_yes_lists_paths(self):
        lines = []
        confirmer = InteractiveConfirmer(assume_yes=True, echo=lines.append, max_listed=2)

        approved = confirmer.confirm_deletions(DeletionSet(Direction.REMOTE, ["a", "b", "c"]))

        assert approved
        assert "3 path(s) would be deleted on the server:" in lines
        assert "    ... and 1 more" in lines

    def test_interactive_prompt_declined(self, monkeypatch):
        monkeypatch.setattr("click.confirm", lambda *args, **kwargs: False)
        confirmer = InteractiveConfirmer(echo=lambda line: None)

        assert not confirmer.confirm_rename(["a"])
