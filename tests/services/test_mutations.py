"""Tests for group mutations and their invariants."""
import random
from uuid import uuid4

import pytest

from facegroups.core.exceptions import InvalidMutationError
from facegroups.domain.value_objects.recognition import KnownPersonMatchRecord
from facegroups.services import mutations
from facegroups.services.mutations import find_inconsistencies, sorted_groups
from tests.conftest import build_aggregate


def group_sizes(data):
    return [len(g.face_ids) for g in data.groups]


class TestSortedGroups:
    """Test suite for display ordering."""

    def test_named_first_then_by_size(self):
        data = build_aggregate([1, 3, 2, 5, 2], names=[None, "bob", None, None, "Alice"])
        ordered = sorted_groups(data.groups)
        assert [g.name for g in ordered[:2]] == ["Alice", "bob"]
        assert [len(g.face_ids) for g in ordered[2:]] == [5, 2, 1]
        # Stable among equal sizes
        unnamed = [g for g in data.groups if not g.name]
        assert ordered[2:] == sorted(unnamed, key=lambda g: -len(g.face_ids))


class TestMergeGroups:
    """Test suite for merging two groups."""

    def test_merge(self):
        data = build_aggregate([2, 3])
        source, target = data.groups

        result = mutations.merge_groups(data, source.id, target.id)

        assert [g.id for g in result.groups] == [target.id]
        assert result.groups[0].face_ids == target.face_ids + source.face_ids
        assert all(f.group_id == target.id for f in result.faces)
        assert result.groups[0].representative_face_id == target.representative_face_id
        assert find_inconsistencies(result) == []

    def test_input_not_modified(self):
        data = build_aggregate([2, 3])
        before = data.model_dump_json()
        mutations.merge_groups(data, data.groups[0].id, data.groups[1].id)
        assert data.model_dump_json() == before

    def test_merge_into_itself_rejected(self):
        data = build_aggregate([2])
        with pytest.raises(InvalidMutationError):
            mutations.merge_groups(data, data.groups[0].id, data.groups[0].id)

    def test_unknown_group_rejected(self):
        data = build_aggregate([2])
        with pytest.raises(InvalidMutationError):
            mutations.merge_groups(data, uuid4(), data.groups[0].id)

    def test_drops_source_match_record(self):
        data = build_aggregate([1, 1])
        source, target = data.groups
        data.known_person_matches[str(source.id)] = KnownPersonMatchRecord(
            person_id=uuid4(), person_name="Alice", confidence=0.9
        )
        result = mutations.merge_groups(data, source.id, target.id)
        assert result.known_person_matches == {}


class TestUngroup:
    """Test suite for splitting faces out of groups."""

    def test_ungroup_face(self):
        data = build_aggregate([3])
        group = data.groups[0]
        representative = group.representative_face_id

        result = mutations.ungroup_face(data, representative)

        assert sorted(group_sizes(result)) == [1, 2]
        original = result.get_group(group.id)
        assert original.representative_face_id == group.face_ids[1]
        assert result.get_face(representative).group_id != group.id
        assert find_inconsistencies(result) == []

    def test_solo_face_cannot_be_ungrouped(self):
        data = build_aggregate([1])
        with pytest.raises(InvalidMutationError):
            mutations.ungroup_face(data, data.faces[0].id)

    def test_ungroup_multiple_keeps_first_member(self):
        data = build_aggregate([3, 1, 2])
        big, solo, pair = data.groups

        result = mutations.ungroup_multiple(data, [big.id, solo.id, pair.id])

        assert result.get_group(big.id).face_ids == [big.face_ids[0]]
        assert result.get_group(big.id).representative_face_id == big.face_ids[0]
        assert result.get_group(pair.id).face_ids == [pair.face_ids[0]]
        assert group_sizes(result) == [1] * 6
        assert find_inconsistencies(result) == []

    def test_ungroup_multiple_of_solo_groups_rejected(self):
        data = build_aggregate([1, 1])
        with pytest.raises(InvalidMutationError):
            mutations.ungroup_multiple(data, [g.id for g in data.groups])

    def test_merge_then_ungroup_does_not_resurrect_source(self):
        data = build_aggregate([2, 2])
        a, b = data.groups
        merged = mutations.merge_groups(data, a.id, b.id)
        result = mutations.ungroup_multiple(merged, [b.id])
        assert a.id not in {g.id for g in result.groups}


class TestMergeMultiple:
    """Test suite for merging a selection of groups."""

    def test_target_is_first_in_display_order(self):
        """Merging groups of 3 and 2 keeps the larger group's id."""
        data = build_aggregate([2, 3])
        small, large = data.groups

        result = mutations.merge_multiple_groups(data, [small.id, large.id])

        assert [g.id for g in result.groups] == [large.id]
        assert len(result.groups[0].face_ids) == 5

    def test_named_group_is_target(self):
        data = build_aggregate([5, 1, 2], names=[None, "Zoe", None])
        result = mutations.merge_multiple_groups(data, [g.id for g in data.groups])
        assert len(result.groups) == 1
        assert result.groups[0].name == "Zoe"
        assert len(result.groups[0].face_ids) == 8

    def test_fewer_than_two_rejected(self):
        data = build_aggregate([2, 2])
        with pytest.raises(InvalidMutationError):
            mutations.merge_multiple_groups(data, [data.groups[0].id])
        with pytest.raises(InvalidMutationError):
            mutations.merge_multiple_groups(data, [data.groups[0].id, uuid4()])


class TestMoveFaces:
    """Test suite for moving faces between groups."""

    def test_move_face(self):
        data = build_aggregate([2, 1])
        source, target = data.groups
        face_id = source.face_ids[0]

        result = mutations.move_face(data, face_id, target.id)

        assert result.get_group(target.id).face_ids == target.face_ids + [face_id]
        assert result.get_face(face_id).group_id == target.id
        assert result.get_group(source.id).representative_face_id == source.face_ids[1]

    def test_move_last_face_deletes_group(self):
        data = build_aggregate([1, 1])
        source, target = data.groups
        result = mutations.move_face(data, source.face_ids[0], target.id)
        assert [g.id for g in result.groups] == [target.id]

    def test_move_to_same_group_rejected(self):
        data = build_aggregate([2])
        group = data.groups[0]
        with pytest.raises(InvalidMutationError):
            mutations.move_face(data, group.face_ids[0], group.id)

    def test_move_to_unknown_group_rejected(self):
        data = build_aggregate([2])
        with pytest.raises(InvalidMutationError):
            mutations.move_face(data, data.faces[0].id, uuid4())

    def test_move_faces_ignores_faces_already_in_target(self):
        data = build_aggregate([2, 2])
        first, second = data.groups
        moving = [first.face_ids[0], second.face_ids[0]]

        result = mutations.move_faces(data, moving, second.id)

        assert result.get_group(second.id).face_ids == second.face_ids + [first.face_ids[0]]
        assert find_inconsistencies(result) == []


class TestCreateNewGroup:
    """Test suite for creating a group from selected faces."""

    def test_inserted_after_prior_group(self):
        data = build_aggregate([3, 2, 2])
        first, second, third = data.groups
        faces = [second.face_ids[0], third.face_ids[0]]

        result, group_id = mutations.create_new_group(data, faces)

        assert [g.id for g in result.groups] == [first.id, second.id, group_id, third.id]
        new_group = result.get_group(group_id)
        assert new_group.face_ids == faces
        assert new_group.representative_face_id == faces[0]
        assert find_inconsistencies(result) == []

    def test_takes_slot_of_emptied_group(self):
        data = build_aggregate([1, 2, 3])
        first, second, third = data.groups

        result, group_id = mutations.create_new_group(data, list(second.face_ids))

        assert [g.id for g in result.groups] == [first.id, group_id, third.id]

    def test_empty_selection_rejected(self):
        data = build_aggregate([1])
        with pytest.raises(InvalidMutationError):
            mutations.create_new_group(data, [uuid4()])


class TestDelete:
    """Test suite for deleting faces and groups."""

    def test_delete_faces(self):
        data = build_aggregate([3, 1])
        big, solo = data.groups
        result = mutations.delete_faces(data, [big.face_ids[0], solo.face_ids[0]])
        assert len(result.faces) == 2
        assert [g.id for g in result.groups] == [big.id]
        assert find_inconsistencies(result) == []

    def test_delete_group_returns_faces_and_paths(self):
        data = build_aggregate([2, 1])
        group = data.groups[0]

        result, face_ids, paths = mutations.delete_group(data, group.id)

        assert face_ids == group.face_ids
        assert paths == [data.get_face(fid).image_path for fid in group.face_ids]
        assert group.id not in {g.id for g in result.groups}
        assert len(result.faces) == 1


class TestNamingAndRepresentative:
    """Test suite for naming groups and choosing representatives."""

    def test_name_group(self):
        data = build_aggregate([1])
        group_id = data.groups[0].id
        named = mutations.name_group(data, group_id, "  Alice ")
        assert named.get_group(group_id).name == "Alice"
        cleared = mutations.name_group(named, group_id, "  ")
        assert cleared.get_group(group_id).name is None

    def test_set_representative(self):
        data = build_aggregate([3])
        group = data.groups[0]
        result = mutations.set_representative(data, group.id, group.face_ids[2])
        assert result.get_group(group.id).representative_face_id == group.face_ids[2]

    def test_representative_must_be_member(self):
        data = build_aggregate([2, 1])
        with pytest.raises(InvalidMutationError):
            mutations.set_representative(data, data.groups[0].id, data.groups[1].face_ids[0])


class TestRandomOperationSequences:
    """Invariants hold after arbitrary sequences of group changes."""

    OPERATIONS = ("merge", "ungroup", "merge_multiple", "ungroup_multiple", "move", "move_many", "create", "delete_faces", "delete_group", "name")

    def _step(self, data, rng):
        groups = [g.id for g in data.groups]
        faces = [f.id for f in data.faces]
        operation = rng.choice(self.OPERATIONS)
        if operation == "merge":
            return mutations.merge_groups(data, rng.choice(groups), rng.choice(groups))
        if operation == "ungroup":
            return mutations.ungroup_face(data, rng.choice(faces))
        if operation == "merge_multiple":
            return mutations.merge_multiple_groups(data, rng.sample(groups, min(len(groups), rng.randint(0, 3))))
        if operation == "ungroup_multiple":
            return mutations.ungroup_multiple(data, rng.sample(groups, min(len(groups), 2)))
        if operation == "move":
            return mutations.move_face(data, rng.choice(faces), rng.choice(groups))
        if operation == "move_many":
            return mutations.move_faces(data, rng.sample(faces, min(len(faces), 3)), rng.choice(groups))
        if operation == "create":
            return mutations.create_new_group(data, rng.sample(faces, min(len(faces), 2)))[0]
        if operation == "delete_faces":
            return mutations.delete_faces(data, [rng.choice(faces)])
        if operation == "delete_group":
            return mutations.delete_group(data, rng.choice(groups))[0]
        return mutations.name_group(data, rng.choice(groups), rng.choice(["Alice", "Bob", ""]))

    @pytest.mark.parametrize("seed", range(8))
    def test_invariants(self, seed):
        rng = random.Random(seed)
        data = build_aggregate([4, 3, 2, 2, 1, 1, 5], seed=seed)
        for _ in range(60):
            if not data.faces:
                break
            try:
                data = self._step(data, rng)
            except InvalidMutationError:
                continue
            assert find_inconsistencies(data) == []
            assert all(g.face_ids for g in data.groups)
            assert all(g.representative_face_id in g.face_ids for g in data.groups)
