"""Tests for known people matching."""
from uuid import uuid4

import pytest

from facegroups.core.exceptions import RegistryError
from facegroups.domain.value_objects.recognition import RecognitionConfig
from facegroups.services.known_people import KnownPersonMatcher, same_name, verified_match
from facegroups.services.mutations import find_inconsistencies, name_group
from tests.conftest import InMemoryRegistry, build_aggregate, near, unit


def with_representatives(data, *embeddings):
    """Give each group's representative face the corresponding embedding."""
    for group, embedding in zip(data.groups, embeddings):
        data.get_face(group.representative_face_id).embedding = embedding
    return data


class FailingRegistry(InMemoryRegistry):
    async def match_face(self, embedding, threshold, max_results=1):
        raise RegistryError("database is locked")


@pytest.fixture
def matcher(registry):
    return KnownPersonMatcher(registry)


class TestSameName:
    def test_same_name(self):
        assert same_name(" alice ", "Alice")
        assert not same_name("Alice", "Bob")
        assert not same_name(None, "Alice")


class TestKnownPersonMatcher:
    """Test suite for matching groups against known people."""

    async def test_named_group_absorbs_unnamed_match(self, matcher, registry, config):
        """A named Alice group (0.9) and an unnamed group (0.6) both matching Alice end up as one."""
        alice = registry.add("Alice", unit(0))
        data = with_representatives(
            build_aggregate([2, 3], names=["Alice", None]),
            near(unit(0), 0.9),
            near(unit(0), 0.6, seed=1),
        )
        named, unnamed = data.groups

        result = await matcher.match_known_people(data, config)

        assert [g.id for g in result.groups] == [named.id]
        assert result.groups[0].name == "Alice"
        assert len(result.groups[0].face_ids) == 5
        record = result.known_person_matches[str(named.id)]
        assert record.person_id == alice.id
        assert record.confidence == pytest.approx(0.9, abs=1e-5)
        assert find_inconsistencies(result) == []

    async def test_named_group_preferred_over_more_confident_unnamed(self, matcher, registry, config):
        registry.add("Alice", unit(0))
        data = with_representatives(
            build_aggregate([1, 1], names=["alice", None]),
            near(unit(0), 0.6),
            near(unit(0), 0.95, seed=1),
        )
        named = data.groups[0]

        result = await matcher.match_known_people(data, config)

        assert [g.id for g in result.groups] == [named.id]
        assert result.groups[0].name == "alice"

    async def test_same_named_groups_fold_into_one(self, matcher, registry, config):
        """Groups named "Alice" and "alice" that both match Alice end up as one group."""
        alice = registry.add("Alice", unit(0))
        data = with_representatives(
            build_aggregate([2, 1], names=["Alice", "alice"]),
            near(unit(0), 0.9),
            near(unit(0), 0.7, seed=1),
        )
        first, second = data.groups

        result = await matcher.match_known_people(data, config)

        assert [(g.id, g.name, len(g.face_ids)) for g in result.groups] == [(first.id, "Alice", 3)]
        assert result.known_person_matches[str(first.id)].person_id == alice.id
        assert str(second.id) not in result.known_person_matches
        assert find_inconsistencies(result) == []

    async def test_unnamed_groups_merge_into_most_confident(self, matcher, registry, config):
        registry.add("Bob", unit(1))
        data = with_representatives(
            build_aggregate([1, 2, 1]),
            near(unit(1), 0.7),
            near(unit(1), 0.9, seed=1),
            unit(5),
        )
        _, best, stranger = data.groups

        result = await matcher.match_known_people(data, config)

        assert {g.id for g in result.groups} == {best.id, stranger.id}
        assert result.get_group(best.id).name == "Bob"
        assert len(result.get_group(best.id).face_ids) == 3
        assert result.get_group(stranger.id).name is None
        assert str(stranger.id) not in result.known_person_matches

    async def test_differently_named_group_is_left_alone(self, matcher, registry, config):
        registry.add("Alice", unit(0))
        data = with_representatives(build_aggregate([2], names=["Carol"]), near(unit(0), 0.9))

        result = await matcher.match_known_people(data, config)

        assert result.groups[0].name == "Carol"
        assert result.known_person_matches == {}

    async def test_below_min_confidence_not_matched(self, matcher, registry):
        registry.add("Alice", unit(0))
        data = with_representatives(build_aggregate([1]), near(unit(0), 0.5))

        result = await matcher.match_known_people(data, RecognitionConfig(known_people_min_confidence=0.55))

        assert result.groups[0].name is None

    async def test_input_not_modified(self, matcher, registry, config):
        registry.add("Alice", unit(0))
        data = with_representatives(build_aggregate([1, 1]), unit(0), near(unit(0), 0.8))
        before = data.model_dump_json()

        await matcher.match_known_people(data, config)

        assert data.model_dump_json() == before

    async def test_registry_failure_skips_groups(self, config):
        data = build_aggregate([2, 1])
        result = await KnownPersonMatcher(FailingRegistry()).match_known_people(data, config)
        assert [g.id for g in result.groups] == [g.id for g in data.groups]
        assert result.known_person_matches == {}


class TestVerifiedMatch:
    async def test_match_invalidated_by_rename(self, matcher, registry, config):
        registry.add("Alice", unit(0))
        data = with_representatives(build_aggregate([1]), unit(0))
        group_id = data.groups[0].id

        matched = await matcher.match_known_people(data, config)
        assert verified_match(matched, group_id).person_name == "Alice"

        renamed = name_group(matched, group_id, "Alicia")
        assert verified_match(renamed, group_id) is None
        assert verified_match(renamed, uuid4()) is None
