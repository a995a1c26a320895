'''Unit tests for floor-at-zero parent counter maintenance.'''

import pytest

from account_deletion import counters
from account_deletion.counters import COMMENT_COUNT, MEMBER_COUNT


class TestDecrementParentCounter:
    @pytest.mark.unit
    def test_writes_canonical_and_legacy_fields(self, store) -> None:
        store.add('posts/p1', {'commentCount': 5})

        assert counters.decrement_parent_counter(store.document('posts/p1'), COMMENT_COUNT, 2) == 3

        post = store.data('posts/p1')
        assert post['commentCount'] == 3
        assert post['commentsCount'] == 3
        assert 'updatedAt' in post

    @pytest.mark.unit
    def test_reads_legacy_field_when_canonical_missing(self, store) -> None:
        store.add('groups/g1', {'membersCount': 4})

        counters.decrement_parent_counter(store.document('groups/g1'), MEMBER_COUNT, 1)

        assert store.data('groups/g1')['memberCount'] == 3

    @pytest.mark.unit
    def test_floors_at_zero(self, store) -> None:
        store.add('posts/p1', {'commentCount': 1})

        assert counters.decrement_parent_counter(store.document('posts/p1'), COMMENT_COUNT, 4) == 0
        assert store.data('posts/p1')['commentCount'] == 0

    @pytest.mark.unit
    def test_missing_parent_is_a_no_op(self, store) -> None:
        assert counters.decrement_parent_counter(store.document('posts/gone'), COMMENT_COUNT, 1) is None
        assert store.data('posts/gone') is None

    @pytest.mark.unit
    def test_untracked_counter_is_left_alone(self, store) -> None:
        store.add('posts/p1', {'title': 'hello'})

        assert counters.decrement_parent_counter(store.document('posts/p1'), COMMENT_COUNT, 1) is None
        assert store.data('posts/p1') == {'title': 'hello'}

    @pytest.mark.unit
    def test_non_positive_delta_is_ignored(self, store) -> None:
        store.add('posts/p1', {'commentCount': 2})

        counters.decrement_parent_counter(store.document('posts/p1'), COMMENT_COUNT, 0)

        assert store.data('posts/p1') == {'commentCount': 2}


class TestCountByParent:
    @pytest.mark.unit
    def test_tallies_owning_documents(self, store) -> None:
        store.add('groups/g1/members/a', {'uid': 'a'})
        store.add('groups/g1/members/b', {'uid': 'b'})
        store.add('groups/g2/members/a', {'uid': 'a'})
        page = store.collection_group('members').get()

        assert counters.count_by_parent(page, counters.owning_document_path) == {
            'groups/g1': 2,
            'groups/g2': 1,
        }

    @pytest.mark.unit
    def test_decrement_counters_applies_each_delta(self, store) -> None:
        store.add('groups/g1', {'memberCount': 10})
        store.add('groups/g2', {'memberCount': 1})

        counters.decrement_counters({'groups/g1': 2, 'groups/g2': 3}, MEMBER_COUNT)

        assert store.data('groups/g1')['memberCount'] == 8
        assert store.data('groups/g2')['memberCount'] == 0
