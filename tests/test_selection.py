import datetime

import pytest

from exam_deduplicator.utils.selection import plan_removals


CREATED = {
    'b': datetime.datetime(2021, 2, 12, 9),
    'a': datetime.datetime(2021, 2, 12, 10),
    'c': None,
}


def test_earliest_created_keeps_oldest():
    survivor, to_remove = plan_removals(['a', 'b', 'c'], CREATED, 'earliest_created')

    assert survivor == 'b'
    assert to_remove == ['a', 'c']


def test_latest_created_ignores_missing_timestamps():
    survivor, to_remove = plan_removals(['a', 'b', 'c'], CREATED, 'latest_created')

    assert survivor == 'a'
    assert sorted(to_remove) == ['b', 'c']


def test_timestamp_ties_fall_back_to_id():
    created = {'y': datetime.datetime(2021, 1, 1), 'x': datetime.datetime(2021, 1, 1)}

    assert plan_removals(['y', 'x'], created, 'earliest_created')[0] == 'x'
    assert plan_removals(['y', 'x'], created, 'latest_created')[0] == 'x'


def test_no_timestamps_keeps_lowest_id():
    survivor, _ = plan_removals(['c', 'a', 'b'], {}, 'earliest_created')

    assert survivor == 'a'


def test_lowest_id():
    assert plan_removals(['c', 'a', 'b'], policy='lowest_id') == ('a', ['c', 'b'])


def test_reference_removes_second_member_only():
    assert plan_removals(['c', 'a', 'b'], policy='reference') == ('c', ['a'])


def test_unknown_policy():
    with pytest.raises(ValueError):
        plan_removals(['a', 'b'], policy='random')
