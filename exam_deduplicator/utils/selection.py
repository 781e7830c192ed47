"""
Survivor selection for duplicate exam groups.

Each policy takes the group members and a mapping of member id to creation
timestamp, and returns ``(survivor, to_remove)``.
"""

import logging

logger = logging.getLogger('exam_deduplication.selection')


def _by_id(members):
    return sorted(members, key=str)


def keep_earliest_created(members, created_at):
    """Keep the first-created exam. Exams without a timestamp lose to dated ones."""
    dated = [m for m in _by_id(members) if created_at.get(m) is not None]
    if dated:
        survivor = min(dated, key=lambda m: created_at[m])
    else:
        survivor = _by_id(members)[0]
    return survivor, [m for m in members if m != survivor]


def keep_latest_created(members, created_at):
    dated = [m for m in _by_id(members) if created_at.get(m) is not None]
    if dated:
        survivor = max(dated, key=lambda m: created_at[m])
    else:
        survivor = _by_id(members)[0]
    return survivor, [m for m in members if m != survivor]


def keep_lowest_id(members, created_at):
    survivor = _by_id(members)[0]
    return survivor, [m for m in members if m != survivor]


def remove_second_member(members, created_at):
    """
    Remove only ``members[1]`` as stored, leaving the rest for later runs.

    Which exam survives depends on the store's set ordering, so groups larger
    than two take several runs to converge.
    """
    if len(members) < 2:
        return (members[0] if members else None), []
    return members[0], [members[1]]


POLICIES = {
    'earliest_created': keep_earliest_created,
    'latest_created': keep_latest_created,
    'lowest_id': keep_lowest_id,
    'reference': remove_second_member,
}

# Policies that need createdAt looked up for every member
TIMESTAMP_POLICIES = {'earliest_created', 'latest_created'}


def plan_removals(members, created_at=None, policy='earliest_created'):
    """
    Split a duplicate group into the exam to keep and the exams to remove.

    Parameters:
    -----------
    members : list
        Exam ids of one duplicate group
    created_at : dict, optional
        Mapping of exam id to creation timestamp (None when unknown)
    policy : str
        Name of a registered selection policy

    Returns:
    --------
    tuple
        (survivor_id, list of exam ids to remove)
    """
    if policy not in POLICIES:
        raise ValueError(f"Unknown selection policy: {policy}. Choose from {sorted(POLICIES)}")
    return POLICIES[policy](list(members), created_at or {})
