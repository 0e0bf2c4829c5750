"""Default project statuses and project types seeded for a new profile."""

from __future__ import annotations

from typing import List, Tuple

from .models import BUSINESS, HOUSEHOLD, ProjectStatus, ProjectType

# (key, name, description)
DEFAULT_STATUSES: Tuple[Tuple[str, str, str], ...] = (
    ('holding', 'Holding', 'Performance contract on hold'),
    ('issued', 'Issued', 'Contract issued to client'),
    ('confirmed', 'Confirmed', 'Contract confirmed by client'),
    ('completed', 'Completed', 'Project completed'),
    ('cancelled', 'Cancelled', 'Project cancelled'),
    ('submitted', 'Submitted', 'Proposal submitted'),
    ('quoted', 'Quoted', 'Quote provided'),
    ('active', 'Active', 'Project in progress'),
    ('delivered', 'Delivered', 'Project delivered'),
)

PERFORMANCE_STATUSES = ('holding', 'issued', 'confirmed', 'completed', 'cancelled')
GENERAL_STATUSES = ('submitted', 'quoted', 'confirmed', 'active', 'delivered', 'completed', 'cancelled')

# (key, name, budget type, status keys)
DEFAULT_TYPES: Tuple[Tuple[str, str, str, Tuple[str, ...]], ...] = (
    ('performance', 'Performance', BUSINESS, PERFORMANCE_STATUSES),
    ('craft', 'Craft', BUSINESS, GENERAL_STATUSES),
    ('home-improvement', 'Home Improvement', HOUSEHOLD, GENERAL_STATUSES),
    ('party', 'Party', HOUSEHOLD, GENERAL_STATUSES),
    ('event', 'Event', HOUSEHOLD, GENERAL_STATUSES),
    ('other', 'Other', HOUSEHOLD, GENERAL_STATUSES),
)


def status_id(profile_id: str, key: str) -> str:
    return f"{profile_id}-status-{key}"


def type_id(profile_id: str, key: str) -> str:
    return f"{profile_id}-type-{key}"


def default_project_statuses(profile_id: str) -> List[ProjectStatus]:
    return [
        ProjectStatus(id=status_id(profile_id, key), profile_id=profile_id, name=name, description=description)
        for key, name, description in DEFAULT_STATUSES
    ]


def default_project_types(profile_id: str) -> List[ProjectType]:
    return [
        ProjectType(
            id=type_id(profile_id, key),
            profile_id=profile_id,
            name=name,
            budget_type=budget_type,
            allowed_statuses=tuple(status_id(profile_id, s) for s in statuses),
        )
        for key, name, budget_type, statuses in DEFAULT_TYPES
    ]
