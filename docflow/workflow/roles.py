"""
Role Hierarchy Table — which roles each role may route a task to.

This table is the only place role-to-role eligibility is written down.
Authorization checks ask it; nothing compares roles inline.

    Operation  | Secretary          | TeamLeader                  | Deputy                      | Officer
    -----------+--------------------+-----------------------------+-----------------------------+-------------------
    Assign     | TeamLeader, Deputy | Deputy, Officer             | Officer                     | —
    Delegate   | —                  | Deputy, Officer             | Officer                     | —
    Forward    | —                  | TeamLeader, Deputy, Officer | TeamLeader, Deputy, Officer | TeamLeader, Deputy

Administrator is never a target. As an Assign actor it uses Secretary's row.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional

from docflow.workflow.models import OperationKind, Role

_NONE: FrozenSet[Role] = frozenset()

ROLE_HIERARCHY: Mapping[OperationKind, Mapping[Role, FrozenSet[Role]]] = MappingProxyType({
    OperationKind.ASSIGN: MappingProxyType({
        Role.SECRETARY: frozenset({Role.TEAM_LEADER, Role.DEPUTY}),
        Role.TEAM_LEADER: frozenset({Role.DEPUTY, Role.OFFICER}),
        Role.DEPUTY: frozenset({Role.OFFICER}),
        Role.OFFICER: _NONE,
    }),
    OperationKind.DELEGATE: MappingProxyType({
        Role.SECRETARY: _NONE,
        Role.TEAM_LEADER: frozenset({Role.DEPUTY, Role.OFFICER}),
        Role.DEPUTY: frozenset({Role.OFFICER}),
        Role.OFFICER: _NONE,
    }),
    OperationKind.FORWARD: MappingProxyType({
        Role.SECRETARY: _NONE,
        Role.TEAM_LEADER: frozenset({Role.TEAM_LEADER, Role.DEPUTY, Role.OFFICER}),
        Role.DEPUTY: frozenset({Role.TEAM_LEADER, Role.DEPUTY, Role.OFFICER}),
        Role.OFFICER: frozenset({Role.TEAM_LEADER, Role.DEPUTY}),
    }),
})

# Actors whose row is borrowed from another role
ROLE_ALIASES: Mapping[OperationKind, Mapping[Role, Role]] = MappingProxyType({
    OperationKind.ASSIGN: MappingProxyType({Role.ADMINISTRATOR: Role.SECRETARY}),
})


def eligible_targets(operation: OperationKind, actor_role: Role) -> FrozenSet[Role]:
    """Roles *actor_role* may target with *operation* (empty if none or not a routing operation)."""
    table = ROLE_HIERARCHY.get(operation)
    if table is None:
        return _NONE
    source = ROLE_ALIASES.get(operation, {}).get(actor_role, actor_role)
    return table.get(source, _NONE)


def is_eligible_target(operation: OperationKind, actor_role: Role, target_role: Optional[Role]) -> bool:
    if target_role is None or target_role is Role.ADMINISTRATOR:
        return False
    return target_role in eligible_targets(operation, actor_role)


def describe_hierarchy() -> Dict[str, Dict[str, List[str]]]:
    """Plain-dict view of the table, ordered by Role declaration (for the CLI and APIs)."""
    result: Dict[str, Dict[str, List[str]]] = {}
    for operation in ROLE_HIERARCHY:
        row: Dict[str, List[str]] = {}
        for role in Role:
            targets = eligible_targets(operation, role)
            row[role.value] = [r.value for r in Role if r in targets]
        result[operation.value] = row
    return result
