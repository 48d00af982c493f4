"""
Approval policy table.

Static configuration keyed by edit request change type: who must approve a
change, whether two independent confirmations are required, and which
fields count as critical. Adding a change type means adding a policy here,
a proposed-data shape in ``models.schemas`` and an apply handler in
``edit_request_service``.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional, Tuple
from dotenv import load_dotenv

from leaguedesk.services.errors import PolicyConfigurationError, UnsupportedChangeTypeError

load_dotenv()

logger = logging.getLogger(__name__)

# Side roles produced by the approver resolver
TEAM_ADMIN = "teamAdmin"
PLAYER_ADMIN = "playerAdmin"
COMPETITION_ADMIN = "competitionAdmin"
ORGANIZATION_ADMIN = "organizationAdmin"
MATCH_ADMIN = "matchAdmin"
ENTITY_ADMIN = "entityAdmin"

# Counting rules for double confirmation
DISTINCT_SIDES = "distinct_sides"
APPROVER_COUNT = "approver_count"
COUNTING_RULES = (DISTINCT_SIDES, APPROVER_COUNT)

DEFAULT_COUNTING_RULE = os.getenv("APPROVAL_COUNTING_RULE", DISTINCT_SIDES).strip().lower()

# Target kinds that are not a fixed entity kind
NEW_RELATIONSHIP = "newRelationship"
RELATIONSHIP = "relationship"
CLAIMED_ENTITY = "claimedEntity"


@dataclass(frozen=True)
class ApprovalPolicy:
    """Approval rules for one change type."""

    change_type: str
    target_kind: str
    approver_roles: Tuple[str, ...]
    requires_double_confirmation: bool = False
    critical_fields: FrozenSet[str] = field(default_factory=frozenset)
    fields_allowed_without_consensus: FrozenSet[str] = field(default_factory=frozenset)
    excludes_requester_side: bool = False
    counting_rule: str = DEFAULT_COUNTING_RULE

    @property
    def required_approvals(self) -> int:
        """Number of approvals needed when confirmation must be doubled."""
        return max(len(self.approver_roles), 2) if self.requires_double_confirmation else 1

    def touches_critical_field(self, proposed_data: Optional[dict]) -> bool:
        """True if ``proposed_data`` sets any critical field."""
        if not self.critical_fields:
            return True
        return any(key in self.critical_fields for key in (proposed_data or {}))

    def needs_double_confirmation(self, proposed_data: Optional[dict]) -> bool:
        """
        Whether a request with this payload must collect two confirmations.

        A policy with critical fields only demands consensus when the payload
        actually touches one of them; changes limited to
        ``fields_allowed_without_consensus`` need a single approval.
        """
        return self.requires_double_confirmation and self.touches_critical_field(proposed_data)


def _policy(change_type: str, target_kind: str, approver_roles: Iterable[str], **kwargs) -> ApprovalPolicy:
    kwargs.setdefault("critical_fields", frozenset())
    kwargs.setdefault("fields_allowed_without_consensus", frozenset())
    kwargs["critical_fields"] = frozenset(kwargs["critical_fields"])
    kwargs["fields_allowed_without_consensus"] = frozenset(kwargs["fields_allowed_without_consensus"])
    return ApprovalPolicy(change_type, target_kind, tuple(approver_roles), **kwargs)


# Match-scoped changes are approved by the competition's admins, or by the
# match's own admins when the match is standalone.
_MATCH_SCOPE_ROLES = (COMPETITION_ADMIN, MATCH_ADMIN)

POLICIES: Dict[str, ApprovalPolicy] = {
    p.change_type: p
    for p in (
        _policy(
            "teamPlayerContract",
            "teamPlayerContract",
            (TEAM_ADMIN, PLAYER_ADMIN),
            requires_double_confirmation=True,
            critical_fields={"valid_from", "valid_to", "role", "jersey_number"},
            fields_allowed_without_consensus={"photo", "alias"},
        ),
        _policy(
            "teamCompetitionContract",
            "teamCompetitionContract",
            (TEAM_ADMIN, COMPETITION_ADMIN),
            requires_double_confirmation=True,
            critical_fields={"valid_from", "valid_to"},
            fields_allowed_without_consensus={"name"},
        ),
        _policy(
            "relationshipCreate",
            NEW_RELATIONSHIP,
            (TEAM_ADMIN, PLAYER_ADMIN, COMPETITION_ADMIN),
            excludes_requester_side=True,
        ),
        _policy("relationshipEnd", RELATIONSHIP, (TEAM_ADMIN, PLAYER_ADMIN, COMPETITION_ADMIN)),
        _policy("relationshipDelete", RELATIONSHIP, (TEAM_ADMIN, PLAYER_ADMIN, COMPETITION_ADMIN)),
        _policy("matchResult", "match", _MATCH_SCOPE_ROLES),
        _policy("setResult", "matchSet", _MATCH_SCOPE_ROLES),
        _policy("playerMatchStats", "playerMatchStats", _MATCH_SCOPE_ROLES),
        _policy("teamMatchStats", "teamMatchStats", _MATCH_SCOPE_ROLES),
        _policy("administratorClaim", CLAIMED_ENTITY, (ENTITY_ADMIN,)),
    )
}


def validate_policies(policies: Dict[str, ApprovalPolicy]) -> None:
    """
    Check the policy table for internal consistency.

    Raises:
        PolicyConfigurationError: If a policy lists critical fields without
            requiring double confirmation, overlaps critical and free fields,
            or names an unknown counting rule
    """
    for change_type, policy in policies.items():
        if change_type != policy.change_type:
            raise PolicyConfigurationError(
                f"Policy registered as '{change_type}' declares change type '{policy.change_type}'"
            )
        if policy.critical_fields and not policy.requires_double_confirmation:
            raise PolicyConfigurationError(
                f"Policy '{change_type}' lists critical fields but does not require double confirmation"
            )
        overlap = policy.critical_fields & policy.fields_allowed_without_consensus
        if overlap:
            raise PolicyConfigurationError(
                f"Policy '{change_type}' marks {sorted(overlap)} as both critical and free"
            )
        if policy.counting_rule not in COUNTING_RULES:
            raise PolicyConfigurationError(
                f"Policy '{change_type}' uses unknown counting rule '{policy.counting_rule}'"
            )
        if not policy.approver_roles:
            raise PolicyConfigurationError(f"Policy '{change_type}' has no approver roles")


def get_policy(change_type: str) -> Optional[ApprovalPolicy]:
    """Return the policy for ``change_type``, or None if it is not configured."""
    return POLICIES.get(change_type)


def require_policy(change_type: str) -> ApprovalPolicy:
    """
    Return the policy for ``change_type``.

    Raises:
        UnsupportedChangeTypeError: If no policy is configured
    """
    policy = POLICIES.get(change_type)
    if policy is None:
        logger.error(f"No approval policy configured for change type '{change_type}'")
        raise UnsupportedChangeTypeError(f"Unsupported change type: {change_type}")
    return policy


def supported_change_types() -> Tuple[str, ...]:
    return tuple(sorted(POLICIES))


validate_policies(POLICIES)
