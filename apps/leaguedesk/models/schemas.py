"""
Pydantic models for API request/response validation.

Also holds the proposed-data shapes of edit requests: one model per change
type, looked up through ``PROPOSED_DATA_MODELS`` and validated when a
request is created (and when an approver overrides the payload).
"""

from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple, Type
from pydantic import BaseModel, ConfigDict, Field, model_validator


RelationshipKindName = Literal["teamPlayer", "teamCompetition"]
ClaimableKind = Literal["organization", "competition", "team", "player", "match"]


# ──────────────────────────────────────────────────────────────
# Edit request proposed data (one shape per change type)
# ──────────────────────────────────────────────────────────────


class ProposedData(BaseModel):
    """
    Base for proposed-data shapes; unknown keys are rejected.

    Fields listed in ``non_nullable`` back NOT NULL columns: they may be
    left out, but not sent as an explicit null.
    """

    model_config = ConfigDict(extra="forbid")

    non_nullable: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def require_some_change(self):
        if not self.model_fields_set:
            raise ValueError("proposed_data must contain at least one field")
        nulls = [
            name for name in self.non_nullable
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulls:
            raise ValueError(f"{nulls} cannot be null")
        return self


class TeamPlayerContractChange(ProposedData):
    """Amendment of an existing team-player contract."""

    role: Optional[str] = None
    jersey_number: Optional[int] = Field(None, ge=0, le=999)
    photo: Optional[str] = None
    alias: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None


class TeamCompetitionContractChange(ProposedData):
    """Amendment of an existing team-competition contract."""

    name: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None


class RelationshipCreateData(ProposedData):
    """New relationship agreed through an edit request."""

    kind: RelationshipKindName
    team_id: int
    player_id: Optional[int] = None
    competition_id: Optional[int] = None
    role: Optional[str] = None
    jersey_number: Optional[int] = Field(None, ge=0, le=999)
    photo: Optional[str] = None
    alias: Optional[str] = None
    name: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    @model_validator(mode="after")
    def check_counterpart(self):
        if self.kind == "teamPlayer":
            if self.player_id is None or self.competition_id is not None:
                raise ValueError("teamPlayer relationships need player_id and no competition_id")
            if self.name is not None:
                raise ValueError("name is not a teamPlayer field")
        else:
            if self.competition_id is None or self.player_id is not None:
                raise ValueError("teamCompetition relationships need competition_id and no player_id")
            extra = {"role", "jersey_number", "photo", "alias"} & self.model_fields_set
            if extra:
                raise ValueError(f"{sorted(extra)} are not teamCompetition fields")
        return self


class RelationshipActionData(ProposedData):
    """Ending or deleting an existing relationship."""

    kind: RelationshipKindName
    end_date: Optional[date] = None
    reason: Optional[str] = None


class MatchResultData(ProposedData):
    non_nullable = ("status",)

    home_score: Optional[int] = Field(None, ge=0)
    away_score: Optional[int] = Field(None, ge=0)
    status: Optional[Literal["scheduled", "in_play", "finished", "cancelled"]] = None


class SetResultData(ProposedData):
    non_nullable = ("winner", "status")

    winner: Optional[Literal["home", "away", "draw", "pending"]] = None
    status: Optional[Literal["in_play", "finished"]] = None


class PlayerMatchStatsData(ProposedData):
    non_nullable = ("throws", "hits", "outs", "catches")

    throws: Optional[int] = Field(None, ge=0)
    hits: Optional[int] = Field(None, ge=0)
    outs: Optional[int] = Field(None, ge=0)
    catches: Optional[int] = Field(None, ge=0)


class TeamMatchStatsData(ProposedData):
    non_nullable = ("points", "sets_won", "sets_lost", "fouls")

    points: Optional[int] = Field(None, ge=0)
    sets_won: Optional[int] = Field(None, ge=0)
    sets_lost: Optional[int] = Field(None, ge=0)
    fouls: Optional[int] = Field(None, ge=0)


class AdministratorClaimData(ProposedData):
    """A user asking to become an administrator of an entity."""

    entity_kind: ClaimableKind
    entity_id: int
    message: Optional[str] = None


PROPOSED_DATA_MODELS: Dict[str, Type[ProposedData]] = {
    "teamPlayerContract": TeamPlayerContractChange,
    "teamCompetitionContract": TeamCompetitionContractChange,
    "relationshipCreate": RelationshipCreateData,
    "relationshipEnd": RelationshipActionData,
    "relationshipDelete": RelationshipActionData,
    "matchResult": MatchResultData,
    "setResult": SetResultData,
    "playerMatchStats": PlayerMatchStatsData,
    "teamMatchStats": TeamMatchStatsData,
    "administratorClaim": AdministratorClaimData,
}


# ──────────────────────────────────────────────────────────────
# Edit requests
# ──────────────────────────────────────────────────────────────


class EditRequestCreate(BaseModel):
    """Request to propose a change."""

    change_type: str
    target_id: Optional[int] = None
    proposed_data: Dict[str, Any]


class EditRequestDecision(BaseModel):
    """Approver decision on a pending edit request."""

    decision: Literal["accept", "reject"]
    reason: Optional[str] = None
    payload_override: Optional[Dict[str, Any]] = None


class EditRequestResponse(BaseModel):
    """Edit request data."""

    id: int
    change_type: str
    target_kind: Optional[str] = None
    target_id: Optional[int] = None
    proposed_data: Dict[str, Any]
    state: str
    approved_by: List[str]
    requires_double_confirmation: bool
    rejection_reason: Optional[str] = None
    created_by: str
    final_approved_by: Optional[str] = None
    accepted_at: Optional[str] = None
    rejected_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    created_at: Optional[str] = None


class EditRequestApproversResponse(BaseModel):
    """Who may still decide an edit request."""

    request_id: int
    sides: Dict[str, List[str]]
    eligible: List[str]


# ──────────────────────────────────────────────────────────────
# Contracts
# ──────────────────────────────────────────────────────────────


class ContractRequestCreate(BaseModel):
    """Request a team-player or team-competition contract."""

    team_id: int
    counterpart_id: int  # player_id or competition_id depending on kind
    origin: Literal["team", "player", "competition"]
    fields: Dict[str, Any] = Field(default_factory=dict)


class ContractAmend(BaseModel):
    fields: Dict[str, Any]


class ContractReason(BaseModel):
    reason: Optional[str] = None


class ContractEnd(BaseModel):
    end_date: Optional[date] = None


class ContractResponse(BaseModel):
    """Contract data. Owner and extra fields depend on the kind."""

    id: int
    kind: str
    team_id: int
    player_id: Optional[int] = None
    competition_id: Optional[int] = None
    origin: str
    requested_by: str
    state: str
    active: bool
    role: Optional[str] = None
    jersey_number: Optional[int] = None
    photo: Optional[str] = None
    alias: Optional[str] = None
    name: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    requested_at: Optional[str] = None
    accepted_at: Optional[str] = None
    ended_at: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_by: str
    administrators: List[str] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────
# Owning entities
# ──────────────────────────────────────────────────────────────


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    website: Optional[str] = None


class CompetitionCreate(BaseModel):
    organization_id: int
    name: str = Field(..., min_length=1, max_length=200)
    modality: Optional[str] = None
    category: Optional[str] = None
    kind: Literal["league", "tournament", "other"] = "league"
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    crest_url: Optional[str] = None
    kind: Literal["club", "national", "academy", "other"] = "club"
    country: Optional[str] = None


class PlayerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    alias: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    nationality: Optional[str] = None


class MatchCreate(BaseModel):
    """Create a match; leave competition_id empty for a friendly match."""

    competition_id: Optional[int] = None
    home_team_id: int
    away_team_id: int
    scheduled_at: Optional[datetime] = None
    venue: Optional[str] = None

    @model_validator(mode="after")
    def check_distinct_teams(self):
        if self.home_team_id == self.away_team_id:
            raise ValueError("A team cannot play against itself")
        return self


class MatchSetCreate(BaseModel):
    set_number: int = Field(..., ge=1)
    winner: Literal["home", "away", "draw", "pending"] = "pending"
    status: Literal["in_play", "finished"] = "in_play"


class TeamMatchStatsCreate(BaseModel):
    team_id: int
    points: int = Field(0, ge=0)
    sets_won: int = Field(0, ge=0)
    sets_lost: int = Field(0, ge=0)
    fouls: int = Field(0, ge=0)


class PlayerMatchStatsCreate(BaseModel):
    player_id: int
    team_id: Optional[int] = None
    throws: int = Field(0, ge=0)
    hits: int = Field(0, ge=0)
    outs: int = Field(0, ge=0)
    catches: int = Field(0, ge=0)


class AdministratorAdd(BaseModel):
    user_id: str = Field(..., min_length=1)
