"""
SQLAlchemy ORM models for the LeagueDesk system.

Owning entities (organizations, competitions, teams, players, matches and
their sub-documents) all carry ``created_by`` and an ``administrators`` list
of external user ids; approval rights are derived from those two fields.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Date,
    DateTime,
    JSON,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from leaguedesk.database.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UserRole(str, enum.Enum):
    """Global user role."""

    ADMIN = "admin"
    READER = "reader"


class ContractState(str, enum.Enum):
    """Lifecycle state of a dual-party relationship."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    ENDED = "ended"


class ContractOrigin(str, enum.Enum):
    """Which owner side initiated a relationship."""

    TEAM = "team"
    PLAYER = "player"
    COMPETITION = "competition"


class EditRequestState(str, enum.Enum):
    """Edit request status enum."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SetWinner(str, enum.Enum):
    HOME = "home"
    AWAY = "away"
    DRAW = "draw"
    PENDING = "pending"


class SetStatus(str, enum.Enum):
    IN_PLAY = "in_play"
    FINISHED = "finished"


# States that block a second relationship between the same owner pair
BLOCKING_CONTRACT_STATES = (ContractState.PENDING.value, ContractState.ACCEPTED.value)
_BLOCKING_STATES_SQL = "state IN ('pending', 'accepted')"


class User(Base):
    """Authenticated identity. The id is the identity provider's uid."""

    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True)
    display_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.READER.value)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'reader')", name="ck_users_role"),
        Index("idx_users_email", "email"),
    )


class Organization(Base):
    """Organization that runs competitions."""

    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    website = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    competitions = relationship("Competition", back_populates="organization")


class Competition(Base):
    """League or tournament owned by an organization."""

    __tablename__ = "competitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(200), nullable=False)
    modality = Column(String(50), nullable=True)
    category = Column(String(50), nullable=True)
    kind = Column(String(20), nullable=False, default="league")
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="competitions")

    __table_args__ = (
        CheckConstraint("kind IN ('league', 'tournament', 'other')", name="ck_competitions_kind"),
        Index("idx_competitions_organization", "organization_id"),
    )


class Team(Base):
    """Team that plays matches and signs players."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    crest_url = Column(String(500), nullable=True)
    kind = Column(String(20), nullable=False, default="club")
    country = Column(String(100), nullable=True)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "kind IN ('club', 'national', 'academy', 'other')", name="ck_teams_kind"
        ),
    )


class Player(Base):
    """Player profile."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    alias = Column(String(100), nullable=True)
    birth_date = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    nationality = Column(String(100), nullable=True)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Match(Base):
    """Match between two teams, inside a competition or standalone (friendly)."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=True)
    home_team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    venue = Column(String(200), nullable=True)
    home_score = Column(Integer, nullable=True)
    away_score = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="scheduled")
    score_overridden = Column(Boolean, default=False, nullable=False)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    competition = relationship("Competition")
    sets = relationship("MatchSet", back_populates="match", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("home_team_id != away_team_id", name="ck_matches_distinct_teams"),
        Index("idx_matches_competition", "competition_id"),
    )


class MatchSet(Base):
    """Single set of a match."""

    __tablename__ = "match_sets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    set_number = Column(Integer, nullable=False)
    winner = Column(String(20), nullable=False, default=SetWinner.PENDING.value)
    status = Column(String(20), nullable=False, default=SetStatus.IN_PLAY.value)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    match = relationship("Match", back_populates="sets")

    __table_args__ = (
        UniqueConstraint("match_id", "set_number", name="uq_match_sets_match_number"),
        CheckConstraint(
            "winner IN ('home', 'away', 'draw', 'pending')", name="ck_match_sets_winner"
        ),
        CheckConstraint("status IN ('in_play', 'finished')", name="ck_match_sets_status"),
    )


class TeamMatchStats(Base):
    """Per-match statistics of one team."""

    __tablename__ = "team_match_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    points = Column(Integer, default=0, nullable=False)
    sets_won = Column(Integer, default=0, nullable=False)
    sets_lost = Column(Integer, default=0, nullable=False)
    fouls = Column(Integer, default=0, nullable=False)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "team_id", name="uq_team_match_stats_match_team"),
    )


class PlayerMatchStats(Base):
    """Per-match statistics of one player."""

    __tablename__ = "player_match_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(Integer, ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    throws = Column(Integer, default=0, nullable=False)
    hits = Column(Integer, default=0, nullable=False)
    outs = Column(Integer, default=0, nullable=False)
    catches = Column(Integer, default=0, nullable=False)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("match_id", "player_id", name="uq_player_match_stats_match_player"),
    )


class TeamPlayerContract(Base):
    """Relationship between a team and a player, agreed by both sides."""

    __tablename__ = "team_player_contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    origin = Column(String(20), nullable=False)
    requested_by = Column(String(128), nullable=False)
    state = Column(String(20), nullable=False, default=ContractState.PENDING.value)
    active = Column(Boolean, nullable=False, default=False)
    role = Column(String(50), nullable=True)
    jersey_number = Column(Integer, nullable=True)
    photo = Column(String(500), nullable=True)
    alias = Column(String(100), nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    requested_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    team = relationship("Team")
    player = relationship("Player")

    __table_args__ = (
        CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled', 'ended')",
            name="ck_team_player_contracts_state",
        ),
        CheckConstraint("origin IN ('team', 'player')", name="ck_team_player_contracts_origin"),
        # At most one pending/accepted contract per pair
        Index(
            "uq_team_player_contracts_open_pair",
            "team_id",
            "player_id",
            unique=True,
            postgresql_where=text(_BLOCKING_STATES_SQL),
            sqlite_where=text(_BLOCKING_STATES_SQL),
        ),
        Index("idx_team_player_contracts_player_state", "player_id", "state"),
    )


class TeamCompetitionContract(Base):
    """Registration of a team in a competition, agreed by both sides."""

    __tablename__ = "team_competition_contracts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    competition_id = Column(Integer, ForeignKey("competitions.id"), nullable=False)
    origin = Column(String(20), nullable=False)
    requested_by = Column(String(128), nullable=False)
    state = Column(String(20), nullable=False, default=ContractState.PENDING.value)
    active = Column(Boolean, nullable=False, default=False)
    name = Column(String(200), nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    requested_at = Column(DateTime(timezone=True), server_default=func.now())
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=False)
    administrators = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    team = relationship("Team")
    competition = relationship("Competition")

    __table_args__ = (
        CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled', 'ended')",
            name="ck_team_competition_contracts_state",
        ),
        CheckConstraint(
            "origin IN ('team', 'competition')", name="ck_team_competition_contracts_origin"
        ),
        Index(
            "uq_team_competition_contracts_open_pair",
            "team_id",
            "competition_id",
            unique=True,
            postgresql_where=text(_BLOCKING_STATES_SQL),
            sqlite_where=text(_BLOCKING_STATES_SQL),
        ),
        Index("idx_team_competition_contracts_competition_state", "competition_id", "state"),
    )


class EditRequest(Base):
    """Proposed change to a shared entity awaiting approval by its administrators."""

    __tablename__ = "edit_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    change_type = Column(String(50), nullable=False)
    target_kind = Column(String(50), nullable=True)
    target_id = Column(Integer, nullable=True)  # None for creation requests
    proposed_data = Column(JSONType, nullable=False)  # JSON object, shape depends on change_type
    state = Column(String(20), nullable=False, default=EditRequestState.PENDING.value)
    approved_by = Column(JSONType, nullable=False, default=list)  # ordered, distinct user ids
    requires_double_confirmation = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=False)
    final_approved_by = Column(String(128), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled')",
            name="ck_edit_requests_state",
        ),
        Index("idx_edit_requests_type_state", "change_type", "state"),
        Index("idx_edit_requests_target", "target_kind", "target_id"),
        Index("idx_edit_requests_created_by", "created_by"),
    )


# Entity kind name -> model, used by the approver resolver and the generic
# entity lookups.
ENTITY_MODELS = {
    "organization": Organization,
    "competition": Competition,
    "team": Team,
    "player": Player,
    "match": Match,
    "matchSet": MatchSet,
    "teamMatchStats": TeamMatchStats,
    "playerMatchStats": PlayerMatchStats,
    "teamPlayerContract": TeamPlayerContract,
    "teamCompetitionContract": TeamCompetitionContract,
}

# Relationship kind -> (relationship entity kind, owner A kind, owner B kind).
# Owner A is always the team side.
RELATIONSHIP_KINDS = {
    "teamPlayer": ("teamPlayerContract", "team", "player"),
    "teamCompetition": ("teamCompetitionContract", "team", "competition"),
}
