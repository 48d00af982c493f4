"""initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Users, owning entities (organizations, competitions, teams, players,
matches, sets, per-match statistics), team-player and team-competition
contracts, and edit requests.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BLOCKING_STATES = "state IN ('pending', 'accepted')"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    ]


def _ownership():
    return [
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column(
            "administrators",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
    ]


def _contract_lifecycle():
    return [
        sa.Column("origin", sa.String(length=20), nullable=False),
        sa.Column("requested_by", sa.String(length=128), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.false()),
    ]


def _contract_dates():
    return [
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="reader"),
        *_timestamps(),
        sa.CheckConstraint("role IN ('admin', 'reader')", name="ck_users_role"),
    )
    op.create_index("idx_users_email", "users", ["email"])

    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_ownership(),
        *_timestamps(),
    )

    op.create_table(
        "competitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("modality", sa.String(length=50), nullable=True),
        sa.Column("category", sa.String(length=50), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="league"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        *_ownership(),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('league', 'tournament', 'other')", name="ck_competitions_kind"),
    )
    op.create_index("idx_competitions_organization", "competitions", ["organization_id"])

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("crest_url", sa.String(length=500), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="club"),
        sa.Column("country", sa.String(length=100), nullable=True),
        *_ownership(),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('club', 'national', 'academy', 'other')", name="ck_teams_kind"),
    )

    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("alias", sa.String(length=100), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("nationality", sa.String(length=100), nullable=True),
        *_ownership(),
        *_timestamps(),
    )

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("competition_id", sa.Integer(), sa.ForeignKey("competitions.id"), nullable=True),
        sa.Column("home_team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("away_team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("venue", sa.String(length=200), nullable=True),
        sa.Column("home_score", sa.Integer(), nullable=True),
        sa.Column("away_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("score_overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_ownership(),
        *_timestamps(),
        sa.CheckConstraint("home_team_id != away_team_id", name="ck_matches_distinct_teams"),
    )
    op.create_index("idx_matches_competition", "matches", ["competition_id"])

    op.create_table(
        "match_sets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "match_id", sa.Integer(), sa.ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("set_number", sa.Integer(), nullable=False),
        sa.Column("winner", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="in_play"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("match_id", "set_number", name="uq_match_sets_match_number"),
        sa.CheckConstraint("winner IN ('home', 'away', 'draw', 'pending')", name="ck_match_sets_winner"),
        sa.CheckConstraint("status IN ('in_play', 'finished')", name="ck_match_sets_status"),
    )

    op.create_table(
        "team_match_stats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "match_id", sa.Integer(), sa.ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_won", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sets_lost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("fouls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("match_id", "team_id", name="uq_team_match_stats_match_team"),
    )

    op.create_table(
        "player_match_stats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "match_id", sa.Integer(), sa.ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column("throws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("hits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("outs", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("catches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("match_id", "player_id", name="uq_player_match_stats_match_player"),
    )

    op.create_table(
        "team_player_contracts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False),
        *_contract_lifecycle(),
        sa.Column("role", sa.String(length=50), nullable=True),
        sa.Column("jersey_number", sa.Integer(), nullable=True),
        sa.Column("photo", sa.String(length=500), nullable=True),
        sa.Column("alias", sa.String(length=100), nullable=True),
        *_contract_dates(),
        *_ownership(),
        *_timestamps(),
        sa.CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled', 'ended')",
            name="ck_team_player_contracts_state",
        ),
        sa.CheckConstraint("origin IN ('team', 'player')", name="ck_team_player_contracts_origin"),
    )
    op.create_index(
        "uq_team_player_contracts_open_pair",
        "team_player_contracts",
        ["team_id", "player_id"],
        unique=True,
        postgresql_where=sa.text(BLOCKING_STATES),
    )
    op.create_index(
        "idx_team_player_contracts_player_state", "team_player_contracts", ["player_id", "state"]
    )

    op.create_table(
        "team_competition_contracts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=False),
        sa.Column("competition_id", sa.Integer(), sa.ForeignKey("competitions.id"), nullable=False),
        *_contract_lifecycle(),
        sa.Column("name", sa.String(length=200), nullable=True),
        *_contract_dates(),
        *_ownership(),
        *_timestamps(),
        sa.CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled', 'ended')",
            name="ck_team_competition_contracts_state",
        ),
        sa.CheckConstraint(
            "origin IN ('team', 'competition')", name="ck_team_competition_contracts_origin"
        ),
    )
    op.create_index(
        "uq_team_competition_contracts_open_pair",
        "team_competition_contracts",
        ["team_id", "competition_id"],
        unique=True,
        postgresql_where=sa.text(BLOCKING_STATES),
    )
    op.create_index(
        "idx_team_competition_contracts_competition_state",
        "team_competition_contracts",
        ["competition_id", "state"],
    )

    op.create_table(
        "edit_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("change_type", sa.String(length=50), nullable=False),
        sa.Column("target_kind", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("proposed_data", postgresql.JSONB(), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column(
            "approved_by", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column(
            "requires_double_confirmation", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("final_approved_by", sa.String(length=128), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "state IN ('pending', 'accepted', 'rejected', 'cancelled')",
            name="ck_edit_requests_state",
        ),
    )
    op.create_index("idx_edit_requests_type_state", "edit_requests", ["change_type", "state"])
    op.create_index("idx_edit_requests_target", "edit_requests", ["target_kind", "target_id"])
    op.create_index("idx_edit_requests_created_by", "edit_requests", ["created_by"])


def downgrade() -> None:
    for table in (
        "edit_requests",
        "team_competition_contracts",
        "team_player_contracts",
        "player_match_stats",
        "team_match_stats",
        "match_sets",
        "matches",
        "players",
        "teams",
        "competitions",
        "organizations",
        "users",
    ):
        op.drop_table(table)
