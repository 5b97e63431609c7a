"""PULP economy tables.

Creates players, pulp_transactions, pulpy_windows, blessings, challenges,
advantage_catalog, player_advantages and round_processing, plus the scoring
pipeline tables (events, event_players, rounds, player_rounds,
round_advantage_usages) the economy reads.

Revision ID: 001_economy_tables
Revises:
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_economy_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Players ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS players (
            id BIGSERIAL PRIMARY KEY,
            player_name VARCHAR(64) UNIQUE NOT NULL,
            balance BIGINT NOT NULL DEFAULT 0,
            challenges_declined INTEGER NOT NULL DEFAULT 0,
            total_rounds_this_season INTEGER NOT NULL DEFAULT 0,
            participation_streak INTEGER NOT NULL DEFAULT 0,
            last_round_date DATE,
            last_interaction_week VARCHAR(10),
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_players_balance_non_negative CHECK (balance >= 0)
        )
    """)

    # --- Transaction log (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS pulp_transactions (
            id BIGSERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL REFERENCES players(id),
            amount INTEGER NOT NULL,
            transaction_type VARCHAR(40) NOT NULL,
            description VARCHAR(256),
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_pulp_transactions_player_created
        ON pulp_transactions(player_id, created_at)
    """)

    # --- Scoring pipeline ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS events (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            event_type VARCHAR(16) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS event_players (
            id BIGSERIAL PRIMARY KEY,
            event_id BIGINT NOT NULL REFERENCES events(id),
            player_id BIGINT NOT NULL REFERENCES players(id),
            CONSTRAINT uq_event_players_event_player UNIQUE (event_id, player_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS rounds (
            id BIGSERIAL PRIMARY KEY,
            event_id BIGINT NOT NULL REFERENCES events(id),
            date DATE NOT NULL,
            played_at TIMESTAMPTZ,
            course_name VARCHAR(128)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS player_rounds (
            id BIGSERIAL PRIMARY KEY,
            round_id BIGINT NOT NULL REFERENCES rounds(id),
            event_id BIGINT NOT NULL REFERENCES events(id),
            player_id BIGINT NOT NULL REFERENCES players(id),
            player_name VARCHAR(64) NOT NULL,
            rank INTEGER NOT NULL,
            total_strokes INTEGER NOT NULL,
            final_total INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_player_rounds_round_player UNIQUE (round_id, player_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_player_rounds_event
        ON player_rounds(event_id)
    """)

    # --- PULPy windows ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS pulpy_windows (
            id BIGSERIAL PRIMARY KEY,
            opened_by BIGINT NOT NULL REFERENCES players(id),
            opened_at TIMESTAMPTZ NOT NULL,
            closes_at TIMESTAMPTZ NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'open',
            locked_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ,
            settled_by_round_id BIGINT,
            settled_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_pulpy_windows_single_open
        ON pulpy_windows(status)
        WHERE status = 'open'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_pulpy_windows_status
        ON pulpy_windows(status)
    """)

    # --- Blessings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS blessings (
            id BIGSERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL REFERENCES players(id),
            window_id BIGINT NOT NULL REFERENCES pulpy_windows(id),
            event_id BIGINT NOT NULL,
            prediction_first VARCHAR(64) NOT NULL,
            prediction_second VARCHAR(64) NOT NULL,
            prediction_third VARCHAR(64) NOT NULL,
            wager_amount INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            payout_amount INTEGER NOT NULL DEFAULT 0,
            round_id BIGINT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            resolved_at TIMESTAMPTZ,
            CONSTRAINT uq_blessings_player_window UNIQUE (player_id, window_id),
            CONSTRAINT ck_blessings_min_wager CHECK (wager_amount >= 20)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_blessings_window_status
        ON blessings(window_id, status)
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id BIGSERIAL PRIMARY KEY,
            challenger_id BIGINT NOT NULL REFERENCES players(id),
            challenged_id BIGINT NOT NULL REFERENCES players(id),
            window_id BIGINT NOT NULL REFERENCES pulpy_windows(id),
            wager_amount INTEGER NOT NULL,
            status VARCHAR(24) NOT NULL,
            cowardice_tax_paid INTEGER NOT NULL DEFAULT 0,
            winner_id BIGINT,
            round_id BIGINT,
            issued_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            responded_at TIMESTAMPTZ,
            resolved_at TIMESTAMPTZ,
            CONSTRAINT ck_challenges_min_wager CHECK (wager_amount >= 20),
            CONSTRAINT ck_challenges_distinct_players CHECK (challenger_id <> challenged_id)
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_challenges_issuer_window
        ON challenges(challenger_id, window_id)
        WHERE status <> 'cancelled_waitlist'
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_challenges_pending_target
        ON challenges(challenged_id, window_id)
        WHERE status = 'pending'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_window_status
        ON challenges(window_id, status)
    """)

    # --- Advantage catalog (seeded at startup) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS advantage_catalog (
            advantage_key VARCHAR(32) PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            pulp_cost INTEGER NOT NULL,
            expiration_hours INTEGER NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    """)

    # --- Player advantages ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS player_advantages (
            id BIGSERIAL PRIMARY KEY,
            player_id BIGINT NOT NULL REFERENCES players(id),
            advantage_key VARCHAR(32) NOT NULL REFERENCES advantage_catalog(advantage_key),
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            purchased_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL,
            used_at TIMESTAMPTZ,
            expired_at TIMESTAMPTZ,
            round_id BIGINT,
            usage_metadata JSONB
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_player_advantages_active_key
        ON player_advantages(player_id, advantage_key)
        WHERE status = 'active'
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_player_advantages_status_expires
        ON player_advantages(status, expires_at)
    """)

    # --- Per-round advantage usage log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS round_advantage_usages (
            id BIGSERIAL PRIMARY KEY,
            round_id BIGINT NOT NULL REFERENCES rounds(id),
            player_id BIGINT NOT NULL REFERENCES players(id),
            player_name VARCHAR(64) NOT NULL,
            advantage_key VARCHAR(32) NOT NULL,
            used_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            metadata JSONB NOT NULL DEFAULT '{}'
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_round_advantage_usages_round_id
        ON round_advantage_usages(round_id)
    """)

    # --- Round processing marker ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS round_processing (
            round_id BIGINT PRIMARY KEY REFERENCES rounds(id),
            event_id BIGINT NOT NULL,
            event_type VARCHAR(16) NOT NULL,
            players_processed INTEGER NOT NULL DEFAULT 0,
            pulps_awarded INTEGER NOT NULL DEFAULT 0,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS round_processing CASCADE")
    op.execute("DROP TABLE IF EXISTS round_advantage_usages CASCADE")
    op.execute("DROP TABLE IF EXISTS player_advantages CASCADE")
    op.execute("DROP TABLE IF EXISTS advantage_catalog CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS blessings CASCADE")
    op.execute("DROP TABLE IF EXISTS pulpy_windows CASCADE")
    op.execute("DROP TABLE IF EXISTS player_rounds CASCADE")
    op.execute("DROP TABLE IF EXISTS rounds CASCADE")
    op.execute("DROP TABLE IF EXISTS event_players CASCADE")
    op.execute("DROP TABLE IF EXISTS events CASCADE")
    op.execute("DROP TABLE IF EXISTS pulp_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS players CASCADE")
