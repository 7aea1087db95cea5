"""001 – Initial schema: organizations, users, groups, leaves, comp-off, archives.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-12 10:30:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Enum columns are VARCHAR with CHECK constraints so new values need no
# ALTER TYPE; the ORM maps them with native_enum=False.
CHECKS: list[tuple[str, str, str, list[str]]] = [
    ("users", "role", "ck_users_role",
     ["USER", "TEAM_LEAD", "HR", "ADMIN", "SUPER_ADMIN", "CEO"]),
    ("leaves", "type", "ck_leaves_type", ["CASUAL", "MEDICAL", "COMP_OFF"]),
    ("leaves", "status", "ck_leaves_status",
     ["PENDING", "APPROVED", "REJECTED", "CANCELLED"]),
    ("leaves", "half_day_slot", "ck_leaves_half_day_slot", ["MORNING", "AFTERNOON"]),
    ("public_holidays", "type", "ck_public_holidays_type",
     ["MANDATORY", "OPTIONAL", "NORMAL"]),
]


def _add_check(table: str, column: str, name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(
        f"ALTER TABLE {table} ADD CONSTRAINT {name} "
        f"CHECK ({column} IS NULL OR {column} IN ({vals}))"
    )


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── 1. organizations ──────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE organizations (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(200) NOT NULL UNIQUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. users ──────────────────────────────────────────────────────────
    # id equals the identity provider's subject claim
    op.execute("""
        CREATE TABLE users (
            id               UUID PRIMARY KEY,
            organization_id  UUID REFERENCES organizations(id),
            email            VARCHAR(255) NOT NULL UNIQUE,
            full_name        VARCHAR(200),
            designation      VARCHAR(200),
            role             VARCHAR(20) NOT NULL DEFAULT 'USER',
            balance_casual   NUMERIC(5,1) NOT NULL DEFAULT 0,
            balance_medical  NUMERIC(5,1) NOT NULL DEFAULT 0,
            balance_compoff  NUMERIC(5,1) NOT NULL DEFAULT 0,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_users_organization_id ON users(organization_id)")

    # ── 3. groups / group_members ─────────────────────────────────────────
    op.execute("""
        CREATE TABLE groups (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id  UUID NOT NULL REFERENCES organizations(id),
            name             VARCHAR(100) NOT NULL,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_group_org_name UNIQUE (organization_id, name)
        )
    """)
    op.execute("""
        CREATE TABLE group_members (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            group_id    UUID NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
            user_id     UUID NOT NULL REFERENCES users(id),
            created_at  TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_group_member UNIQUE (group_id, user_id)
        )
    """)
    op.execute("CREATE INDEX ix_group_members_user_id ON group_members(user_id)")

    # ── 4. leaves ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leaves (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id            UUID NOT NULL REFERENCES users(id),
            type               VARCHAR(20) NOT NULL,
            status             VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            start_date         DATE NOT NULL,
            end_date           DATE NOT NULL,
            is_half_day        BOOLEAN NOT NULL DEFAULT FALSE,
            half_day_slot      VARCHAR(20),
            days_count         NUMERIC(5,1) NOT NULL,
            ledger_days        NUMERIC(5,1) NOT NULL DEFAULT 0,
            reason             TEXT NOT NULL,
            assigned_group_id  UUID REFERENCES groups(id) ON DELETE SET NULL,
            rejection_reason   TEXT,
            approved_by        UUID REFERENCES users(id),
            reviewed_at        TIMESTAMPTZ,
            cancelled_at       TIMESTAMPTZ,
            is_archived        BOOLEAN NOT NULL DEFAULT FALSE,
            archived_at        TIMESTAMPTZ,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            updated_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_date_range CHECK (end_date >= start_date)
        )
    """)
    op.execute("CREATE INDEX ix_leaves_user_start   ON leaves(user_id, start_date)")
    op.execute("CREATE INDEX ix_leaves_status_group ON leaves(status, assigned_group_id)")

    # ── 5. comp_offs / user_comp_offs ─────────────────────────────────────
    op.execute("""
        CREATE TABLE comp_offs (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id  UUID NOT NULL REFERENCES organizations(id),
            title            VARCHAR(200) NOT NULL,
            description      TEXT,
            work_date        DATE NOT NULL,
            days             NUMERIC(5,1) NOT NULL DEFAULT 1,
            created_by       UUID REFERENCES users(id),
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE user_comp_offs (
            id                 UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            comp_off_id        UUID NOT NULL REFERENCES comp_offs(id) ON DELETE CASCADE,
            user_id            UUID NOT NULL REFERENCES users(id),
            is_consumed        BOOLEAN NOT NULL DEFAULT FALSE,
            consumed_at        TIMESTAMPTZ,
            consumed_leave_id  UUID REFERENCES leaves(id) ON DELETE SET NULL,
            forfeited_at       TIMESTAMPTZ,
            created_at         TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_user_comp_off UNIQUE (comp_off_id, user_id)
        )
    """)
    op.execute(
        "CREATE INDEX ix_user_comp_offs_user_consumed ON user_comp_offs(user_id, is_consumed)"
    )

    # ── 6. leave_settings ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_settings (
            id                      UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id         UUID NOT NULL UNIQUE REFERENCES organizations(id),
            year                    INTEGER NOT NULL,
            default_casual_leaves   NUMERIC(5,1) NOT NULL DEFAULT 12,
            default_medical_leaves  NUMERIC(5,1) NOT NULL DEFAULT 12,
            carry_forward_enabled   BOOLEAN NOT NULL DEFAULT FALSE,
            year_end_processed      BOOLEAN NOT NULL DEFAULT FALSE,
            year_end_processed_at   TIMESTAMPTZ,
            updated_at              TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 7. leave_archives ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_archives (
            id                           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            user_id                      UUID NOT NULL REFERENCES users(id),
            organization_id              UUID NOT NULL REFERENCES organizations(id),
            year                         INTEGER NOT NULL,
            total_requests               INTEGER NOT NULL DEFAULT 0,
            pending_count                INTEGER NOT NULL DEFAULT 0,
            approved_count               INTEGER NOT NULL DEFAULT 0,
            rejected_count               INTEGER NOT NULL DEFAULT 0,
            cancelled_count              INTEGER NOT NULL DEFAULT 0,
            casual_taken                 NUMERIC(5,1) NOT NULL DEFAULT 0,
            medical_taken                NUMERIC(5,1) NOT NULL DEFAULT 0,
            comp_off_taken               NUMERIC(5,1) NOT NULL DEFAULT 0,
            balance_casual_at_year_end   NUMERIC(5,1) NOT NULL DEFAULT 0,
            balance_medical_at_year_end  NUMERIC(5,1) NOT NULL DEFAULT 0,
            balance_compoff_at_year_end  NUMERIC(5,1) NOT NULL DEFAULT 0,
            comp_off_forfeited           NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward_casual       NUMERIC(5,1) NOT NULL DEFAULT 0,
            carried_forward_medical      NUMERIC(5,1) NOT NULL DEFAULT 0,
            new_balance_casual           NUMERIC(5,1) NOT NULL DEFAULT 0,
            new_balance_medical          NUMERIC(5,1) NOT NULL DEFAULT 0,
            settled_by                   UUID,
            created_at                   TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_archive UNIQUE (user_id, organization_id, year)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_archives_org_year ON leave_archives(organization_id, year)"
    )

    # ── 8. public_holidays ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE public_holidays (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            organization_id  UUID NOT NULL REFERENCES organizations(id),
            name             VARCHAR(200) NOT NULL,
            date             DATE NOT NULL,
            year             INTEGER NOT NULL,
            type             VARCHAR(20) NOT NULL DEFAULT 'NORMAL',
            description      TEXT,
            created_by       UUID REFERENCES users(id),
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute(
        "CREATE INDEX ix_public_holidays_org_year ON public_holidays(organization_id, year)"
    )

    # ── 9. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_entity   ON audit_trail(entity_type, entity_id)")
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail(actor_id)")

    # ── Value checks ──────────────────────────────────────────────────────
    for table, column, name, values in CHECKS:
        _add_check(table, column, name, values)
    for column in ("balance_casual", "balance_medical", "balance_compoff"):
        op.execute(
            f"ALTER TABLE users ADD CONSTRAINT ck_users_{column}_non_negative "
            f"CHECK ({column} >= 0)"
        )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "public_holidays",
        "leave_archives",
        "leave_settings",
        "user_comp_offs",
        "comp_offs",
        "leaves",
        "group_members",
        "groups",
        "users",
        "organizations",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    op.execute('DROP EXTENSION IF EXISTS "uuid-ossp"')
