"""Initial schema – users, sessions, trusted devices, MFA, one-time tokens,
runtime flags and the audit trail

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18

Every timestamp column is a naive UTC DATETIME; the application writes them
itself, so no server defaults are relied on for security-relevant times.
"""

from alembic import op
import sqlalchemy as sa

# Alembic revision identifiers
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _user_fk():
    return sa.ForeignKey("users.id", ondelete="CASCADE")


def upgrade() -> None:
    # -- users ----------------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(191), nullable=False),
        sa.Column("email", sa.String(191), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("user", "admin", name="user_role"),
            nullable=False,
            server_default="user",
        ),
        sa.Column(
            "status",
            sa.Enum("active", "disabled", name="user_status"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        # base64( ciphertext || 16-byte GCM tag ) of the base32 TOTP secret
        sa.Column("mfa_secret_enc", sa.Text(), nullable=True),
        # base64( 12-byte AES-GCM nonce )
        sa.Column("mfa_secret_iv", sa.String(64), nullable=True),
        sa.Column("email_verified_at", sa.DateTime(), nullable=True),
        sa.Column("google_sub", sa.String(191), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
        sa.UniqueConstraint("google_sub", name="uq_users_google_sub"),
    )
    op.create_index("idx_users_email", "users", ["email"])

    # -- sessions -------------------------------------------------------
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("refresh_hash", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip", sa.String(45), nullable=True),
        sa.Column("remember", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("replaced_by", sa.String(32), nullable=True),
    )
    op.create_index("idx_sessions_user_id", "sessions", ["user_id"])

    # -- trusted_devices ------------------------------------------------
    op.create_table(
        "trusted_devices",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_trusted_devices_user_id", "trusted_devices", ["user_id"])

    # -- MFA ------------------------------------------------------------
    op.create_table(
        "mfa_challenges",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("secret_enc", sa.Text(), nullable=False),
        sa.Column("secret_iv", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_mfa_challenges_user_id", "mfa_challenges", ["user_id"])

    op.create_table(
        "mfa_login_challenges",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("remember", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("ip", sa.String(45), nullable=True),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_mfa_login_challenges_user_id", "mfa_login_challenges", ["user_id"])

    op.create_table(
        "mfa_backup_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
    )
    op.create_index("idx_mfa_backup_codes_user_id", "mfa_backup_codes", ["user_id"])
    op.create_index("idx_mfa_backup_codes_code_hash", "mfa_backup_codes", ["code_hash"])

    # -- single-use emailed tokens --------------------------------------
    for table in ("email_verifications", "password_resets"):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
            sa.Column("token_hash", sa.String(64), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("used_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("token_hash", name=f"uq_{table}_token_hash"),
        )
        op.create_index(f"idx_{table}_user_id", table, ["user_id"])

    # -- runtime_flags --------------------------------------------------
    runtime_flags = op.create_table(
        "runtime_flags",
        sa.Column("flag_key", sa.String(64), primary_key=True),
        sa.Column("bool_value", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.bulk_insert(runtime_flags, [{"flag_key": "trustedDeviceFpEnforceAll", "bool_value": False}])

    # -- audit_logs -----------------------------------------------------
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "actor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "target_user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("request_ip", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("idx_audit_logs_target_user_id", "audit_logs", ["target_user_id"])
    op.create_index("idx_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("runtime_flags")
    op.drop_table("password_resets")
    op.drop_table("email_verifications")
    op.drop_table("mfa_backup_codes")
    op.drop_table("mfa_login_challenges")
    op.drop_table("mfa_challenges")
    op.drop_table("trusted_devices")
    op.drop_table("sessions")
    op.drop_table("users")
