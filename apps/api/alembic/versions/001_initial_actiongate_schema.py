"""Initial schema: policy documents, append-only ledger, claims, publish log.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

APPEND_ONLY_TABLES = ('policy_decisions', 'execution_records', 'publish_events')


def upgrade() -> None:
    op.create_table(
        'policy_documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('version', sa.String(length=100), nullable=False),
        sa.Column('document_hash', sa.String(length=64), nullable=False),
        sa.Column('document_json', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_policy_documents_version', 'policy_documents', ['version'])
    op.create_index('ix_policy_documents_document_hash', 'policy_documents', ['document_hash'], unique=True)
    op.create_index('ix_policy_documents_is_active', 'policy_documents', ['is_active'])

    op.create_table(
        'policy_decisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=True),
        sa.Column('action_fingerprint', sa.String(length=64), nullable=True),
        sa.Column('allowed', sa.Boolean(), nullable=False),
        sa.Column('reason_code', sa.String(length=50), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('next_allowed_at', sa.DateTime(), nullable=True),
        sa.Column('policy_version', sa.String(length=100), nullable=True),
        sa.Column('policy_version_hash', sa.String(length=64), nullable=True),
        sa.Column('deployment_env', sa.String(length=50), nullable=True),
        sa.Column('context_json', sa.JSON(), nullable=True),
        sa.Column('enforcement_json', sa.JSON(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_policy_decisions_request_id', 'policy_decisions', ['request_id'])
    op.create_index('ix_policy_decisions_idempotency_key', 'policy_decisions', ['idempotency_key'])
    op.create_index('ix_policy_decisions_reason_code', 'policy_decisions', ['reason_code'])
    op.create_index(
        'ix_policy_decisions_action_scope_time', 'policy_decisions', ['action_type', 'scope', 'decided_at']
    )

    op.create_table(
        'execution_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=True),
        sa.Column('external_url', sa.Text(), nullable=True),
        sa.Column('match_confidence', sa.String(length=10), nullable=True),
        sa.Column('error_code', sa.String(length=50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('policy_version_hash', sa.String(length=64), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_execution_records_request_id', 'execution_records', ['request_id'])
    op.create_index('ix_execution_records_idempotency_key', 'execution_records', ['idempotency_key'])
    op.create_index(
        'ix_execution_records_action_scope_time', 'execution_records', ['action_type', 'scope', 'executed_at']
    )
    # At most one success per idempotency key
    op.create_index(
        'uq_execution_records_success_key',
        'execution_records',
        ['idempotency_key'],
        unique=True,
        postgresql_where=sa.text("status = 'success'"),
        sqlite_where=sa.text("status = 'success'"),
    )

    op.create_table(
        'execution_claims',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False, unique=True),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'publish_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=100), nullable=False),
        sa.Column('scope', sa.String(length=255), nullable=False),
        sa.Column('marker', sa.String(length=255), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('external_id', sa.String(length=100), nullable=False),
        sa.Column('external_url', sa.Text(), nullable=True),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('rendered_hash', sa.String(length=64), nullable=False),
        sa.Column('labels_json', sa.JSON(), nullable=True),
        sa.Column('warnings_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_publish_events_request_id', 'publish_events', ['request_id'])
    op.create_index('ix_publish_events_scope', 'publish_events', ['scope'])
    op.create_index('ix_publish_events_marker', 'publish_events', ['marker'])
    op.create_index('ix_publish_events_idempotency_key', 'publish_events', ['idempotency_key'])

    # Append-only at the schema level (PostgreSQL)
    if op.get_bind().dialect.name == 'postgresql':
        op.execute(
            """
            CREATE OR REPLACE FUNCTION actiongate_reject_mutation() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        for table in APPEND_ONLY_TABLES:
            op.execute(
                f"CREATE TRIGGER {table}_append_only BEFORE UPDATE OR DELETE ON {table} "
                f"FOR EACH ROW EXECUTE FUNCTION actiongate_reject_mutation();"
            )


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        for table in APPEND_ONLY_TABLES:
            op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table};")
        op.execute("DROP FUNCTION IF EXISTS actiongate_reject_mutation();")

    op.drop_table('publish_events')
    op.drop_table('execution_claims')
    op.drop_index('uq_execution_records_success_key', table_name='execution_records')
    op.drop_table('execution_records')
    op.drop_table('policy_decisions')
    op.drop_table('policy_documents')
