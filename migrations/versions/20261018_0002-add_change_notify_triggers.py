"""Add change notify triggers

Statement-level triggers on the tracked tables send a NOTIFY on the
lecrm_changes channel with the table name as payload, so writes made
outside the engine's own sessions (imports, sync jobs, psql) still
invalidate the at-risk cache.

Revision ID: 8d4b2e6a9c31
Revises: 3c9e1a7f5b20
Create Date: 2026-10-18 00:02:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8d4b2e6a9c31'
down_revision = '3c9e1a7f5b20'
branch_labels = None
depends_on = None


TRACKED_TABLES = ('accounts', 'estimates', 'notification_snoozes')


def upgrade() -> None:
    # Writes tagged with lecrm.origin = 'engine' (the status write-back) stay quiet
    op.execute("""
        CREATE OR REPLACE FUNCTION lecrm_notify_change()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF coalesce(current_setting('lecrm.origin', true), '') <> 'engine' THEN
                PERFORM pg_notify('lecrm_changes', TG_TABLE_NAME);
            END IF;
            RETURN NULL;
        END;
        $$;
    """)

    for table in TRACKED_TABLES:
        op.execute(f"""
            CREATE TRIGGER {table}_notify_change
            AFTER INSERT OR UPDATE OR DELETE OR TRUNCATE ON {table}
            FOR EACH STATEMENT
            EXECUTE FUNCTION lecrm_notify_change();
        """)


def downgrade() -> None:
    for table in TRACKED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_notify_change ON {table};")
    op.execute("DROP FUNCTION IF EXISTS lecrm_notify_change();")
