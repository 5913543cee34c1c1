"""
Migration: Add Follow Loop tables.

Creates the tables of the mutual-engagement loop:
1. organizations - eligibility threshold per organization
2. follow_loops - campaigns
3. follow_loop_participants - one row per (loop, person), id "{loop}_{person}"
4. follow_interactions - one row per ordered (follower, followed), id "{follower}_{followed}"
5. follow_interaction_events - immutable status history

Also adds the profile and task-statistics columns the loop reads from users.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/follow_loop"
)

USER_COLUMNS = {
    "role": "VARCHAR(20) NOT NULL DEFAULT 'user'",
    "full_name": "VARCHAR(255)",
    "instagram": "VARCHAR(100)",
    "avatar_url": "VARCHAR(500)",
    "organization_id": "VARCHAR(36)",
    "region": "VARCHAR(50)",
    "tasks_assigned": "INTEGER NOT NULL DEFAULT 0",
    "tasks_completed": "INTEGER NOT NULL DEFAULT 0",
    "justifications_accepted": "INTEGER NOT NULL DEFAULT 0",
}


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def column_exists(conn, table_name: str, column_name: str) -> bool:
    """Check if a column exists on a table."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.columns
            WHERE table_name = :table_name AND column_name = :column_name
        )
    """), {"table_name": table_name, "column_name": column_name})
    return result.fetchone()[0]


def type_exists(conn, type_name: str) -> bool:
    """Check if a PostgreSQL enum type exists."""
    result = conn.execute(text("""
        SELECT EXISTS (SELECT FROM pg_type WHERE typname = :type_name)
    """), {"type_name": type_name})
    return result.fetchone()[0]


def run_migration():
    """Create all follow loop tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # =================================================================
        # ENUM TYPES (match SQLAlchemy's generated names)
        # =================================================================
        if not type_exists(conn, "interactionstatus"):
            conn.execute(text("""
                CREATE TYPE interactionstatus AS ENUM
                ('pending_validation', 'validated', 'rejected', 'unfollowed')
            """))
            print("Created interactionstatus type")
        if not type_exists(conn, "actortype"):
            conn.execute(text("""
                CREATE TYPE actortype AS ENUM ('FOLLOWER', 'FOLLOWED', 'ADMIN', 'SYSTEM')
            """))
            print("Created actortype type")

        # =================================================================
        # TABLE 1: organizations
        # =================================================================
        if table_exists(conn, "organizations"):
            print("organizations table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE organizations (
                    id VARCHAR(36) PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    follow_loop_threshold INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            print("Created organizations table")

        # =================================================================
        # users: profile + task statistics columns
        # =================================================================
        if not table_exists(conn, "users"):
            conn.execute(text("""
                CREATE TABLE users (
                    id VARCHAR(36) PRIMARY KEY,
                    email VARCHAR(255) NOT NULL UNIQUE,
                    username VARCHAR(100) NOT NULL UNIQUE,
                    password_hash VARCHAR(255) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            print("Created users table")
        for column, ddl in USER_COLUMNS.items():
            if not column_exists(conn, "users", column):
                conn.execute(text(f"ALTER TABLE users ADD COLUMN {column} {ddl}"))
                print(f"Added users.{column}")

        # =================================================================
        # TABLE 2: follow_loops
        # =================================================================
        if table_exists(conn, "follow_loops"):
            print("follow_loops table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE follow_loops (
                    id VARCHAR(36) PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    organization_id VARCHAR(36) REFERENCES organizations(id) ON DELETE SET NULL,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_follow_loops_organization_id ON follow_loops(organization_id)
            """))
            print("Created follow_loops table")

        # =================================================================
        # TABLE 3: follow_loop_participants
        # =================================================================
        if table_exists(conn, "follow_loop_participants"):
            print("follow_loop_participants table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE follow_loop_participants (
                    id VARCHAR(80) PRIMARY KEY,
                    loop_id VARCHAR(36) NOT NULL REFERENCES follow_loops(id),
                    person_id VARCHAR(36) NOT NULL,
                    display_name VARCHAR(255) NOT NULL DEFAULT '',
                    handle VARCHAR(100) NOT NULL DEFAULT '',
                    avatar_url VARCHAR(500),
                    organization_id VARCHAR(36),
                    region VARCHAR(50),
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    is_banned BOOLEAN NOT NULL DEFAULT FALSE,
                    followers_count INTEGER NOT NULL DEFAULT 0,
                    following_count INTEGER NOT NULL DEFAULT 0,
                    rejected_count INTEGER NOT NULL DEFAULT 0,
                    joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    last_active_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    CONSTRAINT uq_participant_loop_person UNIQUE (loop_id, person_id)
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_participant_selectable
                ON follow_loop_participants(loop_id, is_active, is_banned)
            """))
            conn.execute(text("""
                CREATE INDEX ix_follow_loop_participants_person_id ON follow_loop_participants(person_id)
            """))
            print("Created follow_loop_participants table")

        # =================================================================
        # TABLE 4: follow_interactions
        # =================================================================
        if table_exists(conn, "follow_interactions"):
            print("follow_interactions table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE follow_interactions (
                    id VARCHAR(161) PRIMARY KEY,
                    loop_id VARCHAR(36) NOT NULL,
                    follower_id VARCHAR(80) NOT NULL REFERENCES follow_loop_participants(id),
                    followed_id VARCHAR(80) NOT NULL REFERENCES follow_loop_participants(id),
                    organization_id VARCHAR(36),
                    status interactionstatus NOT NULL DEFAULT 'pending_validation',
                    follower_name VARCHAR(255) NOT NULL DEFAULT '',
                    follower_handle VARCHAR(100) NOT NULL DEFAULT '',
                    followed_name VARCHAR(255) NOT NULL DEFAULT '',
                    followed_handle VARCHAR(100) NOT NULL DEFAULT '',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    status_changed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_interaction_followed_status ON follow_interactions(followed_id, status)
            """))
            conn.execute(text("""
                CREATE INDEX ix_interaction_follower_status ON follow_interactions(follower_id, status)
            """))
            conn.execute(text("""
                CREATE INDEX ix_interaction_loop_created ON follow_interactions(loop_id, created_at)
            """))
            print("Created follow_interactions table")

        # =================================================================
        # TABLE 5: follow_interaction_events
        # =================================================================
        if table_exists(conn, "follow_interaction_events"):
            print("follow_interaction_events table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE follow_interaction_events (
                    id SERIAL PRIMARY KEY,
                    interaction_id VARCHAR(161) NOT NULL REFERENCES follow_interactions(id),
                    from_status interactionstatus,
                    to_status interactionstatus NOT NULL,
                    trigger VARCHAR(50) NOT NULL,
                    actor actortype NOT NULL,
                    actor_id VARCHAR(80),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_follow_interaction_events_interaction_id
                ON follow_interaction_events(interaction_id)
            """))
            print("Created follow_interaction_events table")

        conn.commit()
        print("\nFollow Loop migration completed successfully!")


if __name__ == "__main__":
    run_migration()
