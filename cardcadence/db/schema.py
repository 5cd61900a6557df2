"""
Defines the database schema for cardcadence using a SQL string constant.

Timestamps are stored as naive UTC ``TIMESTAMP`` values; db_utils converts at
the boundary. Intervals are stored in minutes.
"""

DB_SCHEMA_SQL = """
    CREATE SEQUENCE IF NOT EXISTS item_seq;
    CREATE SEQUENCE IF NOT EXISTS review_event_seq;

    CREATE TABLE IF NOT EXISTS items (
        id UUID PRIMARY KEY,
        position BIGINT NOT NULL DEFAULT nextval('item_seq'),
        deck_id VARCHAR NOT NULL,
        card_type VARCHAR NOT NULL,
        front VARCHAR NOT NULL,
        back VARCHAR NOT NULL,
        tags VARCHAR[],
        cloze_index INTEGER,
        learning_state VARCHAR NOT NULL,
        ease_factor DOUBLE NOT NULL,
        interval_minutes DOUBLE NOT NULL,
        repetitions INTEGER NOT NULL,
        lapses INTEGER NOT NULL,
        step_index INTEGER,
        next_review TIMESTAMP NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS review_events (
        review_id INTEGER PRIMARY KEY DEFAULT nextval('review_event_seq'),
        item_id UUID NOT NULL,
        deck_id VARCHAR NOT NULL,
        rating INTEGER NOT NULL CHECK (rating >= 1 AND rating <= 4),
        resulting_interval DOUBLE NOT NULL,
        resulting_ease_factor DOUBLE NOT NULL,
        ts TIMESTAMP NOT NULL,
        response_ms INTEGER,
        session_id UUID
    );

    CREATE TABLE IF NOT EXISTS deck_settings (
        deck_id VARCHAR PRIMARY KEY,
        overrides VARCHAR NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS daily_stats (
        study_date DATE PRIMARY KEY,
        cards_reviewed INTEGER NOT NULL DEFAULT 0,
        cards_correct INTEGER NOT NULL DEFAULT 0,
        new_cards_studied INTEGER NOT NULL DEFAULT 0,
        time_spent_ms BIGINT NOT NULL DEFAULT 0,
        updated_at TIMESTAMP NOT NULL
    );

    -- Decks are implicit; a row exists only once a deck is nested.
    CREATE TABLE IF NOT EXISTS decks (
        deck_id VARCHAR PRIMARY KEY,
        parent_id VARCHAR,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_items_deck_id ON items (deck_id);
    CREATE INDEX IF NOT EXISTS idx_items_next_review ON items (next_review);
    CREATE INDEX IF NOT EXISTS idx_review_events_item_id ON review_events (item_id);
    CREATE INDEX IF NOT EXISTS idx_review_events_ts ON review_events (ts);
"""
