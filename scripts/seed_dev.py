#!/usr/bin/env python
"""Seed development database with a demo conversation.

Creates one public thread with a user question and an assistant answer,
owned by SEED_USER_ID, so the sidebar and share pages have data locally.

Constraints:
- Refuses to run in staging or prod (ONECHAT_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... SEED_USER_ID=... python ../scripts/seed_dev.py
"""

import json
import os
import sys

DEMO_THREAD_ID = "demo-thread"
DEMO_MODEL = "openai:gpt-4.1-mini"
DEMO_MESSAGES = [
    ("demo-thread-u0", "user", "What can you help me with?"),
    (
        "demo-thread-a0",
        "assistant",
        "I can answer questions, search the web and generate images with the model you pick.",
    ),
]


def main():
    # 1. Environment check (hard fail in staging/prod)
    onechat_env = os.getenv("ONECHAT_ENV", "local")
    if onechat_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in ONECHAT_ENV={onechat_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL and the owner
    database_url = os.getenv("DATABASE_URL")
    user_id = os.getenv("SEED_USER_ID")
    if not database_url or not user_id:
        print("ERROR: DATABASE_URL and SEED_USER_ID environment variables must be set")
        sys.exit(1)

    from sqlalchemy import create_engine, text

    engine = create_engine(database_url)

    with engine.connect() as conn:
        # 3. Idempotent seeding
        result = conn.execute(
            text("""
                INSERT INTO threads (id, user_id, title, visibility)
                VALUES (:thread_id, :user_id, 'Welcome to OneChat', 'public')
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"thread_id": DEMO_THREAD_ID, "user_id": user_id},
        )
        thread_created = result.fetchone() is not None

        messages_created = 0
        for offset, (message_id, role, content) in enumerate(DEMO_MESSAGES):
            result = conn.execute(
                text("""
                    INSERT INTO messages (id, thread_id, role, content, parts, model, created_at)
                    VALUES (
                        :message_id, :thread_id, :role, :content, CAST(:parts AS JSONB), :model,
                        now() + make_interval(secs => :offset)
                    )
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                """),
                {
                    "message_id": message_id,
                    "thread_id": DEMO_THREAD_ID,
                    "role": role,
                    "content": content,
                    "parts": json.dumps([{"type": "text", "text": content}]),
                    "model": DEMO_MODEL if role == "assistant" else None,
                    "offset": offset,
                },
            )
            messages_created += result.fetchone() is not None

        conn.commit()

    # 4. Report
    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"ONECHAT_ENV: {onechat_env}")
    print()
    print(f"{'✓ Created' if thread_created else '• Exists'}: thread {DEMO_THREAD_ID}")
    print(f"✓ Created {messages_created} of {len(DEMO_MESSAGES)} messages")


if __name__ == "__main__":
    main()
