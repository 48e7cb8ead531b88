# schema.py
# -----------------------------------------------------------------------------
# Idempotent DDL for the exam tables. Safe to run on every boot.
# results(exam_id, user_id) UNIQUE is what makes a submission count once.
# -----------------------------------------------------------------------------

from typing import Callable, List

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS public.users (
        id             SERIAL PRIMARY KEY,
        name           TEXT NOT NULL,
        email          TEXT NOT NULL UNIQUE,
        phone_number   TEXT,
        password_hash  TEXT NOT NULL,
        created_at     TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.exams (
        id           SERIAL PRIMARY KEY,
        title        TEXT NOT NULL,
        description  TEXT,
        duration     INTEGER NOT NULL CHECK (duration > 0),
        total_marks  INTEGER NOT NULL CHECK (total_marks > 0),
        is_active    BOOLEAN NOT NULL DEFAULT TRUE,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.questions (
        id             SERIAL PRIMARY KEY,
        exam_id        INTEGER NOT NULL REFERENCES public.exams(id) ON DELETE CASCADE,
        question_text  TEXT NOT NULL,
        type           TEXT NOT NULL CHECK (type IN ('MCQ', 'TRUE_FALSE')),
        marks          INTEGER NOT NULL CHECK (marks > 0)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.options (
        id           SERIAL PRIMARY KEY,
        question_id  INTEGER NOT NULL REFERENCES public.questions(id) ON DELETE CASCADE,
        option_text  TEXT NOT NULL,
        is_correct   BOOLEAN NOT NULL DEFAULT FALSE
    );
    """,
    # at most one correct option per question
    """
    CREATE UNIQUE INDEX IF NOT EXISTS options_one_correct_per_question
        ON public.options (question_id) WHERE is_correct;
    """,
    """
    CREATE TABLE IF NOT EXISTS public.results (
        id           SERIAL PRIMARY KEY,
        exam_id      INTEGER NOT NULL REFERENCES public.exams(id) ON DELETE CASCADE,
        user_id      INTEGER NOT NULL REFERENCES public.users(id) ON DELETE CASCADE,
        score        NUMERIC(10, 2) NOT NULL,
        total_marks  INTEGER NOT NULL,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT results_exam_user_unique UNIQUE (exam_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.exam_attempts (
        id          SERIAL PRIMARY KEY,
        exam_id     INTEGER NOT NULL REFERENCES public.exams(id) ON DELETE CASCADE,
        user_id     INTEGER NOT NULL REFERENCES public.users(id) ON DELETE CASCADE,
        started_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT exam_attempts_exam_user_unique UNIQUE (exam_id, user_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS public.exam_progress (
        exam_id     INTEGER NOT NULL REFERENCES public.exams(id) ON DELETE CASCADE,
        user_id     INTEGER NOT NULL REFERENCES public.users(id) ON DELETE CASCADE,
        snapshot    JSONB NOT NULL DEFAULT '{}'::jsonb,
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (exam_id, user_id)
    );
    """,
]


def ensure_schema(execute: Callable) -> bool:
    """Runs every statement; returns False (and logs) on the first failure."""
    for stmt in SCHEMA_STATEMENTS:
        try:
            execute(stmt)
        except Exception as e:
            print(f"[schema] statement failed: {e}", flush=True)
            return False
    return True
