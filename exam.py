# exam.py
# -----------------------------------------------------------------------------
# Timed exam attempts (start / submit / progress) for signed-in users.
# - One scored result per (exam, user): enforced by results UNIQUE(exam_id, user_id)
# - Start time is stamped server-side on first start; submit prefers it over the client copy
# - Duration comes from the exam row, never from the request
# - Progress snapshots are stored per (exam, user) and dropped once a result exists
# -----------------------------------------------------------------------------

import json
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Blueprint, g, jsonify, request
from pydantic import ValidationError

from exam_clock import format_timestamp, is_expired, parse_timestamp, seconds_remaining, utcnow
from exam_session import SessionSnapshot
from scoring import group_question_rows, result_summary, score_answers

REQUIRED_SUBMIT_FIELDS = ("examId", "answers", "startTime", "duration")


# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_exam_blueprint(base_path: str, deps: Dict[str, Any], name: str = "exam") -> Blueprint:
    """
    Factory that returns the exam-taking Blueprint mounted at base_path.
    Required deps: fetch_one, fetch_all, execute, execute_returning
    Optional deps: now (callable -> aware datetime)
    """
    bp = Blueprint(name, __name__, url_prefix=(base_path or None))

    # ---- Required deps -------------------------------------------------------
    fetch_one: Callable = deps["fetch_one"]
    fetch_all: Callable = deps["fetch_all"]
    execute:   Callable = deps["execute"]
    execute_returning: Callable = deps["execute_returning"]
    now: Callable[[], datetime] = deps.get("now") or utcnow

    # ---- Config --------------------------------------------------------------
    SUBMIT_GRACE_SECONDS = int(os.getenv("EXAM_SUBMIT_GRACE_SECONDS") or 0)

    # ------------------------------- responses --------------------------------
    def _error(status: int, code: str, message: str):
        return jsonify({"success": False, "error": code, "message": message}), status

    def _require_user():
        role = getattr(g, "user_role", None)
        if not role:
            return _error(401, "unauthorized", "Unauthorized")
        if role != "user":
            return _error(403, "forbidden", "You are not authorized to access this resource")
        if not getattr(g, "user_id", None):
            return _error(401, "unauthorized", "Unauthorized")
        return None

    def _as_int(v: Any) -> Optional[int]:
        if isinstance(v, bool):
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    # ------------------------------- exam / attempt I/O -----------------------
    def _load_exam(exam_id: int) -> Optional[dict]:
        return fetch_one("""
            SELECT id, title, duration, total_marks, is_active
              FROM public.exams
             WHERE id = %s;
        """, (exam_id,))

    def _has_result(exam_id: int, user_id: int) -> bool:
        row = fetch_one("""
            SELECT id FROM public.results
             WHERE exam_id = %s AND user_id = %s
             LIMIT 1;
        """, (exam_id, user_id))
        return bool(row)

    def _recorded_start(exam_id: int, user_id: int) -> Optional[datetime]:
        row = fetch_one("""
            SELECT started_at FROM public.exam_attempts
             WHERE exam_id = %s AND user_id = %s;
        """, (exam_id, user_id))
        started = (row or {}).get("started_at")
        return parse_timestamp(started) if started else None

    def _stamp_start(exam_id: int, user_id: int) -> datetime:
        """First start wins; later starts (reloads) get the same timestamp back."""
        rows = execute_returning("""
            INSERT INTO public.exam_attempts (exam_id, user_id, started_at)
            VALUES (%s, %s, %s)
            ON CONFLICT (exam_id, user_id) DO NOTHING
            RETURNING started_at;
        """, (exam_id, user_id, now()))
        if rows:
            return parse_timestamp(rows[0]["started_at"])
        recorded = _recorded_start(exam_id, user_id)
        if recorded is None:
            raise RuntimeError("attempt row vanished after conflict")
        return recorded

    def _load_questions(exam_id: int, question_ids: List[int]) -> Dict[int, Dict[str, Any]]:
        if not question_ids:
            return {}
        rows = fetch_all("""
            SELECT  q.id  AS question_id,
                    q.marks,
                    o.id  AS option_id,
                    o.is_correct
              FROM  public.questions q
              LEFT  JOIN public.options o ON o.question_id = q.id
             WHERE  q.exam_id = %s
               AND  q.id = ANY(%s)
             ORDER  BY q.id, o.id;
        """, (exam_id, question_ids))
        return group_question_rows(rows)

    def _insert_result(exam_id: int, user_id: int, score: int, total_marks: int) -> bool:
        rows = execute_returning("""
            INSERT INTO public.results (exam_id, user_id, score, total_marks)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (exam_id, user_id) DO NOTHING
            RETURNING id;
        """, (exam_id, user_id, score, total_marks))
        return bool(rows)

    def _clear_progress(exam_id: int, user_id: int):
        try:
            execute("DELETE FROM public.exam_progress WHERE exam_id = %s AND user_id = %s;",
                    (exam_id, user_id))
        except Exception as e:
            print(f"[exam] progress cleanup failed: {e}")

    # ------------------------------- payload checks ---------------------------
    def _parse_submission(data: Dict[str, Any]) -> Tuple[Optional[dict], Optional[Tuple[str, str]]]:
        missing = [k for k in REQUIRED_SUBMIT_FIELDS if data.get(k) is None or data.get(k) == ""]
        if missing:
            return None, ("missing_fields", f"Missing required fields: {', '.join(missing)}")

        exam_id = _as_int(data.get("examId"))
        duration = _as_int(data.get("duration"))
        answers_raw = data.get("answers")
        if exam_id is None or duration is None or not isinstance(answers_raw, list):
            return None, ("invalid_payload", "examId and duration must be integers, answers a list")

        answers: List[Dict[str, int]] = []
        for i, a in enumerate(answers_raw, start=1):
            qid = _as_int((a or {}).get("questionId")) if isinstance(a, dict) else None
            oid = _as_int((a or {}).get("selectedOptionId")) if isinstance(a, dict) else None
            if qid is None or oid is None:
                return None, ("invalid_payload", f"answers[{i}] needs integer questionId and selectedOptionId")
            answers.append({"questionId": qid, "selectedOptionId": oid})

        try:
            client_start = parse_timestamp(data.get("startTime"))
        except (TypeError, ValueError):
            return None, ("invalid_payload", "startTime must be an ISO-8601 timestamp")

        return {"exam_id": exam_id, "answers": answers, "client_start": client_start}, None

    # --------------------------------- routes ---------------------------------
    @bp.get("/api/result/start-exam/<int:exam_id>")
    def start_exam(exam_id: int):
        denied = _require_user()
        if denied:
            return denied
        try:
            exam = _load_exam(exam_id)
            if not exam:
                return _error(404, "exam_not_found", "Exam not found")
            if not exam.get("is_active", True):
                return _error(403, "exam_inactive", "This exam is no longer available")
            if _has_result(exam_id, g.user_id):
                return _error(403, "already_attempted", "You have already attempted this exam")

            started_at = _stamp_start(exam_id, g.user_id)
            duration = int(exam["duration"])
            return jsonify({
                "success": True,
                "examId": exam["id"],
                "title": exam.get("title"),
                "duration": duration,
                "startTime": format_timestamp(started_at),
                "timeLeft": seconds_remaining(started_at, duration, now=now()),
            })
        except Exception as e:
            print(f"[exam] start failed for exam={exam_id}: {e}")
            return _error(500, "server_error", "Server Error")

    @bp.post("/api/result/submit-exam")
    def submit_exam():
        denied = _require_user()
        if denied:
            return denied
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return _error(400, "invalid_payload", "Request body must be a JSON object")

        parsed, problem = _parse_submission(data)
        if problem:
            return _error(400, *problem)

        exam_id = parsed["exam_id"]
        user_id = g.user_id
        try:
            exam = _load_exam(exam_id)
            if not exam:
                return _error(404, "exam_not_found", "Exam not found")
            if not exam.get("is_active", True):
                return _error(403, "exam_inactive", "This exam is no longer available")

            # Server-recorded start wins; the client copy only covers attempts never started here
            started_at = _recorded_start(exam_id, user_id) or parsed["client_start"]
            if is_expired(started_at, int(exam["duration"]), now=now(), grace_seconds=SUBMIT_GRACE_SECONDS):
                return _error(400, "time_expired", "Exam time expired")

            if _has_result(exam_id, user_id):
                return _error(403, "already_attempted", "You have already attempted this exam")

            answers = parsed["answers"]
            questions = _load_questions(exam_id, sorted({a["questionId"] for a in answers}))
            score, total_marks = score_answers(answers, questions)

            if not _insert_result(exam_id, user_id, score, total_marks):
                print(f"[exam] duplicate submit rejected by unique key exam={exam_id} user={user_id}")
                return _error(403, "already_attempted", "You have already attempted this exam")

            _clear_progress(exam_id, user_id)
            return jsonify({
                "success": True,
                "message": "Exam submitted successfully",
                "result": result_summary(score, total_marks),
            }), 201
        except Exception as e:
            print(f"[exam] submit failed for exam={exam_id} user={user_id}: {e}")
            return _error(500, "server_error", "Server Error")

    # Server-backed session snapshot (same layout the client keeps locally)
    @bp.get("/api/result/progress/<int:exam_id>")
    def load_progress(exam_id: int):
        denied = _require_user()
        if denied:
            return denied
        try:
            row = fetch_one("""
                SELECT snapshot FROM public.exam_progress
                 WHERE exam_id = %s AND user_id = %s;
            """, (exam_id, g.user_id))
            snap = (row or {}).get("snapshot")
            if isinstance(snap, str):
                snap = json.loads(snap)
            recorded = _recorded_start(exam_id, g.user_id)
        except Exception as e:
            print(f"[exam] progress load failed for exam={exam_id} user={g.user_id}: {e}")
            return _error(500, "server_error", "Server Error")
        return jsonify({
            "success": True,
            "snapshot": snap or None,
            "startTime": format_timestamp(recorded) if recorded else None,
        })

    @bp.put("/api/result/progress/<int:exam_id>")
    def save_progress(exam_id: int):
        denied = _require_user()
        if denied:
            return denied
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error(400, "invalid_payload", "Request body must be a JSON object")
        try:
            snap = SessionSnapshot.model_validate(data.get("snapshot") or {})
        except ValidationError as e:
            return _error(400, "invalid_payload", f"Invalid snapshot: {e.errors()[0].get('msg')}")
        try:
            if not _load_exam(exam_id):
                return _error(404, "exam_not_found", "Exam not found")
            if _has_result(exam_id, g.user_id):
                return _error(403, "already_attempted", "You have already attempted this exam")
            execute("""
                INSERT INTO public.exam_progress (exam_id, user_id, snapshot, updated_at)
                VALUES (%s, %s, %s::jsonb, now())
                ON CONFLICT (exam_id, user_id)
                DO UPDATE SET snapshot = EXCLUDED.snapshot, updated_at = now();
            """, (exam_id, g.user_id, snap.model_dump_json(by_alias=True)))
        except Exception as e:
            print(f"[exam] progress save failed for exam={exam_id} user={g.user_id}: {e}")
            return _error(500, "server_error", "Server Error")
        return jsonify({"success": True})

    @bp.delete("/api/result/progress/<int:exam_id>")
    def delete_progress(exam_id: int):
        denied = _require_user()
        if denied:
            return denied
        # _clear_progress logs its own failures
        _clear_progress(exam_id, g.user_id)
        return jsonify({"success": True})

    return bp
