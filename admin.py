from typing import Any, Dict, List, Optional, Tuple, Callable

from flask import Blueprint, jsonify, request, g

from scoring import validate_question_options


# =========================
# Validation helpers
# =========================
def _positive_int(v: Any) -> Optional[int]:
    if isinstance(v, bool):
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def validate_exam(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Returns (clean_fields, errors). errors is empty when the exam can be stored."""
    errors: List[str] = []
    title = str(data.get("title") or "").strip()
    description = str(data.get("description") or "").strip() or None
    duration = _positive_int(data.get("duration"))
    total_marks = _positive_int(data.get("totalMarks"))

    if not title:
        errors.append("Title is required.")
    if data.get("duration") in (None, ""):
        errors.append("Duration is required.")
    elif duration is None:
        errors.append("Duration must be a positive number of minutes.")
    if data.get("totalMarks") in (None, ""):
        errors.append("Total marks is required.")
    elif total_marks is None:
        errors.append("Total marks must be a positive number.")

    return {"title": title, "description": description,
            "duration": duration, "total_marks": total_marks}, errors


def validate_question(q: Dict[str, Any], index: int) -> Tuple[Dict[str, Any], List[str]]:
    errors: List[str] = []
    exam_id = _positive_int(q.get("examId"))
    text = str(q.get("questionText") or "").strip()
    q_type = str(q.get("type") or "").strip().upper()
    marks = _positive_int(q.get("marks"))
    options = q.get("options") if isinstance(q.get("options"), list) else []

    if exam_id is None:
        errors.append(f"Q{index}: examId is required")
    if not text:
        errors.append(f"Q{index}: questionText is required")
    if marks is None:
        errors.append(f"Q{index}: marks must be a positive integer")
    if not options:
        errors.append(f"Q{index}: options are required")
    else:
        clean_opts = [o if isinstance(o, dict) else {} for o in options]
        errors.extend(f"Q{index}: {e}" for e in validate_question_options(q_type, clean_opts))
        options = clean_opts

    return {
        "exam_id": exam_id,
        "question_text": text,
        "type": q_type,
        "marks": marks,
        "options": [{"text": str(o.get("text") or "").strip(), "is_correct": bool(o.get("isCorrect"))}
                    for o in options],
    }, errors


# =========================
# Blueprint factory
# =========================
def create_admin_blueprint(
    url_prefix: str,
    deps: Dict[str, Any],
    name: str = "admin",
) -> Blueprint:
    """
    Exam + question authoring.
      • /api/exam/*      create, list, get, deactivate
      • /api/question/*  bulk add with options, list by exam
    deps:
      - fetch_one(sql, params)
      - fetch_all(sql, params)
      - execute_returning(sql, params)
    """
    fetch_one: Callable = deps["fetch_one"]
    fetch_all: Callable = deps["fetch_all"]
    execute_returning: Callable = deps["execute_returning"]

    bp = Blueprint(name, __name__, url_prefix=(url_prefix or None))

    # ---------- Gates ----------
    def _error(status: int, code: str, message: str, **extra):
        body = {"success": False, "error": code, "message": message}
        body.update(extra)
        return jsonify(body), status

    def _require_admin():
        if not getattr(g, "user_role", None):
            return _error(401, "unauthorized", "Unauthorized")
        if g.user_role != "admin":
            return _error(403, "forbidden", "You are not authorized to access this resource")
        return None

    def _require_signed_in():
        if not getattr(g, "user_role", None):
            return _error(401, "unauthorized", "Unauthorized")
        return None

    def _exam_json(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "title": row.get("title"),
            "description": row.get("description"),
            "duration": row.get("duration"),
            "totalMarks": row.get("total_marks"),
            "isActive": bool(row.get("is_active", True)),
        }

    # ---------- Exams ----------
    @bp.post("/api/exam/create-exam")
    def create_exam():
        denied = _require_admin()
        if denied:
            return denied
        data = request.get_json(silent=True) or {}
        fields, errors = validate_exam(data if isinstance(data, dict) else {})
        if errors:
            return _error(400, "missing_fields", "Please fill all required fields", errors=errors)
        try:
            rows = execute_returning("""
                INSERT INTO public.exams (title, description, duration, total_marks, is_active)
                VALUES (%s, %s, %s, %s, TRUE)
                RETURNING id, title, description, duration, total_marks, is_active;
            """, (fields["title"], fields["description"], fields["duration"], fields["total_marks"]))
        except Exception as e:
            print(f"[admin] create exam failed: {e}")
            return _error(500, "server_error", "Internal server error")
        return jsonify({"success": True, "message": "Exam created successfully", "exam": _exam_json(rows[0])})

    @bp.get("/api/exam/get-exams")
    def get_exams():
        denied = _require_admin()
        if denied:
            return denied
        rows = fetch_all("""
            SELECT id, title, description, duration, total_marks, is_active
              FROM public.exams
             ORDER BY id;
        """, ())
        return jsonify({"success": True, "exams": [_exam_json(r) for r in rows or []]})

    @bp.get("/api/exam/get-exam/<int:exam_id>")
    def get_exam(exam_id: int):
        denied = _require_signed_in()
        if denied:
            return denied
        row = fetch_one("""
            SELECT id, title, description, duration, total_marks, is_active
              FROM public.exams
             WHERE id = %s;
        """, (exam_id,))
        if not row:
            return _error(404, "exam_not_found", "Exam not found")
        return jsonify({"success": True, "data": _exam_json(row)})

    @bp.post("/api/exam/<int:exam_id>/deactivate")
    def deactivate_exam(exam_id: int):
        denied = _require_admin()
        if denied:
            return denied
        rows = execute_returning("""
            UPDATE public.exams SET is_active = FALSE
             WHERE id = %s
            RETURNING id, title, description, duration, total_marks, is_active;
        """, (exam_id,))
        if not rows:
            return _error(404, "exam_not_found", "Exam not found")
        return jsonify({"success": True, "message": "Exam deactivated", "exam": _exam_json(rows[0])})

    # ---------- Questions ----------
    @bp.post("/api/question/add-question")
    def add_question():
        denied = _require_admin()
        if denied:
            return denied
        payload = request.get_json(silent=True)
        if not isinstance(payload, list) or not payload:
            return _error(400, "invalid_payload", "Invalid payload")

        # Validate everything before writing anything
        cleaned: List[Dict[str, Any]] = []
        errors: List[str] = []
        for i, q in enumerate(payload, start=1):
            fields, errs = validate_question(q if isinstance(q, dict) else {}, i)
            cleaned.append(fields)
            errors.extend(errs)
        if errors:
            return _error(400, "missing_fields", "Missing fields", errors=errors)

        exam_ids = sorted({q["exam_id"] for q in cleaned})
        found = fetch_all("SELECT id FROM public.exams WHERE id = ANY(%s);", (exam_ids,))
        missing = set(exam_ids) - {int(r["id"]) for r in found or []}
        if missing:
            return _error(404, "exam_not_found", f"Exam not found: {', '.join(str(m) for m in sorted(missing))}")

        created: List[int] = []
        try:
            for q in cleaned:
                # question + its options in one statement so a question never lands without options
                rows = execute_returning("""
                    WITH q AS (
                        INSERT INTO public.questions (exam_id, question_text, type, marks)
                        VALUES (%s, %s, %s, %s)
                        RETURNING id
                    )
                    INSERT INTO public.options (question_id, option_text, is_correct)
                    SELECT q.id, o.option_text, o.is_correct
                      FROM q, unnest(%s::text[], %s::boolean[]) AS o(option_text, is_correct)
                    RETURNING question_id;
                """, (q["exam_id"], q["question_text"], q["type"], q["marks"],
                      [o["text"] for o in q["options"]], [o["is_correct"] for o in q["options"]]))
                if rows:
                    created.append(int(rows[0]["question_id"]))
        except Exception as e:
            print(f"[admin] add question failed after {len(created)} created: {e}")
            return _error(500, "server_error", "Internal server error", created=created)

        return jsonify({"success": True, "message": "Questions added successfully", "questionIds": created}), 201

    @bp.get("/api/question/get-question/<int:exam_id>")
    def get_questions(exam_id: int):
        denied = _require_signed_in()
        if denied:
            return denied
        show_answers = g.user_role == "admin"
        rows = fetch_all("""
            SELECT  q.id AS question_id, q.exam_id, q.question_text, q.type, q.marks,
                    o.id AS option_id, o.option_text, o.is_correct
              FROM  public.questions q
              LEFT  JOIN public.options o ON o.question_id = q.id
             WHERE  q.exam_id = %s
             ORDER  BY q.id, o.id;
        """, (exam_id,))

        questions: List[Dict[str, Any]] = []
        by_id: Dict[int, Dict[str, Any]] = {}
        for r in rows or []:
            qid = int(r["question_id"])
            q = by_id.get(qid)
            if q is None:
                q = {
                    "id": qid,
                    "examId": r.get("exam_id"),
                    "questionText": r.get("question_text"),
                    "type": r.get("type"),
                    "marks": r.get("marks"),
                    "Options": [],
                }
                by_id[qid] = q
                questions.append(q)
            if r.get("option_id") is not None:
                opt = {"id": int(r["option_id"]), "optionText": r.get("option_text")}
                if show_answers:
                    opt["isCorrect"] = bool(r.get("is_correct"))
                q["Options"].append(opt)
        return jsonify({"success": True, "questions": questions})

    return bp
