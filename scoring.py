# scoring.py
# -----------------------------------------------------------------------------
# Answer scoring for single-select exams (MCQ / TRUE_FALSE).
# - Pure functions: callers load questions + options, we only add up marks
# - Unknown question ids are skipped (neither score nor total)
# - A question id answered twice only counts once (first answer wins)
# -----------------------------------------------------------------------------

from typing import Any, Dict, Iterable, List, Optional, Tuple

QUESTION_TYPES = ("MCQ", "TRUE_FALSE")


def _as_int(v: Any) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def correct_option_id(question: Dict[str, Any]) -> Optional[int]:
    for opt in question.get("options") or []:
        if opt.get("is_correct"):
            return _as_int(opt.get("id"))
    return None


def score_answers(answers: Iterable[Dict[str, Any]],
                  questions: Dict[int, Dict[str, Any]]) -> Tuple[int, int]:
    """
    Returns (score, total_marks) for one attempt.

    answers:   [{"questionId": 1, "selectedOptionId": 101}, ...]
    questions: {question_id: {"marks": int, "options": [{"id": int, "is_correct": bool}]}}
    """
    score, total_marks = 0, 0
    seen = set()
    for ans in answers:
        qid = _as_int((ans or {}).get("questionId"))
        if qid is None or qid in seen:
            continue
        q = questions.get(qid)
        if not q:
            continue
        seen.add(qid)
        marks = int(q.get("marks") or 0)
        total_marks += marks
        correct_id = correct_option_id(q)
        if correct_id is not None and _as_int(ans.get("selectedOptionId")) == correct_id:
            score += marks
    return score, total_marks


def format_percentage(score: float, total_marks: float) -> str:
    # Nothing scoreable was submitted -> report 0 instead of dividing by zero
    if not total_marks:
        return "0.00"
    return f"{round(float(score) / float(total_marks) * 100.0, 2):.2f}"


def result_summary(score: int, total_marks: int) -> Dict[str, Any]:
    return {
        "score": score,
        "totalMarks": total_marks,
        "percentage": format_percentage(score, total_marks),
    }


def group_question_rows(rows: List[Dict[str, Any]]) -> Dict[int, Dict[str, Any]]:
    """Folds joined question/option rows (one row per option) into the scorer's lookup."""
    out: Dict[int, Dict[str, Any]] = {}
    for r in rows or []:
        qid = int(r["question_id"])
        q = out.setdefault(qid, {"marks": int(r.get("marks") or 0), "options": []})
        if r.get("option_id") is not None:
            q["options"].append({"id": int(r["option_id"]), "is_correct": bool(r.get("is_correct"))})
    return out


def validate_question_options(q_type: str, options: List[Dict[str, Any]]) -> List[str]:
    """Authoring-time invariant: single-select questions carry exactly one correct option."""
    errs: List[str] = []
    if q_type not in QUESTION_TYPES:
        errs.append(f"type must be one of {', '.join(QUESTION_TYPES)}")
        return errs
    if len(options) < 2:
        errs.append("at least two options are required")
    if q_type == "TRUE_FALSE" and len(options) != 2:
        errs.append("TRUE_FALSE questions need exactly two options")
    n_correct = sum(1 for o in options if o.get("isCorrect"))
    if n_correct != 1:
        errs.append(f"exactly one option must be correct (got {n_correct})")
    for i, o in enumerate(options, start=1):
        if not str(o.get("text") or "").strip():
            errs.append(f"option {i}: text is required")
    return errs
