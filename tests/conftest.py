import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from flask import Flask, g, session

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from admin import create_admin_blueprint  # noqa: E402
from auth import create_auth_blueprint  # noqa: E402
from exam import create_exam_blueprint  # noqa: E402


T0 = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, current=T0):
        self.current = current

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


class FakeDB:
    """Just enough of the exam tables to run the blueprints' SQL in memory."""

    def __init__(self):
        self.users = {}
        self.exams = {}
        self.questions = {}
        self.options = {}
        self.results = {}
        self.attempts = {}
        self.progress = {}
        self.executed = []
        self.fail_result_insert = 0
        self.before_result_insert = None
        self._lock = threading.Lock()
        self._ids = {"users": 0, "exams": 0, "questions": 0, "options": 0, "results": 0}

    # ---- seeding helpers ----
    def _next_id(self, table):
        self._ids[table] += 1
        return self._ids[table]

    def add_exam(self, exam_id=None, title="Python basics", duration=30, total_marks=15, is_active=True):
        exam_id = exam_id or self._next_id("exams")
        self._ids["exams"] = max(self._ids["exams"], exam_id)
        self.exams[exam_id] = {
            "id": exam_id, "title": title, "description": None,
            "duration": duration, "total_marks": total_marks, "is_active": is_active,
        }
        return exam_id

    def add_question(self, exam_id, question_id, marks, options, text="Q", q_type="MCQ"):
        """options: [(option_id, is_correct), ...]"""
        self.questions[question_id] = {
            "id": question_id, "exam_id": exam_id, "question_text": text, "type": q_type, "marks": marks,
        }
        self._ids["questions"] = max(self._ids["questions"], question_id)
        for oid, correct in options:
            self.options[oid] = {"id": oid, "question_id": question_id,
                                 "option_text": f"option {oid}", "is_correct": correct}
            self._ids["options"] = max(self._ids["options"], oid)

    def deps(self, now=None):
        d = {
            "fetch_one": self.fetch_one,
            "fetch_all": self.fetch_all,
            "execute": self.execute,
            "execute_returning": self.execute_returning,
        }
        if now is not None:
            d["now"] = now
        return d

    # ---- query surface ----
    def fetch_one(self, sql, params=()):
        sql = " ".join(sql.split())
        if "FROM public.exams" in sql:
            return self.exams.get(params[0])
        if "FROM public.results" in sql:
            row = self.results.get((params[0], params[1]))
            return {"id": row["id"]} if row else None
        if "FROM public.exam_attempts" in sql:
            started = self.attempts.get((params[0], params[1]))
            return {"started_at": started} if started else None
        if "FROM public.exam_progress" in sql:
            snap = self.progress.get((params[0], params[1]))
            return {"snapshot": snap} if snap is not None else None
        if "FROM public.users" in sql:
            for u in self.users.values():
                if u["email"].lower() == params[0]:
                    return dict(u)
            return None
        return None

    def fetch_all(self, sql, params=()):
        sql = " ".join(sql.split())
        if "FROM public.questions q" in sql and "q.id = ANY" in sql:
            exam_id, ids = params
            rows = []
            for qid in sorted(ids):
                q = self.questions.get(qid)
                if not q or q["exam_id"] != exam_id:
                    continue
                opts = sorted((o for o in self.options.values() if o["question_id"] == qid), key=lambda o: o["id"])
                for o in opts or [None]:
                    rows.append({
                        "question_id": qid, "marks": q["marks"],
                        "option_id": o["id"] if o else None,
                        "is_correct": o["is_correct"] if o else None,
                    })
            return rows
        if "FROM public.questions q" in sql:
            exam_id = params[0]
            rows = []
            for q in sorted(self.questions.values(), key=lambda q: q["id"]):
                if q["exam_id"] != exam_id:
                    continue
                for o in sorted((o for o in self.options.values() if o["question_id"] == q["id"]),
                                key=lambda o: o["id"]):
                    rows.append({
                        "question_id": q["id"], "exam_id": exam_id, "question_text": q["question_text"],
                        "type": q["type"], "marks": q["marks"], "option_id": o["id"],
                        "option_text": o["option_text"], "is_correct": o["is_correct"],
                    })
            return rows
        if "FROM public.exams WHERE id = ANY" in sql:
            return [{"id": i} for i in params[0] if i in self.exams]
        if "FROM public.exams" in sql:
            return [self.exams[k] for k in sorted(self.exams)]
        return []

    def execute(self, sql, params=()):
        sql = " ".join(sql.split())
        self.executed.append((sql, params))
        if "DELETE FROM public.exam_progress" in sql:
            self.progress.pop((params[0], params[1]), None)
        elif "INSERT INTO public.exam_progress" in sql:
            self.progress[(params[0], params[1])] = params[2]

    def execute_returning(self, sql, params=()):
        sql = " ".join(sql.split())
        self.executed.append((sql, params))
        if "INSERT INTO public.results" in sql:
            if self.before_result_insert:
                self.before_result_insert()
            if self.fail_result_insert:
                self.fail_result_insert -= 1
                raise RuntimeError("connection reset")
            exam_id, user_id, score, total = params
            with self._lock:
                if (exam_id, user_id) in self.results:
                    return []
                rid = self._next_id("results")
                self.results[(exam_id, user_id)] = {"id": rid, "score": score, "total_marks": total}
            return [{"id": rid}]
        if "INSERT INTO public.exam_attempts" in sql:
            exam_id, user_id, started = params
            with self._lock:
                if (exam_id, user_id) in self.attempts:
                    return []
                self.attempts[(exam_id, user_id)] = started
            return [{"started_at": started}]
        if "INSERT INTO public.users" in sql:
            name, email, phone, pw_hash = params
            if any(u["email"] == email for u in self.users.values()):
                return []
            uid = self._next_id("users")
            self.users[uid] = {"id": uid, "name": name, "email": email,
                               "phone_number": phone, "password_hash": pw_hash}
            return [{"id": uid}]
        if "INSERT INTO public.exams" in sql:
            title, description, duration, total_marks = params
            exam_id = self.add_exam(title=title, duration=duration, total_marks=total_marks)
            self.exams[exam_id]["description"] = description
            return [dict(self.exams[exam_id])]
        if "UPDATE public.exams SET is_active = FALSE" in sql:
            exam = self.exams.get(params[0])
            if not exam:
                return []
            exam["is_active"] = False
            return [dict(exam)]
        if "INSERT INTO public.questions" in sql:
            exam_id, text, q_type, marks, texts, corrects = params
            qid = self._next_id("questions")
            self.questions[qid] = {"id": qid, "exam_id": exam_id, "question_text": text,
                                   "type": q_type, "marks": marks}
            rows = []
            for t, c in zip(texts, corrects):
                oid = self._next_id("options")
                self.options[oid] = {"id": oid, "question_id": qid, "option_text": t, "is_correct": c}
                rows.append({"question_id": qid})
            return rows
        return []


def make_app(db, user=None, now=None):
    """
    Flask app with every blueprint wired to the FakeDB.
    user: {"id", "role", "email"} pinned identity; None reads session["user"] like main.py.
    """
    app = Flask(__name__)
    app.testing = True
    app.secret_key = "test-secret"
    deps = db.deps(now=now)
    app.register_blueprint(create_auth_blueprint("", deps))
    app.register_blueprint(create_admin_blueprint("", deps))
    app.register_blueprint(create_exam_blueprint("", deps))

    @app.before_request
    def _set_user():
        ident = user if user is not None else session.get("user")
        if ident:
            g.user_id = ident.get("id")
            g.user_role = ident.get("role")
            g.user_email = ident.get("email")

    return app


@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_exam(db):
    """Exam 1, 30 minutes: Q1 5 marks (101 correct), Q2 10 marks (205 correct)."""
    db.add_exam(exam_id=1, duration=30, total_marks=15)
    db.add_question(1, 1, 5, [(101, True), (102, False)])
    db.add_question(1, 2, 10, [(205, True), (206, False), (207, False)])
    return 1


def iso(dt):
    return dt.isoformat().replace("+00:00", "Z")