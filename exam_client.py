# exam_client.py
# -----------------------------------------------------------------------------
# Python client for the exam service + a runner that drives one timed attempt.
# - ExamApiClient: thin requests wrapper, non-2xx -> ExamApiError
# - ExamRunner: start/restore, answer, 1 Hz countdown, auto-submit at zero
# Outcomes: success | duplicate | expired | error (only error keeps the attempt alive)
# -----------------------------------------------------------------------------

import time
from typing import Any, Callable, Dict, List, Optional

import requests

from exam_session import (
    ACTIVE, FINISHED, SUBMITTING, ExamSession, MemorySessionRepository, SessionRepository,
)


class ExamApiError(Exception):
    def __init__(self, status: int, message: str, code: Optional[str] = None):
        super().__init__(f"{status} {code or ''} {message}".strip())
        self.status = status
        self.message = message
        self.code = code


class ExamApiClient:
    """Talks JSON to the exam service. Cookies (the signed session) live on self.http."""

    def __init__(self, base_url: str, http: Optional[Any] = None, timeout: float = 15.0):
        self.base_url = (base_url or "").rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Any] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if payload is not None:
            kwargs["json"] = payload
        r = self.http.request(method, self.base_url + path, **kwargs)
        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {"data": body}
        if r.status_code >= 400:
            raise ExamApiError(r.status_code, str(body.get("message") or "Request failed"), body.get("error"))
        return body

    # ---- auth ----------------------------------------------------------------
    def signin(self, email: str, password: str, admin: bool = False) -> Dict[str, Any]:
        path = "/api/admin/signin" if admin else "/api/user/signin"
        return self._request("POST", path, {"email": email, "password": password})

    def logout(self, admin: bool = False) -> Dict[str, Any]:
        return self._request("POST", "/api/admin/logout" if admin else "/api/user/logout")

    # ---- exam ----------------------------------------------------------------
    def get_exam(self, exam_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/api/exam/get-exam/{int(exam_id)}").get("data") or {}

    def get_questions(self, exam_id: int) -> List[Dict[str, Any]]:
        return self._request("GET", f"/api/question/get-question/{int(exam_id)}").get("questions") or []

    def start_exam(self, exam_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/api/result/start-exam/{int(exam_id)}")

    def submit_exam(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/result/submit-exam", payload)

    # ---- progress ------------------------------------------------------------
    def load_progress(self, exam_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/api/result/progress/{int(exam_id)}")

    def save_progress(self, exam_id: int, snapshot: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/api/result/progress/{int(exam_id)}", {"snapshot": snapshot})

    def clear_progress(self, exam_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/result/progress/{int(exam_id)}")


def outcome_for_error(err: ExamApiError) -> str:
    if err.code == "already_attempted":
        return "duplicate"
    if err.code == "time_expired":
        return "expired"
    return "error"


class ExamRunner:
    """Drives one attempt: ExamSession for local state, ExamApiClient for the server."""

    def __init__(self, api: ExamApiClient, exam_id: int,
                 repository: Optional[SessionRepository] = None,
                 clock: Callable[[], float] = time.time):
        self.api = api
        self.exam_id = int(exam_id)
        self.repository = repository or MemorySessionRepository()
        self.session = ExamSession(self.exam_id, self.repository, clock=clock)
        self.exam: Dict[str, Any] = {}
        self.questions: List[Dict[str, Any]] = []
        self.last_outcome: Optional[Dict[str, Any]] = None

    # ---- start / restore -----------------------------------------------------
    def start(self) -> str:
        """
        Returns "active", "already_attempted" (server has a result) or
        "already_submitted" (local snapshot says so). Local state is wiped in both latter cases.
        """
        try:
            self.exam = self.api.start_exam(self.exam_id)
        except ExamApiError as e:
            if e.code == "already_attempted":
                self.repository.clear(self.exam_id)
                self.session.state = FINISHED
                return "already_attempted"
            raise
        self.questions = self.api.get_questions(self.exam_id)
        return self.session.open(
            int(self.exam.get("duration") or 0),
            start_time=self.exam.get("startTime"),
            time_left=self.exam.get("timeLeft"),
        )

    # ---- navigation / answers ------------------------------------------------
    @property
    def current_question(self) -> Optional[Dict[str, Any]]:
        idx = self.session.current_question_index
        if 0 <= idx < len(self.questions):
            return self.questions[idx]
        return None

    @property
    def on_last_question(self) -> bool:
        return bool(self.questions) and self.session.current_question_index == len(self.questions) - 1

    def select(self, option_id: int) -> bool:
        q = self.current_question
        if not q:
            return False
        if int(option_id) not in {int(o["id"]) for o in q.get("Options") or []}:
            return False
        return self.session.select_answer(int(q["id"]), int(option_id))

    def next(self) -> bool:
        return self.session.next_question(len(self.questions))

    def previous(self) -> bool:
        return self.session.previous_question(len(self.questions))

    # ---- submit ----------------------------------------------------------------
    def submit(self) -> Optional[Dict[str, Any]]:
        """None when a submit is already running (or the attempt is over)."""
        payload = self.session.begin_submit()
        if payload is None:
            return None
        try:
            body = self.api.submit_exam(payload)
            out = {"outcome": "success", "result": body.get("result"), "message": body.get("message")}
        except ExamApiError as e:
            out = {"outcome": outcome_for_error(e), "result": None, "message": e.message}
        except requests.RequestException as e:
            print(f"[client] submit transport error: {e}")
            out = {"outcome": "error", "result": None, "message": "Submission failed"}
        self.session.finish_submit(out["outcome"])
        self.last_outcome = out
        return out

    def tick(self) -> Optional[Dict[str, Any]]:
        if self.session.tick():
            print("[client] time is up, auto-submitting")
            return self.submit()
        return None

    def run(self, sleep: Callable[[float], None] = time.sleep,
            max_ticks: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """1 Hz countdown; stops as soon as the attempt is finished (timer cancelled)."""
        if self.session.state not in (ACTIVE, SUBMITTING):
            return self.last_outcome
        ticks = 0
        while self.session.state != FINISHED:
            if max_ticks is not None and ticks >= max_ticks:
                break
            sleep(1.0)
            ticks += 1
            self.tick()
        return self.last_outcome
