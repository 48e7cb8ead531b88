"""
exam_session.py: client-side exam session store.

Keeps an in-progress attempt alive across reloads: current question, selected
options and remaining time are persisted per exam through a SessionRepository.
Persisted layout (one record per exam, plus a separate start-time marker):

    exam-<id>            {currentQuestionIndex, answers, timeLeft, isSubmitted,
                          timestamp, examStartTime}
    exam-<id>-startTime  ISO-8601 start time

Both records are removed together on terminal outcomes.
"""

import json
import os
import tempfile
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from exam_clock import format_timestamp, utcnow

UNINITIALIZED = "uninitialized"
ACTIVE = "active"
SUBMITTING = "submitting"
FINISHED = "finished"

# submit outcomes that end the attempt locally
TERMINAL_OUTCOMES = ("success", "duplicate", "expired")


class SessionSnapshot(BaseModel):
    """One saved exam session, serialized with the camelCase keys the API uses."""

    model_config = ConfigDict(populate_by_name=True)

    current_question_index: int = Field(default=0, ge=0, alias="currentQuestionIndex")
    answers: Dict[int, int] = Field(default_factory=dict)
    time_left: int = Field(default=0, ge=0, alias="timeLeft")
    is_submitted: bool = Field(default=False, alias="isSubmitted")
    timestamp: float = Field(default_factory=time.time, description="save time, unix seconds")
    exam_start_time: Optional[str] = Field(default=None, alias="examStartTime")


def storage_key(exam_id: int) -> str:
    return f"exam-{exam_id}"


def start_time_key(exam_id: int) -> str:
    return f"exam-{exam_id}-startTime"


def _parse_snapshot(raw: Any) -> Optional[SessionSnapshot]:
    if raw is None:
        return None
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        return SessionSnapshot.model_validate(raw)
    except (ValueError, ValidationError) as e:
        print(f"[session] discarding unreadable snapshot: {e}")
        return None


# =============================================================================
# Repositories
# =============================================================================
class SessionRepository:
    """Where a session lives between reloads. Swap implementations without touching ExamSession."""

    def load(self, exam_id: int) -> Optional[SessionSnapshot]:
        raise NotImplementedError

    def save(self, exam_id: int, snapshot: SessionSnapshot) -> None:
        raise NotImplementedError

    def clear(self, exam_id: int) -> None:
        raise NotImplementedError

    def load_start_time(self, exam_id: int) -> Optional[str]:
        raise NotImplementedError

    def save_start_time(self, exam_id: int, value: str) -> None:
        raise NotImplementedError


class MemorySessionRepository(SessionRepository):
    def __init__(self):
        self.items: Dict[str, str] = {}

    def load(self, exam_id):
        return _parse_snapshot(self.items.get(storage_key(exam_id)))

    def save(self, exam_id, snapshot):
        self.items[storage_key(exam_id)] = snapshot.model_dump_json(by_alias=True)

    def clear(self, exam_id):
        self.items.pop(storage_key(exam_id), None)
        self.items.pop(start_time_key(exam_id), None)

    def load_start_time(self, exam_id):
        return self.items.get(start_time_key(exam_id))

    def save_start_time(self, exam_id, value):
        self.items[start_time_key(exam_id)] = value


class FileSessionRepository(SessionRepository):
    """Key/value JSON file, the desktop stand-in for browser local storage."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return data if isinstance(data, dict) else {}
        except FileNotFoundError:
            return {}
        except ValueError as e:
            print(f"[session] ignoring corrupt store '{self.path}': {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        folder = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(folder, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=folder, prefix=".exam-store-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self.path)
        except Exception:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def load(self, exam_id):
        with self._lock:
            return _parse_snapshot(self._read().get(storage_key(exam_id)))

    def save(self, exam_id, snapshot):
        with self._lock:
            data = self._read()
            data[storage_key(exam_id)] = json.loads(snapshot.model_dump_json(by_alias=True))
            self._write(data)

    def clear(self, exam_id):
        with self._lock:
            data = self._read()
            data.pop(storage_key(exam_id), None)
            data.pop(start_time_key(exam_id), None)
            self._write(data)

    def load_start_time(self, exam_id):
        with self._lock:
            return self._read().get(start_time_key(exam_id))

    def save_start_time(self, exam_id, value):
        with self._lock:
            data = self._read()
            data[start_time_key(exam_id)] = value
            self._write(data)


class ServerSessionRepository(SessionRepository):
    """
    Snapshots stored by the exam service (PUT/GET/DELETE /api/result/progress/<id>).
    The start time is whatever the server stamped; save_start_time only caches it locally.
    """

    def __init__(self, api):
        self.api = api
        self._start_times: Dict[int, str] = {}

    def load(self, exam_id):
        body = self.api.load_progress(exam_id)
        if body.get("startTime"):
            self._start_times[exam_id] = body["startTime"]
        return _parse_snapshot(body.get("snapshot"))

    def save(self, exam_id, snapshot):
        self.api.save_progress(exam_id, json.loads(snapshot.model_dump_json(by_alias=True)))

    def clear(self, exam_id):
        self._start_times.pop(exam_id, None)
        self.api.clear_progress(exam_id)

    def load_start_time(self, exam_id):
        return self._start_times.get(exam_id)

    def save_start_time(self, exam_id, value):
        self._start_times[exam_id] = value


# =============================================================================
# Session state machine
# =============================================================================
class ExamSession:
    """
    uninitialized -> active -> submitting -> finished
                       ^           |
                       +-- error --+

    clock returns unix seconds; it drives elapsed-time math on restore.
    """

    def __init__(self, exam_id: int, repository: SessionRepository,
                 clock: Callable[[], float] = time.time):
        self.exam_id = int(exam_id)
        self.repository = repository
        self.clock = clock
        self.state = UNINITIALIZED
        self.duration = 0
        self.current_question_index = 0
        self.answers: Dict[int, int] = {}
        self.time_left = 0
        self.start_time: Optional[str] = None
        self._lock = threading.RLock()

    # ---- lifecycle ----------------------------------------------------------
    def open(self, duration_minutes: int, start_time: Optional[str] = None,
             time_left: Optional[int] = None) -> str:
        """
        Initialize or restore. Returns ACTIVE, or "already_submitted" when the saved
        snapshot says the attempt is over (local state is wiped in that case).
        start_time / time_left are the server's view and cap what is restored.
        """
        with self._lock:
            self.duration = int(duration_minutes)
            saved = self.repository.load(self.exam_id)

            if saved is not None and saved.is_submitted:
                self.repository.clear(self.exam_id)
                self.state = FINISHED
                return "already_submitted"

            if saved is not None:
                elapsed = max(0, int(self.clock() - saved.timestamp))
                self.time_left = max(0, saved.time_left - elapsed)
                self.current_question_index = saved.current_question_index
                self.answers = dict(saved.answers)
                self.start_time = (start_time
                                   or self.repository.load_start_time(self.exam_id)
                                   or saved.exam_start_time)
            else:
                self.time_left = self.duration * 60
                self.current_question_index = 0
                self.answers = {}
                self.start_time = (start_time
                                   or self.repository.load_start_time(self.exam_id)
                                   or format_timestamp(utcnow()))

            if time_left is not None:
                self.time_left = max(0, min(self.time_left, int(time_left)))
            if not self.start_time:
                self.start_time = format_timestamp(utcnow())

            self.repository.save_start_time(self.exam_id, self.start_time)
            self.state = ACTIVE
            self._persist()
            return ACTIVE

    def tick(self) -> bool:
        """One second passes. True means time is up and the caller should auto-submit."""
        with self._lock:
            if self.state != ACTIVE:
                return False
            if self.time_left <= 1:
                self.time_left = 0
                self._persist()
                return True
            self.time_left -= 1
            self._persist()
            return False

    # ---- edits --------------------------------------------------------------
    def can_edit(self) -> bool:
        return self.state == ACTIVE and self.time_left > 0

    def select_answer(self, question_id: int, option_id: int) -> bool:
        with self._lock:
            if not self.can_edit():
                return False
            self.answers[int(question_id)] = int(option_id)
            self._persist()
            return True

    def move_to(self, index: int, question_count: int) -> bool:
        with self._lock:
            if not self.can_edit() or not (0 <= index < question_count):
                return False
            self.current_question_index = index
            self._persist()
            return True

    def next_question(self, question_count: int) -> bool:
        return self.move_to(self.current_question_index + 1, question_count)

    def previous_question(self, question_count: int) -> bool:
        return self.move_to(self.current_question_index - 1, question_count)

    # ---- submission ---------------------------------------------------------
    def submission_payload(self) -> Dict[str, Any]:
        answers: List[Dict[str, int]] = [
            {"questionId": qid, "selectedOptionId": oid} for qid, oid in self.answers.items()
        ]
        return {
            "examId": self.exam_id,
            "answers": answers,
            "startTime": self.start_time,
            "duration": self.duration,
        }

    def begin_submit(self) -> Optional[Dict[str, Any]]:
        """Returns the payload once; None while a submit is in flight or after the attempt ended."""
        with self._lock:
            if self.state != ACTIVE:
                return None
            self.state = SUBMITTING
            return self.submission_payload()

    def finish_submit(self, outcome: str) -> None:
        with self._lock:
            if self.state != SUBMITTING:
                return
            if outcome in TERMINAL_OUTCOMES:
                self.state = FINISHED
                try:
                    self.repository.clear(self.exam_id)
                except Exception as e:
                    print(f"[session] clear failed for exam {self.exam_id}: {e}")
            else:
                # transient failure: let the user try again
                self.state = ACTIVE

    # ---- persistence --------------------------------------------------------
    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            current_question_index=self.current_question_index,
            answers=dict(self.answers),
            time_left=self.time_left,
            is_submitted=False,
            timestamp=self.clock(),
            exam_start_time=self.start_time,
        )

    def _persist(self) -> None:
        try:
            self.repository.save(self.exam_id, self.snapshot())
        except Exception as e:
            print(f"[session] save failed for exam {self.exam_id}: {e}")
