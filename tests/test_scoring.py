import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scoring import (  # noqa: E402
    format_percentage,
    group_question_rows,
    result_summary,
    score_answers,
    validate_question_options,
)


QUESTIONS = {
    1: {"marks": 5, "options": [{"id": 101, "is_correct": True}, {"id": 102, "is_correct": False}]},
    2: {"marks": 10, "options": [{"id": 205, "is_correct": True}, {"id": 206, "is_correct": False}]},
}


def test_one_right_one_wrong():
    answers = [{"questionId": 1, "selectedOptionId": 101}, {"questionId": 2, "selectedOptionId": 999}]
    score, total = score_answers(answers, QUESTIONS)
    assert (score, total) == (5, 15)
    assert result_summary(score, total) == {"score": 5, "totalMarks": 15, "percentage": "33.33"}


def test_unknown_questions_count_for_nothing():
    answers = [{"questionId": 1, "selectedOptionId": 101}, {"questionId": 42, "selectedOptionId": 1}]
    assert score_answers(answers, QUESTIONS) == (5, 5)


def test_repeated_question_is_scored_once():
    answers = [
        {"questionId": 2, "selectedOptionId": 205},
        {"questionId": 2, "selectedOptionId": 205},
        {"questionId": 2, "selectedOptionId": 206},
    ]
    assert score_answers(answers, QUESTIONS) == (10, 10)


def test_first_answer_for_a_question_wins():
    answers = [{"questionId": 2, "selectedOptionId": 206}, {"questionId": 2, "selectedOptionId": 205}]
    assert score_answers(answers, QUESTIONS) == (0, 10)


def test_score_never_exceeds_total():
    answers = [{"questionId": q, "selectedOptionId": o} for q, o in [(1, 101), (2, 205), (1, 101), (9, 9)]]
    score, total = score_answers(answers, QUESTIONS)
    assert score <= total
    assert format_percentage(score, total) == "100.00"


def test_empty_submission_reports_zero_percent():
    assert score_answers([], QUESTIONS) == (0, 0)
    assert format_percentage(0, 0) == "0.00"
    assert result_summary(0, 0)["percentage"] == "0.00"


@pytest.mark.parametrize("score,total,expected", [
    (1, 3, "33.33"),
    (2, 3, "66.67"),
    (7, 8, "87.50"),
    (0, 15, "0.00"),
])
def test_percentage_has_two_decimals(score, total, expected):
    assert format_percentage(score, total) == expected


def test_question_without_correct_option_scores_zero():
    questions = {3: {"marks": 4, "options": [{"id": 1, "is_correct": False}]}}
    assert score_answers([{"questionId": 3, "selectedOptionId": 1}], questions) == (0, 4)


def test_group_question_rows_folds_options():
    rows = [
        {"question_id": 1, "marks": 5, "option_id": 101, "is_correct": True},
        {"question_id": 1, "marks": 5, "option_id": 102, "is_correct": False},
        {"question_id": 2, "marks": 3, "option_id": None, "is_correct": None},
    ]
    grouped = group_question_rows(rows)
    assert grouped[1]["marks"] == 5
    assert [o["id"] for o in grouped[1]["options"]] == [101, 102]
    assert grouped[2] == {"marks": 3, "options": []}


def test_validate_accepts_single_correct_mcq():
    opts = [{"text": "a", "isCorrect": False}, {"text": "b", "isCorrect": True}, {"text": "c"}]
    assert validate_question_options("MCQ", opts) == []


def test_validate_rejects_two_correct_options():
    opts = [{"text": "a", "isCorrect": True}, {"text": "b", "isCorrect": True}]
    errs = validate_question_options("MCQ", opts)
    assert any("exactly one option must be correct" in e for e in errs)


def test_validate_true_false_needs_two_options():
    opts = [{"text": "True", "isCorrect": True}, {"text": "False"}, {"text": "Maybe"}]
    errs = validate_question_options("TRUE_FALSE", opts)
    assert "TRUE_FALSE questions need exactly two options" in errs


def test_validate_rejects_unknown_type_and_blank_text():
    assert validate_question_options("ESSAY", [])[0].startswith("type must be one of")
    errs = validate_question_options("MCQ", [{"text": " ", "isCorrect": True}, {"text": "x"}])
    assert "option 1: text is required" in errs
