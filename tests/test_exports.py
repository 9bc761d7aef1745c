import io

import pandas as pd
import pytest

from school_api.exports import (
    create_letter_distribution_chart,
    generate_report_excel,
    generate_report_pdf,
    person_name,
    report_subject,
)
from school_api.reports import ReportFilter, build_class_report, build_student_report, build_teacher_report

NOW = "2025-01-10T00:00:00+00:00"

GRADES = [
    {
        "student_id": "s1",
        "student": {"id": "s1", "user": {"first_name": "Sam", "last_name": "Tester"}},
        "subject_id": "math",
        "subject": {"id": "math", "name": "Mathematics", "code": "MATH9"},
        "academic_year": "2024-2025",
        "term": "first",
        "percentage": 90.3333,
        "letter_grade": "A-",
        "gpa": 3.7,
        "status": "published",
    },
]
ATTENDANCE = [
    {"student_id": "s1", "status": "present", "date": "2024-10-01", "subject_id": "math"},
    {"student_id": "s1", "status": "absent", "date": "2024-11-04", "subject_id": "math"},
]


@pytest.fixture
def class_report():
    class_doc = {
        "id": "class-9a",
        "name": "9A",
        "student_ids": ["s1", "s2"],
        "students": [{"id": "s1", "user": {"first_name": "Sam", "last_name": "Tester"}}],
    }
    return build_class_report(class_doc, GRADES, ATTENDANCE, ReportFilter(), now=NOW)


def test_person_name():
    assert person_name({"id": "s1", "user": {"first_name": "Sam", "last_name": "Tester"}}) == "Sam Tester"
    assert person_name({"first_name": "Pat", "last_name": ""}) == "Pat"
    assert person_name({"id": "s2"}) == "s2"
    assert person_name(None) == "-"


def test_report_subject():
    assert report_subject("class", {"class": {"name": "9A"}}) == "Class Report: 9A"
    assert report_subject("teacher", {"teacher": {"user": {"first_name": "Tess", "last_name": "T"}}}) == "Teacher Report: Tess T"


def test_chart_is_png():
    assert create_letter_distribution_chart({"A": 2, "F": 1}).getvalue().startswith(b"\x89PNG")
    assert create_letter_distribution_chart({}).getvalue().startswith(b"\x89PNG")


def test_class_report_pdf(class_report):
    content = generate_report_pdf(class_report, "class")

    assert content.startswith(b"%PDF")


def test_empty_student_report_pdf():
    report = build_student_report({"id": "s1"}, [], [], ReportFilter(), now=NOW)

    assert generate_report_pdf(report, "student").startswith(b"%PDF")


def test_class_report_excel_sheets(class_report):
    content = generate_report_excel(class_report, "class")

    assert content.startswith(b"PK")
    workbook = pd.ExcelFile(io.BytesIO(content))
    assert workbook.sheet_names == ["Summary", "Grades", "Attendance", "Students"]
    grades = pd.read_excel(workbook, sheet_name="Grades")
    assert list(grades["Subject"]) == ["Mathematics"]
    assert list(grades["Letter"]) == ["A-"]
    students = pd.read_excel(workbook, sheet_name="Students")
    assert list(students["Student ID"]) == ["s1", "s2"]


def test_teacher_report_excel_has_subject_sheet():
    report = build_teacher_report(
        {"id": "t1"}, [{"id": "math", "name": "Mathematics"}], GRADES, ATTENDANCE, ReportFilter(), now=NOW
    )

    workbook = pd.ExcelFile(io.BytesIO(generate_report_excel(report, "teacher")))

    assert "Subjects" in workbook.sheet_names
    subjects = pd.read_excel(workbook, sheet_name="Subjects")
    assert subjects.loc[0, "Attendance Records"] == 2
