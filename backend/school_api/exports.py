import io
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from xml.sax.saxutils import escape

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Image as RLImage
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .grading import GPA_POINTS

EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_MEDIA_TYPE = "application/pdf"

LETTER_ORDER = list(GPA_POINTS.keys())


def person_name(doc: Optional[Mapping[str, Any]]) -> str:
    if not doc:
        return "-"
    user = doc.get("user") if isinstance(doc.get("user"), Mapping) else doc
    name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()
    return name or doc.get("id", "-")


def report_subject(kind: str, report: Mapping[str, Any]) -> str:
    if kind == "student":
        return f"Student Report: {person_name(report.get('student'))}"
    if kind == "class":
        class_doc = report.get("class") or {}
        return f"Class Report: {class_doc.get('name', '-')}"
    return f"Teacher Report: {person_name(report.get('teacher'))}"


def _fmt(value: Any, suffix: str = "") -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}{suffix}"
    return f"{value}{suffix}"


def _grade_rows(report: Mapping[str, Any]) -> List[Dict[str, Any]]:
    rows = []
    for grade in report.get("grades") or []:
        subject = grade.get("subject") or {}
        rows.append({
            "Student": person_name(grade.get("student")) if grade.get("student") else None,
            "Subject": subject.get("name") or grade.get("subject_id"),
            "Year": grade.get("academic_year"),
            "Term": grade.get("term"),
            "Percentage": round(grade.get("percentage") or 0.0, 2),
            "Letter": grade.get("letter_grade"),
            "GPA": grade.get("gpa"),
            "Status": grade.get("status"),
        })
    return rows


def _attendance_rows(statistics: Mapping[str, Any]) -> List[Dict[str, Any]]:
    rows = []
    for month, data in (statistics.get("monthly_attendance") or {}).items():
        rows.append({
            "Month": month,
            "Total": data.get("total"),
            "Present": data.get("present"),
            "Absent": data.get("absent"),
            "Late": data.get("late"),
            "Excused": data.get("excused"),
            "Percentage": round(data.get("percentage") or 0.0, 2),
        })
    return rows


def _summary_rows(kind: str, report: Mapping[str, Any]) -> List[List[Any]]:
    statistics = report.get("statistics") or {}
    grade_stats = statistics.get("grades") or {}
    attendance_stats = statistics.get("attendance") or {}
    rows = [
        ["Academic Year", report.get("academic_year")],
        ["Term", report.get("term")],
        ["Graded Subjects", grade_stats.get("total_subjects")],
        ["Average GPA", grade_stats.get("average_gpa")],
        ["Average Percentage", grade_stats.get("average_percentage")],
        ["Attendance Days", attendance_stats.get("total_days")],
        ["Attendance %", attendance_stats.get("attendance_percentage")],
    ]
    if kind == "class":
        rows.extend([
            ["Students", statistics.get("total_students")],
            ["Class Average GPA", statistics.get("class_average_gpa")],
            ["Class Average Attendance %", statistics.get("class_average_attendance")],
        ])
    if kind == "teacher":
        rows.extend([
            ["Grades Recorded", statistics.get("total_grades")],
            ["Attendance Records", statistics.get("total_attendance_records")],
        ])
    return rows


def create_letter_distribution_chart(distribution: Mapping[str, int]) -> io.BytesIO:
    letters = [letter for letter in LETTER_ORDER if letter in distribution]
    counts = [distribution[letter] for letter in letters]
    fig, ax = plt.subplots(figsize=(5.4, 3.2))
    if letters:
        ax.bar(letters, counts, color="#1e3a8a")
    else:
        ax.text(0.5, 0.5, "No grades", ha="center", va="center", transform=ax.transAxes)
    ax.set_ylabel("Grades")
    ax.set_xlabel("Letter grade")
    ax.tick_params(axis="both", labelsize=8)
    plt.tight_layout()
    buffer = io.BytesIO()
    plt.savefig(buffer, format="png", dpi=150)
    plt.close(fig)
    buffer.seek(0)
    return buffer


def create_monthly_attendance_chart(monthly: Mapping[str, Mapping[str, Any]]) -> io.BytesIO:
    months = list(monthly.keys())
    percentages = [monthly[month].get("percentage") or 0.0 for month in months]
    fig, ax = plt.subplots(figsize=(5.4, 3.2))
    ax.plot(months, percentages, marker="o", color="#0f766e")
    ax.set_ylim(0, 100)
    ax.set_ylabel("Attendance %")
    ax.tick_params(axis="x", labelsize=8, rotation=20)
    ax.tick_params(axis="y", labelsize=8)
    plt.tight_layout()
    buffer = io.BytesIO()
    plt.savefig(buffer, format="png", dpi=150)
    plt.close(fig)
    buffer.seek(0)
    return buffer


def generate_report_pdf(report: Mapping[str, Any], kind: str) -> bytes:
    buffer = io.BytesIO()
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        name="ReportTitle",
        parent=styles["Title"],
        fontSize=18,
        textColor=colors.HexColor("#0f172a"),
        spaceAfter=6,
    )
    section_style = ParagraphStyle(
        name="SectionHeading",
        parent=styles["Heading2"],
        fontSize=12,
        textColor=colors.HexColor("#0f766e"),
        spaceBefore=6,
        spaceAfter=6,
    )
    cell_style = ParagraphStyle(name="TableBodyCell", parent=styles["Normal"], fontSize=8, leading=10)

    def _styled_table(data: List[List[Any]], col_widths: Optional[List[int]] = None) -> Table:
        rows = [[Paragraph(escape(_fmt(cell)), cell_style) for cell in row] for row in data]
        tbl = Table(rows, colWidths=col_widths, repeatRows=1, hAlign="LEFT")
        tbl.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e2e8f0")),
                    ("GRID", (0, 0), (-1, -1), 0.4, colors.HexColor("#9ca3af")),
                    ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f8fafc")]),
                    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ]
            )
        )
        return tbl

    statistics = report.get("statistics") or {}
    grade_stats = statistics.get("grades") or {}
    attendance_stats = statistics.get("attendance") or {}

    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=28, rightMargin=28, topMargin=28, bottomMargin=28)
    elements: List[Any] = [
        Paragraph(escape(report_subject(kind, report)), title_style),
        Paragraph(f"Generated on {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M')} UTC", styles["Normal"]),
        Spacer(1, 10),
        _styled_table([["Metric", "Value"]] + _summary_rows(kind, report), col_widths=[210, 320]),
        Spacer(1, 10),
    ]

    chart_table = Table(
        [[
            RLImage(create_letter_distribution_chart(grade_stats.get("letter_grade_distribution") or {}), width=250, height=150),
            RLImage(create_monthly_attendance_chart(attendance_stats.get("monthly_attendance") or {}), width=250, height=150),
        ]],
        colWidths=[260, 270],
        hAlign="LEFT",
    )
    elements.append(chart_table)

    elements.append(Paragraph("Grades", section_style))
    grade_rows = _grade_rows(report)
    header = ["Subject", "Year", "Term", "%", "Letter", "GPA"]
    grade_table = [header] + [
        [row["Subject"], row["Year"], row["Term"], row["Percentage"], row["Letter"], row["GPA"]] for row in grade_rows
    ]
    if len(grade_table) == 1:
        grade_table.append(["-"] * len(header))
    elements.append(_styled_table(grade_table, col_widths=[150, 80, 70, 70, 70, 70]))

    elements.append(Paragraph("Monthly Attendance", section_style))
    attendance_rows = _attendance_rows(attendance_stats)
    attendance_header = ["Month", "Total", "Present", "Absent", "Late", "Excused", "%"]
    attendance_table = [attendance_header] + [list(row.values()) for row in attendance_rows]
    if len(attendance_table) == 1:
        attendance_table.append(["-"] * len(attendance_header))
    elements.append(_styled_table(attendance_table))

    if kind == "class":
        elements.append(Paragraph("Students", section_style))
        students = {s["id"]: s for s in (report.get("class") or {}).get("students") or []}
        student_table = [["Student", "Average GPA", "Attendance %", "Grades", "Attendance Records"]]
        for student_id, stats in (statistics.get("student_stats") or {}).items():
            student_table.append([
                person_name(students.get(student_id) or {"id": student_id}),
                stats.get("average_gpa"),
                stats.get("attendance_percentage"),
                stats.get("total_grades"),
                stats.get("total_attendance"),
            ])
        elements.append(_styled_table(student_table))

    doc.build(elements)
    pdf_value = buffer.getvalue()
    buffer.close()
    return pdf_value


def generate_report_excel(report: Mapping[str, Any], kind: str) -> bytes:
    buffer = io.BytesIO()
    statistics = report.get("statistics") or {}
    summary_df = pd.DataFrame(_summary_rows(kind, report), columns=["Metric", "Value"])
    grades_df = pd.DataFrame(_grade_rows(report))
    attendance_df = pd.DataFrame(_attendance_rows(statistics.get("attendance") or {}))
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        summary_df.to_excel(writer, sheet_name="Summary", index=False)
        grades_df.to_excel(writer, sheet_name="Grades", index=False)
        attendance_df.to_excel(writer, sheet_name="Attendance", index=False)
        if kind == "class":
            students_df = pd.DataFrame([
                {"Student ID": student_id, **stats}
                for student_id, stats in (statistics.get("student_stats") or {}).items()
            ])
            students_df.to_excel(writer, sheet_name="Students", index=False)
        if kind == "teacher":
            subjects_df = pd.DataFrame([
                {
                    "Subject": (stats.get("subject") or {}).get("name"),
                    "Grades": stats.get("total_grades"),
                    "Average %": stats.get("average_grade"),
                    "Attendance Records": stats.get("total_attendance"),
                }
                for stats in (statistics.get("subject_stats") or {}).values()
            ])
            subjects_df.to_excel(writer, sheet_name="Subjects", index=False)
    buffer.seek(0)
    return buffer.getvalue()
