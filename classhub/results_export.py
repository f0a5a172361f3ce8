"""Grade statistics, filtering and CSV export for assignment evaluation results."""

import csv
import io
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

EVALUATION_COLUMNS = ["Student Name", "Total Marks", "Obtained Marks", "Percentage", "Grade", "Evaluation Date"]
AI_RESULT_COLUMNS = [
    "Student Name",
    "Grade",
    "Percentage",
    "Total Marks",
    "Obtained Marks",
    "Evaluation Type",
    "Timestamp",
]


def format_timestamp(ts: Optional[str]) -> str:
    """Format an ISO timestamp as ``YYYY-MM-DD HH:MM:SS``; unparsable values pass through."""
    try:
        dt = datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, TypeError):
        return ts or ""


def _percentage(row: Dict[str, Any]) -> float:
    try:
        return float(row.get("percentage") or 0)
    except (TypeError, ValueError):
        return 0.0


def compute_stats(rows: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    rows = list(rows)
    if not rows:
        return {"total": 0, "average": 0.0, "highest": 0.0, "lowest": 0.0, "grade_distribution": {}}
    scores = [_percentage(r) for r in rows]
    distribution: Dict[str, int] = {}
    for r in rows:
        grade = str(r.get("grade") or "")
        distribution[grade] = distribution.get(grade, 0) + 1
    return {
        "total": len(rows),
        "average": sum(scores) / len(scores),
        "highest": max(scores),
        "lowest": min(scores),
        "grade_distribution": distribution,
    }


def filter_results(
    rows: Iterable[Dict[str, Any]],
    search: Optional[str] = None,
    grade: Optional[str] = None,
    evaluation_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Filter by student name substring (case-insensitive), grade and evaluation type.

    Empty values and ``"all"`` disable a filter.
    """
    needle = (search or "").strip().lower()
    want_grade = None if (grade or "all") == "all" else grade
    want_type = None if (evaluation_type or "all") == "all" else evaluation_type
    out = []
    for r in rows:
        if needle and needle not in str(r.get("student_name") or "").lower():
            continue
        if want_grade and r.get("grade") != want_grade:
            continue
        if want_type and r.get("evaluation_type") != want_type:
            continue
        out.append(r)
    return out


def _write_csv(header: List[str], records: Iterable[List[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(records)
    return buf.getvalue()


def evaluations_to_csv(rows: Iterable[Dict[str, Any]]) -> str:
    return _write_csv(
        EVALUATION_COLUMNS,
        (
            [
                r.get("student_name") or "",
                r.get("total_marks", ""),
                r.get("obtained_marks", ""),
                f"{_percentage(r):.2f}",
                r.get("grade") or "",
                format_timestamp(r.get("created_at")),
            ]
            for r in rows
        ),
    )


def ai_results_to_csv(rows: Iterable[Dict[str, Any]]) -> str:
    return _write_csv(
        AI_RESULT_COLUMNS,
        (
            [
                r.get("student_name") or "",
                r.get("grade") or "",
                r.get("percentage", ""),
                r.get("total_marks", ""),
                r.get("obtained_marks", ""),
                r.get("evaluation_type") or "",
                format_timestamp(r.get("timestamp")),
            ]
            for r in rows
        ),
    )


def export_filename(title: str, *, ai: bool = False) -> str:
    """Download name for an export: ``<title>_results.csv`` or ``ai-results-<slug>.csv``."""
    title = (title or "").strip() or "assignment"
    if ai:
        return f"ai-results-{re.sub(r'[^a-z0-9]', '-', title, flags=re.IGNORECASE).lower()}.csv"
    # Content-Disposition is latin-1 and must not carry quotes or path separators.
    safe = re.sub(r"[^\w .-]", "_", title, flags=re.ASCII)
    return f"{safe}_results.csv"
