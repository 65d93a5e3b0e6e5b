"""SQLite access for the reoptimizer.

``SqliteStore`` wraps a connection opened by the web layer (see
``app.get_db``) and exposes the handful of reads and writes the engine
needs.  Transaction control is explicit: the coordinator calls
:meth:`SqliteStore.begin` before loading anything and either
:meth:`SqliteStore.commit` or :meth:`SqliteStore.rollback` at the end.
"""

from __future__ import annotations

import sqlite3
from typing import Dict, List, Optional

from .api import ExamTable, Group, Single, TeacherBlock, normalize_positions

# Area of a table is taken from the subject of any of its rows.
_AREA_OF = """
    SELECT s.area_id
    FROM exam_tables e
    INNER JOIN subjects s ON s.id = e.subject_id
    WHERE e.table_number = {column}
    ORDER BY e.id
    LIMIT 1
"""

_FIRST_MEMBER = """
    CASE
        WHEN COALESCE(g.table_1, 0) > 0 THEN g.table_1
        WHEN COALESCE(g.table_2, 0) > 0 THEN g.table_2
        WHEN COALESCE(g.table_3, 0) > 0 THEN g.table_3
        ELSE g.table_4
    END
"""


class SqliteStore:
    """Readers and writers over the exam scheduling tables."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row

    # -- transaction control -------------------------------------------------

    def begin(self) -> None:
        self.conn.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        self.conn.commit()

    def rollback(self) -> None:
        self.conn.rollback()

    # -- readers -------------------------------------------------------------

    def load_teacher_blocks(self) -> List[TeacherBlock]:
        rows = self.conn.execute(
            "SELECT teacher_id, exam_date, shift FROM teacher_blocks ORDER BY id"
        ).fetchall()
        return [
            TeacherBlock(
                teacher_id=int(r["teacher_id"]),
                date=r["exam_date"] or None,
                shift=int(r["shift"]) if r["shift"] is not None else None,
            )
            for r in rows
        ]

    def load_tables(self) -> Dict[int, ExamTable]:
        """Return area, students, teachers and current slot per table number."""

        rows = self.conn.execute(
            """
            SELECT e.table_number, e.student_id, e.teacher_id, e.exam_date, e.shift, s.area_id
            FROM exam_tables e
            LEFT JOIN subjects s ON s.id = e.subject_id
            ORDER BY e.table_number, e.id
            """
        ).fetchall()
        collected: Dict[int, dict] = {}
        for r in rows:
            number = int(r["table_number"])
            info = collected.setdefault(number, {
                "area_id": None, "students": set(), "teachers": set(), "date": None, "shift": None,
            })
            if info["area_id"] is None and r["area_id"] is not None:
                info["area_id"] = int(r["area_id"])
            if r["student_id"] is not None:
                info["students"].add(int(r["student_id"]))
            if r["teacher_id"] and int(r["teacher_id"]) > 0:
                info["teachers"].add(int(r["teacher_id"]))
            if info["date"] is None and r["exam_date"] and r["shift"] is not None:
                info["date"] = r["exam_date"]
                info["shift"] = int(r["shift"])
        return {
            number: ExamTable(
                table_number=number,
                area_id=info["area_id"],
                student_ids=frozenset(info["students"]),
                teacher_ids=frozenset(info["teachers"]),
                date=info["date"],
                shift=info["shift"],
            )
            for number, info in collected.items()
        }

    def load_groups(self) -> List[Group]:
        rows = self.conn.execute(
            f"""
            SELECT g.id, g.exam_date, g.shift, g.table_1, g.table_2, g.table_3, g.table_4,
                   ({_AREA_OF.format(column=_FIRST_MEMBER)}) AS area_id
            FROM table_groups g
            ORDER BY g.exam_date, g.shift, area_id, g.id
            """
        ).fetchall()
        groups = []
        for r in rows:
            positions = normalize_positions([r["table_1"], r["table_2"], r["table_3"], r["table_4"]])
            if not any(positions):
                continue
            groups.append(Group(
                group_id=int(r["id"]),
                date=r["exam_date"],
                shift=int(r["shift"]),
                area_id=int(r["area_id"]) if r["area_id"] is not None else None,
                positions=positions,
            ))
        return groups

    def load_singles(self) -> List[Single]:
        rows = self.conn.execute(
            f"""
            SELECT u.table_number, u.exam_date, u.shift,
                   COALESCE(u.area_id, ({_AREA_OF.format(column='u.table_number')})) AS area_id
            FROM ungrouped_tables u
            ORDER BY u.exam_date, u.shift, area_id, u.table_number
            """
        ).fetchall()
        return [
            Single(
                table_number=int(r["table_number"]),
                date=r["exam_date"],
                shift=int(r["shift"]),
                area_id=int(r["area_id"]) if r["area_id"] is not None else None,
            )
            for r in rows
        ]

    def load_prerequisite_rows(self) -> List[dict]:
        """Enrolled exam rows whose subject belongs to a prerequisite chain."""

        rows = self.conn.execute(
            """
            SELECT e.table_number, e.student_id, s.course, s.prerequisite_chain AS chain
            FROM exam_tables e
            INNER JOIN subjects s ON s.id = e.subject_id
            WHERE e.enrolled = 1
              AND s.prerequisite_chain IS NOT NULL
              AND s.prerequisite_chain <> 0
              AND e.exam_date IS NOT NULL
              AND e.shift IS NOT NULL
            """
        ).fetchall()
        return [dict(r) for r in rows]

    def get_group_row(self, group_id: int) -> Optional[List[int]]:
        row = self.conn.execute(
            "SELECT table_1, table_2, table_3, table_4 FROM table_groups WHERE id=? LIMIT 1",
            (group_id,),
        ).fetchone()
        if row is None:
            return None
        return normalize_positions([row["table_1"], row["table_2"], row["table_3"], row["table_4"]])

    # -- writers -------------------------------------------------------------

    def update_group(self, group_id: int, positions: List[int]) -> None:
        n1, n2, n3, n4 = normalize_positions(positions)
        self.conn.execute(
            "UPDATE table_groups SET table_1=?, table_2=?, table_3=?, table_4=? WHERE id=?",
            (n1, n2, n3, n4, group_id),
        )

    def insert_group(self, date: str, shift: int, positions: List[int]) -> int:
        n1, n2, n3, n4 = normalize_positions(positions)
        cur = self.conn.execute(
            "INSERT INTO table_groups (exam_date, shift, table_1, table_2, table_3, table_4) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (date, shift, n1, n2, n3, n4),
        )
        return int(cur.lastrowid)

    def delete_single(self, table_number: int, date: str, shift: int) -> int:
        cur = self.conn.execute(
            "DELETE FROM ungrouped_tables WHERE table_number=? AND exam_date=? AND shift=?",
            (table_number, date, shift),
        )
        return cur.rowcount

    def move_table(self, table_number: int, date: str, shift: int) -> None:
        self.conn.execute(
            "UPDATE exam_tables SET exam_date=?, shift=? WHERE table_number=?",
            (date, shift, table_number),
        )
