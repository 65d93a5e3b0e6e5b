"""Tests for the command line wrapper in ``tools/reoptimize_tables.py``."""

import json
import os
import sqlite3
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from tools import reoptimize_tables

DATE = '2024-11-04'


def seed(path):
    conn = sqlite3.connect(path)
    conn.execute("INSERT INTO subjects (id, name, area_id, course) VALUES (1, 'Math', 7, 1)")
    conn.executemany(
        "INSERT INTO exam_tables (table_number, student_id, teacher_id, subject_id, exam_date, shift) "
        "VALUES (?, ?, 10, 1, ?, 2)",
        [(101, 1, DATE), (103, 3, DATE)],
    )
    conn.execute("INSERT INTO table_groups (id, exam_date, shift, table_1) VALUES (1, ?, 2, 101)", (DATE,))
    conn.execute("INSERT INTO ungrouped_tables (table_number, exam_date, shift) VALUES (103, ?, 2)", (DATE,))
    conn.commit()
    conn.close()


def test_cli_dry_run_prints_report(tmp_path, capsys):
    import app
    path = str(tmp_path / 'cli.db')
    app.DB_PATH = path
    app.init_db()
    seed(path)

    code = reoptimize_tables.main(['--db', path, '--dry-run', '--shift', '2'])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert report['summary'] == {'dry_run': 1, 'movements': 1, 'unplaced_count': 0}
    conn = sqlite3.connect(path)
    assert conn.execute('SELECT table_2 FROM table_groups WHERE id=1').fetchone()[0] == 0
    conn.close()


def test_cli_rejects_bad_shift(tmp_path, capsys):
    code = reoptimize_tables.main(['--db', str(tmp_path / 'cli.db'), '--shift', '7'])
    assert code == 2
    assert 'expected 1 or 2' in capsys.readouterr().err


def test_inspect_groups_flags_gaps_repeats_and_dangling_singles(tmp_path):
    import app
    from tools import inspect_groups
    path = str(tmp_path / 'inspect.db')
    app.DB_PATH = path
    app.init_db()
    seed(path)
    conn = sqlite3.connect(path)
    assert inspect_groups.find_problems(conn) == []

    conn.execute("INSERT INTO exam_tables (table_number, student_id, subject_id) VALUES (104, 1, 1)")
    conn.execute("INSERT INTO table_groups (id, exam_date, shift, table_1, table_3) VALUES (2, ?, 2, 101, 104)", (DATE,))
    conn.execute("UPDATE table_groups SET table_2=103 WHERE id=1")
    conn.commit()

    problems = inspect_groups.find_problems(conn)
    conn.close()
    assert "group 2 has gaps: [101, 0, 104, 0]" in problems
    assert "group 2 repeats student(s) [1] at table 104" in problems
    assert any(p.startswith('single 103') and p.endswith('group 1') for p in problems)
