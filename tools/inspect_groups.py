import os
import sys
import sqlite3

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, BASE_DIR)
from app import DB_PATH


def find_problems(conn):
    """Return human readable descriptions of inconsistent group data.

    Reports groups with gaps between occupied positions, groups repeating a
    student and singles whose table already belongs to a group.
    """
    conn.row_factory = sqlite3.Row
    c = conn.cursor()
    problems = []

    students = {}
    for r in c.execute('SELECT table_number, student_id FROM exam_tables WHERE student_id IS NOT NULL'):
        students.setdefault(r['table_number'], set()).add(r['student_id'])

    grouped = {}
    for g in c.execute('SELECT id, table_1, table_2, table_3, table_4 FROM table_groups ORDER BY id').fetchall():
        positions = [g['table_1'] or 0, g['table_2'] or 0, g['table_3'] or 0, g['table_4'] or 0]
        members = [n for n in positions if n]
        if positions[:len(members)] != members:
            problems.append(f"group {g['id']} has gaps: {positions}")
        seen = set()
        for n in members:
            grouped[n] = g['id']
            repeated = seen & students.get(n, set())
            if repeated:
                problems.append(f"group {g['id']} repeats student(s) {sorted(repeated)} at table {n}")
            seen |= students.get(n, set())

    for r in c.execute('SELECT table_number, exam_date, shift FROM ungrouped_tables ORDER BY table_number'):
        if r['table_number'] in grouped:
            problems.append(
                f"single {r['table_number']} ({r['exam_date']} shift {r['shift']}) "
                f"is already in group {grouped[r['table_number']]}"
            )
    return problems


if __name__ == '__main__':
    conn = sqlite3.connect(DB_PATH)
    print('DB:', DB_PATH)
    found = find_problems(conn)
    print('Problems found:', len(found))
    for line in found:
        print(line)
    conn.close()
