"""Flask application exposing the exam table reoptimizer.

Exam tables, their groups, the tables still waiting for a group and teacher
unavailability are stored in a local SQLite database.  The records themselves
are maintained by other screens; this module owns the schema, hands out
connections and exposes the batch operation that merges ungrouped tables
into compatible groups.  The operation itself lives in the ``reoptimizer``
package.
"""

from flask import Flask, request, jsonify
import sqlite3
import os
import logging

from reoptimizer.api import ValidationError, parse_request, reoptimize
from reoptimizer.store import SqliteStore

app = Flask(__name__)
app.secret_key = 'dev'

# Store the SQLite database inside a dedicated ``data`` directory so the
# application files can stay read-only when deployed.
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DATA_DIR = os.path.join(BASE_DIR, "data")
DB_PATH = os.path.join(DATA_DIR, "exam_tables.db")


def get_db():
    """Return a connection to the SQLite database.

    Setting ``row_factory`` allows rows to behave like dictionaries so code
    can access columns by name.
    """
    dir_ = os.path.dirname(DB_PATH)
    if dir_:
        os.makedirs(dir_, exist_ok=True)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create the SQLite tables used by the reoptimizer.

    Existing databases are migrated in place when columns were added in later
    versions of the schema.
    """
    conn = get_db()
    c = conn.cursor()

    def table_exists(name):
        c.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,))
        return c.fetchone() is not None

    def column_exists(table, column):
        c.execute(f"PRAGMA table_info({table})")
        return column in [row[1] for row in c.fetchall()]

    if not table_exists('teachers'):
        c.execute('''CREATE TABLE teachers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT
        )''')

    if not table_exists('students'):
        c.execute('''CREATE TABLE students (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT,
            document TEXT UNIQUE
        )''')

    if not table_exists('subjects'):
        c.execute('''CREATE TABLE subjects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT,
            area_id INTEGER,
            course INTEGER,
            prerequisite_chain INTEGER DEFAULT 0
        )''')
    elif not column_exists('subjects', 'prerequisite_chain'):
        c.execute('ALTER TABLE subjects ADD COLUMN prerequisite_chain INTEGER DEFAULT 0')

    # one row per student examined at a table; a table number spans rows
    if not table_exists('exam_tables'):
        c.execute('''CREATE TABLE exam_tables (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            table_number INTEGER NOT NULL,
            student_id INTEGER,
            teacher_id INTEGER,
            subject_id INTEGER,
            exam_date TEXT,
            shift INTEGER,
            enrolled INTEGER DEFAULT 1
        )''')
    elif not column_exists('exam_tables', 'enrolled'):
        c.execute('ALTER TABLE exam_tables ADD COLUMN enrolled INTEGER DEFAULT 1')

    if not table_exists('table_groups'):
        c.execute('''CREATE TABLE table_groups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            exam_date TEXT,
            shift INTEGER,
            table_1 INTEGER DEFAULT 0,
            table_2 INTEGER DEFAULT 0,
            table_3 INTEGER DEFAULT 0,
            table_4 INTEGER DEFAULT 0
        )''')

    if not table_exists('ungrouped_tables'):
        c.execute('''CREATE TABLE ungrouped_tables (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            table_number INTEGER NOT NULL,
            exam_date TEXT NOT NULL,
            shift INTEGER NOT NULL,
            area_id INTEGER,
            UNIQUE (table_number, exam_date, shift)
        )''')
    elif not column_exists('ungrouped_tables', 'area_id'):
        c.execute('ALTER TABLE ungrouped_tables ADD COLUMN area_id INTEGER')

    # exam_date NULL => every date for that shift, shift NULL => whole day
    if not table_exists('teacher_blocks'):
        c.execute('''CREATE TABLE teacher_blocks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            teacher_id INTEGER NOT NULL,
            exam_date TEXT,
            shift INTEGER
        )''')

    conn.commit()
    conn.close()


@app.route('/reoptimize_tables', methods=['POST'])
def reoptimize_tables():
    """Merge ungrouped exam tables into compatible groups.

    The JSON body accepts ``dry_run``, optional ``date``/``shift`` filters
    and the ``relocate``/``use_donors`` flags enabling the extra passes.
    Bad filters are answered with 400 before anything is read; failures
    while processing roll the whole batch back and are answered with 500.
    """
    try:
        req = parse_request(request.get_json(silent=True))
    except ValidationError as exc:
        return jsonify({'success': False, 'message': str(exc)}), 400

    conn = get_db()
    try:
        result = reoptimize(SqliteStore(conn), req, progress_callback=app.logger.info)
    except Exception as exc:
        return jsonify({'success': False, 'message': f'Server error: {exc}'}), 500
    finally:
        conn.close()

    app.logger.info(
        'Reoptimization finished (dry_run=%s): %d movement(s), %d unplaced',
        req.dry_run, len(result.movements), len(result.unplaced),
    )
    return jsonify({'success': True, 'data': result.as_dict()})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    init_db()
    app.run(debug=True)
