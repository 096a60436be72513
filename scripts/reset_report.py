"""Quick script to summarize reset runs per day and checkpoint.

Reads the reset_history table written by the service and the
autoreset-tools run command.
"""

import sqlite3
import sys

db_path = sys.argv[1] if len(sys.argv) > 1 else "autoreset.db"
days = int(sys.argv[2]) if len(sys.argv) > 2 else 7
db = sqlite3.connect(db_path)
db.row_factory = sqlite3.Row

tables = [r[0] for r in db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()]
if "reset_history" not in tables:
    print("No reset_history table found.")
    sys.exit(1)

rows = db.execute(
    """
    SELECT
        date(started_at) as day,
        checkpoint,
        COUNT(*) as runs,
        SUM(success) as success,
        SUM(failed) as failed,
        SUM(skipped) as skipped,
        SUM(scheduled) as scheduled,
        SUM(CASE WHEN error IS NOT NULL THEN 1 ELSE 0 END) as errors
    FROM reset_history
    WHERE started_at >= datetime('now', ?)
    GROUP BY date(started_at), checkpoint
    ORDER BY day, checkpoint
    """,
    (f"-{days} days",),
).fetchall()

print(f"=== Reset runs (last {days} days) ===")
totals = {"success": 0, "failed": 0, "skipped": 0, "scheduled": 0}
for r in rows:
    print(
        f"  {r['day']} {r['checkpoint']:<12} {r['runs']} run(s): "
        f"{r['success']} ok, {r['failed']} failed, {r['skipped']} skipped, "
        f"{r['scheduled']} scheduled, {r['errors']} fetch error(s)"
    )
    for key in totals:
        totals[key] += r[key] or 0

if rows:
    attempted = totals["success"] + totals["failed"]
    print("\n=== Totals ===")
    for key, value in totals.items():
        print(f"  {key.capitalize():<10} {value}")
    if attempted:
        print(f"  Success rate: {totals['success'] / attempted:.1%}")
else:
    print("No runs found.")
