import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from scripts import refresh_insights
from schemas import Session


def test_refresh_cli_reports_generated_insights(temp_db, stores, capsys):
    stores.sessions.save(
        Session(student_id="s1", student_name="Sam", assignment_id="a1", assignment_title="Fractions", score=20)
    )

    exit_code = refresh_insights.main(["--db", temp_db, "--teacher", "educator"])
    report = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert report["generated"] == 1
    assert report["top"][0]["rule"] == "needs-support"
    assert report["stats"]["total_active"] == 1


def test_refresh_cli_second_run_skips_duplicates(temp_db, stores, capsys):
    stores.sessions.save(
        Session(student_id="s1", assignment_id="a1", assignment_title="Fractions", score=20)
    )
    refresh_insights.main(["--db", temp_db])
    capsys.readouterr()

    refresh_insights.main(["--db", temp_db])
    report = json.loads(capsys.readouterr().out)
    assert report["generated"] == 0
    assert report["skipped_duplicates"] == 1
