"""
Tests for pairing reports and debug exports
"""
import json
import pandas as pd
from smartpair.models import Image, ImageInsight, Orphan, PairingResult, ProductGroup
from smartpair.pipeline import build_index, run_pairing
from smartpair.report import PairingReport, DEBUG_COLUMNS, debug_frame, export_debug_csv, load_result, main


def debug_result():
    """Pairing result with candidate tables"""
    images = [
        Image(key="p1/front.jpg", url="p1/front.jpg", folder="p1", name="front.jpg"),
        Image(key="p1/back.jpg", url="p1/back.jpg", folder="p1", name="back.jpg"),
        Image(key="p2/other.jpg", url="p2/other.jpg", folder="p2", name="other.jpg"),
    ]
    insights = [
        ImageInsight(image_key="p1/front.jpg", role="front", ocr_text="Acme Widget", brand="Acme", product="Widget"),
        ImageInsight(image_key="p1/back.jpg", role="back", ocr_text="Supplement Facts Acme", brand="Acme",
                     product="Widget"),
    ]
    return run_pairing(build_index(images, insights), debug=True)


def test_report_counts():
    result = PairingResult(
        groups=[
            ProductGroup("g1", member_image_keys=["a", "b"]),
            ProductGroup("g2"),
        ],
        orphans=[Orphan("c", "", "c", reason="gated-out")],
    )

    report = PairingReport(result)

    assert report.total_images == 3
    assert report.empty_groups() == ["g2"]
    assert report.orphans_by_reason == {"gated-out": ["c"]}
    assert report.has_issues()


def test_print_summary(capsys):
    result = debug_result()

    PairingReport(result).print_summary()

    out = capsys.readouterr().out
    assert "PAIRING REPORT SUMMARY" in out
    assert "hero: p1/front.jpg" in out
    assert "back: p1/back.jpg" in out


def test_debug_frame():
    """Candidate rows flatten into one table with a column per component"""
    df = debug_result()
    frame = debug_frame(df)

    assert list(frame.columns[:len(DEBUG_COLUMNS)]) == DEBUG_COLUMNS
    assert "c:role" in frame.columns
    assert set(frame["imageKey"]) == {"p1/front.jpg", "p1/back.jpg", "p2/other.jpg"}
    front = frame[frame["imageKey"] == "p1/front.jpg"].iloc[0]
    assert front["status"] == "assigned"
    assert front["c:role"] == 12
    assert not frame[[c for c in frame.columns if c.startswith("c:")]].isna().any().any()


def test_debug_frame_empty():
    frame = debug_frame(PairingResult())

    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == DEBUG_COLUMNS
    assert frame.empty


def test_export_and_cli(tmp_path, capsys):
    """The report script reads a saved result and writes the CSV"""
    result = debug_result()
    result_path = tmp_path / "result.json"
    result_path.write_text(json.dumps(result.to_dict()))
    csv_path = tmp_path / "debug.csv"

    assert load_result(str(result_path)).groups[0].hero_image_key == "p1/front.jpg"
    assert export_debug_csv(result, str(tmp_path / "direct.csv"))

    code = main(["--result", str(result_path), "--debug-csv", str(csv_path)])

    assert code == 1  # p2/other.jpg is an orphan
    assert len(pd.read_csv(csv_path)) == len(debug_frame(result))
    assert main(["--result", str(tmp_path / "missing.json")]) == 1
