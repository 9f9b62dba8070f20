from conftest import canonical

from app.onco_etl.mapping import manual_mapping
from app.onco_etl.observations import extract_observations
from app.onco_etl.transform import TransformContext, transform_to_canonical

RAW = [
    ["Visit Date", "Stage", "Cycle", "Regimen", "Notes", "CEA (ng/ml)", "WBC", "Ignored"],
    ["2024-01-05", "化疗", "C1", "FOLFOX", "", "12.5", 5.1, "x"],
    [45300, None, "C2", None, "PICC", "< 5", 4.2, "y"],
    ["garbage", None, None, None, None, "3", None, None],
    [],
]

MAPPING = {
    "date_col": "Visit Date",
    "metrics": {"CEA (ng/ml)": "CEA", "WBC": "白细胞"},
    "events": ["Stage", "Cycle", "Regimen", "Notes"],
}


def run(raw=RAW, mapping=MAPPING, name="张三"):
    return transform_to_canonical(raw, manual_mapping(mapping), TransformContext(patient_name=name))


def test_transform_builds_canonical_layout():
    r = run()
    assert r.success, r.errors
    assert r.data[0][0] == "张三 - 肿瘤病程周期表"
    assert r.data[1] == ["日期\\单位", None, "当下周期", "前序周期", None, None, None, "< 5", "10^9/L"]
    assert r.data[2] == ["子类", "项目", "周期", None, "方案", "处置", "方案", "CEA", "白细胞"]
    assert r.data[3] == ["2024-01-05", "化疗", "C1", None, "FOLFOX", None, None, "12.5", 5.1]
    assert r.data[4] == [45300, None, "C2", None, None, "PICC", None, "< 5", 4.2]
    assert len(r.data) == 6
    assert r.warnings == ["1 rows have no parseable date"]


def test_unmapped_columns_dropped():
    r = run()
    assert all(len(row) == 9 for row in r.data)
    assert not any("x" == c for row in r.data for c in row)


def test_transformed_rows_feed_observations():
    r = run()
    obs = extract_observations(r.data, "p1")
    assert [(o.code, o.value_quantity) for o in obs] == [
        ("CEA", 12.5),
        ("WBC", 5.1),
        ("CEA", 5.0),
        ("WBC", 4.2),
    ]
    assert obs[2].value_string == "< 5"


def test_missing_date_column():
    r = run(mapping={**MAPPING, "date_col": "Nope"})
    assert not r.success
    assert "date column" in r.errors[0]


def test_no_metric_columns():
    r = run(mapping={**MAPPING, "metrics": {"Missing": "CEA"}})
    assert not r.success
    assert r.errors == ["no metric columns could be mapped"]
    assert r.warnings == ["metric source 'Missing' not found"]


def test_date_column_without_dates():
    r = run(mapping={**MAPPING, "date_col": "Stage"})
    assert not r.success
    assert "holds no parseable dates" in r.errors[0]


def test_empty_sheet():
    r = run(raw=[])
    assert not r.success


def test_units_row_under_header_is_used():
    raw = [
        ["Date", "Event", "CEA", "WBC", "Remark"],
        ["日期\\单位", None, "< 5", "10^9/L", None],
        ["2024-02-01", "CT", "2.0", "6", None],
    ]
    r = run(raw=raw, mapping={"date_col": "Date", "metrics": {"CEA": "CEA", "WBC": "WBC"}, "header_row": 0})
    assert r.success
    assert r.data[1][7:] == ["< 5", "10^9/L"]
    assert r.data[3][0] == "2024-02-01"
    assert len(r.data) == 4


def test_duplicate_canonical_keeps_first():
    r = run(mapping={**MAPPING, "metrics": {"CEA (ng/ml)": "CEA", "WBC": "癌胚抗原"}})
    assert r.success
    assert r.data[2][7:] == ["CEA"]
    assert any("more than once" in w for w in r.warnings)


def test_extra_event_columns_joined():
    raw = [
        ["Date", "Event", "Notes", "CEA", "x"],
        ["2024-02-01", "CT", "stable", "2.0", None],
    ]
    mapping = {
        "date_col": "Date",
        "metrics": {"CEA": "CEA"},
        "fixed": {"event": "Event"},
        "events": ["Event", "Notes"],
        "header_row": 0,
    }
    r = run(raw=raw, mapping=mapping)
    assert r.data[3][5] == "CT; stable"


def test_canonical_input_transforms_to_itself():
    matrix = canonical(["CEA"], [["2024-01-01", "化疗", "C1", None, "XELOX", "PICC", None, "3"]])
    mapping = {
        "date_col": "子类",
        "metrics": {"CEA": "CEA"},
        "fixed": {"phase": 1, "cycle": 2, "scheme": 4, "event": 5},
    }
    r = run(raw=matrix, mapping=mapping)
    assert r.success
    assert r.data[2:] == matrix[2:]
