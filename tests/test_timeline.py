from datetime import datetime, timedelta

from conftest import canonical, data_row

from app.onco_etl.timeline import (
    SegmentState,
    TimelineRow,
    extract_cycle,
    segment,
    segment_rows,
    step,
)

D1 = datetime(2024, 1, 1)


def days(n):
    return D1 + timedelta(days=n)


def test_two_cycles_then_uncycled_row():
    """A trailing event row with no cycle opens no phase: two phases, and C2
    closes at max(start + 21 days, latest row date)."""
    matrix = canonical(
        ["CEA"],
        [
            data_row(days(0), "化疗", "C1", "XELOX"),
            data_row(days(21), None, "C2"),
            data_row(days(51), None, None, None, "CT"),
        ],
    )
    tl = segment(matrix)
    assert [(p.cycle, p.start, p.end, p.duration) for p in tl.phases] == [
        ("C1", days(0), days(21), 21),
        ("C2", days(21), days(51), 30),
    ]
    # name and scheme carry over into the next cycle
    assert tl.phases[1].name == "化疗"
    assert tl.phases[1].scheme == "XELOX"


def test_final_phase_gets_default_length():
    tl = segment_rows([TimelineRow(date=D1, phase="化疗", cycle="C1")])
    assert len(tl.phases) == 1
    assert tl.phases[0].end == days(21)
    assert tl.phases[0].duration == 21


def test_partial_days_round_up():
    rows = [
        TimelineRow(date=D1, cycle="C1"),
        TimelineRow(date=D1 + timedelta(days=1, hours=6), cycle="C2"),
    ]
    assert segment_rows(rows).phases[0].duration == 2


def test_rows_sorted_and_undated_dropped():
    matrix = canonical(
        ["CEA"],
        [
            data_row(days(21), None, "C2"),
            data_row("待定", None, "C9"),
            data_row(days(0), "化疗", "C1"),
        ],
    )
    assert [p.cycle for p in segment(matrix).phases] == ["C1", "C2"]


def test_cycle_token_extraction():
    assert extract_cycle("C3 d1") == "C3"
    assert extract_cycle("AS2") == "AS2"
    assert extract_cycle("第1周期") == "第1周期"
    assert extract_cycle(None) is None


def test_surveillance_cycles_share_one_phase():
    rows = [
        TimelineRow(date=days(0), phase="化疗", cycle="C1", scheme="XELOX"),
        TimelineRow(date=days(21), cycle="AS1"),
        TimelineRow(date=days(60), cycle="AS2", scheme="ignored"),
        TimelineRow(date=days(90), phase="化疗", cycle="C2"),
    ]
    phases = segment_rows(rows).phases
    assert [(p.name, p.cycle) for p in phases] == [("化疗", "C1"), ("AS", "AS"), ("化疗", "C2")]
    assert phases[1].scheme == ""
    assert phases[1].end == days(90)


def test_surgery_rows_open_phases():
    rows = [
        TimelineRow(date=days(0), phase="化疗", cycle="C1"),
        TimelineRow(date=days(10), phase="手术"),
        TimelineRow(date=days(20), phase="腹腔镜探查"),
        TimelineRow(date=days(30), phase="化疗", event="化疗"),
    ]
    phases = segment_rows(rows).phases
    assert [(p.name, p.type) for p in phases] == [
        ("化疗", "medication"),
        ("手术", "surgery"),
        ("腹腔镜探查", "surgery"),
    ]
    assert phases[1].cycle == ""


def test_scheme_change_updates_open_phase():
    rows = [
        TimelineRow(date=days(0), phase="化疗", cycle="C1", scheme="A"),
        TimelineRow(date=days(7), scheme="B"),
    ]
    phases = segment_rows(rows).phases
    assert len(phases) == 1
    assert phases[0].scheme == "B"


def test_events_get_overlap_indices():
    rows = [
        TimelineRow(date=days(0), event="CT"),
        TimelineRow(date=days(0), event="PICC"),
        TimelineRow(date=days(3), event="MRI"),
        TimelineRow(date=days(4)),
    ]
    events = segment_rows(rows).events
    assert [(e.name, e.overlap_index) for e in events] == [("CT", 0), ("PICC", 1), ("MRI", 0)]


def test_step_is_pure():
    start = SegmentState()
    nxt = step(start, TimelineRow(date=D1, phase="化疗", cycle="C1"))
    assert start.open is None
    assert nxt.open.cycle == "C1"
    assert nxt.closed == ()


def test_empty_matrix():
    tl = segment([])
    assert tl.phases == [] and tl.events == []
    assert tl.as_dict() == {"phases": [], "events": []}


def test_as_dict_shape():
    d = segment_rows([TimelineRow(date=D1, phase="化疗", cycle="C1", event="PICC")]).as_dict()
    assert d["phases"][0] == {
        "start": "2024-01-01T00:00:00",
        "end": "2024-01-22T00:00:00",
        "name": "化疗",
        "cycle": "C1",
        "scheme": "",
        "duration": 21,
        "type": "medication",
    }
    assert d["events"] == [{"date": "2024-01-01T00:00:00", "name": "PICC", "overlap_index": 0}]
