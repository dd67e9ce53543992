from examples.planning_agent.backend.builder import (
    PROJECT_COLORS,
    ColorPalette,
    TaskKey,
    build_blocks,
    index_projects,
    index_resources,
    project_from_raw,
    resource_from_raw,
)
from examples.planning_agent.backend.models import LineType


def _line(line_id, day, qty, *, resource="R1", project="JOB1", task="100", line_no=None, **extra):
    return {
        "id": line_id,
        "jobNo": project,
        "jobTaskNo": task,
        "lineNo": line_no if line_no is not None else int(line_id) * 10000,
        "type": "Resource",
        "number": resource,
        "planningDate": day,
        "quantity": qty,
        "@odata.etag": f'W/"{line_id}"',
        **extra,
    }


RESOURCES = index_resources(
    [resource_from_raw({"id": "r-1", "number": "R1", "displayName": "Alice Smith"})]
)
PROJECTS = index_projects(
    [
        project_from_raw({"id": "j-1", "number": "JOB1", "displayName": "Website"}),
        project_from_raw({"id": "j-2", "number": "JOB2", "displayName": "Warehouse"}),
    ]
)
TASKS = {TaskKey("JOB1", "100"): "Design"}


def _build(lines, palette=None):
    return build_blocks(lines, PROJECTS, RESOURCES, TASKS, palette if palette is not None else ColorPalette())


def test_consecutive_days_form_one_block_and_gaps_split():
    lines = [
        _line("1", "2025-01-06", 8),
        _line("2", "2025-01-07", 8),
        _line("3", "2025-01-09", 4),
    ]

    blocks = _build(lines)

    assert [(b.start_date, b.end_date) for b in blocks] == [
        ("2025-01-06", "2025-01-07"),
        ("2025-01-09", "2025-01-09"),
    ]
    assert blocks[0].total_hours == 16
    assert blocks[0].hours_per_day == 8
    assert blocks[0].id == "JOB1-100-10000"


def test_block_total_matches_sum_of_raw_quantities():
    lines = [
        _line("1", "2025-01-06", 3.5),
        _line("2", "2025-01-06", 1.25),
        _line("3", "2025-01-07", 2),
        _line("4", "2025-01-08", 6, project="JOB2", task="200"),
        _line("5", "2025-01-10", 7.75),
    ]

    blocks = _build(lines)

    assert sum(b.total_hours for b in blocks) == sum(l["quantity"] for l in lines)
    first = blocks[0]
    assert first.hours_on("2025-01-06") == 4.75
    assert first.daily_hours == (("2025-01-06", 4.75), ("2025-01-07", 2.0))


def test_names_are_denormalized_onto_blocks():
    block = _build([_line("1", "2025-01-06", 8)])[0]

    assert block.resource_name == "Alice Smith"
    assert block.resource_id == "r-1"
    assert block.project_name == "Website"
    assert block.task_name == "Design"


def test_unknown_names_fall_back_to_numbers():
    block = _build([_line("1", "2025-01-06", 8, resource="R9", project="JOB9", task="900")])[0]

    assert block.resource_name == "R9"
    assert block.project_name == "JOB9"
    assert block.task_name == "900"


def test_only_positive_resource_lines_become_blocks():
    lines = [
        _line("1", "2025-01-06", 0),
        _line("2", "2025-01-07", 2, type="Item"),
        _line("3", "2025-01-08", 1),
    ]

    blocks = _build(lines)

    assert len(blocks) == 1
    assert blocks[0].start_date == "2025-01-08"


def test_single_line_block_carries_remote_identity():
    single, multi = _build(
        [_line("1", "2025-01-06", 8), _line("2", "2025-01-08", 8), _line("3", "2025-01-09", 8)]
    )

    assert single.remote_line_id == "1"
    assert single.remote_line_no == 10000
    assert single.concurrency_token == 'W/"1"'
    assert multi.remote_line_id is None
    assert multi.concurrency_token is None


def test_mixed_line_types_become_both():
    lines = [
        _line("1", "2025-01-06", 8, lineType="Budget"),
        _line("2", "2025-01-07", 8, lineType="Billable"),
    ]

    assert _build(lines)[0].line_type is LineType.BOTH


def test_palette_assigns_round_robin_and_keeps_mapping():
    palette = ColorPalette(size=2)
    palette.assign(["A", "B", "C"])

    assert [palette.index_for(p) for p in ("A", "B", "C")] == [0, 1, 0]
    assert palette.color_for("B") == PROJECT_COLORS[1]


def test_project_color_is_stable_across_rebuilds():
    palette = ColorPalette()
    first = _build([_line("1", "2025-01-06", 8, project="JOB2", task="200")], palette)
    # JOB1 seen later gets the next slot; JOB2 keeps its own.
    second = _build(
        [_line("2", "2025-01-13", 8), _line("3", "2025-01-14", 8, project="JOB2", task="200")],
        palette,
    )

    job2 = [b for b in second if b.project_number == "JOB2"][0]
    job1 = [b for b in second if b.project_number == "JOB1"][0]
    assert job2.color == first[0].color == PROJECT_COLORS[0]
    assert job1.color == PROJECT_COLORS[1]


def test_fresh_palette_passed_in_is_used():
    palette = ColorPalette(size=1)

    blocks = _build(
        [_line("1", "2025-01-06", 8), _line("2", "2025-01-06", 8, project="JOB2", task="200")],
        palette,
    )

    assert {b.color for b in blocks} == {PROJECT_COLORS[0]}
    assert palette.index_for("JOB2") == 0


def test_block_ids_fall_back_to_line_id_without_line_numbers():
    lines = [_line("1", "2025-01-06", 8), _line("2", "2025-01-08", 8)]
    for line in lines:
        del line["lineNo"]

    blocks = _build(lines)

    assert [b.id for b in blocks] == ["JOB1-100-1", "JOB1-100-2"]
    assert blocks[0].remote_line_no is None
