from __future__ import annotations

from utils.work_planner import plan_work


def test_no_ledger_processes_everything():
    plan = plan_work("E1", None, ["2020-01-01_a.pdf", "b.pdf"])
    assert plan.should_process is True
    assert plan.files_to_process == ["2020-01-01_a.pdf", "b.pdf"]
    assert plan.reason == "No existing metadata found"


def test_empty_ledger_processes_everything():
    plan = plan_work("E1", {}, ["2020-01-01_a.pdf"])
    assert plan.should_process is True
    assert plan.files_to_process == ["2020-01-01_a.pdf"]
    assert "No tracked files" in plan.reason


def test_new_document_is_the_only_work():
    ledger = {"2020-01-01_doc.pdf": "initial registration"}
    plan = plan_work("E2", ledger, ["2020-01-01_doc.pdf", "2022-03-01_doc.pdf"])

    assert plan.should_process is True
    assert plan.files_to_process == ["2022-03-01_doc.pdf"]
    assert plan.reason == "Found 1 new file(s) to process: 2022-03-01_doc.pdf"


def test_latest_input_matching_latest_tracked_means_nothing_to_do():
    ledger = {"2020-01-01_a.pdf": "initial registration", "2021-01-01_b.pdf": "no significant change"}
    plan = plan_work("E1", ledger, ["2021-01-01_b.pdf", "2020-01-01_a.pdf"])

    assert plan.should_process is False
    assert plan.files_to_process == []
    assert plan.reason == (
        "Latest tracked file (2021-01-01_b.pdf) matches latest input file (2021-01-01_b.pdf)"
    )


def test_all_processed_when_only_undated_inputs():
    ledger = {"undated_a.pdf": "initial registration"}
    plan = plan_work("E1", ledger, ["undated_a.pdf"])

    assert plan.should_process is False
    assert plan.reason == "All input files have already been processed"


def test_undated_new_input_is_picked_up():
    ledger = {"2020-01-01_a.pdf": "initial registration"}
    plan = plan_work("E1", ledger, ["2020-01-01_a.pdf", "memo.pdf"])

    # Latest dated input equals latest tracked, so the rule short-circuits.
    assert plan.should_process is False

    ledger = {"undated_a.pdf": "initial registration"}
    plan = plan_work("E1", ledger, ["undated_a.pdf", "memo.pdf"])
    assert plan.should_process is True
    assert plan.files_to_process == ["memo.pdf"]


def test_planner_is_idempotent_after_recording_the_work():
    inputs = ["2020-01-01_a.pdf", "2021-06-15_b.pdf"]
    first = plan_work("E1", None, inputs)
    assert first.should_process is True

    ledger = {name: "no significant change" for name in first.files_to_process}
    second = plan_work("E1", ledger, inputs)
    third = plan_work("E1", ledger, inputs)

    assert second.should_process is False
    assert third == second


def test_older_untracked_document_is_not_retried_once_latest_is_tracked():
    # 2021-01-01_b.pdf failed in an earlier run while the newer document merged.
    ledger = {"2020-01-01_a.pdf": "initial registration", "2022-01-01_c.pdf": "no significant change"}
    inputs = ["2020-01-01_a.pdf", "2021-01-01_b.pdf", "2022-01-01_c.pdf"]

    plan = plan_work("E1", ledger, inputs)

    assert plan.should_process is False
    assert plan.files_to_process == []

    # A newer input reopens the entity and the older gap is picked up with it.
    plan = plan_work("E1", ledger, inputs + ["2023-01-01_d.pdf"])
    assert plan.files_to_process == ["2021-01-01_b.pdf", "2023-01-01_d.pdf"]
