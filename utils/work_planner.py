"""Decide which downloaded documents still need extraction.

Ledger membership (not content hashes) is the authority: the ledger records
which documents have already been paid for and merged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from logging_utils import get_logger
from utils.document_names import latest_dated

logger = get_logger(__name__)


@dataclass(frozen=True)
class WorkPlan:
    should_process: bool
    files_to_process: list[str] = field(default_factory=list)
    reason: str = ""


def plan_work(
    entity_id: str,
    existing_ledger: Mapping[str, object] | None,
    available: Iterable[str],
) -> WorkPlan:
    """Plan an entity's merge work.

    Rules, first match wins:
    1. no ledger                         -> process everything
    2. empty ledger                      -> process everything
    3. latest input is the latest tracked -> nothing to do
    4. otherwise process inputs missing from the ledger (possibly none)
    """

    inputs = list(available)

    if existing_ledger is None:
        plan = WorkPlan(True, inputs, "No existing metadata found")
    elif not existing_ledger:
        plan = WorkPlan(True, inputs, "No tracked files found in existing metadata")
    else:
        tracked = list(existing_ledger.keys())
        latest_input = latest_dated(inputs)
        latest_tracked = latest_dated(tracked)

        if latest_input is not None and latest_input == latest_tracked:
            plan = WorkPlan(
                False,
                [],
                f"Latest tracked file ({latest_tracked}) matches latest input file ({latest_input})",
            )
        else:
            new_files = [f for f in inputs if f not in existing_ledger]
            if not new_files:
                plan = WorkPlan(False, [], "All input files have already been processed")
            else:
                plan = WorkPlan(
                    True,
                    new_files,
                    f"Found {len(new_files)} new file(s) to process: {', '.join(new_files)}",
                )

    logger.info(
        "Work plan | entity=%s process=%s files=%s reason=%s",
        entity_id,
        plan.should_process,
        len(plan.files_to_process),
        plan.reason,
    )
    return plan
