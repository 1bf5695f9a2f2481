"""History reducer for the marketplace state snapshot.

The marketplace hands the agent its whole job history on every turn. These
helpers return a bounded copy of it: active jobs the agent was told to
ignore are dropped, and each historical category keeps only its most recent
entries (highest job id first). The input snapshot is never mutated.
"""

from __future__ import annotations

import copy
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from jobpipe.core.config import StateReductionConfig
from jobpipe.core.settings import logger

Snapshot = Dict[str, Any]
StateGetter = Callable[[], Union[Snapshot, Awaitable[Snapshot]]]

ACTIVE_SIDES = ("as_a_buyer", "as_a_seller")


def _entry_job_id(entry: Any) -> int:
    if isinstance(entry, Mapping):
        value = entry.get("job_id")
    else:
        value = getattr(entry, "job_id", None)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _entry_provider(entry: Any) -> Optional[str]:
    if isinstance(entry, Mapping):
        return entry.get("provider_address")
    return getattr(entry, "provider_address", None)


def keep_most_recent(items: List[Any], keep: int, label: str) -> List[Any]:
    """Highest-id `keep` entries in descending id order; ties keep their input order."""
    if len(items) <= keep:
        return items
    ordered = sorted(items, key=_entry_job_id, reverse=True)
    logger.info(f"Filtered out {len(items) - keep} old {label}, keeping {keep} most recent")
    return ordered[:keep]


def _filter_active(state: Snapshot, predicate: Callable[[Any], bool]) -> None:
    active = state.get("jobs", {}).get("active") or {}
    for side in ACTIVE_SIDES:
        if active.get(side):
            active[side] = [entry for entry in active[side] if not predicate(entry)]


def _drop_ignored_agents(state: Snapshot, addresses: List[str]) -> None:
    ignored = {address.lower() for address in addresses}

    def from_ignored_agent(entry: Any) -> bool:
        provider = _entry_provider(entry)
        return bool(provider) and provider.lower() in ignored

    active = state.get("jobs", {}).get("active") or {}
    doomed = [
        _entry_job_id(entry)
        for side in ACTIVE_SIDES
        for entry in active.get(side) or []
        if from_ignored_agent(entry)
    ]
    if doomed:
        logger.info(
            f"Removing {len(doomed)} active jobs from ignored agents: "
            f"{', '.join(str(job_id) for job_id in doomed)}"
        )
        _filter_active(state, from_ignored_agent)


def reduce_state(snapshot: Snapshot, config: Optional[StateReductionConfig] = None) -> Snapshot:
    """Return a bounded deep copy of `snapshot`.

    Steps:
    1. drop active jobs whose id is in `job_ids_to_ignore`;
    2. drop active jobs offered by an agent in `agent_addresses_to_ignore`
       (addresses compared case-insensitively);
    3. keep the `keep_*` most recent completed / cancelled jobs and
       acquired / produced inventory entries.

    Missing categories are left missing.
    """
    config = config or StateReductionConfig()
    state = copy.deepcopy(snapshot)

    if config.job_ids_to_ignore:
        ignored_ids = set(config.job_ids_to_ignore)
        _filter_active(state, lambda entry: _entry_job_id(entry) in ignored_ids)

    if config.agent_addresses_to_ignore:
        _drop_ignored_agents(state, config.agent_addresses_to_ignore)

    jobs = state.get("jobs")
    if isinstance(jobs, dict):
        if jobs.get("completed") is not None:
            jobs["completed"] = keep_most_recent(
                jobs["completed"], config.keep_completed_jobs, "completed jobs"
            )
        if jobs.get("cancelled") is not None:
            jobs["cancelled"] = keep_most_recent(
                jobs["cancelled"], config.keep_cancelled_jobs, "cancelled jobs"
            )

    inventory = state.get("inventory")
    if isinstance(inventory, dict):
        if inventory.get("acquired") is not None:
            inventory["acquired"] = keep_most_recent(
                inventory["acquired"], config.keep_acquired_inventory, "acquired inventory"
            )
        if inventory.get("produced") is not None:
            inventory["produced"] = keep_most_recent(
                inventory["produced"], config.keep_produced_inventory, "produced inventory"
            )

    return state


class StateReducer:
    """Holds a reduction config that can be adjusted at runtime."""

    def __init__(self, config: Optional[StateReductionConfig] = None) -> None:
        self.config = config or StateReductionConfig()

    def reduce(self, snapshot: Snapshot) -> Snapshot:
        return reduce_state(snapshot, self.config)

    def update_config(self, **changes: Any) -> StateReductionConfig:
        # validate through the model so bad overrides fail loudly
        self.config = StateReductionConfig.model_validate({**self.config.model_dump(), **changes})
        return self.config


def reduced_state_getter(
    get_state: StateGetter, config: Optional[StateReductionConfig] = None
) -> Callable[[], Awaitable[Snapshot]]:
    """Wrap a sync or async state getter so every call returns a reduced snapshot."""

    async def get_reduced_state() -> Snapshot:
        state = get_state()
        if inspect.isawaitable(state):
            state = await state
        return reduce_state(state, config)

    return get_reduced_state
