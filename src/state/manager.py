"""
State Manager - Drives a fixed, ordered collection of States.

Each reconciliation pass invokes every State in the configured order and
aggregates their statuses. A failing State never stops the remaining ones.
"""

import logging
from typing import Any, Dict, List, Sequence

from state.base import KindDescriptor, Result, Results, State, SyncStatus
from state.info_catalog import InfoCatalog

logger = logging.getLogger(__name__)


class StateManager:
    """
    Invokes States in order to get the system to its desired state.

    Ordering is a configuration concern: States are run exactly in the
    order given, e.g. a shared-config State before the States mounting it.
    """

    def __init__(self, states: Sequence[State]):
        self.states: List[State] = list(states)

    def watched_kinds(self) -> List[KindDescriptor]:
        """
        Union of every State's watched kinds, de-duplicated by kind name.

        The first declaration of a kind name wins.
        """
        kinds: Dict[str, KindDescriptor] = {}
        for state in self.states:
            for kind_name, descriptor in state.watched_kinds().items():
                if kind_name not in kinds:
                    kinds[kind_name] = descriptor
        logger.debug(f"Watch resources for manager: {list(kinds)}")
        return list(kinds.values())

    async def sync_state(
        self, custom_resource: Any, info_catalog: InfoCatalog
    ) -> Results:
        """
        Reconcile the system by invoking sync() on each State.

        Args:
            custom_resource: The owning custom resource
            info_catalog: Auxiliary information for the States

        Returns:
            Results with one Result per State, READY only if all are READY
        """
        logger.info("Syncing system state")
        results = Results(status=SyncStatus.NOT_READY)
        states_ready = True

        for state in self.states:
            logger.info(f"Sync State {state.name}: {state.description}")
            try:
                status, err = await state.sync(custom_resource, info_catalog)
            except Exception as e:
                logger.error(f"State {state.name} raised: {e}", exc_info=True)
                status, err = SyncStatus.ERROR, e

            result = Result(state_name=state.name, status=status, err_info=err)
            results.states_status.append(result)

            if status != SyncStatus.READY:
                states_ready = False
            if status == SyncStatus.ERROR:
                logger.warning(f"Error while syncing state {state.name}: {err}")

        if states_ready:
            results.status = SyncStatus.READY
            logger.info("Sync done for custom resource")
        else:
            logger.info("Sync not done for custom resource")
        return results
