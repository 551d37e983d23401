from __future__ import annotations

import logging

from sia.core.exceptions import AppError, AssignmentNotFound, NoActiveProposal, PersistError
from sia.schemas.allocation import AllocationProposal, SaveResult, SaveStatus
from sia.services.scheduling_client import SchedulingBackend

logger = logging.getLogger(__name__)


class SaveStateReconciler:
    """Tracks which assignments of the current proposal have been persisted.

    The per-offering status doubles as the guard against duplicate writes.
    That only holds because every mutation happens on the event loop thread
    between awaits; a threaded caller would need a real lock around it.
    """

    def __init__(self, *, backend: SchedulingBackend) -> None:
        self._backend = backend
        self._proposal: AllocationProposal | None = None
        self._status: dict[int, SaveStatus] = {}
        # Bumped on every new proposal so late persist results are dropped.
        self._epoch = 0

    @property
    def proposal(self) -> AllocationProposal | None:
        return self._proposal

    def load(self, proposal: AllocationProposal) -> None:
        self._proposal = proposal
        self._status = {offering_id: SaveStatus.unsaved for offering_id in proposal.offering_ids}
        self._epoch += 1
        logger.debug("Tracking save state for %d proposed assignment(s)", len(self._status))

    def status(self, offering_id: int) -> SaveStatus:
        if offering_id not in self._status:
            raise AssignmentNotFound(offering_id)
        return self._status[offering_id]

    def snapshot(self) -> dict[int, SaveStatus]:
        return dict(self._status)

    def pending_count(self) -> int:
        return sum(1 for status in self._status.values() if status is not SaveStatus.saved)

    def _require_proposal(self) -> AllocationProposal:
        if self._proposal is None:
            raise NoActiveProposal()
        return self._proposal

    async def save_all(self) -> SaveResult:
        proposal = self._require_proposal()
        unsaved = [a for a in proposal.assignments if self._status[a.offering_id] is SaveStatus.unsaved]
        if not unsaved:
            if any(status is SaveStatus.saving for status in self._status.values()):
                return SaveResult(outcome="in_progress", message="Allocations are still being saved")
            return SaveResult(outcome="already_complete", message="All allocations are already saved")

        epoch = self._epoch
        sent = [assignment.offering_id for assignment in unsaved]
        for offering_id in sent:
            self._status[offering_id] = SaveStatus.saving

        persisted = False
        try:
            await self._backend.persist_assignments(
                [(assignment.offering_id, assignment.instructor_id) for assignment in unsaved]
            )
            persisted = True
        except AppError as exc:
            logger.warning("Bulk save of %d allocation(s) failed: %s", len(sent), exc.message)
            raise
        except Exception as exc:
            logger.warning("Bulk save of %d allocation(s) failed: %s", len(sent), exc)
            raise PersistError(str(exc) or "Failed to save allocations") from exc
        finally:
            if not persisted and epoch == self._epoch:
                for offering_id in sent:
                    self._status[offering_id] = SaveStatus.unsaved

        if epoch != self._epoch:
            logger.info("Discarding bulk save result for a superseded proposal")
            return SaveResult(outcome="saved", offering_ids=sent, message="Allocations saved for a previous proposal")

        # Everything known ends up saved, except single saves still in flight.
        in_flight = {
            offering_id
            for offering_id, status in self._status.items()
            if status is SaveStatus.saving and offering_id not in sent
        }
        for offering_id in self._status:
            if offering_id not in in_flight:
                self._status[offering_id] = SaveStatus.saved
        logger.info("Saved %d allocation(s) in bulk", len(sent))
        return SaveResult(outcome="saved", offering_ids=sent, message=f"{len(sent)} allocation(s) saved")

    async def save_one(self, offering_id: int) -> SaveResult:
        proposal = self._require_proposal()
        assignment = proposal.assignment_for(offering_id)
        if assignment is None:
            raise AssignmentNotFound(offering_id)

        current = self._status[offering_id]
        if current is SaveStatus.saving:
            return SaveResult(outcome="in_progress", offering_ids=[offering_id], message="Allocation is already being saved")
        if current is SaveStatus.saved:
            return SaveResult(outcome="already_saved", offering_ids=[offering_id], message="Allocation is already saved")

        epoch = self._epoch
        self._status[offering_id] = SaveStatus.saving
        persisted = False
        try:
            await self._backend.persist_assignment(assignment.offering_id, assignment.instructor_id)
            persisted = True
        except AppError as exc:
            logger.warning("Saving allocation for offering %s failed: %s", offering_id, exc.message)
            raise
        except Exception as exc:
            logger.warning("Saving allocation for offering %s failed: %s", offering_id, exc)
            raise PersistError(str(exc) or "Failed to save allocation") from exc
        finally:
            if not persisted and epoch == self._epoch:
                self._status[offering_id] = SaveStatus.unsaved

        if epoch == self._epoch:
            self._status[offering_id] = SaveStatus.saved
        logger.info("Saved allocation for offering %s", offering_id)
        return SaveResult(outcome="saved", offering_ids=[offering_id], message="Allocation saved")
