"""
Runs one state machine operation inside its own unit of work.

The order transaction commits first; the collected domain events are audited
afterwards so a failing audit write can never undo a business change.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from core.logging_config import get_logger
from domain.audit.entity import AuditAction, AuditContext, AuditLogEntry
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.service import OrderStateMachine, TransitionOutcome
from .audit_service import AuditLogger


logger = get_logger(__name__)

Operation = Callable[[OrderStateMachine], Awaitable[TransitionOutcome]]


class TransitionRunner:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        audit: AuditLogger,
        *,
        default_location_id: str = "default",
    ) -> None:
        self._uow_factory = uow_factory
        self._audit = audit
        self._default_location_id = default_location_id

    def _machine(self, uow: AbstractUnitOfWork) -> OrderStateMachine:
        return OrderStateMachine(
            uow.order_repository,
            uow.payment_repository,
            uow.refund_repository,
            uow.inventory_ledger,
            default_location_id=self._default_location_id,
        )

    async def read(self, operation: Callable[[OrderStateMachine], Awaitable[Any]]) -> Any:
        """Run a lookup against a readonly unit of work; nothing is written."""
        async with self._uow_factory(readonly=True) as uow:
            return await operation(self._machine(uow))

    async def run(
        self,
        operation: Operation,
        context: AuditContext,
        *,
        name: str,
        failure_action: Optional[AuditAction] = None,
        resource: Optional[tuple[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> TransitionOutcome:
        """Execute ``operation``; BusinessException propagates after the rollback."""
        try:
            async with self._uow_factory() as uow:
                machine = self._machine(uow)
                outcome = await operation(machine)
                events = machine.clear_events()
        except BusinessException as exc:
            logger.info(
                "order_transition_rejected",
                operation=name,
                code=exc.code,
                error=exc.message,
                actor_id=context.actor_id,
            )
            if failure_action is not None and resource is not None:
                await self._audit.append(AuditLogEntry.build(
                    failure_action.value,
                    resource[0],
                    resource[1],
                    context,
                    changes={"details": exc.details or {}},
                    metadata=metadata or {},
                    status="failure",
                    error_message=exc.message,
                ))
            raise

        logger.info(
            "order_transition_applied",
            operation=name,
            order_id=outcome.order.id if outcome.order else None,
            processed=outcome.processed,
            events=len(events),
        )
        await self._audit.record_events(events, context, metadata=metadata)
        return outcome
