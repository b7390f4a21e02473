"""Shared plumbing for services that move an order between statuses.

A transition is always: guard it with OrderStateMachine, write it with a
compare-and-swap on the status that was read, then append the audit event.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from phasion_escrow.domain.enums import OrderStatus, ProfileRole
from phasion_escrow.domain.exceptions import (
    CounterpartyWalletMissingError,
    InvalidStateTransitionError,
    NotOrderPartyError,
    OrderNotFoundError,
)
from phasion_escrow.domain.state_machine import OrderStateMachine
from phasion_escrow.infrastructure.database.repositories import (
    DisputeRepository,
    EventRepository,
    OrderRepository,
    ProfileRepository,
)
from phasion_escrow.services.notification_service import NotificationService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.domain.enums import EventType
    from phasion_escrow.infrastructure.database.orm_models import EscrowOrder, Profile


class OrderServiceBase:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._orders = OrderRepository(session)
        self._events = EventRepository(session)
        self._disputes = DisputeRepository(session)
        self._profiles = ProfileRepository(session)
        self._notifications = NotificationService(session)

    async def _get_order_or_raise(
        self,
        order_id: uuid.UUID,
        fresh: bool = False,
        for_update: bool = False,
    ) -> EscrowOrder:
        order = await self._orders.get_by_id(order_id, fresh=fresh, for_update=for_update)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _fire_transition(self, order: EscrowOrder, event_name: str) -> OrderStatus:
        """Validate a state machine transition and return the status it leads to.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = OrderStateMachine(current_status=order.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(order.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(order.status, event_name) from err
        return OrderStatus(sm.status)

    async def _transition(
        self,
        order: EscrowOrder,
        event_name: str,
        event_type: EventType,
        actor: str,
        tx_ref: str | None = None,
        metadata: dict | None = None,
        **values: Any,
    ) -> EscrowOrder:
        old_status = OrderStatus(order.status)
        new_status = self._fire_transition(order, event_name)
        await self._orders.transition(order, [old_status], new_status, **values)
        await self._events.record(
            order_id=order.id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            tx_ref=tx_ref,
            metadata=metadata,
        )
        return order

    async def _wallet_of(self, profile_id: uuid.UUID, role: ProfileRole) -> str:
        profile = await self._profiles.get_by_id(profile_id)
        if profile is None or not profile.wallet_address:
            raise CounterpartyWalletMissingError(str(profile_id), role.value)
        return profile.wallet_address

    async def _display_name(self, profile_id: uuid.UUID) -> str:
        profile = await self._profiles.get_by_id(profile_id)
        return profile.display_name if profile else "Unknown"

    async def _require_actor(
        self,
        order: EscrowOrder,
        actor_id: uuid.UUID | None,
        *parties: uuid.UUID,
    ) -> Profile | None:
        """Allow `actor_id` if it is one of `parties` or an admin. None means system."""
        if actor_id is None:
            return None
        profile = await self._profiles.get_by_id(actor_id)
        if actor_id in parties or (profile is not None and profile.role == ProfileRole.ADMIN):
            return profile
        raise NotOrderPartyError(str(order.id), str(actor_id))

    async def _require_admin(self, order_id: uuid.UUID, actor_id: uuid.UUID | None) -> None:
        """Allow `actor_id` only if it is an admin profile. None means system."""
        if actor_id is None:
            return
        profile = await self._profiles.get_by_id(actor_id)
        if profile is None or profile.role != ProfileRole.ADMIN:
            raise NotOrderPartyError(str(order_id), str(actor_id))


def actor_label(actor_id: uuid.UUID | None) -> str:
    return str(actor_id) if actor_id is not None else "SYSTEM"
