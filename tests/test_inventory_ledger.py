import pytest

from application.services.inventory_service import InventoryService
from domain.common.exceptions import DomainValidationException, InsufficientInventoryException
from domain.inventory.entity import MovementType


VARIANT = "var_mug_blue"
LOCATION = "blr-wh-1"


async def _stock(uow_factory, quantity=10):
    async with uow_factory() as uow:
        return await uow.inventory_ledger.receive(VARIANT, LOCATION, quantity, created_by="ops")


@pytest.mark.asyncio
async def test_movements_conserve_total(uow_factory):
    await _stock(uow_factory, 10)
    async with uow_factory() as uow:
        ledger = uow.inventory_ledger
        await ledger.reserve(VARIANT, LOCATION, 4, reference_id="1")
        await ledger.commit(VARIANT, LOCATION, 3, reference_id="1")
        await ledger.release(VARIANT, LOCATION, 1, reference_id="1")
        await ledger.restock(VARIANT, LOCATION, 2, reference_id="1")
        level = await ledger.get_level(VARIANT, LOCATION)

    assert (level.available, level.reserved, level.committed) == (9, 0, 1)
    assert level.total == 10


@pytest.mark.asyncio
async def test_reserve_beyond_available_is_rejected_without_change(uow_factory):
    await _stock(uow_factory, 3)
    with pytest.raises(InsufficientInventoryException):
        async with uow_factory() as uow:
            await uow.inventory_ledger.reserve(VARIANT, LOCATION, 5, reference_id="7")

    async with uow_factory(readonly=True) as uow:
        level = await uow.inventory_ledger.get_level(VARIANT, LOCATION)
    assert (level.available, level.reserved) == (3, 0)


@pytest.mark.asyncio
async def test_commit_clamps_at_reserved_and_flags_inconsistency(uow_factory):
    await _stock(uow_factory, 10)
    async with uow_factory() as uow:
        await uow.inventory_ledger.reserve(VARIANT, LOCATION, 2, reference_id="8")
        adjustment = await uow.inventory_ledger.commit(VARIANT, LOCATION, 5, reference_id="8")
        level = await uow.inventory_ledger.get_level(VARIANT, LOCATION)

    assert adjustment.movement == MovementType.COMMIT
    assert adjustment.requested == 5
    assert adjustment.applied == 2
    assert adjustment.inconsistent
    assert adjustment.shortfall == 3
    assert (level.available, level.reserved, level.committed) == (8, 0, 2)


@pytest.mark.asyncio
async def test_release_on_missing_row_applies_nothing(uow_factory):
    async with uow_factory() as uow:
        adjustment = await uow.inventory_ledger.release("var_unknown", LOCATION, 2, reference_id="9")
        level = await uow.inventory_ledger.get_level("var_unknown", LOCATION)

    assert adjustment.applied == 0
    assert adjustment.inconsistent
    assert level is None


@pytest.mark.asyncio
async def test_non_positive_quantity_is_invalid(uow_factory):
    await _stock(uow_factory, 1)
    async with uow_factory() as uow:
        with pytest.raises(DomainValidationException):
            await uow.inventory_ledger.reserve(VARIANT, LOCATION, 0)
        with pytest.raises(DomainValidationException):
            await uow.inventory_ledger.restock(VARIANT, LOCATION, -1)


@pytest.mark.asyncio
async def test_journal_lists_newest_first_and_filters_by_reference(uow_factory):
    await _stock(uow_factory, 10)
    async with uow_factory() as uow:
        await uow.inventory_ledger.reserve(VARIANT, LOCATION, 1, reference_id="41")
        await uow.inventory_ledger.reserve(VARIANT, LOCATION, 1, reference_id="42")

    service = InventoryService(uow_factory)
    entries = await service.list_adjustments(variant_id=VARIANT)
    assert [e.movement for e in entries] == [MovementType.RESERVE, MovementType.RESERVE, MovementType.RECEIVE]

    only_42 = await service.list_adjustments(reference_id="42")
    assert len(only_42) == 1
    assert only_42[0].reference_type == "order"


@pytest.mark.asyncio
async def test_inventory_service_receive_accumulates(uow_factory):
    service = InventoryService(uow_factory)
    await service.receive(VARIANT, LOCATION, 5, actor="ops@example.com")
    level = await service.receive(VARIANT, LOCATION, 7, actor="ops@example.com")

    assert level.available == 12
    assert (await service.get_level(VARIANT, LOCATION)).available == 12
    with pytest.raises(DomainValidationException):
        await service.receive(VARIANT, LOCATION, 0)
