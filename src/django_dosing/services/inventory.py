"""Inventory writes outside of recording.

Recording consumes units itself; these cover restocks, corrections and
choosing which supply unit is currently in use for an animal.
"""

import logging

from django.db import transaction
from django.utils import timezone

from ..audit import Actions
from ..conf import get_audit_emitter
from ..exceptions import DosingValidationError
from ..models import Animal, InventoryItem
from .recording import get_scoped


logger = logging.getLogger(__name__)


def update_inventory_quantity(
    household_id,
    item_id,
    units_remaining: int,
    quantity_total: int = None,
    actor=None,
    *,
    audit=None,
) -> InventoryItem:
    """
    Set the remaining (and optionally total) units of an inventory item.

    Raises:
        NotFound: Item not in this household
        DosingValidationError: Negative counts
    """
    if units_remaining is None or int(units_remaining) < 0:
        raise DosingValidationError("units_remaining must be >= 0", field="units_remaining")
    if quantity_total is not None and int(quantity_total) < 0:
        raise DosingValidationError("quantity_total must be >= 0", field="quantity_total")

    with transaction.atomic():
        item = get_scoped(
            InventoryItem.objects.select_for_update(),
            "InventoryItem",
            item_id,
            household_id=household_id,
        )
        previous = item.units_remaining
        item.units_remaining = int(units_remaining)
        fields = ["units_remaining", "updated_at"]
        if quantity_total is not None:
            item.quantity_total = int(quantity_total)
            fields.append("quantity_total")
        item.save(update_fields=fields)

        emitter = audit or get_audit_emitter()
        transaction.on_commit(
            lambda: emitter.emit(
                Actions.INVENTORY_UPDATED,
                household_id=household_id,
                actor_id=getattr(actor, "pk", None),
                obj=item,
                metadata={"units_remaining": {"old": previous, "new": item.units_remaining}},
            )
        )

    logger.info("Inventory item %s set to %s units", item.pk, item.units_remaining)
    return item


def mark_inventory_in_use(household_id, item_id, animal_id=None, actor=None, *, audit=None) -> InventoryItem:
    """
    Mark an item as the one in use, optionally assigning it to an animal.

    Other in-use items of the same medication for that animal (or unassigned,
    when no animal is given) are cleared.
    """
    with transaction.atomic():
        item = get_scoped(
            InventoryItem.objects.select_for_update(),
            "InventoryItem",
            item_id,
            household_id=household_id,
        )
        animal = None
        if animal_id is not None:
            animal = get_scoped(Animal.objects, "Animal", animal_id, household_id=household_id)

        InventoryItem.objects.filter(
            household_id=household_id,
            medication_id=item.medication_id,
            assigned_animal=animal,
            in_use=True,
        ).exclude(pk=item.pk).update(in_use=False, updated_at=timezone.now())

        item.in_use = True
        item.assigned_animal = animal
        item.save(update_fields=["in_use", "assigned_animal", "updated_at"])

        emitter = audit or get_audit_emitter()
        transaction.on_commit(
            lambda: emitter.emit(
                Actions.INVENTORY_MARKED_IN_USE,
                household_id=household_id,
                actor_id=getattr(actor, "pk", None),
                obj=item,
                metadata={"animal_id": str(animal.pk) if animal else None},
            )
        )

    logger.info("Inventory item %s marked in use", item.pk)
    return item
