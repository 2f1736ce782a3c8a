"""
Unit tests for staging edits into a change set.
"""
from __future__ import annotations

import pytest

from ordermod.errors import StagingLockedError
from ordermod.schemas import SurchargeInput
from ordermod.services.change_set import SURCHARGE_DRAFT_DEFAULTS, ChangeSetBuilder


@pytest.fixture
def builder(order_factory) -> ChangeSetBuilder:
    return ChangeSetBuilder(order_factory())


def test_adding_same_variant_twice_increments_quantity(builder, catalog):
    builder.add_item(catalog["v-hat"])
    builder.add_item(catalog["v-hat"])

    request = builder.build()
    assert len(request.add_items) == 1
    assert request.add_items[0].product_variant_id == "v-hat"
    assert request.add_items[0].quantity == 2


def test_readding_keeps_first_snapshot(builder, catalog):
    builder.add_item(catalog["v-hat"])
    builder.add_item(catalog["v-hat"].model_copy(update={"price_with_tax": 9999}))

    (line,) = builder.added_lines
    assert line.price_with_tax == 550
    assert line.quantity == 2


def test_added_items_keep_insertion_order(builder, catalog):
    builder.add_item(catalog["v-scarf"])
    builder.add_item(catalog["v-hat"])
    builder.add_item(catalog["v-scarf"])

    assert [i.product_variant_id for i in builder.build().add_items] == ["v-scarf", "v-hat"]


def test_remove_item_deletes_entry(builder, catalog):
    builder.add_item(catalog["v-hat"])
    builder.add_item(catalog["v-hat"])
    builder.remove_item("v-hat")

    assert builder.build().add_items == ()
    assert builder.added_lines == []


def test_set_added_item_quantity(builder, catalog):
    builder.add_item(catalog["v-hat"])
    builder.set_added_item_quantity("v-hat", 5)
    assert builder.build().add_items[0].quantity == 5


@pytest.mark.parametrize("qty", [0, -1, 2.5, True])
def test_set_added_item_quantity_rejects_non_positive(builder, catalog, qty):
    builder.add_item(catalog["v-hat"])
    with pytest.raises(ValueError):
        builder.set_added_item_quantity("v-hat", qty)


def test_set_added_item_quantity_unknown_variant(builder):
    with pytest.raises(KeyError):
        builder.set_added_item_quantity("v-nope", 2)


def test_line_adjustment_back_to_original_is_dropped(builder):
    builder.set_line_quantity("L1", 3)
    assert builder.is_line_modified("L1")

    builder.set_line_quantity("L1", 1)   # original quantity

    assert builder.build().adjust_order_lines == ()
    assert not builder.is_line_modified("L1")


def test_line_adjustment_to_original_is_never_created(builder):
    builder.set_line_quantity("L2", 1)
    assert builder.build().adjust_order_lines == ()


def test_line_adjustment_updates_in_place(builder):
    builder.set_line_quantity("L1", 3)
    builder.set_line_quantity("L1", 0)

    (adj,) = builder.build().adjust_order_lines
    assert (adj.order_line_id, adj.quantity) == ("L1", 0)


def test_unknown_line_rejected(builder):
    with pytest.raises(KeyError):
        builder.set_line_quantity("L999", 2)


def test_add_surcharge_resets_draft(builder):
    builder.surcharge_draft.update(price=300, price_includes_tax=False, tax_rate=20)
    builder.add_surcharge(SurchargeInput(description="Restocking fee", price=300, tax_rate=20))

    assert builder.surcharge_draft == SURCHARGE_DRAFT_DEFAULTS
    assert len(builder.build().surcharges) == 1


def test_remove_surcharge_by_position(builder):
    builder.add_surcharge(SurchargeInput(description="A", price=100))
    builder.add_surcharge(SurchargeInput(description="B", price=200))
    builder.remove_surcharge(0)

    assert [s.description for s in builder.surcharges] == ["B"]
    with pytest.raises(IndexError):
        builder.remove_surcharge(5)


# ── Preview gate ─────────────────────────────────────────────────────────────

def test_cannot_preview_without_note(builder, catalog):
    builder.add_item(catalog["v-hat"])
    assert not builder.can_preview()


def test_cannot_preview_without_changes(builder):
    builder.set_note("Customer called")
    assert not builder.can_preview()


def test_can_preview_with_change_and_note(builder, catalog):
    builder.set_note("Customer called")
    builder.add_item(catalog["v-hat"])
    assert builder.can_preview()

    builder.remove_item("v-hat")
    assert not builder.can_preview()


@pytest.mark.parametrize("stage", ["surcharge", "adjustment", "shipping", "billing"])
def test_each_change_kind_opens_the_gate(builder, stage):
    builder.set_note("note")
    if stage == "surcharge":
        builder.add_surcharge(SurchargeInput(description="Fee", price=100))
    elif stage == "adjustment":
        builder.set_line_quantity("L2", 0)
    elif stage == "shipping":
        builder.update_shipping_address(city="Paris")
    else:
        builder.update_billing_address(postal_code="75001")
    assert builder.can_preview()


# ── Addresses ────────────────────────────────────────────────────────────────

def test_address_patch_contains_only_changed_fields(builder):
    builder.update_shipping_address(city="Paris", full_name="Ada Lovelace")

    patch = builder.build().update_shipping_address
    assert patch.model_dump(exclude_none=True) == {"city": "Paris"}


def test_address_edit_back_to_original_is_not_dirty(builder):
    builder.update_shipping_address(city="Paris")
    builder.update_shipping_address(city="London")

    assert not builder.shipping_address.dirty
    assert builder.build().update_shipping_address is None


def test_invalid_address_edit_is_not_submitted(builder):
    builder.set_note("note")
    builder.update_billing_address(country_code="Germany")

    assert builder.billing_address.dirty
    assert not builder.billing_address.valid
    assert builder.billing_address.errors
    assert builder.build().update_billing_address is None
    assert not builder.can_preview()


def test_unknown_address_field(builder):
    with pytest.raises(KeyError):
        builder.update_shipping_address(planet="Mars")


# ── Build / lock ─────────────────────────────────────────────────────────────

def test_dry_run_and_commit_carry_same_content(builder, catalog):
    builder.set_note("swap")
    builder.add_item(catalog["v-hat"])
    builder.set_line_quantity("L2", 0)
    builder.set_recalculate_shipping(False)

    dry = builder.build(dry_run=True)
    wet = builder.build(dry_run=False)
    assert dry.dry_run and not wet.dry_run
    assert dry.staged_content() == wet.staged_content()
    assert dry.options.recalculate_shipping is False


def test_staging_locked_during_submission(builder, catalog):
    with builder.submitting():
        with pytest.raises(StagingLockedError):
            builder.add_item(catalog["v-hat"])
        with pytest.raises(StagingLockedError):
            builder.set_note("x")
    builder.add_item(catalog["v-hat"])
    assert builder.build().add_items


# ── Cleared address fields / surcharge draft ─────────────────────────────────

def test_cleared_optional_field_is_kept_in_patch(builder):
    builder.set_note("no company")
    builder.update_billing_address(company="ACME")
    builder.update_billing_address(company=None, postal_code="N2")

    assert builder.billing_address.dirty
    patch = builder.build().update_billing_address
    assert patch.model_dump(exclude_unset=True) == {"postal_code": "N2"}

    builder.update_shipping_address(full_name=None)
    patch = builder.build().update_shipping_address
    assert patch.model_dump(exclude_unset=True) == {"full_name": None}
    assert builder.can_preview()


def test_clearing_required_address_field_blocks_preview(builder, catalog):
    builder.set_note("move")
    builder.update_shipping_address(city=None)

    assert builder.shipping_address.dirty
    assert not builder.shipping_address.valid
    assert builder.build().update_shipping_address is None
    assert not builder.can_preview()

    builder.add_item(catalog["v-hat"])
    assert not builder.can_preview()


def test_surcharge_draft_reconciles_on_edit(builder):
    prices = builder.update_surcharge_draft(price=1200, tax_rate=20)

    assert (prices.net, prices.gross) == (1000, 1200)
    assert builder.draft_prices == prices

    prices = builder.update_surcharge_draft(price_includes_tax=False)
    assert (prices.net, prices.gross) == (1200, 1440)


def test_surcharge_draft_rejects_bad_input(builder):
    builder.update_surcharge_draft(price=500, tax_rate=10)

    with pytest.raises(ValueError):
        builder.update_surcharge_draft(tax_rate=-5)
    with pytest.raises(KeyError):
        builder.update_surcharge_draft(colour="red")
    assert builder.surcharge_draft["tax_rate"] == 10


def test_surcharge_draft_reset_after_adding(builder):
    builder.update_surcharge_draft(price=500, tax_rate=10)
    builder.add_surcharge(SurchargeInput(description="Fee", price=500, tax_rate=10))

    assert builder.surcharge_draft == SURCHARGE_DRAFT_DEFAULTS
    assert builder.draft_prices.gross == 0
