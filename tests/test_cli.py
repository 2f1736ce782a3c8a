"""
Tests for the modify_order CLI helpers.
"""
from __future__ import annotations

import pytest

from cli.modify_order import ConsoleDecisionSurface, print_staged, stage_changes
from ordermod.schemas import OutcomeType
from ordermod.services.change_set import ChangeSetBuilder
from ordermod.services.outcome import build_preview


def test_stage_changes_from_file_format(order_factory):
    builder = ChangeSetBuilder(order_factory())
    stage_changes(builder, {
        "note": "Customer swapped sizes",
        "add_items": [{"product_variant_id": "v-hat", "product_variant_name": "Hat",
                       "price": 500, "price_with_tax": 550, "quantity": 3}],
        "adjust_lines": {"L2": 0},
        "surcharges": [{"description": "Restocking fee", "price": 300, "tax_rate": 20}],
        "shipping_address": {"city": "Berlin"},
        "recalculate_shipping": False,
    })

    request = builder.build()
    assert request.note == "Customer swapped sizes"
    assert request.add_items[0].quantity == 3
    assert request.adjust_order_lines[0].order_line_id == "L2"
    assert request.surcharges[0].description == "Restocking fee"
    assert request.update_shipping_address.city == "Berlin"
    assert request.options.recalculate_shipping is False
    assert builder.can_preview()


@pytest.mark.asyncio
async def test_assume_yes_refunds_only_on_decrease(order_factory, capsys):
    builder = ChangeSetBuilder(order_factory())
    original = order_factory()
    cheaper = original.model_copy(update={"total_with_tax": 600})
    dearer = original.model_copy(update={"total_with_tax": 1500})
    surface = ConsoleDecisionSurface(True, "pay_1", "customer request")

    refund = await surface.decide(build_preview(builder.build(), original, cheaper, 1000))
    apply = await surface.decide(build_preview(builder.build(), original, dearer, 1000))

    assert refund.type is OutcomeType.REFUND
    assert refund.refund_payment_id == "pay_1"
    assert apply.type is OutcomeType.APPLY
    assert "delta -400" in capsys.readouterr().out


def test_print_staged_shows_net_and_gross(order_factory, capsys):
    builder = ChangeSetBuilder(order_factory())
    stage_changes(builder, {
        "note": "fees",
        "surcharges": [
            {"description": "Restocking fee", "price": 300, "price_includes_tax": False, "tax_rate": 20},
            {"description": "Gift wrap", "price": 120, "tax_rate": 20},
        ],
    })

    print_staged(builder)

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "Surcharge 'Restocking fee': 300 excl. 20% tax -> net 300, gross 360"
    assert out[1] == "Surcharge 'Gift wrap': 120 incl. 20% tax -> net 100, gross 120"
