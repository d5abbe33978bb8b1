"""Rule parsing, shape interpretation and the rule store."""
import json

import pytest

from multipack_hub import database
from multipack_hub.db_models import VariantRule
from multipack_hub.exceptions import RuleValidationError
from multipack_hub.models import VariantRuleIn
from multipack_hub.services.rules import (
    LegacyMultiplierRule,
    Mapping,
    MappingRule,
    RuleBook,
    RuleService,
    VariantDelta,
    VarietyPackRule,
    interpret_rule,
    parse_mappings,
)

from fakes import SHOP, vid


def _row(**kw):
    kw.setdefault("shop", SHOP)
    kw.setdefault("variant_id", vid(1))
    return VariantRule(**kw)


class TestParseMappings:
    def test_json_text(self):
        raw = json.dumps([{"targetVariantId": vid(2), "multiplier": 3}])
        assert parse_mappings(raw) == [Mapping(vid(2), 3)]

    def test_decoded_list(self):
        assert parse_mappings([{"targetVariantId": vid(2), "multiplier": "2"}]) == [Mapping(vid(2), 2)]

    def test_empty_list_is_allowed_at_parse_level(self):
        assert parse_mappings("[]") == []

    @pytest.mark.parametrize(
        "raw, message",
        [
            ("{not json", "Invalid deduction mappings format"),
            ('{"targetVariantId": "x"}', "Invalid deduction mappings format"),
            ('[{"targetVariantId": "x", "multiplier": 0}]', "multiplier >= 1"),
            ('[{"targetVariantId": "", "multiplier": 2}]', "multiplier >= 1"),
            ('[{"multiplier": 2}]', "multiplier >= 1"),
            ('["x"]', "multiplier >= 1"),
        ],
    )
    def test_rejects_bad_input(self, raw, message):
        with pytest.raises(RuleValidationError) as exc:
            parse_mappings(raw)
        assert message in str(exc.value)


class TestInterpretRule:
    def test_mapping_rule(self):
        shape = interpret_rule(_row(
            deduction_mappings=json.dumps([{"targetVariantId": vid(2), "multiplier": 6}]),
            calculate_inventory_for_self_mapping=True,
        ))
        assert isinstance(shape, MappingRule)
        assert shape.mappings == (Mapping(vid(2), 6),)
        assert shape.auto_reconciled

    def test_empty_mappings_are_inert(self):
        assert interpret_rule(_row(deduction_mappings="[]", type="multiplier", multiplier=3)) is None

    def test_unparseable_mappings_fall_back_to_legacy(self):
        shape = interpret_rule(_row(deduction_mappings="oops", type="multiplier", multiplier=4))
        assert shape == LegacyMultiplierRule(vid(1), 4)

    def test_legacy_multiplier_defaults_to_three(self):
        assert interpret_rule(_row(type="multiplier")) == LegacyMultiplierRule(vid(1), 3)

    def test_legacy_variety_pack(self):
        shape = interpret_rule(_row(type="variety_pack", variety_pack_flavor_ids=json.dumps([vid(7), vid(8)])))
        assert shape == VarietyPackRule(vid(1), (vid(7), vid(8)))

    def test_variety_pack_with_bad_flavors_is_inert(self):
        assert interpret_rule(_row(type="variety_pack", variety_pack_flavor_ids="nope")) is None

    def test_no_rule_shape(self):
        assert interpret_rule(_row()) is None


class TestDeltas:
    def test_mapping_rule_redirects_platform_deduction(self):
        shape = MappingRule(vid(1), (Mapping(vid(2), 2), Mapping(vid(3), 1)))
        assert shape.forward_deltas(2) == [
            VariantDelta(vid(2), -4),
            VariantDelta(vid(3), -2),
            VariantDelta(vid(1), 2),
        ]

    def test_legacy_multiplier_deducts_extra_units_only(self):
        assert LegacyMultiplierRule(vid(1), 3).forward_deltas(2) == [VariantDelta(vid(1), -4)]

    def test_variety_pack(self):
        shape = VarietyPackRule(vid(1), (vid(7), vid(8)))
        assert shape.forward_deltas(1) == [
            VariantDelta(vid(7), -1),
            VariantDelta(vid(8), -1),
            VariantDelta(vid(1), 1),
        ]

    @pytest.mark.parametrize(
        "shape",
        [
            MappingRule(vid(1), (Mapping(vid(2), 5),)),
            LegacyMultiplierRule(vid(1), 6),
            VarietyPackRule(vid(1), (vid(7),)),
        ],
    )
    def test_reverse_is_mirror_image(self, shape):
        forward = shape.forward_deltas(3)
        reverse = shape.reverse_deltas(3)
        assert [d.variant_id for d in reverse] == [d.variant_id for d in forward]
        assert all(r.delta == -f.delta for f, r in zip(forward, reverse))

    def test_self_referential_is_never_auto_reconciled(self):
        shape = MappingRule(vid(1), (Mapping(vid(1), 2), Mapping(vid(2), 1)), calculate_inventory_for_self_mapping=True)
        assert shape.is_self_referential
        assert not shape.auto_reconciled

    def test_toggle_off_is_not_auto_reconciled(self):
        shape = MappingRule(vid(1), (Mapping(vid(2), 2),), calculate_inventory_for_self_mapping=False)
        assert not shape.auto_reconciled


class TestRuleBook:
    def test_skips_inert_rows(self):
        book = RuleBook.from_rows([
            _row(variant_id=vid(1), type="multiplier", multiplier=2),
            _row(variant_id=vid(2)),
        ])
        assert len(book) == 1
        assert vid(1) in book
        assert book.get(vid(2)) is None


class TestRuleService:
    async def test_save_creates_then_updates(self):
        payload = VariantRuleIn(deductionMappings=[{"targetVariantId": vid(2), "multiplier": 3}])
        async with database.get_session_context() as db:
            first = await RuleService(db).save_rule(SHOP, vid(1), payload)
        update = VariantRuleIn(
            deductionMappings=[{"targetVariantId": vid(3), "multiplier": 1}],
            calculateInventoryForSelfMapping=True,
        )
        async with database.get_session_context() as db:
            second = await RuleService(db).save_rule(SHOP, vid(1), update)

        assert first.id == second.id
        async with database.get_session_context() as db:
            rules = await RuleService(db).list_rules(SHOP)
        assert len(rules) == 1
        assert json.loads(rules[0].deduction_mappings) == [{"targetVariantId": vid(3), "multiplier": 1}]
        assert rules[0].calculate_inventory_for_self_mapping is True

    @pytest.mark.parametrize(
        "variant_id, mappings, message",
        [
            ("", [{"targetVariantId": "x", "multiplier": 1}], "Variant ID is required"),
            (vid(1), [], "At least one deduction mapping is required"),
            (vid(1), [{"targetVariantId": vid(2), "multiplier": 0}], "multiplier >= 1"),
        ],
    )
    async def test_save_validation(self, variant_id, mappings, message):
        async with database.get_session_context() as db:
            with pytest.raises(RuleValidationError) as exc:
                await RuleService(db).save_rule(SHOP, variant_id, VariantRuleIn(deductionMappings=mappings))
        assert message in str(exc.value)

    async def test_delete_and_distinct_shops(self, add_rule):
        await add_rule(vid(1), [(vid(2), 2)])
        await add_rule(vid(3), [(vid(2), 2)])
        await add_rule(vid(1), [(vid(2), 2)], shop="other.myshopify.com")

        async with database.get_session_context() as db:
            svc = RuleService(db)
            assert await svc.shops_with_rules() == ["other.myshopify.com", SHOP]
            assert await svc.delete_rule(SHOP, vid(1)) is True
            assert await svc.delete_rule(SHOP, vid(1)) is False
            remaining = await svc.list_rules(SHOP)
        assert [r.variant_id for r in remaining] == [vid(3)]

    async def test_load_mapping_rules_skips_broken_and_legacy(self, add_rule):
        await add_rule(vid(1), [(vid(2), 2)])
        await add_rule(vid(3), raw_mappings="not json")
        await add_rule(vid(4), raw_mappings="[]")
        await add_rule(vid(5), type="multiplier", multiplier=3)
        await add_rule(vid(6), raw_mappings="oops", type="multiplier", multiplier=2)

        async with database.get_session_context() as db:
            rules = await RuleService(db).load_mapping_rules(SHOP)
        assert [r.variant_id for r in rules] == [vid(1)]
