import pytest

from core.pricing import LegacyPricingRecord, PricingRecordV2, PricingUnit, Resolution, SchemaVersion, parse_record


def test_records_are_tagged():
    assert LegacyPricingRecord(0.039, 25).schema_version == SchemaVersion.V1
    assert PricingRecordV2(PricingUnit.PER_IMAGE, 0.04).schema_version == SchemaVersion.V2


def test_v2_payload_shape():
    record = PricingRecordV2(PricingUnit.PER_MEGAPIXEL, 0.005, resolutions=[Resolution("Square HD", 1024, 1024)])
    assert record.to_payload() == {
        "schema_version": "v2",
        "pricing_unit": "PER_MEGAPIXEL",
        "base_cost": 0.005,
        "gpu_type": None,
        "resolutions": [{"name": "Square HD", "width": 1024, "height": 1024}],
    }


def test_parse_record_uses_tag():
    record = PricingRecordV2(PricingUnit.PER_SECOND_GPU, 0.001, gpu_type="H100")
    assert parse_record(record.to_payload()) == record


def test_parse_record_classifies_untagged_payloads():
    assert parse_record({"cost_per_image": 0.039, "runs_per_dollar": 25}) == LegacyPricingRecord(0.039, 25)
    assert isinstance(parse_record({"pricing_unit": "FREE", "base_cost": 0}), PricingRecordV2)


def test_parse_record_unknown_version():
    with pytest.raises(ValueError):
        parse_record({"schema_version": "v3"})


def test_selectable_resolutions_skip_sentinel():
    record = PricingRecordV2(
        PricingUnit.PER_MEGAPIXEL,
        0.005,
        resolutions=[Resolution("Default", 0, 0), Resolution("Square", 512, 512)],
    )
    assert [r.name for r in record.selectable_resolutions()] == ["Square"]
    assert record.resolutions[0].is_sentinel
