import json

from territory_lookup.config import Config
from territory_lookup.registry import OperatorRegistry


def test_loads_operators(registry):
    oncor = registry.operator("ONCOR")
    assert oncor.name == "Oncor Electric Delivery"
    assert oncor.registry_number == "1039940674000"
    assert registry.by_registry_number("007929441").key == "TNMP"
    assert registry.by_registry_number("nope") is None
    assert len(registry.operators) == 6


def test_multi_operator_config(registry):
    cfg = registry.multi_operator_config("75001")
    assert cfg.primary.key == "ONCOR"
    assert [a.key for a in cfg.alternates] == ["TNMP"]
    assert cfg.requires_address_validation
    assert cfg.boundary_type == "street-level"
    assert registry.multi_operator_config("78701") is None
    assert "77002" in registry.multi_operator_zips()


def test_street_rules(registry):
    rules = registry.street_rules("75001")
    assert len(rules) == 1
    assert rules[0].operator.key == "TNMP"
    assert rules[0].matches("Belt Line", 1234)
    assert rules[0].matches("beltline", 10)
    assert not rules[0].matches("Main", 1234)
    assert not rules[0].matches("Belt Line", None)
    assert not rules[0].matches("Belt Line", 12000)
    assert registry.street_rules("75019") == []


def test_fallback_by_city(registry):
    match = registry.fallback_operator("78701")
    assert match.operator.key == "AEP_CENTRAL"
    assert match.inferred_city == "austin"
    assert match.source == "city"


def test_fallback_by_range(registry):
    # 75500 is outside the Dallas city range but inside the ONCOR range
    match = registry.fallback_operator("75500")
    assert match.operator.key == "ONCOR"
    assert match.inferred_city is None
    assert match.source == "range"


def test_fallback_default(registry):
    match = registry.fallback_operator("88510")
    assert match.operator.key == "ONCOR"
    assert match.source == "default"


def test_stats(registry):
    stats = registry.stats()
    assert stats["total_zip_codes"] == 23
    assert stats["requires_validation"] == 22
    assert sum(stats["by_boundary_type"].values()) == 23
    assert stats["by_metro_area"]["houston"] == 5


def test_shipped_configuration_is_valid(registry):
    result = registry.validate_configuration()
    assert result.is_valid, result.issues
    assert any("street-level boundary without street rules" in r for r in result.recommendations)


def _write(path, data):
    path.write_text(json.dumps(data))
    return path


def test_bad_configuration_is_reported(tmp_path):
    config = Config(
        operators_file=_write(tmp_path / "ops.json", {
            "A": {"registry_number": "1", "name": "A", "zone": "North", "tier": 1, "priority": 1.0},
        }),
        multi_operator_file=_write(tmp_path / "multi.json", {
            "75001": {"primary": "A", "alternates": ["A", "GHOST"], "boundary_type": "street-level"},
            "75002": {"primary": "MISSING", "alternates": []},
        }),
        street_rules_file=_write(tmp_path / "rules.json", {
            "75001": [{"operator": "A", "pattern": "("}],
        }),
        zip_fallback_file=tmp_path / "absent.json",
    )
    result = OperatorRegistry(config).validate_configuration()
    assert not result.is_valid
    text = "\n".join(result.issues)
    assert "unknown operator 'GHOST'" in text
    assert "unknown primary operator 'MISSING'" in text
    assert "bad street pattern" in text
    assert "primary operator listed as alternate" in text
    assert "No postal-code fallback data configured" in text


def test_non_ascii_zip_has_no_fallback_city(registry):
    assert registry.infer_city("７５００１") is None
