"""
===============================================================================
ORRERY SIM - Star-System Configuration Test Suite
===============================================================================
Tests for quantity parsing (units, malformed values), body entries, and
loading complete star-system files from YAML and TOML.
===============================================================================
"""

import sys
import os
import textwrap

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from numpy.testing import assert_allclose

from core.constants import AU, KILOMETER, MASS_EARTH, MASS_SOL, PARSEC, SECONDS_PER_DAY
from orrery.config import (
    BodyKind,
    OrreryConfig,
    OrreryConfigError,
    body_from_dict,
    config_from_yaml,
    load_orrery_config,
    parse_distance,
    parse_mass,
    parse_time,
)
from orrery.solver import Orrery


SYSTEM_YAML = textwrap.dedent("""
    name: mini
    bodies:
      - name: Sol
        class: star
        lumens: 3.8e28
        mass: "1 massSol"
      - name: Terra
        parent: Sol
        mass: "1 massEarth"
        radius: "6371 km"
        semi_major: "1 au"
        period: "365.25 d"
        eccentricity: 0.0167
        rotation_period: "23.9345 h"
""")


# =============================================================================
# Test: Quantities
# =============================================================================

class TestQuantities:
    """Unit-bearing quantity strings."""

    @pytest.mark.parametrize("text, expected", [
        ("1 au", AU),
        ("2.5 km", 2500.0),
        ("100 m", 100.0),
        ("1 pc", PARSEC),
        ("0.5 AU", 0.5 * AU),
        ("42", 42.0),
    ])
    def test_distance(self, text, expected):
        assert_allclose(parse_distance(text), expected, rtol=1e-15)

    @pytest.mark.parametrize("text, expected", [
        ("1 massSol", MASS_SOL),
        ("3 massEarth", 3.0 * MASS_EARTH),
        ("7 kg", 7.0),
    ])
    def test_mass(self, text, expected):
        assert_allclose(parse_mass(text), expected, rtol=1e-15)

    @pytest.mark.parametrize("text, expected", [
        ("1 d", SECONDS_PER_DAY),
        ("2 days", 2.0 * SECONDS_PER_DAY),
        ("1.5 h", 5400.0),
        ("1 yr", 365.25 * SECONDS_PER_DAY),
        ("30 s", 30.0),
    ])
    def test_time(self, text, expected):
        assert_allclose(parse_time(text), expected, rtol=1e-15)

    def test_plain_number_is_base_unit(self):
        assert parse_distance(1.5e11) == 1.5e11
        assert parse_mass(10) == 10.0

    @pytest.mark.parametrize("bad", ["1 furlong", "au", "", "   ", "1 2 3", True, [1, "au"], None])
    def test_malformed_distance(self, bad):
        with pytest.raises(OrreryConfigError):
            parse_distance(bad)

    def test_unknown_unit_message(self):
        with pytest.raises(OrreryConfigError, match="unknown mass unit"):
            parse_mass("5 stones")


# =============================================================================
# Test: Body entries
# =============================================================================

class TestBodyEntries:
    """Flat body mappings."""

    def test_defaults(self):
        body = body_from_dict({"name": "Rock"})
        assert body.parent is None
        assert body.body_class.kind is BodyKind.PLANET
        assert body.orbit.semi_major == 0.0
        assert body.rotation.rotation_period == 0.0
        assert body.mass == 0.0

    def test_star_requires_lumens(self):
        with pytest.raises(OrreryConfigError, match="lumens"):
            body_from_dict({"name": "Dim", "class": "star"})

    def test_star(self):
        body = body_from_dict({"name": "Bright", "class": "star", "lumens": 1e28})
        assert body.body_class.is_star
        assert body.body_class.lumens == 1e28

    def test_unknown_class(self):
        with pytest.raises(OrreryConfigError, match="unknown body class"):
            body_from_dict({"name": "Odd", "class": "comet"})

    def test_error_names_body(self):
        with pytest.raises(OrreryConfigError, match="body Terra"):
            body_from_dict({"name": "Terra", "radius": "6371 leagues"})

    def test_non_numeric_angle(self):
        with pytest.raises(OrreryConfigError, match="inclination"):
            body_from_dict({"name": "Tilted", "inclination": "steep"})

    def test_missing_name(self):
        with pytest.raises(OrreryConfigError):
            body_from_dict({"mass": 1.0})


# =============================================================================
# Test: Whole systems
# =============================================================================

class TestSystemLoading:
    """YAML/TOML star-system files."""

    def test_from_yaml_string(self):
        cfg = config_from_yaml(SYSTEM_YAML)
        assert cfg.name == "mini"
        assert [b.name for b in cfg.bodies] == ["Sol", "Terra"]
        terra = cfg.bodies[1]
        assert terra.parent == "Sol"
        assert_allclose(terra.radius, 6371.0 * KILOMETER)
        assert_allclose(terra.orbit.period, 365.25 * SECONDS_PER_DAY)

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "mini.star.yaml"
        path.write_text(SYSTEM_YAML)
        orrery = Orrery.from_config(load_orrery_config(path))
        assert orrery.names == ["Sol", "Terra"]

    def test_load_toml_file(self, tmp_path):
        path = tmp_path / "mini.star.toml"
        path.write_text(textwrap.dedent("""
            name = "mini"

            [[bodies]]
            name = "Sol"
            class = "star"
            lumens = 3.8e28
            mass = "1 massSol"

            [[bodies]]
            name = "Terra"
            parent = "Sol"
            semi_major = "1 au"
            mass = "1 massEarth"
        """))
        cfg = load_orrery_config(path)
        assert cfg.bodies[0].body_class.is_star
        assert_allclose(cfg.bodies[1].orbit.semi_major, AU)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "mini.json"
        path.write_text("{}")
        with pytest.raises(OrreryConfigError, match="unsupported"):
            load_orrery_config(path)

    def test_missing_name(self):
        with pytest.raises(OrreryConfigError):
            OrreryConfig.from_dict({"bodies": []})

    def test_bodies_not_a_list(self):
        with pytest.raises(OrreryConfigError):
            OrreryConfig.from_dict({"name": "x", "bodies": {"name": "Sol"}})

    def test_not_a_mapping(self):
        with pytest.raises(OrreryConfigError):
            config_from_yaml("- just\n- a list\n")

    def test_bundled_system_loads(self):
        path = os.path.join(os.path.dirname(__file__), '..', '..', 'config', 'taale.star.yaml')
        orrery = Orrery.from_config(load_orrery_config(path))
        assert "Taale" in orrery
        assert orrery.get_body("Vesi").parent == "Ilmar"
        assert orrery.get_body("Kaukas").orbit.period > 0.0
