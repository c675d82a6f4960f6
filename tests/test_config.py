"""
Tests for the hub configuration module.

Covers:
* Config loading and validation (valid YAML, defaults, bad values)
* Applying dial settings (success, missing dials, partial failure)
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from vu1_hub import Backlight, Easing, OpCode, ValidationError, VU1Hub
from vu1_hub.config import (
    DialConfig,
    HubConfig,
    apply_config,
    apply_dial,
    load_config,
)
from vu1_hub.constants import COLORS, DEFAULT_BAUD, DEFAULT_TIMEOUT

from conftest import CPU_UID, MEM_UID

# ══════════════════════════════════════════════════════════════════════════
#  Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def config_dir(tmp_path: Path) -> Path:
    """Return a temp directory for config files."""
    return tmp_path


def write_config(path: Path, content: str) -> Path:
    """Write a YAML config file and return its path."""
    config_file = path / "dials.yaml"
    config_file.write_text(textwrap.dedent(content))
    return config_file


VALID_CONFIG = f"""\
    port: auto
    baudrate: 115200
    timeout: 1.5
    discovery:
      provision: true
    dials:
      "{CPU_UID.lower()}":
        name: CPU
        color: cyan
        position: 25
        easing:
          needle_step: 3
          needle_period: 40
      "{MEM_UID}":
        name: Memory
        backlight: [100, 40, 0, 0]
"""


# ══════════════════════════════════════════════════════════════════════════
#  Config loading — valid
# ══════════════════════════════════════════════════════════════════════════


class TestLoadConfigValid:
    def test_loads_two_dials(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert len(cfg.dials) == 2

    def test_auto_port_means_locate(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.port is None

    def test_explicit_port(self, config_dir):
        cfg = load_config(write_config(config_dir, "port: /dev/ttyUSB0\n"))
        assert cfg.port == "/dev/ttyUSB0"

    def test_connection_settings(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.baudrate == 115200
        assert cfg.timeout == 1.5
        assert cfg.provision is True

    def test_empty_file_uses_defaults(self, config_dir):
        cfg = load_config(write_config(config_dir, ""))
        assert cfg == HubConfig()
        assert cfg.baudrate == DEFAULT_BAUD
        assert cfg.timeout == DEFAULT_TIMEOUT
        assert cfg.dials == []

    def test_identifier_upper_cased(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.dials[0].identifier == CPU_UID
        assert cfg.dial(CPU_UID) is cfg.dials[0]

    def test_named_color(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.dial(CPU_UID).backlight == Backlight(*COLORS["cyan"])

    def test_backlight_list(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.dial(MEM_UID).backlight == Backlight(100, 40, 0, 0)

    def test_easing_defaults_fill_gaps(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.dial(CPU_UID).easing == Easing(needle_step=3, needle_period=40)

    def test_unset_fields_stay_none(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        mem = cfg.dial(MEM_UID)
        assert mem.position is None
        assert mem.easing is None

    def test_dial_label(self, config_dir):
        cfg = load_config(write_config(config_dir, VALID_CONFIG))
        assert cfg.dial(CPU_UID).label == "CPU (3A003700)"
        assert DialConfig("ABCDEF0123").label == "ABCDEF01"

    def test_make_hub(self, config_dir):
        cfg = load_config(write_config(config_dir, "port: COM3\ntimeout: 0.5\n"))
        hub = cfg.make_hub()
        assert isinstance(hub, VU1Hub)
        assert hub.port == "COM3"
        assert hub.timeout == 0.5
        assert not hub.is_connected


# ══════════════════════════════════════════════════════════════════════════
#  Config loading — invalid
# ══════════════════════════════════════════════════════════════════════════


class TestLoadConfigInvalid:
    def test_file_not_found(self, config_dir):
        with pytest.raises(FileNotFoundError):
            load_config(config_dir / "nope.yaml")

    def test_not_a_mapping(self, config_dir):
        path = write_config(config_dir, "- just\n- a list\n")
        with pytest.raises(ValidationError, match="mapping"):
            load_config(path)

    @pytest.mark.parametrize(
        ("content", "match"),
        [
            ("port: ''\n", "port"),
            ("port: 3\n", "port"),
            ("baudrate: fast\n", "baudrate"),
            ("baudrate: -9600\n", "baudrate"),
            ("timeout: 0\n", "timeout"),
            ("discovery: [provision]\n", "discovery"),
            ("discovery:\n  provision: maybe\n", "provision"),
            ("dials: [a, b]\n", "dials"),
            ("dials:\n  1234: {name: x}\n", "identifier string"),
        ],
    )
    def test_bad_top_level_values(self, config_dir, content, match):
        with pytest.raises(ValidationError, match=match):
            load_config(write_config(config_dir, content))

    @pytest.mark.parametrize(
        ("settings", "match"),
        [
            ("name: 5", "name"),
            ("color: chartreuse", "color"),
            ("color: red\n    backlight: [1, 2, 3]", "not both"),
            ("backlight: [1, 2]", "3 or 4"),
            ("backlight: [0, 0, 101]", "backlight channel"),
            ("position: 101", "position"),
            ("position: -1", "position"),
            ("easing: fast", "easing"),
            ("easing: {needle_speed: 2}", "unknown easing keys"),
            ("easing: {needle_step: -2}", "needle_step"),
        ],
    )
    def test_bad_dial_values(self, config_dir, settings, match):
        content = f'dials:\n  "{CPU_UID}":\n    {settings}\n'
        with pytest.raises(ValidationError, match=match):
            load_config(write_config(config_dir, content))

    def test_error_names_the_dial(self, config_dir):
        content = f'dials:\n  "{CPU_UID}":\n    position: 300\n'
        with pytest.raises(ValidationError, match=CPU_UID):
            load_config(write_config(config_dir, content))


# ══════════════════════════════════════════════════════════════════════════
#  Applying
# ══════════════════════════════════════════════════════════════════════════


CPU_SETTINGS = DialConfig(
    CPU_UID,
    name="CPU",
    backlight=Backlight(0, 100, 100, 0),
    position=40,
    easing=Easing(3, 40, 8, 120),
)
MEM_SETTINGS = DialConfig(MEM_UID, name="Memory", position=70)


class TestApplyDial:
    def test_success(self, ready_hub, fake_hub):
        result = apply_dial(ready_hub, CPU_SETTINGS)
        assert result.success
        assert "applied" in result.message
        assert fake_hub.dials[0].percent == 40
        assert fake_hub.dials[0].backlight == (0, 100, 100, 0)

    def test_order_easing_backlight_position(self, ready_hub, fake_hub):
        apply_dial(ready_hub, CPU_SETTINGS)
        assert [c.op for c in fake_hub.commands] == [
            OpCode.SET_DIAL_EASING_STEP,
            OpCode.SET_DIAL_EASING_PERIOD,
            OpCode.SET_BACKLIGHT_EASING_STEP,
            OpCode.SET_BACKLIGHT_EASING_PERIOD,
            OpCode.SET_RGB_BACKLIGHT,
            OpCode.SET_DIAL_PERC_SINGLE,
        ]

    def test_updates_cached_record(self, ready_hub):
        apply_dial(ready_hub, CPU_SETTINGS)
        dial = ready_hub.get_device(CPU_UID)
        assert dial.position == 40
        assert dial.easing == Easing(3, 40, 8, 120)

    def test_only_configured_fields_sent(self, ready_hub, fake_hub):
        assert apply_dial(ready_hub, MEM_SETTINGS).success
        assert [c.op for c in fake_hub.commands] == [OpCode.SET_DIAL_PERC_SINGLE]

    def test_missing_dial(self, ready_hub, fake_serial):
        result = apply_dial(ready_hub, DialConfig("DEADBEEF", name="Ghost", position=10))
        assert not result.success
        assert "not found" in result.message
        assert fake_serial.written == []

    def test_failure_names_the_step(self, ready_hub, fake_hub):
        fake_hub.fail(OpCode.SET_RGB_BACKLIGHT)
        result = apply_dial(ready_hub, CPU_SETTINGS)
        assert not result.success
        assert "backlight" in result.message
        assert "position" not in result.message


class TestApplyConfig:
    def test_applies_all_dials(self, ready_hub, fake_hub):
        report = apply_config(ready_hub, HubConfig(dials=[CPU_SETTINGS, MEM_SETTINGS]))
        assert report.all_ok
        assert report.summary == "2/2 dials OK"
        assert fake_hub.dials[1].percent == 70

    def test_partial_failure(self, ready_hub):
        ghost = DialConfig("DEADBEEF", position=10)
        report = apply_config(ready_hub, HubConfig(dials=[CPU_SETTINGS, ghost]))
        assert not report.all_ok
        assert report.summary == "1/2 dials FAILED"
        assert [r.success for r in report.results] == [True, False]

    def test_empty_config(self, ready_hub):
        report = apply_config(ready_hub, HubConfig())
        assert report.all_ok
        assert report.summary == "0/0 dials OK"
