import pytest
import yaml

from mbdist.modules import config as config_mod


def test_defaults_without_file() -> None:
    cfg = config_mod.load()
    assert cfg.get_conf("prereqs") == "follow"
    assert cfg.get_conf("buildflags") == ""
    assert cfg.get("driver.min_version") == "0.2611"
    assert cfg.get("driver.scrub_env") == ["PERL5OPT"]
    assert cfg.get("no.such.key", "x") == "x"
    assert config_mod.config_path() is None


def test_yaml_file_is_merged_and_coerced(tmp_path) -> None:
    path = tmp_path / "mbdist.yaml"
    path.write_text(yaml.safe_dump({
        "conf": {"force": "yes", "prereqs": "Ignore"},
        "driver": {"timeout": "120", "min_version": 0.36},
        "programs": {"sudo": "sudo"},
    }), encoding="utf-8")
    cfg = config_mod.load(str(path))
    assert cfg.get_conf("force") is True
    assert cfg.get_conf("verbose") is False
    assert cfg.get_conf("prereqs") == "ignore"
    assert cfg.get("driver.timeout") == 120
    assert cfg.get("driver.min_version") == "0.36"
    assert cfg.get_program("sudo") == "sudo"
    assert config_mod.config_path() == path


def test_json_file_is_supported(tmp_path) -> None:
    path = tmp_path / "mbdist.json"
    path.write_text('{"conf": {"skiptest": true}}', encoding="utf-8")
    assert config_mod.load(str(path)).get_conf("skiptest") is True


def test_overrides_win_over_file(tmp_path) -> None:
    path = tmp_path / "mbdist.yaml"
    path.write_text("conf:\n  buildflags: 'a=1'\n", encoding="utf-8")
    cfg = config_mod.load(str(path), overrides={"conf": {"buildflags": "b=2"}})
    assert cfg.get_conf("buildflags") == "b=2"


def test_invalid_structure_is_fatal_on_request(tmp_path) -> None:
    path = tmp_path / "mbdist.yaml"
    path.write_text("conf:\n  prereqs: sometimes\n", encoding="utf-8")
    with pytest.raises(ValueError):
        config_mod.load(str(path), fatal=True)
    assert config_mod.load(str(path)).get_conf("prereqs") == "sometimes"


def test_sudo_is_never_looked_up_on_path() -> None:
    assert config_mod.load().get_program("sudo") is None


def test_save_writes_only_overrides(tmp_path) -> None:
    config_mod.load(overrides={"conf": {"cpantest": True}})
    out = config_mod.save(str(tmp_path / "saved.yaml"))
    assert yaml.safe_load(out.read_text(encoding="utf-8")) == {"conf": {"cpantest": True}}


def test_validate_config_flags_bad_index() -> None:
    config_mod.set_config(config_mod.load(overrides={"index": {"Foo::Bar": {"package": "Foo-Bar"}}, "programs": {"perl": "perl"}}))
    ok, issues = config_mod.validate_config()
    assert ok is False
    assert any("index.Foo::Bar" in i for i in issues)
