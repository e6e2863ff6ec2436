import os

import pytest
import yaml

from conftest import FakeDriverLibrary
from mbdist.modules import cli, dist as dist_mod, driver
from mbdist.modules.messages import get_message_stack


@pytest.fixture
def fake_driver(monkeypatch, restore_cwd) -> FakeDriverLibrary:
    lib = FakeDriverLibrary()
    monkeypatch.setattr(driver, "_LIBRARY", lib)
    monkeypatch.setattr(driver, "_AVAILABILITY", driver.DriverAvailability(lib, "0.2611"))
    monkeypatch.setattr(dist_mod, "is_privileged", lambda: True)
    monkeypatch.setenv("PERL5LIB", "")
    get_message_stack().flush()
    return lib


def test_guess_identity_from_directory_name() -> None:
    assert cli.guess_identity("/tmp/Foo-Bar-0.01") == ("Foo::Bar", "Foo-Bar", "0.01")
    assert cli.guess_identity("/tmp/Some-Dist-v1.2.3/") == ("Some::Dist", "Some-Dist", "v1.2.3")
    assert cli.guess_identity("/tmp/checkout") == ("checkout", "checkout", "0")


def test_install_runs_every_phase(fake_driver, source_dir) -> None:
    assert cli.main(["install", source_dir]) == cli.EXIT_OK
    assert fake_driver.calls == ["build", "test", "install"]


def test_skiptest_flag(fake_driver, source_dir) -> None:
    assert cli.main(["create", source_dir, "--skiptest"]) == cli.EXIT_OK
    assert fake_driver.calls == ["build"]


def test_buildflags_reach_the_driver(fake_driver, source_dir) -> None:
    assert cli.main(["prepare", source_dir, "--buildflags", "install_base=/opt/perl"]) == cli.EXIT_OK
    assert fake_driver.last_flags == {"install_base": "/opt/perl"}


def test_phase_failure_exits_one(fake_driver, source_dir, capsys) -> None:
    fake_driver.fail.append("build")
    assert cli.main(["create", source_dir]) == cli.EXIT_FAILED
    assert "create failed for Foo::Bar" in capsys.readouterr().out


def test_distdir_prints_location(fake_driver, source_dir, capsys) -> None:
    assert cli.main(["distdir", source_dir]) == cli.EXIT_OK
    assert os.path.isdir(os.path.join(source_dir, "Foo-Bar-0.01"))


def test_status_shows_prerequisites(fake_driver, source_dir, capsys) -> None:
    fake_driver.requires["Moo"] = "2.0"
    assert cli.main(["status", source_dir, "--name", "My::Dist", "--version", "1.0"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "My::Dist" in out
    assert "Moo" in out


def test_missing_directory_is_usage_error(tmp_path) -> None:
    assert cli.main(["prepare", str(tmp_path / "missing")]) == cli.EXIT_ERROR


def test_no_command_is_usage_error() -> None:
    assert cli.main([]) == cli.EXIT_ERROR


def test_config_show_and_validate(tmp_path, capsys) -> None:
    path = tmp_path / "mbdist.yaml"
    path.write_text(yaml.safe_dump({"programs": {"perl": "/usr/bin/perl"}, "conf": {"cpantest": True}}), encoding="utf-8")
    assert cli.main(["config", "show", "--config", str(path)]) == cli.EXIT_OK
    shown = yaml.safe_load(capsys.readouterr().out)
    assert shown["conf"]["cpantest"] is True
    assert cli.main(["config", "validate", "--config", str(path)]) == cli.EXIT_OK

    path.write_text("conf:\n  prereqs: sometimes\n", encoding="utf-8")
    assert cli.main(["config", "validate", "--config", str(path)]) == cli.EXIT_FAILED
