import os

import pytest

from conftest import FakeHost, FakePackage
from mbdist.modules.prereqs import (
    MinimumVersion,
    PrerequisiteResolver,
    Unconstrained,
    Unparsed,
    in_progress,
    normalize_constraint,
    normalize_prereqs,
    resolving,
)


@pytest.mark.parametrize("raw", ["", "0", None, 0, "0.0", "0.000"])
def test_zero_or_empty_means_any_version(raw) -> None:
    assert normalize_constraint(raw) == Unconstrained()


def test_numeric_string_is_a_minimum_version() -> None:
    c = normalize_constraint("2.0")
    assert c == MinimumVersion("2.0")
    assert c.wanted == "2.0"


def test_range_expression_degrades_to_unparsed() -> None:
    c = normalize_constraint(">=1.0,<2.0")
    assert isinstance(c, Unparsed)
    assert c.raw == ">=1.0,<2.0"
    assert c.wanted == "0"
    assert c.satisfied_by_any


def test_normalize_prereqs_builds_a_fresh_map() -> None:
    out = normalize_prereqs({"Test::More": "0.88", "Carp": 0, "Moo": "== 2"})
    assert out == {
        "Test::More": MinimumVersion("0.88"),
        "Carp": Unconstrained(),
        "Moo": Unparsed("== 2"),
    }
    assert normalize_prereqs(None) == {}


def test_resolving_marks_and_clears_the_chain() -> None:
    with resolving("Foo::Bar"):
        assert "Foo::Bar" in in_progress()
        with resolving("Foo::Bar"):
            pass
        assert "Foo::Bar" in in_progress()
    assert "Foo::Bar" not in in_progress()


def test_missing_from_index_is_skipped_not_failed(messages) -> None:
    resolver = PrerequisiteResolver(FakeHost(), messages)
    assert resolver.resolve({"Config": "0"}) is True
    assert resolver.skipped == ["Config"]


def test_unmet_prerequisite_is_built_as_prerequisite(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Dep::One", package_name="Dep-One")
    host.index["Dep::One"] = dep
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Dep::One": "1.2"}, format="mbdist", force=True, verbose=False) is True
    assert dep.install_calls == [
        {"format": "mbdist", "force": True, "verbose": False, "target": "install", "prereq_build": True}
    ]


def test_uptodate_prerequisite_is_not_rebuilt(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Dep::One")
    dep.uptodate = True
    host.index["Dep::One"] = dep
    assert PrerequisiteResolver(host, messages).resolve({"Dep::One": "1.2"}) is True
    assert dep.install_calls == []


def test_failure_of_any_prerequisite_fails_resolution_but_all_are_tried(messages) -> None:
    host = FakeHost()
    bad, good = FakePackage("Bad::Dep"), FakePackage("Good::Dep")
    bad.result = False
    host.index.update({"Bad::Dep": bad, "Good::Dep": good})
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Bad::Dep": "0", "Good::Dep": "0"}) is False
    assert resolver.failed == ["Bad::Dep"]
    assert len(good.install_calls) == 1
    assert any("Bad::Dep" in e for e in messages.errors)


def test_raising_prerequisite_build_is_a_failure(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Dep::One")
    dep.raises = RuntimeError("kaboom")
    host.index["Dep::One"] = dep
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Dep::One": "0"}) is False
    assert "kaboom" in messages.errors[-1]


def test_working_directory_restored_after_recursion(tmp_path, messages, restore_cwd) -> None:
    elsewhere = tmp_path / "elsewhere"
    elsewhere.mkdir()
    host = FakeHost()
    dep = FakePackage("Dep::One")
    dep.chdir_to = str(elsewhere)
    host.index["Dep::One"] = dep
    before = os.getcwd()
    PrerequisiteResolver(host, messages).resolve({"Dep::One": "0"})
    assert os.getcwd() == before


def test_ignore_policy_skips_unmet(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Dep::One")
    host.index["Dep::One"] = dep
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Dep::One": "1"}, policy="ignore") is True
    assert dep.install_calls == []
    assert resolver.skipped == ["Dep::One"]


def test_fail_policy_refuses_unmet(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Dep::One")
    host.index["Dep::One"] = dep
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Dep::One": "1"}, policy="fail") is False
    assert dep.install_calls == []


def test_cycle_is_skipped(messages) -> None:
    host = FakeHost()
    dep = FakePackage("Foo::Bar")
    host.index["Foo::Bar"] = dep
    resolver = PrerequisiteResolver(host, messages)
    with resolving("Foo::Bar"):
        assert resolver.resolve({"Foo::Bar": "0"}) is True
    assert dep.install_calls == []
    assert resolver.skipped == ["Foo::Bar"]


def test_raising_lookup_fails_that_prerequisite_only(messages) -> None:
    class BrokenIndexHost(FakeHost):
        def module_tree(self, name):
            if name == "Broken::Dep":
                raise RuntimeError("index corrupt")
            return super().module_tree(name)

    host = BrokenIndexHost()
    good = FakePackage("Good::Dep")
    host.index["Good::Dep"] = good
    resolver = PrerequisiteResolver(host, messages)
    assert resolver.resolve({"Broken::Dep": "0", "Good::Dep": "0"}) is False
    assert resolver.failed == ["Broken::Dep"]
    assert len(good.install_calls) == 1
    assert "index corrupt" in messages.errors[0]
