"""依赖展开与安装计划测试"""

from __future__ import annotations

import logging

import pytest

from cellar.core.exceptions import FormulaUnavailableError, UnsatisfiedRequirementsError
from cellar.core.expander import DependencyExpander
from cellar.core.keg import Keg


class StubBottles:
    """poured 为 True 时所有配方都视为从 bottle 安装"""

    def __init__(self, poured: bool = False) -> None:
        self.poured = poured
        self.asked: list[str] = []

    def pour_bottle(self, formula, build):
        self.asked.append(formula.name)
        return self.poured

    def install_bottle_for_dep(self, formula, build):
        self.asked.append(formula.name)
        return self.poured


@pytest.fixture()
def expand(repository, store, host):
    def _expand(name: str, *, options=(), poured: bool = False):
        expander = DependencyExpander(
            repository.load(name),
            repository=repository, store=store, env=host,
            bottles=StubBottles(poured), options=frozenset(options),
        )
        return expander.expand()
    return _expand


def test_dependencies_before_dependents(write_formula, expand):
    write_formula("a", depends_on=["b"])
    write_formula("b", depends_on=["c"])
    write_formula("c")
    assert expand("a").names == ["c", "b", "a"]


def test_diamond_is_deduplicated(write_formula, expand):
    write_formula("a", depends_on=["b", "c"])
    write_formula("b", depends_on=["d"])
    write_formula("c", depends_on=["d"])
    write_formula("d")
    assert expand("a").names == ["d", "b", "c", "a"]


def test_optional_dependency_follows_options(write_formula, expand):
    write_formula("a", depends_on=["b", {"name": "c", "tags": ["optional"]}])
    write_formula("b")
    write_formula("c")
    assert expand("a").names == ["b", "a"]
    assert expand("a", options=["with-c"]).names == ["b", "c", "a"]


def test_recommended_dependency_can_be_disabled(write_formula, expand):
    write_formula("a", depends_on=[{"name": "b", "tags": ["recommended"]}])
    write_formula("b")
    assert expand("a").names == ["b", "a"]
    assert expand("a", options=["without-b"]).names == ["a"]


def test_build_dependency_pruned_when_bottle_poured(write_formula, expand):
    write_formula("a", depends_on=[{"name": "b", "tags": ["build"]}, "c"])
    write_formula("b")
    write_formula("c", depends_on=[{"name": "d", "tags": ["build"]}])
    write_formula("d")
    assert expand("a", poured=True).names == ["c", "a"]
    assert expand("a", poured=False).names == ["b", "d", "c", "a"]


def test_requirement_replaced_by_default_formula(write_formula, expand):
    write_formula("a", requirements=[{
        "kind": "executable", "names": ["cellar-test-missing-tool"],
        "default_formula": "tool",
    }])
    write_formula("tool")
    assert expand("a").names == ["tool", "a"]


def test_requirement_without_installable_default_is_reported(write_formula, expand):
    write_formula("a", requirements=[{
        "kind": "executable", "names": ["cellar-test-missing-tool"],
        "default_formula": "not-in-any-tap",
    }])
    with pytest.raises(UnsatisfiedRequirementsError):
        expand("a")


def test_fatal_requirements_reported_together(write_formula, expand):
    write_formula("a", depends_on=["b"], requirements=[{"kind": "env", "args": ["CELLAR_X"]}])
    write_formula("b", requirements=[
        {"kind": "env", "args": ["CELLAR_Y"]},
        {"kind": "min_os", "args": ["99"]},
    ])
    with pytest.raises(UnsatisfiedRequirementsError) as exc:
        expand("a")
    dependents = [dep for dep, _ in exc.value.requirements]
    assert dependents == ["core/a", "core/b", "core/b"]


def test_non_fatal_requirement_only_warns(write_formula, expand, caplog):
    write_formula("a", requirements=[{"kind": "env", "args": ["CELLAR_X"], "fatal": False}])
    with caplog.at_level(logging.WARNING):
        assert expand("a").names == ["a"]
    assert "CELLAR_X" in caplog.text


def test_satisfied_requirement_is_dropped(write_formula, expand):
    write_formula("a", requirements=[{"kind": "arch", "args": ["x86_64"]}])
    assert expand("a").names == ["a"]


def test_installed_and_linked_dependency_is_skipped(write_formula, expand, make_keg, store):
    write_formula("a", depends_on=["b"])
    write_formula("b", depends_on=["c"])
    write_formula("c")
    Keg(make_keg("b"), store).link()
    plan = expand("a")
    assert plan.names == ["c", "a"]
    assert plan.satisfied == ["b"]


def test_installed_but_unlinked_dependency_is_planned(write_formula, expand, make_keg):
    write_formula("a", depends_on=["b"])
    write_formula("b")
    make_keg("b")
    assert expand("a").names == ["b", "a"]


def test_dependency_missing_required_options_is_planned(write_formula, expand, make_keg, store):
    write_formula("a", depends_on=[{"name": "b", "options": ["with-x"]}])
    write_formula("b", options=["with-x"])
    Keg(make_keg("b"), store).link()
    plan = expand("a")
    assert plan.names == ["b", "a"]
    assert plan.entries[0].options == frozenset({"with-x"})


def test_universal_is_inherited(write_formula, expand):
    write_formula("a", options=["universal"], depends_on=["b", {"name": "c", "tags": ["build"]}])
    write_formula("b", options=["universal"])
    write_formula("c", options=["universal"])
    plan = expand("a", options=["universal"])
    options = {e.name: e.options for e in plan}
    assert options == {
        "b": frozenset({"universal"}),
        "c": frozenset(),
        "a": frozenset({"universal"}),
    }


def test_unavailable_dependency_names_dependent(write_formula, expand):
    write_formula("a", depends_on=["b"])
    write_formula("b", depends_on=["ghost"])
    with pytest.raises(FormulaUnavailableError) as exc:
        expand("a")
    assert exc.value.name == "ghost"
    assert exc.value.dependent == "core/b"


def test_cycle_is_skipped(write_formula, expand, caplog):
    write_formula("a", depends_on=["b"])
    write_formula("b", depends_on=["a"])
    with caplog.at_level(logging.WARNING):
        assert expand("a").names == ["b", "a"]
    assert "循环依赖" in caplog.text


def test_recursive_dependencies_ignore_bottle_pruning(write_formula, repository, store, host):
    write_formula("a", depends_on=[{"name": "b", "tags": ["build"]}, {"name": "c", "tags": ["optional"]}])
    write_formula("b")
    write_formula("c")
    expander = DependencyExpander(
        repository.load("a"), repository=repository, store=store, env=host,
        bottles=StubBottles(poured=True),
    )
    assert [f.name for f in expander.recursive_dependencies()] == ["b"]


def test_plan_ends_with_root_and_its_options(write_formula, expand):
    write_formula("a", depends_on=["b", {"name": "c", "tags": ["optional"]}])
    write_formula("b")
    write_formula("c")
    plain = expand("a")
    assert plain.names == ["b", "a"]
    assert [e.name for e in plain.dependencies] == ["b"]
    with_c = expand("a", options=["with-c"])
    assert with_c.names == ["b", "c", "a"]
    root = with_c.entries[-1]
    assert root.is_root
    assert root.options == frozenset({"with-c"})


def test_runtime_dependencies_skip_build_edges(write_formula, repository, store, host):
    write_formula("a", depends_on=[{"name": "b", "tags": ["build"]}, "c"])
    write_formula("b")
    write_formula("c", depends_on=[{"name": "d", "tags": ["build"]}, "e"])
    write_formula("d")
    write_formula("e")
    expander = DependencyExpander(
        repository.load("a"), repository=repository, store=store, env=host,
        bottles=StubBottles(),
    )
    assert [f.name for f in expander.runtime_dependencies()] == ["c", "e"]
    assert [f.name for f in expander.recursive_dependencies()] == ["b", "c", "d", "e"]
