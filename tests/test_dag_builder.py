"""Tests for DAG construction and relationship queries."""

from __future__ import annotations

from pathlib import Path

import pytest

from ecoflow.dag.builder import (
    build_dag_nodes,
    filter_dag_from_root,
    get_ancestors,
    get_descendants,
    get_leaves,
    get_roots,
)
from ecoflow.dag.leveler import CycleDetectedError, build_dag
from ecoflow.dag.models import DAGNode, PackageRecord


def _node(name: str, deps: list[str] | None = None) -> DAGNode:
    return DAGNode(
        name=name,
        repo_path=Path("/tmp") / name,
        git_ref=f"github:ecosystem/{name}#main",
        required_branch="main",
        dependencies=deps or [],
    )


class TestBuildDagNodes:
    """Tests for build_dag_nodes."""

    def test_one_node_per_record(self, abc_packages) -> None:
        nodes = build_dag_nodes(abc_packages)
        assert set(nodes) == {"A", "B", "C"}
        assert nodes["C"].dependencies == ["A", "B"]

    def test_external_dependencies_are_dropped(self, tmp_path: Path) -> None:
        packages = {
            "app": PackageRecord(
                name="app", repo_path=tmp_path, dependencies=["lodash", "core"]
            ),
            "core": PackageRecord(name="core", repo_path=tmp_path),
        }
        nodes = build_dag_nodes(packages)
        assert nodes["app"].dependencies == ["core"]

    def test_duplicate_dependencies_are_collapsed(self, tmp_path: Path) -> None:
        packages = {
            "a": PackageRecord(name="a", repo_path=tmp_path, dependencies=["b", "b"]),
            "b": PackageRecord(name="b", repo_path=tmp_path),
        }
        assert build_dag_nodes(packages)["a"].dependencies == ["b"]

    def test_self_dependency_is_kept(self, tmp_path: Path) -> None:
        packages = {
            "a": PackageRecord(name="a", repo_path=tmp_path, dependencies=["a", "a"]),
        }
        assert build_dag_nodes(packages)["a"].dependencies == ["a"]

    def test_self_dependency_is_a_cycle(self, tmp_path: Path) -> None:
        packages = {"a": PackageRecord(name="a", repo_path=tmp_path, dependencies=["a"])}
        with pytest.raises(CycleDetectedError) as exc_info:
            build_dag(packages)
        assert exc_info.value.cycle == ["a", "a"]
        assert exc_info.value.remaining == ["a"]

    def test_default_ref_synthesized_without_remote(self, tmp_path: Path) -> None:
        packages = {"@ecosystem/core": PackageRecord(name="@ecosystem/core", repo_path=tmp_path)}
        node = build_dag_nodes(packages, owner="ecosystem")["@ecosystem/core"]
        assert node.git_ref == "github:ecosystem/core#main"
        assert node.required_branch == "main"
        assert node.level is None

    def test_required_branch_from_remote_ref(self, tmp_path: Path) -> None:
        packages = {
            "core": PackageRecord(
                name="core",
                repo_path=tmp_path,
                git_remote="github:ecosystem/core#develop",
            )
        }
        assert build_dag_nodes(packages)["core"].required_branch == "develop"

    def test_remote_without_branch_uses_default_branch(self, tmp_path: Path) -> None:
        packages = {
            "core": PackageRecord(
                name="core",
                repo_path=tmp_path,
                git_remote="git@github.com:ecosystem/core.git",
            )
        }
        node = build_dag_nodes(packages, default_branch="trunk")["core"]
        assert node.git_ref == "git@github.com:ecosystem/core.git"
        assert node.required_branch == "trunk"


class TestQueries:
    """Tests for ancestors, descendants, roots, leaves and subgraphs."""

    def test_abc_scenario(self, abc_packages) -> None:
        dag = build_dag(abc_packages)
        assert dag.roots == ["C"]
        assert dag.leaves == ["A"]
        assert dag.ancestors("C") == {"A", "B"}
        assert dag.descendants("A") == {"B", "C"}

    def test_unknown_name_yields_empty_sets(self, abc_packages) -> None:
        nodes = build_dag_nodes(abc_packages)
        assert get_ancestors(nodes, "missing") == set()
        assert get_descendants(nodes, "missing") == set()

    def test_closures_exclude_self_on_cyclic_input(self) -> None:
        nodes = {"a": _node("a", ["b"]), "b": _node("b", ["a"])}
        assert get_ancestors(nodes, "a") == {"b"}
        assert get_descendants(nodes, "a") == {"b"}

    def test_ancestor_descendant_symmetry(self) -> None:
        nodes = {
            "core": _node("core"),
            "util": _node("util", ["core"]),
            "api": _node("api", ["util"]),
            "web": _node("web", ["api", "core"]),
            "cli": _node("cli", ["util"]),
        }
        for name in nodes:
            for ancestor in get_ancestors(nodes, name):
                assert name in get_descendants(nodes, ancestor)

    def test_roots_and_leaves(self) -> None:
        nodes = {
            "core": _node("core"),
            "util": _node("util", ["core"]),
            "web": _node("web", ["util"]),
            "cli": _node("cli", ["util"]),
        }
        assert get_roots(nodes) == ["cli", "web"]
        assert get_leaves(nodes) == ["core"]

    def test_filter_from_root_includes_root_and_dependencies(self) -> None:
        nodes = {
            "core": _node("core"),
            "util": _node("util", ["core"]),
            "web": _node("web", ["util"]),
            "cli": _node("cli", ["core"]),
        }
        assert set(filter_dag_from_root(nodes, "web")) == {"web", "util", "core"}

    def test_filter_from_missing_root_is_empty(self) -> None:
        assert filter_dag_from_root({"core": _node("core")}, "nope") == {}

    def test_subgraph_is_relevelled(self, abc_packages) -> None:
        dag = build_dag(abc_packages)
        sub = dag.subgraph("B")
        assert sub.levels == [["A"], ["B"]]
        assert sub.roots == ["B"]
        assert "C" not in sub


class TestRenderAscii:
    """Tests for DependencyDAG.render_ascii."""

    def test_render_lists_levels_and_edges(self, abc_packages) -> None:
        text = build_dag(abc_packages).render_ascii()
        lines = text.splitlines()
        assert lines[0] == "level 0:"
        assert "  A (leaf)" in lines
        assert "  C <- [A, B]" in lines
        assert "    -> B" in lines
        assert text.index("level 1:") < text.index("level 2:")
