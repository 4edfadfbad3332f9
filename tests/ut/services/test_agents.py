"""条目处理测试: 类别分派 / 去重 / 登记"""

from __future__ import annotations

import asyncio

import pytest

from pkgstash.core.exceptions import DependencyError, ManifestError, ValidationError
from pkgstash.core.spec_parser import parse
from pkgstash.services.download.agents import (
    GitAgent,
    RegistryAgent,
    UrlAgent,
    check_resolved,
    make_agent,
    run_item,
)
from pkgstash.services.download.session import ItemResult, WalkPolicy

SHA = "c" * 40


class TestMakeAgent:
    @pytest.mark.parametrize("raw, agent_cls, tracker_type", [
        ("lodash@^4", RegistryAgent, "semver"),
        ("lodash@4.17.21", RegistryAgent, "semver"),
        ("lodash@beta", RegistryAgent, "tag"),
        ("lodash", RegistryAgent, "semver"),
        ("lodash@latest", RegistryAgent, "semver"),
        ("lodash@*", RegistryAgent, "semver"),
        ("github:user/repo#v1", GitAgent, "git"),
        ("https://example.com/pkg.tgz", UrlAgent, "url"),
    ])
    def test_dispatch(self, raw: str, agent_cls: type, tracker_type: str) -> None:
        agent = make_agent(parse(raw))
        assert isinstance(agent, agent_cls)
        assert agent.tracker_type == tracker_type

    def test_alias_unwrapped(self) -> None:
        agent = make_agent(parse("my-lodash@npm:lodash@^4"))
        assert isinstance(agent, RegistryAgent)
        assert agent.name == "lodash"

    def test_git_without_host_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_agent(parse("git+file:///srv/repo.git"))


class TestCheckResolved:
    def test_ok(self) -> None:
        assert check_resolved({"_resolved": "https://r/a.tgz"}, "a") == "https://r/a.tgz"

    @pytest.mark.parametrize("manifest", [
        {},
        {"_resolved": ""},
        {"_resolved": 42},
        {"_resolved": "no-scheme-here"},
        {"_resolved": "file:///tmp/a.tgz"},
        "not-a-dict",
    ])
    def test_rejected(self, manifest) -> None:
        with pytest.raises(ManifestError):
            check_resolved(manifest, "a@1.0.0")


class TestRegistryItem:
    def test_new_package(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@^1.0.0", make_manifest("a", "1.2.0"))
        results = asyncio.run(run_item("a@^1.0.0", ctx, top_policy))

        assert results == [ItemResult("a@^1.0.0", name="a")]
        data = ctx.tracker.get_data("semver", "a", "^1.0.0")
        assert data["version"] == "1.2.0"
        assert data["filename"] == "a@1.2.0.tar.gz"
        assert data["_integrity"] == "sha512-fetched"
        assert (ctx.tracker.path / "a@1.2.0.tar.gz").stat().st_size > 0
        assert not ctx.inflight

    def test_already_tracked_skips_manifest(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@1.2.0", make_manifest("a", "1.2.0"))
        asyncio.run(run_item("a@1.2.0", ctx, top_policy))
        results = asyncio.run(run_item("a@^1", ctx, top_policy))
        assert results == [ItemResult("a@^1", name="a", duplicate=True)]
        assert source.manifest_calls == ["a@1.2.0"]

    def test_concurrent_same_spec(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@^1", make_manifest("a", "1.0.0"))

        async def _both():
            return await asyncio.gather(
                run_item("a@^1", ctx, top_policy),
                run_item("a@^1", ctx, top_policy),
            )

        first, second = asyncio.run(_both())
        assert first == [ItemResult("a@^1", name="a")]
        assert second[0].duplicate
        assert source.manifest_calls == ["a@^1"]
        assert source.tarball_calls == ["a@^1"]

    def test_same_identity_via_different_specs(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@^1", make_manifest("a", "1.0.0"))
        source.add("a@1.0.0", make_manifest("a", "1.0.0"))

        async def _both():
            return await asyncio.gather(
                run_item("a@^1", ctx, top_policy),
                run_item("a@1.0.0", ctx, top_policy),
            )

        results = asyncio.run(_both())
        assert sorted(r[0].duplicate for r in results) == [False, True]
        assert len(source.tarball_calls) == 1

    def test_manifest_data_discarded(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@^1", make_manifest("a", "1.0.0"))
        source.add("a@1.0.0", make_manifest("a", "1.0.0"))

        async def _all():
            return await asyncio.gather(
                run_item("a@^1", ctx, top_policy),
                run_item("a@1.0.0", ctx, top_policy),
                run_item("missing@^1", ctx, top_policy),
                return_exceptions=True,
            )

        outcomes = asyncio.run(_all())
        assert isinstance(outcomes[2], DependencyError)
        # 成功、清单后重复、失败三种结局都会通知上游
        assert sorted(source.discarded) == ["a@1.0.0", "a@^1", "missing@^1"]

    def test_implicit_latest_once_per_session(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a", make_manifest("a", "3.0.0"))
        asyncio.run(run_item("a", ctx, top_policy))
        results = asyncio.run(run_item("a@*", ctx, top_policy))
        assert results[0].duplicate
        assert source.manifest_calls == ["a"]
        assert ctx.latest == {"a": "3.0.0"}
        assert ctx.tracker.contains("semver", "a", "3.0.0")

    def test_tag_recorded(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@next", make_manifest("a", "4.0.0-rc.1"))
        asyncio.run(run_item("a@next", ctx, top_policy))
        assert ctx.tracker.get_data("tag", "a", "next")["version"] == "4.0.0-rc.1"

    def test_alias_fetches_target(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("lodash@^4", make_manifest("lodash", "4.17.21"))
        results = asyncio.run(run_item("my-lodash@npm:lodash@^4", ctx, top_policy))
        assert results == [ItemResult("my-lodash@npm:lodash@^4", name="lodash")]
        assert ctx.tracker.contains("semver", "lodash", "4.17.21")

    def test_manifest_failure_releases_keys(self, ctx, source, top_policy) -> None:
        with pytest.raises(DependencyError):
            asyncio.run(run_item("missing@^1", ctx, top_policy))
        assert not ctx.inflight
        assert not ctx.tracker.dirty

    def test_tarball_failure_not_registered(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@^1", make_manifest("a", "1.0.0"))
        source.tarball_failures.add("a@^1")
        with pytest.raises(DependencyError):
            asyncio.run(run_item("a@^1", ctx, top_policy))
        assert not ctx.inflight
        assert not ctx.tracker.contains("semver", "a", "1.0.0")

    def test_bad_resolved(self, ctx, source, make_manifest, top_policy) -> None:
        mani = make_manifest("a", "1.0.0")
        mani["_resolved"] = "file:/tmp/a-1.0.0.tgz"
        source.add("a@1.0.0", mani)
        with pytest.raises(ManifestError):
            asyncio.run(run_item("a@1.0.0", ctx, top_policy))
        assert not ctx.inflight


class TestRecursion:
    def test_children_before_parent(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("p@1.0.0", make_manifest("p", "1.0.0", dependencies={"c": "^2"}))
        source.add("c@^2", make_manifest("c", "2.5.0"))
        results = asyncio.run(run_item("p@1.0.0", ctx, top_policy))
        assert [r.spec for r in results] == ["c@^2", "p@1.0.0"]
        assert ctx.tracker.contains("semver", "c", "2.5.0")
        assert ctx.tracker.contains("semver", "p", "1.0.0")

    def test_cycle_terminates(self, ctx, source, make_manifest, top_policy) -> None:
        source.add("a@1.0.0", make_manifest("a", "1.0.0", dependencies={"b": "^1"}))
        source.add("b@^1", make_manifest("b", "1.0.0", dependencies={"a": "1.0.0"}))
        results = asyncio.run(run_item("a@1.0.0", ctx, top_policy))
        assert [(r.spec, r.duplicate) for r in results] == [
            ("a@1.0.0", True),
            ("b@^1", False),
            ("a@1.0.0", False),
        ]
        assert source.tarball_calls == ["b@^1", "a@1.0.0"]

    def test_lockfile_mode_does_not_recurse(self, ctx, source, make_manifest) -> None:
        source.add("p@1.0.0", make_manifest("p", "1.0.0", dependencies={"c": "^2"}))
        policy = WalkPolicy(top_level=True, shrinkwrap=True)
        results = asyncio.run(run_item("p@1.0.0", ctx, policy))
        assert [r.spec for r in results] == ["p@1.0.0"]
        assert source.manifest_calls == ["p@1.0.0"]

    def test_embedded_shrinkwrap(self, ctx, source, make_manifest, top_policy) -> None:
        mani = make_manifest("p", "1.0.0", dependencies={"ignored": "^9"})
        mani["_shrinkwrap"] = {
            "lockfileVersion": 1,
            "dependencies": {"c": {"version": "2.0.0"}, "d": {"version": "1.0.0", "dev": True}},
        }
        source.add("p@1.0.0", mani)
        source.add("c@2.0.0", make_manifest("c", "2.0.0", dependencies={"deep": "^1"}))
        results = asyncio.run(run_item("p@1.0.0", ctx, top_policy))
        assert [r.spec for r in results] == ["c@2.0.0", "p@1.0.0"]
        assert "ignored@^9" not in source.manifest_calls
        assert "deep@^1" not in source.manifest_calls

    def test_embedded_shrinkwrap_disabled(self, ctx, source, make_manifest) -> None:
        mani = make_manifest("p", "1.0.0", dependencies={"c": "^2"})
        mani["_shrinkwrap"] = {"dependencies": {"x": {"version": "1.0.0"}}}
        source.add("p@1.0.0", mani)
        source.add("c@^2", make_manifest("c", "2.0.0"))
        policy = WalkPolicy(top_level=True, no_shrinkwrap=True)
        results = asyncio.run(run_item("p@1.0.0", ctx, policy))
        assert [r.spec for r in results] == ["c@^2", "p@1.0.0"]


class TestGitItem:
    def _manifest(self, **extra):
        mani = {
            "name": "repo-pkg",
            "version": "1.0.0",
            "_resolved": f"git+https://github.com/user/repo.git#{SHA}",
            "_sha": SHA,
            "_allRefs": ["master", "v1.0.0"],
        }
        mani.update(extra)
        return mani

    def test_registered_with_refs(self, ctx, source, top_policy) -> None:
        source.add("github:user/repo", self._manifest())
        results = asyncio.run(run_item("github:user/repo", ctx, top_policy))
        assert results == [ItemResult("github:user/repo", name="repo-pkg")]

        data = ctx.tracker.get_data("git", "github.com/user/repo", "v1.0.0")
        assert data["commit"] == SHA
        assert data["filename"] == f"git+github.com%2Fuser%2Frepo+{SHA}.tar.gz"
        # 任何等价写法都命中同一条记录
        again = asyncio.run(run_item("git+https://github.com/user/repo.git#v1.0.0", ctx, top_policy))
        assert again[0].duplicate

    def test_same_commit_different_ref(self, ctx, source, top_policy) -> None:
        source.add("github:user/repo#master", self._manifest())
        source.add("github:user/repo#release", self._manifest(_allRefs=["release"]))
        asyncio.run(run_item("github:user/repo#master", ctx, top_policy))
        results = asyncio.run(run_item("github:user/repo#release", ctx, top_policy))
        assert results[0].duplicate
        assert len(source.tarball_calls) == 1

    def test_missing_sha(self, ctx, source, top_policy) -> None:
        source.add("github:user/repo", self._manifest(_sha="not-a-sha"))
        with pytest.raises(ManifestError):
            asyncio.run(run_item("github:user/repo", ctx, top_policy))


class TestUrlItem:
    def test_registered(self, ctx, source, top_policy) -> None:
        url = "https://example.com/dl/pkg-1.0.0.tgz"
        source.add(url, {"name": "pkg", "version": "1.0.0", "_resolved": url})
        results = asyncio.run(run_item(url, ctx, top_policy))
        assert results == [ItemResult(url, name="pkg")]
        data = ctx.tracker.get_data("url", None, url)
        assert data["filename"] == "url+example.com%2Fdl%2Fpkg-1.0.0.tgz.tar.gz"
        assert "_resolved" not in data

    def test_redirected_resolved_kept(self, ctx, source, top_policy) -> None:
        url = "https://example.com/latest.tgz"
        source.add(url, {"name": "pkg", "version": "2.0.0", "_resolved": "https://cdn.example.com/pkg-2.0.0.tgz"})
        asyncio.run(run_item(url, ctx, top_policy))
        data = ctx.tracker.get_data("url", None, url)
        assert data["_resolved"] == "https://cdn.example.com/pkg-2.0.0.tgz"
        assert data["filename"] == "url+cdn.example.com%2Fpkg-2.0.0.tgz.tar.gz"
