"""yarn.lock 解析与依赖归类测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from pkgstash.core.lockfile import from_yarn_lock, read_from_dir
from pkgstash.core.yarn_lock import parse_yarn_lock, split_quoted

GIT_SHA = "f" * 40

YARN_LOCK = f"""\
# THIS IS AN AUTOGENERATED FILE. DO NOT EDIT THIS FILE DIRECTLY.
# yarn lockfile v1


"@s/reg@^1.0.0", "@s/reg@^1.1.0":
  version "1.1.0"
  resolved "https://registry.yarnpkg.com/@s/reg/-/reg-1.1.0.tgz#0123abcd"
  integrity sha512-aaa
  dependencies:
    shared "^2.0.0"
  optionalDependencies:
    fsevt "^1.0.0"

shared@^2.0.0:
  version "2.0.1"
  resolved "https://registry.yarnpkg.com/shared/-/shared-2.0.1.tgz#beef"

fsevt@^1.0.0:
  version "1.0.0"
  resolved "https://registry.yarnpkg.com/fsevt/-/fsevt-1.0.0.tgz#cafe"

devtool@^3.0.0:
  version "3.0.0"
  resolved "https://registry.yarnpkg.com/devtool/-/devtool-3.0.0.tgz"
  dependencies:
    devhelper "^1.0.0"
    fsevt "^1.0.0"
    shared "^2.0.0"
  optionalDependencies:
    devopt "^1.0.0"

devhelper@^1.0.0:
  version "1.0.0"
  resolved "https://registry.yarnpkg.com/devhelper/-/devhelper-1.0.0.tgz"

devopt@^1.0.0:
  version "1.0.0"
  resolved "https://registry.yarnpkg.com/devopt/-/devopt-1.0.0.tgz"

peer-lib@^4.0.0:
  version "4.0.0"
  resolved "https://registry.yarnpkg.com/peer-lib/-/peer-lib-4.0.0.tgz"

"gitdep@github:u/gitdep#main":
  version "0.1.0"
  resolved "git+https://github.com/u/gitdep.git#{GIT_SHA}"

alias@npm:real-pkg@^5.0.0:
  version "5.0.0"
  resolved "https://registry.yarnpkg.com/real-pkg/-/real-pkg-5.0.0.tgz"

bundled-one@^1.0.0:
  version "1.0.0"
  resolved "https://registry.yarnpkg.com/bundled-one/-/bundled-one-1.0.0.tgz"

orphan@^9.0.0:
  version "9.0.0"
  resolved "https://registry.yarnpkg.com/orphan/-/orphan-9.0.0.tgz"
"""

PACKAGE_JSON = {
    "name": "app",
    "version": "1.0.0",
    "dependencies": {
        "@s/reg": "^1.0.0",
        "gitdep": "github:u/gitdep#main",
        "alias": "npm:real-pkg@^5.0.0",
        "bundled-one": "^1.0.0",
    },
    "peerDependencies": {"peer-lib": "^4.0.0"},
    "devDependencies": {"devtool": "^3.0.0"},
    "bundleDependencies": ["bundled-one"],
}


class TestParse:
    def test_shared_entry(self) -> None:
        entries = parse_yarn_lock(YARN_LOCK)
        assert entries["@s/reg@^1.0.0"] is entries["@s/reg@^1.1.0"]
        reg = entries["@s/reg@^1.0.0"]
        assert reg.version == "1.1.0"
        assert reg.integrity == "sha512-aaa"
        assert reg.dependencies == {"shared": "^2.0.0"}
        assert reg.optional_dependencies == {"fsevt": "^1.0.0"}

    def test_legacy_hash_stripped(self) -> None:
        entries = parse_yarn_lock(YARN_LOCK)
        assert entries["shared@^2.0.0"].resolved == (
            "https://registry.yarnpkg.com/shared/-/shared-2.0.1.tgz"
        )

    def test_git_commit_kept(self) -> None:
        entries = parse_yarn_lock(YARN_LOCK)
        assert entries["gitdep@github:u/gitdep#main"].resolved.endswith("#" + GIT_SHA)

    def test_no_trailing_newline(self) -> None:
        entries = parse_yarn_lock('a@^1:\n  version "1.0.0"')
        assert entries["a@^1"].version == "1.0.0"

    def test_corrupted(self) -> None:
        with pytest.raises(ValueError, match="第 2 行"):
            parse_yarn_lock("a@^1:\n  version\n")

    @pytest.mark.parametrize("text, delim, expected", [
        ('a@^1, "b@^2"', r", *", ["a@^1", "b@^2"]),
        ('"x, y", z', r", *", ["x, y", "z"]),
        ('version "1.0.0"', " ", ["version", "1.0.0"]),
        ('"@s/a" "^1.0.0"', " ", ["@s/a", "^1.0.0"]),
    ])
    def test_split_quoted(self, text: str, delim: str, expected: list[str]) -> None:
        assert split_quoted(text, delim) == expected


class TestFromYarnLock:
    @pytest.fixture
    def deps(self):
        return {d.name: d for d in from_yarn_lock(YARN_LOCK, PACKAGE_JSON)}

    def test_traced_entries_in_file_order(self) -> None:
        deps = from_yarn_lock(YARN_LOCK, PACKAGE_JSON)
        assert [d.name for d in deps] == [
            "@s/reg", "shared", "fsevt", "devtool", "devhelper",
            "devopt", "peer-lib", "gitdep", "real-pkg",
        ]

    def test_registry_versions(self, deps) -> None:
        assert deps["@s/reg"].spec == "@s/reg@1.1.0"
        assert deps["real-pkg"].spec == "real-pkg@5.0.0"

    def test_git_resolved_replaces_version(self, deps) -> None:
        assert deps["gitdep"].version == f"git+https://github.com/u/gitdep.git#{GIT_SHA}"

    def test_categories(self, deps) -> None:
        assert not any((deps["shared"].dev, deps["shared"].optional, deps["shared"].peer))
        assert deps["devtool"].dev and not deps["devtool"].optional
        assert deps["devhelper"].dev
        assert deps["devopt"].dev and deps["devopt"].optional
        assert deps["fsevt"].dev_optional and not deps["fsevt"].optional
        assert deps["peer-lib"].peer

    def test_optional_without_dev_reference(self) -> None:
        pkg = {k: v for k, v in PACKAGE_JSON.items() if k != "devDependencies"}
        deps = {d.name: d for d in from_yarn_lock(YARN_LOCK, pkg)}
        assert deps["fsevt"].optional and not deps["fsevt"].dev_optional
        assert "devtool" not in deps

    def test_requires(self, deps) -> None:
        assert deps["devtool"].requires == {
            "devhelper": "^1.0.0", "fsevt": "^1.0.0", "shared": "^2.0.0",
        }

    @pytest.mark.parametrize("text, pkg, exc", [
        ("", PACKAGE_JSON, ValueError),
        (None, PACKAGE_JSON, ValueError),
        (42, PACKAGE_JSON, TypeError),
        (YARN_LOCK, None, ValueError),
        (YARN_LOCK, "package.json", TypeError),
    ])
    def test_bad_input(self, text, pkg, exc) -> None:
        with pytest.raises(exc):
            from_yarn_lock(text, pkg)


class TestReadFromDir:
    def test_yarn_lock_fallback(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").write_text(YARN_LOCK, encoding="utf-8")
        (tmp_path / "package.json").write_text(json.dumps(PACKAGE_JSON), encoding="utf-8")
        deps = read_from_dir(tmp_path)
        assert len(deps) == 9

    def test_npm_lockfile_preferred(self, tmp_path: Path) -> None:
        (tmp_path / "yarn.lock").write_text(YARN_LOCK, encoding="utf-8")
        (tmp_path / "package.json").write_text(json.dumps(PACKAGE_JSON), encoding="utf-8")
        (tmp_path / "package-lock.json").write_text(json.dumps({"dependencies": {}}), encoding="utf-8")
        assert read_from_dir(tmp_path) == []
