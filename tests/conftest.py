"""测试公共夹具: 伪上游 FakeSource 与清单构造辅助"""

from __future__ import annotations

import asyncio
import copy
import gzip
from pathlib import Path
from typing import Any

import pytest

from pkgstash.core.dltracker import DownloadTracker
from pkgstash.core.exceptions import DependencyError
from pkgstash.services.download.session import SessionContext, WalkPolicy


def reg_manifest(name: str, version: str, **sections: dict[str, str]) -> dict[str, Any]:
    """构造注册表清单，sections 形如 dependencies={...}"""
    mani: dict[str, Any] = {
        "name": name,
        "version": version,
        "_resolved": f"https://registry.npmjs.org/{name}/-/{name}-{version}.tgz",
        "_integrity": "sha512-upstream",
    }
    for key, deps in sections.items():
        mani[key] = deps
    return mani


class FakeSource:
    """内存中的上游: 按说明符返回预置清单，tarball 写入真实的 gzip 字节"""

    def __init__(self) -> None:
        self.manifests: dict[str, dict[str, Any]] = {}
        self.failures: set[str] = set()
        self.tarball_failures: set[str] = set()
        self.manifest_calls: list[str] = []
        self.tarball_calls: list[str] = []
        self.discarded: list[str] = []

    def add(self, spec: str, manifest: dict[str, Any]) -> FakeSource:
        self.manifests[spec] = manifest
        return self

    async def manifest(self, spec: str, opts: dict[str, Any]) -> dict[str, Any]:
        self.manifest_calls.append(spec)
        await asyncio.sleep(0)
        if spec in self.failures or spec not in self.manifests:
            raise DependencyError(f"no manifest for {spec}")
        return copy.deepcopy(self.manifests[spec])

    async def fetch_tarball(self, spec: str, dest: Path, opts: dict[str, Any]) -> dict[str, Any]:
        self.tarball_calls.append(spec)
        await asyncio.sleep(0)
        if spec in self.tarball_failures:
            raise DependencyError(f"tarball fetch failed for {spec}")
        dest.write_bytes(gzip.compress(f"tarball {spec}".encode()))
        return {"integrity": "sha512-fetched"}

    def discard(self, spec: str) -> None:
        self.discarded.append(spec)


@pytest.fixture
def make_manifest():
    return reg_manifest


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def tracker(tmp_path: Path) -> DownloadTracker:
    return DownloadTracker.open(tmp_path)


@pytest.fixture
def ctx(tracker: DownloadTracker, source: FakeSource) -> SessionContext:
    return SessionContext(tracker=tracker, source=source)


@pytest.fixture
def top_policy() -> WalkPolicy:
    return WalkPolicy(top_level=True)
