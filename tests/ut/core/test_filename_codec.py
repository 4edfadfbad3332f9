"""tarball 文件名编解码测试"""

from __future__ import annotations

import pytest

from pkgstash.core.filename_codec import has_tarball_extension, make_tarball_name, parse_filename

SHA = "0123456789abcdef0123456789abcdef01234567"


class TestMakeName:
    def test_semver(self) -> None:
        assert make_tarball_name("semver", name="lodash", version="4.17.21") == "lodash@4.17.21.tar.gz"

    def test_scoped_name_is_quoted(self) -> None:
        fname = make_tarball_name("semver", name="@types/node", version="20.1.0")
        assert "/" not in fname
        parsed = parse_filename(fname)
        assert parsed is not None
        assert (parsed.type, parsed.name, parsed.version) == ("semver", "@types/node", "20.1.0")

    def test_tag_uses_semver_form(self) -> None:
        assert make_tarball_name("tag", name="a", version="1.0.0") == "a@1.0.0.tar.gz"

    def test_git(self) -> None:
        fname = make_tarball_name("git", domain="github.com", path="user/repo", commit=SHA)
        assert fname == f"git+github.com%2Fuser%2Frepo+{SHA}.tar.gz"
        parsed = parse_filename(fname)
        assert parsed is not None
        assert (parsed.type, parsed.repo, parsed.commit) == ("git", "github.com/user/repo", SHA)

    def test_url_drops_protocol(self) -> None:
        fname = make_tarball_name("url", url="https://example.com/dl/pkg.tgz")
        assert fname == "url+example.com%2Fdl%2Fpkg.tgz.tar.gz"
        parsed = parse_filename(fname)
        assert parsed is not None
        assert parsed.url == "example.com/dl/pkg.tgz"

    @pytest.mark.parametrize("type_, kwargs", [
        ("semver", {"name": "a"}),
        ("git", {"domain": "github.com", "path": "u/r"}),
        ("url", {}),
        ("svn", {"url": "x"}),
    ])
    def test_missing_fields(self, type_: str, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            make_tarball_name(type_, **kwargs)


class TestParseName:
    @pytest.mark.parametrize("filename", [
        "README.md",
        "dltracker.json",
        "nodash.tgz",
        "a@not-a-version.tar.gz",
        "git+norepo+" + SHA + ".tar.gz",
        "git+github.com%2Fu%2Fr+abc123.tar.gz",
        "url+.tar.gz",
    ])
    def test_unrecognized(self, filename: str) -> None:
        assert parse_filename(filename) is None

    def test_prerelease_version(self) -> None:
        parsed = parse_filename("react@18.0.0-rc.1.tgz")
        assert parsed is not None
        assert parsed.version == "18.0.0-rc.1"


@pytest.mark.parametrize("filename, expected", [
    ("a.tgz", True),
    ("a.tar", True),
    ("a.tar.gz", True),
    ("A.TGZ", True),
    ("a.zip", False),
    ("a.gz", False),
    ("a.tgz.bak", False),
])
def test_has_tarball_extension(filename: str, expected: bool) -> None:
    assert has_tarball_extension(filename) is expected
