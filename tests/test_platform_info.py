"""Tests for platform detection."""

from unittest.mock import patch

import pytest

from pkgrecovery.platform_info import detect_platform, package_manager_family, read_os_release


def _os_release(tmp_path, body):
    path = tmp_path / "os-release"
    path.write_text(body, encoding="utf-8")
    return path


def test_read_os_release(tmp_path):
    path = _os_release(tmp_path, '# comment\nNAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\n')
    assert read_os_release(path) == {"NAME": "Ubuntu", "ID": "ubuntu", "VERSION_ID": "22.04"}


def test_missing_os_release(tmp_path):
    assert read_os_release(tmp_path / "nope") == {}
    assert detect_platform(tmp_path / "nope") is None


@pytest.mark.parametrize(
    "body,expected",
    [
        ("ID=arch\n", "arch"),
        ("ID=manjaro\nID_LIKE=arch\n", "manjaro"),
        ('ID=rocky\nID_LIKE="rhel centos fedora"\n', "rocky"),
        ('ID=zorin\nID_LIKE="ubuntu debian"\n', "ubuntu"),
        ("ID=gentoo\n", None),
    ],
)
def test_detect_platform(tmp_path, body, expected):
    assert detect_platform(_os_release(tmp_path, body)) == expected


@pytest.mark.parametrize(
    "hint,expected",
    [("ubuntu", "apt"), ("Fedora", "dnf"), ("endeavouros", "pacman")],
)
def test_package_manager_family(hint, expected):
    assert package_manager_family(hint) == expected


def test_package_manager_family_falls_back_to_path():
    with patch("pkgrecovery.platform_info.shutil.which", side_effect=lambda name: name == "yum"):
        assert package_manager_family("gentoo") == "dnf"
    with patch("pkgrecovery.platform_info.shutil.which", return_value=None):
        assert package_manager_family(None) is None
