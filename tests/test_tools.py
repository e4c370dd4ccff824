"""Tests for v4m.tools."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import bcrypt
import pytest
import requests

from v4m.exceptions import DownloadFailed, HashFailed, ManagerError, PackagingFailed, ResizeFailed
from v4m.tools import (
    BcryptPasswordHasher,
    GenisoimagePackager,
    HdiutilPackager,
    OpensslPasswordHasher,
    QemuImgResizer,
    RequestsImageFetcher,
    default_toolbox,
)


def _response(chunks, length=None, status_error=None):
    response = MagicMock()
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.headers = {"Content-Length": str(length)} if length is not None else {}
    response.iter_content.return_value = iter(chunks)
    if status_error:
        response.raise_for_status.side_effect = status_error
    return response


class TestRequestsImageFetcher:
    def test_streams_to_destination(self, tmp_path, capsys):
        session = MagicMock()
        session.get.return_value = _response([b"abc", b"", b"def"], length=6)
        dest = tmp_path / "image.qcow2"
        RequestsImageFetcher(session=session).fetch("https://example.com/image.qcow2", dest)
        assert dest.read_bytes() == b"abcdef"
        assert list(tmp_path.iterdir()) == [dest]
        assert session.get.call_args.kwargs["stream"] is True
        assert "100.0%" in capsys.readouterr().out

    def test_http_error_cleans_up(self, tmp_path):
        session = MagicMock()
        session.get.return_value = _response([], status_error=requests.HTTPError("404 Not Found"))
        dest = tmp_path / "image.qcow2"
        with pytest.raises(DownloadFailed, match="404"):
            RequestsImageFetcher(session=session).fetch("https://example.com/image.qcow2", dest)
        assert list(tmp_path.iterdir()) == []

    def test_interrupted_stream_removes_temp_file(self, tmp_path):
        def chunks():
            yield b"partial"
            raise requests.ConnectionError("reset")

        session = MagicMock()
        session.get.return_value = _response(chunks())
        dest = tmp_path / "image.qcow2"
        with pytest.raises(DownloadFailed, match="reset"):
            RequestsImageFetcher(session=session).fetch("https://example.com/image.qcow2", dest)
        assert list(tmp_path.iterdir()) == []


class TestPasswordHashers:
    def test_bcrypt_verifies(self):
        hashed = BcryptPasswordHasher().hash("secret123")
        assert hashed != "secret123"
        assert bcrypt.checkpw(b"secret123", hashed.encode())

    def test_bcrypt_value_error(self):
        with patch("v4m.tools.bcrypt.hashpw", side_effect=ValueError("too long")):
            with pytest.raises(HashFailed, match="too long"):
                BcryptPasswordHasher().hash("x")

    def test_openssl_uses_stdin(self):
        with patch("v4m.tools.run", return_value=MagicMock(stdout="$6$salt$abc\n")) as mock_run:
            assert OpensslPasswordHasher().hash("pw") == "$6$salt$abc"
        cmd = mock_run.call_args[0][0]
        assert cmd == ["openssl", "passwd", "-6", "-stdin"]
        assert mock_run.call_args.kwargs["input"] == "pw\n"

    def test_openssl_missing(self):
        with patch("v4m.tools.run", side_effect=FileNotFoundError("openssl")):
            with pytest.raises(HashFailed):
                OpensslPasswordHasher().hash("pw")


class TestPackagers:
    def test_genisoimage_command(self, tmp_path):
        with patch("v4m.tools.run") as mock_run:
            GenisoimagePackager().package(tmp_path / "src", tmp_path / "out.iso")
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "genisoimage"
        assert cmd[cmd.index("-volid") + 1] == "cidata"
        assert cmd[cmd.index("-output") + 1] == str(tmp_path / "out.iso")

    def test_hdiutil_command(self, tmp_path):
        with patch("v4m.tools.run") as mock_run:
            HdiutilPackager().package(tmp_path / "src", tmp_path / "out.iso")
        cmd = mock_run.call_args[0][0]
        assert cmd[:2] == ["hdiutil", "makehybrid"]
        assert cmd[cmd.index("-default-volume-name") + 1] == "cidata"

    def test_failure_wrapped(self, tmp_path):
        with patch("v4m.tools.run", side_effect=subprocess.CalledProcessError(1, ["genisoimage"])):
            with pytest.raises(PackagingFailed):
                GenisoimagePackager().package(tmp_path, tmp_path / "out.iso")


class TestQemuImgResizer:
    def test_virtual_size(self, tmp_path):
        with patch("v4m.tools.run", return_value=MagicMock(stdout='{"virtual-size": 2147483648}')):
            assert QemuImgResizer().virtual_size(tmp_path / "d.qcow2") == 2147483648

    def test_virtual_size_bad_json(self, tmp_path):
        with patch("v4m.tools.run", return_value=MagicMock(stdout="not json")):
            with pytest.raises(ResizeFailed):
                QemuImgResizer().virtual_size(tmp_path / "d.qcow2")

    def test_resize_failure(self, tmp_path):
        with patch("v4m.tools.run", side_effect=subprocess.CalledProcessError(1, ["qemu-img"])):
            with pytest.raises(ResizeFailed):
                QemuImgResizer().resize(tmp_path / "d.qcow2", "20G")


class TestDefaultToolbox:
    def test_linux_profile(self, default_vm_config):
        toolbox = default_toolbox(default_vm_config)
        assert isinstance(toolbox.fetcher, RequestsImageFetcher)
        assert isinstance(toolbox.hasher, BcryptPasswordHasher)
        assert isinstance(toolbox.packager, GenisoimagePackager)
        assert isinstance(toolbox.resizer, QemuImgResizer)

    def test_openssl_hasher_selected(self, default_vm_config):
        default_vm_config.password_hasher = "openssl"
        assert isinstance(default_toolbox(default_vm_config).hasher, OpensslPasswordHasher)

    def test_unknown_packager(self, default_vm_config):
        import dataclasses

        default_vm_config.profile = dataclasses.replace(default_vm_config.profile, packager="mkisofs")
        with pytest.raises(ManagerError, match="mkisofs"):
            default_toolbox(default_vm_config)
