"""Tests for the ffmpeg wrapper."""

import subprocess
from unittest.mock import patch

import pytest

from EncodeSync.errors import TranscodeFailed
from EncodeSync.transcoder import FfmpegRunner, build_command, transcode


class RecordingRunner:
    def __init__(self, returncode=0, create_output=True):
        self.returncode = returncode
        self.create_output = create_output
        self.args = None

    def run(self, args):
        self.args = list(args)
        if self.create_output:
            with open(self.args[-1], "wb") as f:
                f.write(b"out")
        return self.returncode


def test_build_command_splits_params_shell_style():
    cmd = build_command("ffmpeg", "in.flac", '-c:a libopus -metadata comment="a b"', "out.opus")
    assert cmd == ["ffmpeg", "-i", "in.flac", "-c:a", "libopus", "-metadata", "comment=a b", "out.opus"]


def test_build_command_empty_params():
    assert build_command("ffmpeg", "in.flac", "", "out.ogg") == ["ffmpeg", "-i", "in.flac", "out.ogg"]


class TestTranscode:
    def test_success(self, tmp_path):
        source = tmp_path / "a.flac"
        source.write_bytes(b"x")
        runner = RecordingRunner()

        result = transcode(runner, "ffmpeg", source, tmp_path / "a.ogg", "-q:a 6")

        assert result.success
        assert result.exit_status == 0
        assert runner.args == ["ffmpeg", "-i", str(source), "-q:a", "6", str(tmp_path / "a.ogg")]

    def test_non_zero_exit(self, tmp_path):
        source = tmp_path / "a.flac"
        source.write_bytes(b"x")
        result = transcode(RecordingRunner(returncode=1), "ffmpeg", source, tmp_path / "a.ogg", "")
        assert not result.success
        assert result.exit_status == 1

    def test_no_output_created(self, tmp_path):
        source = tmp_path / "a.flac"
        source.write_bytes(b"x")
        result = transcode(RecordingRunner(create_output=False), "ffmpeg", source, tmp_path / "a.ogg", "")
        assert not result.success
        assert result.error_message == "Output file not created"

    def test_missing_source(self, tmp_path):
        runner = RecordingRunner()
        result = transcode(runner, "ffmpeg", tmp_path / "nope.flac", tmp_path / "a.ogg", "")
        assert not result.success
        assert runner.args is None


class TestFfmpegRunner:
    def test_timeout_raises(self):
        runner = FfmpegRunner("ffmpeg", timeout=1)
        with patch("EncodeSync.transcoder.subprocess.run",
                   side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=1)):
            with pytest.raises(TranscodeFailed, match="timed out"):
                runner.run(["ffmpeg", "-i", "a", "b"])

    def test_quiet_captures_output(self):
        runner = FfmpegRunner("ffmpeg", quiet=True)
        done = subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")
        with patch("EncodeSync.transcoder.subprocess.run", return_value=done) as run:
            assert runner.run(["ffmpeg"]) == 0
        assert run.call_args.kwargs["capture_output"] is True
        assert run.call_args.kwargs["stdin"] == subprocess.DEVNULL
