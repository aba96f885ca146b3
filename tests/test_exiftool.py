import json
import shutil
import subprocess
import sys
from datetime import datetime
from pathlib import Path

import pytest

import exif_date_fixer
from exif_date_fixer import ExifToolMetadata, ProcessingStatus, decide_file, find_exiftool

# 1x1 baseline JPEG without any EXIF segment.
MINIMAL_JPEG = bytes.fromhex(
    "ffd8"
    "ffe000104a46494600010100000100010000"
    "ffc00011080001000103012200021101031101"
    "ffc4001f0000010501010101010100000000000000000102030405060708090a0b"
    "ffc400b5100002010303020403050504040000017d01020300041105122131410613516107"
    "227114328191a1082342b1c11552d1f02433627282090a161718191a25262728292a3435"
    "363738393a434445464748494a535455565758595a636465666768696a737475767778"
    "797a838485868788898a92939495969798999aa2a3a4a5a6a7a8a9aab2b3b4b5b6b7b8"
    "b9bac2c3c4c5c6c7c8c9cad2d3d4d5d6d7d8d9dae1e2e3e4e5e6e7e8e9eaf1f2f3f4f5"
    "f6f7f8f9fa"
    "ffda000c03010002110311003f00"
    "fcffc0"
    "ffd9"
)


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def fake_run(monkeypatch):
    calls = []
    responses = []

    def run(cmd, **kwargs):
        calls.append(cmd)
        response = responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    monkeypatch.setattr(exif_date_fixer.subprocess, "run", run)
    return calls, responses


def exiftool_json(**tags):
    return json.dumps([dict(SourceFile="photo.jpg", **tags)])


@pytest.mark.parametrize(
    "tags, expected",
    [
        ({}, False),
        ({"DateTimeOriginal": "2023:01:15 12:30:45"}, True),
        ({"ModifyDate": "2023:01:15 12:30:45"}, True),
        ({"CreateDate": "2023:01:15 12:30:45"}, True),
        ({"DateTimeOriginal": "0000:00:00 00:00:00"}, False),
        ({"DateTimeOriginal": "    :  :     :  :  "}, False),
        ({"DateTimeOriginal": ""}, False),
        ({"DateTimeOriginal": "0000:00:00 00:00:00", "CreateDate": "2023:01:15 12:30:45"}, True),
        ({"DateTimeOriginal": "2023:01:15 12:30:45+02:00"}, True),
    ],
)
def test_has_capture_date(fake_run, tmp_path, tags, expected):
    calls, responses = fake_run
    responses.append(completed(stdout=exiftool_json(**tags)))
    path = tmp_path / "photo.jpg"
    assert ExifToolMetadata("exiftool").has_capture_date(path) is expected
    assert calls == [
        ["exiftool", "-j", "-EXIF:ModifyDate", "-EXIF:DateTimeOriginal", "-EXIF:CreateDate", str(path)]
    ]


@pytest.mark.parametrize(
    "response",
    [
        completed(returncode=1, stderr="Error: File not found"),
        completed(stdout="not json"),
        completed(stdout="[]"),
        completed(stdout=""),
        FileNotFoundError("exiftool"),
        subprocess.TimeoutExpired("exiftool", 30),
    ],
)
def test_read_failures_mean_no_date(fake_run, tmp_path, response):
    _, responses = fake_run
    responses.append(response)
    assert ExifToolMetadata().has_capture_date(tmp_path / "photo.jpg") is False


def test_write_sets_all_three_tags(fake_run, tmp_path):
    calls, responses = fake_run
    responses.append(completed())
    path = tmp_path / "photo.jpg"
    assert ExifToolMetadata("exiftool").write_capture_date(path, datetime(2023, 1, 15, 12, 30, 45))
    assert calls == [
        [
            "exiftool",
            "-overwrite_original",
            "-P",
            "-q",
            "-EXIF:ModifyDate=2023:01:15 12:30:45",
            "-EXIF:DateTimeOriginal=2023:01:15 12:30:45",
            "-EXIF:CreateDate=2023:01:15 12:30:45",
            str(path),
        ]
    ]


@pytest.mark.parametrize(
    "response",
    [
        completed(returncode=1, stderr="Error: Not a valid JPG"),
        PermissionError("read-only"),
        subprocess.TimeoutExpired("exiftool", 30),
    ],
)
def test_write_failures_return_false(fake_run, tmp_path, response, caplog):
    _, responses = fake_run
    responses.append(response)
    assert ExifToolMetadata().write_capture_date(tmp_path / "photo.jpg", datetime(2023, 1, 15)) is False
    assert "Failed to update metadata" in caplog.text


def test_missing_executable(tmp_path):
    gateway = ExifToolMetadata(str(tmp_path / "no-such-exiftool"))
    photo = tmp_path / "photo.jpg"
    photo.write_bytes(MINIMAL_JPEG)
    assert gateway.has_capture_date(photo) is False
    assert gateway.write_capture_date(photo, datetime(2023, 1, 15)) is False


def test_find_exiftool_honours_override(monkeypatch, tmp_path):
    monkeypatch.setenv("EXIFTOOL", str(tmp_path / "no-such-exiftool"))
    assert find_exiftool() is None


requires_exiftool = pytest.mark.skipif(
    shutil.which("exiftool") is None, reason="exiftool is not installed"
)


@requires_exiftool
def test_round_trip_on_real_jpeg(tmp_path):
    gateway = ExifToolMetadata(shutil.which("exiftool"))
    photo = tmp_path / "20230115_123045.jpg"
    photo.write_bytes(MINIMAL_JPEG)

    assert gateway.has_capture_date(photo) is False
    assert gateway.write_capture_date(photo, datetime(2023, 1, 15, 12, 30, 45)) is True
    assert gateway.has_capture_date(photo) is True


@requires_exiftool
def test_real_exiftool_rejects_non_image(tmp_path):
    gateway = ExifToolMetadata(shutil.which("exiftool"))
    fake = tmp_path / "invalid.jpg"
    fake.write_text("This is not a valid image file")

    assert gateway.has_capture_date(fake) is False
    assert gateway.write_capture_date(fake, datetime(2023, 1, 15)) is False
    assert gateway.has_capture_date(tmp_path / "nonexistent.jpg") is False


def test_relative_path_is_passed_as_absolute(fake_run, tmp_path, monkeypatch):
    calls, responses = fake_run
    responses.extend([completed(stdout=exiftool_json()), completed()])
    monkeypatch.chdir(tmp_path)
    path = Path("-20230115_123045.jpg")
    gateway = ExifToolMetadata("exiftool")

    gateway.has_capture_date(path)
    gateway.write_capture_date(path, datetime(2023, 1, 15, 12, 30, 45))

    expected = str(tmp_path / "-20230115_123045.jpg")
    assert [cmd[-1] for cmd in calls] == [expected, expected]


@pytest.fixture
def garbled_exiftool(tmp_path):
    script = tmp_path / "exiftool"
    script.write_text("#!/bin/sh\nprintf 'Error: Not a valid JPG - \\377\\376.jpg\\n' >&2\nexit 1\n")
    script.chmod(0o755)
    return str(script)


@pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell script")
def test_undecodable_exiftool_output_is_a_failure(garbled_exiftool, tmp_path):
    gateway = ExifToolMetadata(garbled_exiftool)
    photo = tmp_path / "20230115_123045.jpg"
    photo.write_bytes(b"")

    assert gateway.has_capture_date(photo) is False
    assert gateway.write_capture_date(photo, datetime(2023, 1, 15)) is False

    result = decide_file(photo, gateway, dry_run=True)
    assert result.status is ProcessingStatus.WOULD_UPDATE
    assert result.timestamp == datetime(2023, 1, 15, 12, 30, 45)
