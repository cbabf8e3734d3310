from __future__ import annotations

import pytest

import utils.fingerprint as fp
from utils.fingerprint import ContentFingerprintGate, FetchAction
from utils.portal_client import DownloadedFile


class _Remote:
    def __init__(self, data=None, error=None):
        self.data = data
        self.error = error
        self.calls = []

    def __call__(self, ref):
        self.calls.append(ref)
        if self.error is not None:
            raise self.error
        return DownloadedFile(content=self.data, extension=".pdf")


def test_no_local_candidate_fetches_new_without_touching_remote(tmp_path):
    remote = _Remote(b"remote")
    gate = ContentFingerprintGate(remote)

    decision = gate.should_fetch("https://portal.test/api/download/1", tmp_path / "2020-01-01_doc")

    assert decision.action is FetchAction.FETCH_NEW
    assert decision.needs_write
    assert remote.calls == []


def test_unrecognized_local_extension_is_not_a_candidate(tmp_path):
    (tmp_path / "doc.txt").write_bytes(b"same")
    gate = ContentFingerprintGate(_Remote(b"same"))

    assert gate.should_fetch("ref", tmp_path / "doc").action is FetchAction.FETCH_NEW


@pytest.mark.parametrize("ext", [".pdf", ".PDF", ".docx", ".doc"])
def test_identical_bytes_skip(tmp_path, ext):
    local = tmp_path / f"doc{ext}"
    local.write_bytes(b"identical content")
    gate = ContentFingerprintGate(_Remote(b"identical content"))

    for _ in range(3):
        decision = gate.should_fetch("ref", tmp_path / "doc")
        assert decision.action is FetchAction.SKIP
        assert not decision.needs_write
    assert local.exists()


def test_different_bytes_replace_and_delete_stale_copy(tmp_path):
    local = tmp_path / "doc.pdf"
    local.write_bytes(b"old")
    gate = ContentFingerprintGate(_Remote(b"new"))

    decision = gate.should_fetch("ref", tmp_path / "doc")

    assert decision.action is FetchAction.REPLACE
    assert decision.needs_write
    assert decision.replaced_path == local
    assert not local.exists()
    # The bytes pulled for hashing are handed back for writing.
    assert decision.remote.content == b"new"


def test_remote_hash_failure_keeps_local_copy(tmp_path):
    local = tmp_path / "doc.pdf"
    local.write_bytes(b"old")
    gate = ContentFingerprintGate(_Remote(error=ConnectionError("network down")))

    decision = gate.should_fetch("ref", tmp_path / "doc")

    assert decision.action is FetchAction.SKIP
    assert local.read_bytes() == b"old"


def test_unreadable_local_copy_is_invalidated(tmp_path, monkeypatch):
    local = tmp_path / "doc.pdf"
    local.write_bytes(b"old")
    remote = _Remote(b"new")

    def _boom(path):
        raise PermissionError("denied")

    monkeypatch.setattr(fp, "file_md5", _boom)

    decision = ContentFingerprintGate(remote).should_fetch("ref", tmp_path / "doc")

    assert decision.action is FetchAction.FETCH_NEW
    assert not local.exists()
    assert remote.calls == []


def test_accepts_plain_bytes_from_remote(tmp_path):
    (tmp_path / "doc.pdf").write_bytes(b"abc")
    gate = ContentFingerprintGate(lambda ref: b"abc")

    assert gate.should_fetch("ref", tmp_path / "doc").action is FetchAction.SKIP


def test_md5_matches_file_hash(tmp_path):
    p = tmp_path / "x.pdf"
    p.write_bytes(b"hello")
    assert fp.file_md5(p) == fp.md5_hex(b"hello") == "5d41402abc4b2a76b9719d911017c592"
