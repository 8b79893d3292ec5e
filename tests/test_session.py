"""
Tests for session.py — full sender/receiver sessions over a socket pair.
"""

import os
import struct
import sys
import threading
from pathlib import Path

import pytest

from sf.errors import FilesystemError, MalformedManifest, TruncatedTransfer
from sf.integrity import FileHasher
from sf.protocol import VERSION
from sf.session import ReceiveSession, SendSession
from sf.transfer import FileEntry, walk_targets


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def send_in_background(sock, entries, **kwargs):
    """Run a SendSession in a thread; the socket is closed when it ends."""
    errors = []

    def run():
        try:
            SendSession(sock, entries, **kwargs).run()
        except Exception as exc:  # surfaced by the test
            errors.append(exc)
        finally:
            sock.close()

    t = threading.Thread(target=run, daemon=True)
    t.start()
    return t, errors


def raw_manifest(records):
    body = b"".join(struct.pack("<QI", size, len(name)) + name for size, name in records)
    return b"sf-" + bytes([VERSION]) + struct.pack("<I", 8 + len(body)) + body


@pytest.fixture
def docs_tree(tmp_path, monkeypatch):
    src = tmp_path / "src"
    (src / "docs" / "sub").mkdir(parents=True)
    (src / "docs" / "readme.txt").write_bytes(b"hello world")
    (src / "docs" / "sub" / "a.bin").write_bytes(b"")
    monkeypatch.chdir(src)
    return src


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    def test_strip_prefix(self, sock_pair, docs_tree, tmp_path):
        a, b = sock_pair
        entries = walk_targets(["docs"])
        assert [e.rel_path for e in entries] == ["docs/readme.txt", "docs/sub/a.bin"]
        assert [e.size for e in entries] == [11, 0]

        out = tmp_path / "out"
        t, errors = send_in_background(a, entries)
        received = ReceiveSession(b, dest_dir=out, strip_prefix=True).run()
        t.join(timeout=5)

        assert not errors
        assert (out / "readme.txt").read_bytes() == b"hello world"
        assert (out / "sub" / "a.bin").exists()
        assert (out / "sub" / "a.bin").read_bytes() == b""
        assert not (out / "docs").exists()
        assert [r.path for r in received] == [out / "readme.txt", out / "sub" / "a.bin"]

    def test_keep_prefix(self, sock_pair, docs_tree, tmp_path):
        a, b = sock_pair
        out = tmp_path / "out"
        t, errors = send_in_background(a, walk_targets(["docs"]))
        ReceiveSession(b, dest_dir=out).run()
        t.join(timeout=5)

        assert not errors
        assert (out / "docs" / "readme.txt").read_bytes() == b"hello world"
        assert (out / "docs" / "sub" / "a.bin").read_bytes() == b""

    def test_many_chunks(self, sock_pair, tmp_path):
        a, b = sock_pair
        src = tmp_path / "big.bin"
        payload = bytes(range(256)) * 1000 + b"tail"
        src.write_bytes(payload)
        entries = [FileEntry(path=src, rel_path="data/big.bin", size=len(payload)),
                   FileEntry(path=src, rel_path="data/copy.bin", size=len(payload))]

        out = tmp_path / "out"
        t, errors = send_in_background(a, entries, chunk_size=4096)
        received = ReceiveSession(b, dest_dir=out, strip_prefix=True, chunk_size=1000).run()
        t.join(timeout=5)

        assert not errors
        assert (out / "big.bin").read_bytes() == payload
        assert (out / "copy.bin").read_bytes() == payload
        hasher = FileHasher()
        hasher.update(payload)
        assert received[0].digest == received[1].digest == hasher.hexdigest()

    def test_empty_transfer(self, sock_pair, tmp_path):
        a, b = sock_pair
        t, errors = send_in_background(a, [])
        assert ReceiveSession(b, dest_dir=tmp_path).run() == []
        t.join(timeout=5)
        assert not errors


# ---------------------------------------------------------------------------
# Receiver edge cases
# ---------------------------------------------------------------------------


class TestReceiver:
    def test_truncated_file_is_reported_and_removed(self, sock_pair, tmp_path):
        a, b = sock_pair
        a.sendall(raw_manifest([(100, b"part.bin")]) + b"x" * 10)
        a.close()

        with pytest.raises(TruncatedTransfer):
            ReceiveSession(b, dest_dir=tmp_path).run()
        assert not (tmp_path / "part.bin").exists()

    def test_truncation_stops_the_session(self, sock_pair, tmp_path):
        a, b = sock_pair
        a.sendall(raw_manifest([(4, b"one"), (4, b"two")]) + b"1111" + b"22")
        a.close()

        with pytest.raises(TruncatedTransfer):
            ReceiveSession(b, dest_dir=tmp_path).run()
        assert (tmp_path / "one").read_bytes() == b"1111"
        assert not (tmp_path / "two").exists()

    def test_parent_created_once(self, sock_pair, tmp_path, monkeypatch):
        a, b = sock_pair
        a.sendall(raw_manifest([(1, b"d/x"), (1, b"d/y"), (1, b"d/e/z")]) + b"xyz")
        a.close()

        calls = []
        real_mkdir = Path.mkdir

        def counting_mkdir(self, *args, **kwargs):
            calls.append(self)
            return real_mkdir(self, *args, **kwargs)

        monkeypatch.setattr(Path, "mkdir", counting_mkdir)
        ReceiveSession(b, dest_dir=tmp_path).run()

        assert calls == [tmp_path / "d", tmp_path / "d" / "e"]
        assert (tmp_path / "d" / "e" / "z").read_bytes() == b"z"

    def test_absolute_names_stay_under_dest(self, sock_pair, tmp_path):
        a, b = sock_pair
        a.sendall(raw_manifest([(2, b"/abs/file")]) + b"ok")
        a.close()

        ReceiveSession(b, dest_dir=tmp_path).run()
        assert (tmp_path / "abs" / "file").read_bytes() == b"ok"

    def test_parent_references_rejected(self, sock_pair, tmp_path):
        a, b = sock_pair
        out = tmp_path / "out"
        a.sendall(raw_manifest([(1, b"ok.txt"), (1, b"../evil")]) + b"ab")
        a.close()

        with pytest.raises(MalformedManifest):
            ReceiveSession(b, dest_dir=out).run()
        assert not (out / "ok.txt").exists()
        assert not (tmp_path / "evil").exists()

    def test_unwritable_destination(self, sock_pair, tmp_path):
        a, b = sock_pair
        (tmp_path / "blocker").write_text("a file, not a directory")
        a.sendall(raw_manifest([(1, b"blocker/x")]) + b"x")
        a.close()

        with pytest.raises(FilesystemError):
            ReceiveSession(b, dest_dir=tmp_path).run()

    def test_manifest_is_kept(self, sock_pair, tmp_path):
        a, b = sock_pair
        a.sendall(raw_manifest([(1, b"p/q/a"), (1, b"p/q/b")]) + b"ab")
        a.close()

        session = ReceiveSession(b, dest_dir=tmp_path, strip_prefix=True)
        session.run()
        assert session.manifest.prefix_len == len(b"p/q/")
        assert (tmp_path / "a").read_bytes() == b"a"


# ---------------------------------------------------------------------------
# Sender edge cases
# ---------------------------------------------------------------------------


class TestSender:
    def test_missing_source_file(self, sock_pair, tmp_path):
        a, _ = sock_pair
        entry = FileEntry(path=tmp_path / "gone", rel_path="gone", size=3)
        with pytest.raises(FilesystemError):
            SendSession(a, [entry]).run()

    def test_file_shorter_than_declared(self, sock_pair, tmp_path):
        a, _ = sock_pair
        src = tmp_path / "short"
        src.write_bytes(b"ab")
        entry = FileEntry(path=src, rel_path="short", size=3)
        with pytest.raises(FilesystemError):
            SendSession(a, [entry]).run()

    def test_file_longer_than_declared(self, sock_pair, tmp_path):
        a, b = sock_pair
        src = tmp_path / "long"
        src.write_bytes(b"abcd")
        entry = FileEntry(path=src, rel_path="long", size=2)
        with pytest.raises(FilesystemError):
            SendSession(a, [entry], chunk_size=16).run()

    def test_manifest_sent_first(self, sock_pair, tmp_path):
        a, b = sock_pair
        src = tmp_path / "f"
        src.write_bytes(b"data")
        SendSession(a, [FileEntry(path=src, rel_path="dir\\f", size=4)]).run()
        a.close()

        expected = raw_manifest([(4, b"dir/f")]) + b"data"
        got = b""
        while chunk := b.recv(1024):
            got += chunk
        assert got == expected


# ---------------------------------------------------------------------------
# walk_targets
# ---------------------------------------------------------------------------


class TestWalkTargets:
    def test_stable_order(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for name in ["t/b/2", "t/a/1", "t/c", "t/a/0"]:
            p = tmp_path / name
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(b"")
        names = [e.rel_path for e in walk_targets(["t"])]
        assert names == ["t/c", "t/a/0", "t/a/1", "t/b/2"]

    def test_plain_file(self, tmp_path):
        f = tmp_path / "one.txt"
        f.write_bytes(b"123")
        (e,) = walk_targets([f])
        assert e.size == 3
        assert e.path == f

    def test_missing(self, tmp_path):
        with pytest.raises(FilesystemError):
            walk_targets([tmp_path / "nope"])


@pytest.mark.skipif(sys.platform != "linux", reason="needs a byte-oriented filesystem")
class TestUndecodableNames:
    @pytest.fixture
    def bad_name_dir(self, tmp_path):
        with open(os.path.join(os.fsencode(tmp_path), b"bad\xffname.txt"), "wb") as fh:
            fh.write(b"x")
        return tmp_path

    def test_walk_rejects_name(self, bad_name_dir):
        with pytest.raises(FilesystemError, match="as UTF-8"):
            walk_targets([bad_name_dir])

    def test_sender_rejects_name(self, sock_pair, bad_name_dir):
        a, _ = sock_pair
        path = Path(os.fsdecode(os.path.join(os.fsencode(bad_name_dir), b"bad\xffname.txt")))
        entry = FileEntry(path=path, rel_path=str(path), size=1)
        with pytest.raises(FilesystemError, match="as UTF-8"):
            SendSession(a, [entry]).run()
