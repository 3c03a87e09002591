"""
Tests for tarball URL resolution, download and extraction.

Run with: python3 -m pytest xcfbuild/model/test_tarball.py
"""

import hashlib
import os
import tempfile
import unittest

import requests

from xcfbuild.model.tarball import Tarball, resolve_url, tarball_stem
from xcfbuild.utils.cmd.fake_cmd import FakeCommandRunner
from xcfbuild.utils.errors import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
    InvalidURLError,
)

URL = "https://www.openssl.org/source/openssl-1.1.1k.tar.gz"
CONTENT = b"not really a tarball" * 100
SHASUM = hashlib.sha256(CONTENT).hexdigest()


class FakeResponse:
    def __init__(self, status_code=200, content=CONTENT):
        self.status_code = status_code
        self.content = content

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.urls = []

    def get(self, url, stream=False, timeout=None):
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.response


class TestResolveUrl(unittest.TestCase):
    """Test URL template resolution."""

    def test_placeholder(self):
        self.assertEqual(
            resolve_url("https://www.openssl.org/source/openssl-{{ version }}.tar.gz", "1.1.1k"),
            URL,
        )
        self.assertEqual(resolve_url("https://h/x/openssl-{{version}}.tgz", "3.0.0"), "https://h/x/openssl-3.0.0.tgz")

    def test_invalid(self):
        for template in ["openssl-{{ version }}.tar.gz", "https://", "https://host/"]:
            with self.assertRaises(InvalidURLError):
                resolve_url(template, "1.1.1k")

    def test_stem(self):
        self.assertEqual(tarball_stem("openssl-1.1.1k.tar.gz"), "openssl-1.1.1k")
        self.assertEqual(tarball_stem("openssl-3.0.0.tgz"), "openssl-3.0.0")
        self.assertEqual(tarball_stem("sources"), "sources")


class TestTarballDownload(unittest.TestCase):
    """Test the verified download."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = self.tmp.name

    def make(self, session, shasum=SHASUM):
        return Tarball(URL, "1.1.1k", self.dir, expected_shasum=shasum, session=session)

    def test_download(self):
        session = FakeSession()
        tarball = self.make(session)
        tarball.ensure_downloaded()
        self.assertEqual(tarball.local_path, os.path.join(self.dir, "openssl-1.1.1k.tar.gz"))
        with open(tarball.local_path, "rb") as f:
            self.assertEqual(f.read(), CONTENT)
        self.assertEqual(os.listdir(self.dir), ["openssl-1.1.1k.tar.gz"])

    def test_valid_local_copy_is_kept(self):
        session = FakeSession()
        self.make(session).ensure_downloaded()
        self.make(session).ensure_downloaded()
        self.assertEqual(len(session.urls), 1)

    def test_local_copy_without_checksum(self):
        with open(os.path.join(self.dir, "openssl-1.1.1k.tar.gz"), "wb") as f:
            f.write(b"anything")
        session = FakeSession()
        self.make(session, shasum=None).ensure_downloaded()
        self.assertEqual(session.urls, [])

    def test_corrupt_local_copy_is_replaced(self):
        path = os.path.join(self.dir, "openssl-1.1.1k.tar.gz")
        with open(path, "wb") as f:
            f.write(b"corrupt")
        session = FakeSession()
        self.make(session, shasum=SHASUM.upper()).ensure_downloaded()
        self.assertEqual(len(session.urls), 1)
        with open(path, "rb") as f:
            self.assertEqual(f.read(), CONTENT)

    def test_bad_download_keeps_local_copy(self):
        path = os.path.join(self.dir, "openssl-1.1.1k.tar.gz")
        with open(path, "wb") as f:
            f.write(b"corrupt")
        session = FakeSession(FakeResponse(content=b"tampered"))
        with self.assertRaises(ChecksumMismatchError):
            self.make(session).ensure_downloaded()
        self.assertEqual(len(session.urls), 1)
        self.assertEqual(os.listdir(self.dir), ["openssl-1.1.1k.tar.gz"])
        with open(path, "rb") as f:
            self.assertEqual(f.read(), b"corrupt")

    def test_checksum_mismatch_leaves_nothing(self):
        session = FakeSession(FakeResponse(content=b"tampered"))
        with self.assertRaises(ChecksumMismatchError) as ctx:
            self.make(session).ensure_downloaded()
        self.assertEqual(ctx.exception.expected, SHASUM)
        self.assertEqual(ctx.exception.actual, hashlib.sha256(b"tampered").hexdigest())
        self.assertEqual(os.listdir(self.dir), [])

    def test_http_error(self):
        session = FakeSession(FakeResponse(status_code=404))
        with self.assertRaises(DownloadError) as ctx:
            self.make(session).ensure_downloaded()
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(os.listdir(self.dir), [])

    def test_transport_error(self):
        session = FakeSession(error=requests.ConnectionError("connection refused"))
        with self.assertRaises(DownloadError):
            self.make(session).ensure_downloaded()
        self.assertEqual(os.listdir(self.dir), [])


class TestTarballExtract(unittest.TestCase):
    """Test the extraction."""

    def test_extract(self):
        with tempfile.TemporaryDirectory() as tmp:
            runner = FakeCommandRunner()
            tarball = Tarball(URL, "1.1.1k", tmp)
            dest = os.path.join(tmp, "src")
            extracted = tarball.extract(dest, runner)
            self.assertEqual(extracted, os.path.join(dest, "openssl-1.1.1k"))
            self.assertEqual(
                runner.commands[0].args,
                ["tar", "xf", os.path.join(tmp, "openssl-1.1.1k.tar.gz"), "-C", dest],
            )

    def test_extract_unexpected_layout(self):
        class EmptyTar(FakeCommandRunner):
            def _sim_tar(self, command, handler):
                pass

        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ExtractionError):
                Tarball(URL, "1.1.1k", tmp).extract(os.path.join(tmp, "src"), EmptyTar())


if __name__ == "__main__":
    unittest.main()
