#
# Copyright 2024 zhlinh and xcfbuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
Source tarball: URL resolution, verified download and extraction.
"""

import hashlib
import logging
import os
import re
import tempfile
from typing import Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from xcfbuild.utils.cmd.cmd_util import CommandRunner
from xcfbuild.utils.errors import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
    InvalidURLError,
)
from xcfbuild.utils.fs import FileManager

log = logging.getLogger(__name__)

VERSION_PLACEHOLDER_RE = re.compile(r"\{\{.*?\}\}")
CHUNK_SIZE = 64 * 1024


def resolve_url(template: str, version: str) -> str:
    """
    Substitute the version placeholder (``{{ version }}``) in a URL template.

    Raises:
        InvalidURLError: The resulting string is not an absolute URL.
    """
    url = VERSION_PLACEHOLDER_RE.sub(version, template)
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc or not os.path.basename(parsed.path):
        raise InvalidURLError(url)
    return url


def tarball_stem(filename: str) -> str:
    """
    Name of the directory an archive expands to.

    Extensions are stripped until one containing a digit is found, e.g.
    ``openssl-1.1.1k.tar.gz`` -> ``openssl-1.1.1k``.
    """
    stem = filename
    while True:
        base, ext = os.path.splitext(stem)
        if not ext or any(c.isdigit() for c in ext):
            return stem
        stem = base


def sha256_of_file(path: str) -> str:
    sha256_hash = hashlib.sha256()
    with open(path, "rb") as f:
        for byte_block in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def create_session(retries: int = 3) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class Tarball:
    """
    A versioned source archive, downloaded at most once.

    Args:
        url: Resolved download URL
        version: Version of the sources in the archive
        download_dir: Folder in which the archive is stored
        expected_shasum: Optional SHA-256 of the archive (hex)
        session: requests session used for the download
    """

    def __init__(
        self,
        url: str,
        version: str,
        download_dir: str,
        expected_shasum: Optional[str] = None,
        session: Optional[requests.Session] = None,
        fm: Optional[FileManager] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.version = version
        self.expected_shasum = expected_shasum.lower() if expected_shasum else None
        self.filename = os.path.basename(urlparse(url).path)
        self.local_path = os.path.join(download_dir, self.filename)
        self.stem = tarball_stem(self.filename)
        self.session = session
        self.fm = fm or FileManager()
        self.log = logger or log

    @classmethod
    def from_template(cls, template: str, version: str, download_dir: str, **kwargs) -> "Tarball":
        return cls(resolve_url(template, version), version, download_dir, **kwargs)

    def _is_valid_local_copy(self) -> bool:
        if not os.path.isfile(self.local_path):
            return False
        if self.expected_shasum is None:
            return True
        actual = sha256_of_file(self.local_path)
        if actual != self.expected_shasum:
            self.log.warning(
                "Checksum of %s does not match (expected %s, got %s); downloading again",
                self.local_path, self.expected_shasum, actual,
            )
            return False
        return True

    def ensure_downloaded(self):
        """
        Make sure the archive is present locally with the expected checksum.

        The download goes to a temporary file next to the final path; it only
        replaces the local copy once verified.

        Raises:
            DownloadError: Transfer failure or non-2xx response.
            ChecksumMismatchError: The downloaded bytes do not match.
        """
        if self._is_valid_local_copy():
            self.log.info("Tarball already downloaded at %s", self.local_path)
            return

        self.fm.ensure_parent_directory(self.local_path)
        session = self.session or create_session()
        self.log.info("Downloading %s", self.url)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.filename}.", dir=os.path.dirname(self.local_path))
        try:
            sha256_hash = hashlib.sha256()
            with os.fdopen(fd, "wb") as f:
                try:
                    with session.get(self.url, stream=True, timeout=60) as response:
                        if not 200 <= response.status_code < 300:
                            raise DownloadError(self.url, f"HTTP {response.status_code}", response.status_code)
                        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                            if chunk:
                                f.write(chunk)
                                sha256_hash.update(chunk)
                except requests.RequestException as e:
                    raise DownloadError(self.url, str(e)) from e

            actual = sha256_hash.hexdigest()
            if self.expected_shasum is not None and actual != self.expected_shasum:
                raise ChecksumMismatchError(self.url, self.expected_shasum, actual)
            os.replace(tmp_path, self.local_path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

        self.log.info("Downloaded %s (sha256 %s)", self.local_path, actual)

    def extract(self, dest_dir: str, runner: CommandRunner) -> str:
        """
        Extract the archive in dest_dir (created if needed) and return the
        path of the extracted sources.

        Existing files in dest_dir are kept; archive members overwrite them.

        Raises:
            ExtractionError: The archive did not expand to ``<dest_dir>/<stem>``.
        """
        self.fm.ensure_directory(dest_dir)
        runner.run(["tar", "xf", self.local_path, "-C", dest_dir])
        extracted = os.path.join(dest_dir, self.stem)
        if not self.fm.is_dir(extracted):
            raise ExtractionError(extracted)
        return extracted
