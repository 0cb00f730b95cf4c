"""Shared fixtures: a fake RFC 6962 log served over httpx.MockTransport."""

from __future__ import annotations

import base64
import datetime
import json
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ct_scanlog.client import LogClient
from ct_scanlog.models import LogEntry

LOG_URI = "https://ct.example.test/logs/test2025/"

_KEY = ec.generate_private_key(ec.SECP256R1())


def make_cert(cn: str = "example.com", issuer_cn: str = "Test CA") -> bytes:
    now = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)]))
        .issuer_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn)]))
        .public_key(_KEY.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=90))
        .sign(_KEY, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.DER)


def _u(value: int, length: int) -> bytes:
    return value.to_bytes(length, "big")


def _vec(data: bytes, length_bytes: int = 3) -> bytes:
    return _u(len(data), length_bytes) + data


def _chain(certs: List[bytes]) -> bytes:
    return _vec(b"".join(_vec(c) for c in certs))


def cert_leaf(cert: bytes, chain: Optional[List[bytes]] = None, timestamp: int = 1700000000000) -> Tuple[bytes, bytes]:
    leaf_input = b"\x00\x00" + _u(timestamp, 8) + _u(0, 2) + _vec(cert) + _u(0, 2)
    return leaf_input, _chain(chain or [])


def precert_leaf(precert: bytes, chain: Optional[List[bytes]] = None, timestamp: int = 1700000000000) -> Tuple[bytes, bytes]:
    tbs = b"\x30\x03\x02\x01\x01"
    leaf_input = (
        b"\x00\x00" + _u(timestamp, 8) + _u(1, 2) + b"\xab" * 32 + _vec(tbs) + _u(0, 2)
    )
    return leaf_input, _vec(precert) + _chain(chain or [])


def unknown_leaf() -> Tuple[bytes, bytes]:
    return b"\x00\x00" + _u(0, 8) + _u(7, 2), b""


class FakeLog:
    """In-memory CT log answering get-sth and get-entries."""

    def __init__(self, leaves: List[Tuple[bytes, bytes]], page_size: int = 1000):
        self.leaves = leaves
        self.page_size = page_size
        self.fail_starts: Set[int] = set()
        self.fail_always = False
        self.requests: List[Tuple[int, int]] = []
        self.sth_requests = 0
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/ct/v1/get-sth"):
            self.sth_requests += 1
            return httpx.Response(200, json={
                "tree_size": len(self.leaves),
                "timestamp": 0,
                "sha256_root_hash": "",
                "tree_head_signature": "",
            })
        if path.endswith("/ct/v1/get-entries"):
            start = int(request.url.params["start"])
            end = int(request.url.params["end"])
            with self._lock:
                self.requests.append((start, end))
            if self.fail_always or start in self.fail_starts:
                return httpx.Response(500, text="internal error")
            if start >= len(self.leaves) or end < start:
                return httpx.Response(400, text="bad range")
            stop = min(end + 1, start + self.page_size, len(self.leaves))
            entries = [
                {
                    "leaf_input": base64.b64encode(leaf).decode(),
                    "extra_data": base64.b64encode(extra).decode(),
                }
                for leaf, extra in self.leaves[start:stop]
            ]
            return httpx.Response(200, json={"entries": entries})
        return httpx.Response(404)

    def client_factory(self, log_uri: str) -> LogClient:
        return LogClient(log_uri, transport=httpx.MockTransport(self.handler))


class RecordingProcessor:
    def __init__(self):
        self.certs: List[int] = []
        self.precerts: List[int] = []

    def process_cert(self, entry: LogEntry) -> None:
        self.certs.append(entry.index)

    def process_precert(self, entry: LogEntry) -> None:
        self.precerts.append(entry.index)


class RecordingFatalLogger:
    def __init__(self):
        self.errors: List[BaseException] = []

    def fatal(self, err: BaseException) -> None:
        self.errors.append(err)


def mixed_log(certs: int, precerts: int) -> List[Tuple[bytes, bytes]]:
    """Interleave certificate and precertificate leaves."""
    leaves = []
    remaining = {"cert": certs, "precert": precerts}
    i = 0
    while remaining["cert"] or remaining["precert"]:
        kind = "precert" if (i % 2 and remaining["precert"]) or not remaining["cert"] else "cert"
        remaining[kind] -= 1
        der = make_cert(f"host{i}.example.com")
        leaves.append(precert_leaf(der) if kind == "precert" else cert_leaf(der, [make_cert("Test CA", "Root")]))
        i += 1
    return leaves


def write_config(path: Path, **values) -> Path:
    import yaml

    path.write_text(yaml.safe_dump(values))
    return path


def read_checkpoint(path: Path) -> Dict:
    return json.loads(path.read_text())


@pytest.fixture
def recording_processor() -> RecordingProcessor:
    return RecordingProcessor()


@pytest.fixture
def fatal_logger() -> RecordingFatalLogger:
    return RecordingFatalLogger()
