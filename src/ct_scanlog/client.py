"""
RFC 6962 log client: tree size and ranged leaf fetches over httpx.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Union, cast

import httpx

from . import __version__
from .binary_reader import BinaryReader, Endianness
from .errors import ClientError, FetchError
from .models import EntryType, LogEntry, SignedTreeHead

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = f"ct-scanlog/{__version__}"


def _parse_certificate_chain(reader: BinaryReader) -> List[bytes]:
    """
    Read a certificate_chain<0..2^24-1> vector of ASN.1Cert<1..2^24-1>.
    """
    chain: List[bytes] = []
    if reader.remaining == 0:
        return chain
    chain_reader = BinaryReader(reader.read_vector(3), Endianness.BIG)
    while chain_reader.remaining > 0:
        chain.append(chain_reader.read_vector(3))
    return chain


def decode_leaf(index: int, leaf_input: bytes, extra_data: bytes) -> LogEntry:
    """
    Decode one get-entries record into a LogEntry.

    Malformed records are returned as UNKNOWN with parse_error set rather than
    raised, so that every index in a fetched range is accounted for.
    """
    entry = LogEntry(
        index=index, timestamp=0, entry_type=EntryType.UNKNOWN, leaf_input=leaf_input
    )
    try:
        reader = BinaryReader(leaf_input, Endianness.BIG)

        version = reader.read_uint(1)
        if version != 0:
            raise ValueError(f"Invalid MerkleTreeLeaf version: {version}")
        leaf_type = reader.read_uint(1)
        if leaf_type != 0:
            raise ValueError(f"Invalid leaf_type: {leaf_type}")

        entry.timestamp = reader.read_uint(8)
        entry_type_val = reader.read_uint(2)
        extra = BinaryReader(extra_data, Endianness.BIG)

        if entry_type_val == EntryType.X509_ENTRY:
            entry.cert_data = reader.read_vector(3)
            reader.read_vector(2)  # CtExtensions
            entry.chain = _parse_certificate_chain(extra)
        elif entry_type_val == EntryType.PRECERT_ENTRY:
            entry.issuer_key_hash = reader.read_bytes(32)
            entry.tbs_certificate = reader.read_vector(3)
            reader.read_vector(2)
            # PrecertChainEntry: pre_certificate followed by its chain
            entry.cert_data = extra.read_vector(3)
            entry.chain = _parse_certificate_chain(extra)
        else:
            raise ValueError(f"Unknown entry type: {entry_type_val}")

        entry.entry_type = EntryType(entry_type_val)
    except ValueError as e:
        entry.entry_type = EntryType.UNKNOWN
        entry.parse_error = str(e)

    return entry


def parse_log_uri(log_uri: str) -> httpx.URL:
    """
    Check that log_uri is an absolute http(s) URL and return it parsed.

    Raises:
        ClientError: if log_uri is not usable as a log base URL
    """
    try:
        url = httpx.URL(log_uri)
    except (httpx.InvalidURL, TypeError) as e:
        raise ClientError(f"Invalid log URI {log_uri!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ClientError(f"Log URI must be an absolute http(s) URL, got {log_uri!r}")
    return url


class LogClient:
    """Client for a single classic (RFC 6962) CT log"""

    def __init__(
        self,
        log_uri: str,
        timeout: Union[float, httpx.Timeout] = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        url = parse_log_uri(log_uri)

        self.log_uri = log_uri
        self._endpoint_base = log_uri.rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self._client = httpx.AsyncClient(
            base_url=url,
            timeout=timeout,
            headers={"User-Agent": self.user_agent},
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the HTTP client"""
        await self._client.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        endpoint = f"{self._endpoint_base}{path}"
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return cast(Dict[str, Any], response.json())
        except httpx.HTTPStatusError as e:
            raise FetchError(
                f"{endpoint} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {endpoint} failed: {e}") from e
        except ValueError as e:
            raise FetchError(f"Malformed JSON from {endpoint}: {e}") from e

    async def get_sth(self) -> SignedTreeHead:
        """Get Signed Tree Head"""
        data = await self._get_json("/ct/v1/get-sth")
        try:
            return SignedTreeHead(
                tree_size=int(data["tree_size"]),
                timestamp=int(data.get("timestamp", 0)),
                sha256_root_hash=data.get("sha256_root_hash", ""),
                tree_head_signature=data.get("tree_head_signature", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed STH from {self.log_uri}: {e}") from e

    async def fetch_tree_size(self) -> int:
        """Fetch the current tree size (number of entries in the log)"""
        sth = await self.get_sth()
        return sth.tree_size

    async def get_entries(self, start: int, end: int) -> List[LogEntry]:
        """
        Get entries [start, end] (inclusive, as in RFC 6962).

        The log may return fewer entries than requested; callers continue from
        start + len(result).
        """
        data = await self._get_json("/ct/v1/get-entries", params={"start": start, "end": end})
        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, list):
            raise FetchError(f"get-entries response from {self.log_uri} has no entries list", start, end)
        if len(raw_entries) > end - start + 1:
            raise FetchError(
                f"get-entries returned {len(raw_entries)} entries for a "
                f"{end - start + 1} entry range",
                start,
                end,
            )

        entries: List[LogEntry] = []
        for i, raw in enumerate(raw_entries):
            index = start + i
            try:
                leaf_input = base64.b64decode(raw["leaf_input"], validate=True)
                extra_data = base64.b64decode(raw.get("extra_data", ""), validate=True)
            except (AttributeError, KeyError, TypeError, binascii.Error) as e:
                raise FetchError(f"Malformed entry {index} from {self.log_uri}: {e}", start, end) from e

            entry = decode_leaf(index, leaf_input, extra_data)
            if entry.parse_error:
                logger.debug(f"Error decoding entry {index} from {self.log_uri}: {entry.parse_error}")
            entries.append(entry)

        return entries
