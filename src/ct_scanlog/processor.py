"""
Entry processors: classify, summarise and dump each scanned leaf.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, Union

from cryptography import x509
from cryptography.hazmat.backends import default_backend

from .models import EntryType, LogEntry

logger = logging.getLogger(__name__)

# (file prefix, leaf role) per entry type
_ARTIFACT_NAMES: Dict[EntryType, Tuple[str, str]] = {
    EntryType.X509_ENTRY: ("cert", "leaf"),
    EntryType.PRECERT_ENTRY: ("precert", "precert"),
}
_UNKNOWN_NAMES = ("unknown", "unknown")


class Processor(Protocol):
    """Receives scanned entries. Must tolerate concurrent invocation."""

    def process_cert(self, entry: LogEntry) -> Any:
        ...

    def process_precert(self, entry: LogEntry) -> Any:
        ...


@dataclass
class EntrySummary:
    """Structured record emitted for every processed entry"""

    index: int
    classification: str  # "cert" or "precert"
    subject_common_name: Optional[str] = None
    issuer_common_name: Optional[str] = None
    parsed: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def artifact_name(entry_type: EntryType, index: int, position: Optional[int] = None) -> str:
    """
    File name for a dumped DER blob.

    Args:
        entry_type: Log entry type of the leaf
        index: Log index of the leaf
        position: Chain position, or None for the leaf itself
    """
    prefix, leaf_role = _ARTIFACT_NAMES.get(entry_type, _UNKNOWN_NAMES)
    if position is None:
        return f"{prefix}-{index:014d}-{leaf_role}.der"
    return f"{prefix}-{index:014d}-{position:02d}.der"


def _common_name(name: x509.Name) -> Optional[str]:
    cn_attr = name.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
    if not cn_attr:
        return None
    cn_value = cn_attr[0].value
    if isinstance(cn_value, bytes):
        cn_value = cn_value.decode("utf-8", errors="ignore")
    return str(cn_value)


def summarize(entry: LogEntry, classification: str) -> EntrySummary:
    """
    Build the summary record for an entry.

    A certificate that cannot be loaded at all is a fatal parse error and
    yields an unparsed summary. Failing to read an individual name is
    non-fatal: the remaining fields are still filled in.
    """
    summary = EntrySummary(index=entry.index, classification=classification)
    try:
        cert = x509.load_der_x509_certificate(entry.cert_data, default_backend())
    except ValueError as e:
        summary.parsed = False
        summary.error = str(e)
        return summary

    errors = []
    try:
        summary.subject_common_name = _common_name(cert.subject)
    except Exception as e:
        errors.append(f"subject: {e}")
    try:
        summary.issuer_common_name = _common_name(cert.issuer)
    except Exception as e:
        errors.append(f"issuer: {e}")
    if errors:
        summary.error = "; ".join(errors)

    return summary


class ArtifactProcessor:
    """
    Logs a summary for each entry and dumps its DER blobs to dump_dir.

    File names are unique per (classification, index, role), so concurrent
    workers never write the same file.
    """

    def __init__(
        self,
        dump_dir: Union[str, Path] = ".",
        save_artifacts: bool = True,
        on_summary: Optional[Callable[[EntrySummary], None]] = None,
    ):
        self.dump_dir = Path(dump_dir)
        self.save_artifacts = save_artifacts
        self.on_summary = on_summary

        if self.save_artifacts:
            try:
                self.dump_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Cannot create dump directory {self.dump_dir}: {e}")

    def process_cert(self, entry: LogEntry) -> EntrySummary:
        return self._process(entry, "cert")

    def process_precert(self, entry: LogEntry) -> EntrySummary:
        return self._process(entry, "precert")

    def _process(self, entry: LogEntry, classification: str) -> EntrySummary:
        summary = summarize(entry, classification)
        if not summary.parsed:
            logger.info(f"Process {classification} at index {entry.index}: <unparsed: {summary.error}>")
        else:
            logger.info(
                f"Process {classification} at index {entry.index}: "
                f"CN: '{summary.subject_common_name or ''}' "
                f"Issuer: '{summary.issuer_common_name or ''}'"
            )
            if summary.error:
                logger.debug(f"Partial parse of {classification} at index {entry.index}: {summary.error}")

        if self.on_summary is not None:
            self.on_summary(summary)

        if self.save_artifacts:
            self.dump(entry)
        return summary

    def dump(self, entry: LogEntry) -> None:
        """Write the leaf and each chain certificate. Failures are logged only."""
        prefix = _ARTIFACT_NAMES.get(entry.entry_type, _UNKNOWN_NAMES)[0]
        if entry.entry_type not in _ARTIFACT_NAMES:
            logger.warning(f"Unknown log entry type {int(entry.entry_type)} at index {entry.index}")

        if entry.cert_data:
            self._write(artifact_name(entry.entry_type, entry.index), entry.cert_data,
                        f"{prefix} at index {entry.index}")

        for position, cert_data in enumerate(entry.chain):
            self._write(artifact_name(entry.entry_type, entry.index, position), cert_data,
                        f"CA {position} at index {entry.index}")

    def _write(self, name: str, data: bytes, what: str) -> None:
        try:
            (self.dump_dir / name).write_bytes(data)
        except OSError as e:
            logger.warning(f"Failed to dump data for {what}: {e}")
