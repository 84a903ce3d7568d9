from pathlib import Path
from typing import List, Optional, Sequence

from cryptography import x509

from reprovision.logger import get_console
from reprovision.src.core.errors import MissingTrustAnchor


class TrustStore:
    """Pinned root certificates used to complete a signing identity's chain.

    Immutable once loaded, so one instance can be shared between concurrent
    pipeline runs without locking.
    """

    def __init__(self, certificates: Sequence[x509.Certificate], source: Optional[Path] = None):
        self._certificates = tuple(certificates)
        self.source = source

    @classmethod
    def from_pem_file(cls, pem_path: Path) -> "TrustStore":
        """Load every certificate in a PEM bundle, preserving file order"""
        pem_path = Path(pem_path)
        if not pem_path.is_file():
            raise MissingTrustAnchor(pem_path)

        try:
            certificates = x509.load_pem_x509_certificates(pem_path.read_bytes())
        except ValueError as e:
            get_console().print(f"[red]Could not parse root certificate {pem_path}:[/] {e}")
            raise MissingTrustAnchor(pem_path) from e

        get_console().log(
            f"[green]Loaded {len(certificates)} root certificate(s):[/] {pem_path}"
        )
        return cls(certificates, source=pem_path)

    @property
    def chain(self) -> List[x509.Certificate]:
        """Root chain in load order. Raises if the store is empty."""
        if not self._certificates:
            raise MissingTrustAnchor(self.source)
        return list(self._certificates)

    def __len__(self) -> int:
        return len(self._certificates)
