# climate_twin/security/device_certificate.py
"""
X.509 device identity for provisioning.

Provides:
- Self-signed device certificates (CN = registration id) for DPS
  individual enrollments
- PFX (PKCS#12) import: picks the certificate that carries the private key
- PEM export, since azure-iot-device takes certificate and key files
- Validity and thumbprint inspection
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from climate_twin.logging_system import DeviceLogger, get_logger

__all__ = ["CertificateError", "CertificateInfo", "DeviceCertificateManager"]


class CertificateError(ValueError):
    """The device certificate is missing, unreadable or has no private key."""


@dataclass
class CertificateInfo:
    """X.509 certificate information."""

    subject: str
    issuer: str
    serial_number: int
    not_valid_before: datetime
    not_valid_after: datetime
    thumbprint: str  # SHA-1, as shown by the provisioning service
    fingerprint_sha256: str

    @classmethod
    def from_x509(cls, cert: x509.Certificate) -> "CertificateInfo":
        """Create from cryptography X.509 certificate."""
        return cls(
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            serial_number=cert.serial_number,
            not_valid_before=cert.not_valid_before_utc,
            not_valid_after=cert.not_valid_after_utc,
            thumbprint=cert.fingerprint(hashes.SHA1()).hex().upper(),
            fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        )


class DeviceCertificateManager:
    """
    Generates, imports and stores device certificates.

    Example:
        >>> manager = DeviceCertificateManager(Path("certs"))
        >>> cert, key = manager.generate_self_signed_cert("cave-device-01")
        >>> cert_path, key_path = manager.save_pem(cert, key, "cave-device-01")
    """

    def __init__(self, cert_dir: Path | str = "certs"):
        self.cert_dir = Path(cert_dir)
        self.cert_dir.mkdir(parents=True, exist_ok=True)
        self.logger: DeviceLogger = get_logger(__name__, device="cert_manager")

    # ----------------------------------------------------------------
    # Generation
    # ----------------------------------------------------------------

    def generate_self_signed_cert(
        self,
        common_name: str,
        organization: str = "Climate Twin Devices",
        validity_days: int = 365,
        key_size: int = 2048,
    ) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
        """
        Generate a self-signed device certificate.

        Args:
            common_name: Certificate CN; must equal the DPS registration id
            organization: Organization name (O)
            validity_days: Certificate lifetime
            key_size: RSA key size in bits

        Returns:
            Tuple of (certificate, private_key)
        """
        if not common_name:
            raise CertificateError("common_name cannot be empty")

        private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            ]
        )

        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None), critical=True
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )

        self.logger.info(
            f"Generated self-signed certificate for '{common_name}' "
            f"(valid for {validity_days} days, key size: {key_size})"
        )
        return cert, private_key

    # ----------------------------------------------------------------
    # Storage
    # ----------------------------------------------------------------

    def save_pem(
        self,
        cert: x509.Certificate,
        private_key: PrivateKeyTypes,
        name: str,
    ) -> tuple[Path, Path]:
        """
        Save certificate and private key as PEM files.

        Returns:
            Tuple of (certificate path, key path)
        """
        cert_path = self.cert_dir / f"{name}.cert.pem"
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

        # Unencrypted; the key file is only as safe as the directory
        key_path = self.cert_dir / f"{name}.key.pem"
        key_path.write_bytes(
            private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        )
        key_path.chmod(0o600)

        self.logger.info(f"Saved certificate and key for '{name}' to {self.cert_dir}")
        return cert_path, key_path

    def load_pfx(
        self, pfx_path: Path | str, password: str | None = None
    ) -> tuple[x509.Certificate, PrivateKeyTypes]:
        """
        Load the certificate that carries the private key from a PFX bundle.

        Raises:
            CertificateError: If the file is missing, cannot be decrypted,
                or holds no certificate with a private key
        """
        pfx_path = Path(pfx_path)
        if not pfx_path.exists():
            raise CertificateError(f"Certificate file not found: {pfx_path}")

        try:
            private_key, certificate, additional = pkcs12.load_key_and_certificates(
                pfx_path.read_bytes(),
                password.encode() if password else None,
            )
        except ValueError as e:
            raise CertificateError(f"Cannot read {pfx_path}: {e}") from e

        for cert in [certificate, *additional]:
            if cert is None:
                continue
            info = CertificateInfo.from_x509(cert)
            self.logger.info(
                f"Found certificate: {info.thumbprint} {info.subject}; "
                f"PrivateKey: {cert is certificate and private_key is not None}"
            )

        if certificate is None or private_key is None:
            raise CertificateError(
                f"{pfx_path} did not contain any certificate with a private key"
            )

        info = CertificateInfo.from_x509(certificate)
        self.logger.info(f"Using certificate {info.thumbprint} {info.subject}")
        return certificate, private_key

    def export_pfx_to_pem(
        self, pfx_path: Path | str, password: str | None, name: str
    ) -> tuple[Path, Path]:
        """Convert a PFX bundle into the PEM pair the hub client expects."""
        cert, private_key = self.load_pfx(pfx_path, password)
        return self.save_pem(cert, private_key, name)

    # ----------------------------------------------------------------
    # Inspection
    # ----------------------------------------------------------------

    @staticmethod
    def load_pem_certificate(cert_path: Path | str) -> x509.Certificate:
        cert_path = Path(cert_path)
        if not cert_path.exists():
            raise CertificateError(f"Certificate file not found: {cert_path}")
        return x509.load_pem_x509_certificate(cert_path.read_bytes())

    def validate_certificate(
        self, cert: x509.Certificate, now: datetime | None = None
    ) -> bool:
        """
        Check the validity period.

        Note: Only validates time period, not chain of trust or revocation.
        """
        now = now or datetime.now(timezone.utc)

        cert_cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        cert_name = cert_cn[0].value if cert_cn else "unknown"

        if now < cert.not_valid_before_utc:
            self.logger.warning(f"Certificate '{cert_name}' not yet valid")
            return False
        if now > cert.not_valid_after_utc:
            self.logger.warning(f"Certificate '{cert_name}' has expired")
            return False

        return True
