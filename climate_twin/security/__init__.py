"""
Device identity and certificate handling.
"""

from climate_twin.security.device_certificate import (
    CertificateError,
    CertificateInfo,
    DeviceCertificateManager,
)

__all__ = ["CertificateError", "CertificateInfo", "DeviceCertificateManager"]
