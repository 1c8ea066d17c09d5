#!/usr/bin/env python3
"""
Prepare the X.509 identity for the Azure transport.

Usage:
    python tools/generate_device_certificate.py                  # Self-signed, CN from transport.yml
    python tools/generate_device_certificate.py --registration-id cave-device-02
    python tools/generate_device_certificate.py --from-pfx device.pfx --pfx-password 1234
    python tools/generate_device_certificate.py --force          # Overwrite existing files

Reads azure.registration_id and azure.cert_dir from config/transport.yml.
Prints the thumbprint to register as an individual enrollment.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from climate_twin.security.device_certificate import (
    CertificateError,
    CertificateInfo,
    DeviceCertificateManager,
)
from config.config_loader import ConfigLoader


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate or import the device certificate for DPS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python tools/generate_device_certificate.py                       # Self-signed
  python tools/generate_device_certificate.py --from-pfx device.pfx # Import PKCS#12
        """,
    )
    parser.add_argument("--config-dir", default="config", help="Configuration directory")
    parser.add_argument(
        "--registration-id", help="Certificate CN (defaults to azure.registration_id)"
    )
    parser.add_argument("--cert-dir", help="Output directory (defaults to azure.cert_dir)")
    parser.add_argument("--from-pfx", help="Import this PFX bundle instead of generating")
    parser.add_argument("--pfx-password", help="PFX bundle password")
    parser.add_argument("--validity-days", type=int, default=365)
    parser.add_argument("--key-size", type=int, default=2048)
    parser.add_argument(
        "--force", action="store_true", help="Overwrite existing certificate files"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    azure = ConfigLoader(config_dir=args.config_dir).load_all()["transport"]["azure"]
    registration_id = args.registration_id or azure.get("registration_id")
    cert_dir = Path(args.cert_dir or azure.get("cert_dir") or "certs")

    if not registration_id:
        print("No registration id: pass --registration-id or set azure.registration_id")
        return 1

    cert_path = cert_dir / f"{registration_id}.cert.pem"
    key_path = cert_dir / f"{registration_id}.key.pem"
    if cert_path.exists() and key_path.exists() and not args.force:
        print(f"Skipping {registration_id} (certificate exists, use --force to overwrite)")
        return 0

    manager = DeviceCertificateManager(cert_dir)

    try:
        if args.from_pfx:
            print(f"Importing {args.from_pfx} for: {registration_id}")
            cert_path, key_path = manager.export_pfx_to_pem(
                args.from_pfx, args.pfx_password, registration_id
            )
            cert = manager.load_pem_certificate(cert_path)
        else:
            print(f"Generating certificate for: {registration_id}")
            cert, private_key = manager.generate_self_signed_cert(
                registration_id,
                validity_days=args.validity_days,
                key_size=args.key_size,
            )
            cert_path, key_path = manager.save_pem(cert, private_key, registration_id)
    except CertificateError as e:
        print(f"Error: {e}")
        return 1

    cert_info = CertificateInfo.from_x509(cert)

    print(f"  Certificate: {cert_path}")
    print(f"  Private Key: {key_path}")
    print(f"  Subject: {cert_info.subject}")
    print(f"  Thumbprint: {cert_info.thumbprint}")
    print(f"  Valid until: {cert_info.not_valid_after}")
    print()
    print("To use the Azure transport:")
    print("  1. Add an individual enrollment with this thumbprint")
    print("  2. Set azure.certificate_file and azure.key_file in config/transport.yml")
    print("  3. Run: python -m tools.device_manager --transport azure")
    return 0


if __name__ == "__main__":
    sys.exit(main())
