# ledger_notify/vapid.py
"""
Generate a VAPID key pair for web push.

    ledger-notify-vapid

Put the public key in VAPID_PUBLIC_KEY (also served to browsers by
GET /push/vapid-public-key) and the private key in VAPID_PRIVATE_KEY.
Never commit the private key.
"""
import base64

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid


def b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_keys():
    vapid = Vapid()
    vapid.generate_keys()
    public = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return b64url(public), b64url(private)


def main():
    public, private = generate_keys()
    print("Public Key:")
    print(public)
    print()
    print("Private Key:")
    print(private)


if __name__ == "__main__":
    main()
