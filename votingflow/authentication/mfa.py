# votingflow/authentication/mfa.py

import pyotp
import qrcode
from io import BytesIO
import base64

# Second factor for the administrator login (TOTP, RFC 6238)

ISSUER_NAME = "votingflow"


class MFAService:
    def __init__(self, issuer_name=ISSUER_NAME, window=1):
        self.issuer_name = issuer_name
        self.window = window

    def generate_secret(self):
        return pyotp.random_base32()

    def provisioning_uri(self, identity, secret):
        """otpauth:// URI for enrolling the secret in an authenticator app"""
        return pyotp.TOTP(secret).provisioning_uri(name=identity, issuer_name=self.issuer_name)

    def qr_code_base64(self, identity, secret):
        """PNG QR code of the provisioning URI, base64 encoded"""
        qr = qrcode.QRCode(box_size=6, border=2)
        qr.add_data(self.provisioning_uri(identity, secret))
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffered = BytesIO()
        img.save(buffered, format="PNG")
        return base64.b64encode(buffered.getvalue()).decode()

    def verify(self, secret, code):
        if not secret or not code:
            return False
        return pyotp.TOTP(secret).verify(str(code), valid_window=self.window)
