"""Administrator authentication: password + TOTP login and rotating-key JWTs."""

__version__ = "1.0.0"
