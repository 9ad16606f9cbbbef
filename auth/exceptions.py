"""
auth/exceptions.py -- Error taxonomy for authentication and session handling.

Only rejections a caller must react to are modelled as exceptions. Directory
outages and invalid sessions are absorbed where they happen (a None result or
an anonymous demotion) and never reach the caller as distinct errors.
"""

from __future__ import annotations


class AuthenticationRejected(Exception):
    """Credentials, account state or second factor did not check out.

    The message is always generic. Callers must not distinguish unknown
    usernames from wrong passwords.
    """

    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class InvalidTwoFactorCode(AuthenticationRejected):
    """The submitted TOTP code is wrong or outside the accepted time window."""

    def __init__(self) -> None:
        super().__init__("Invalid two-factor code.")
