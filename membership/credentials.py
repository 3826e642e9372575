"""Temporary credential issuance for approved applicants."""

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits


class CredentialIssuer:
    """Generate one-time temporary passwords and store only their bcrypt hash.

    Passwords are ``segments`` groups of ``segment_length`` alphanumerics
    joined by dashes, drawn from :mod:`secrets`. The defaults give roughly
    107 bits of entropy.
    """

    def __init__(self, rounds=13, segments=3, segment_length=6):
        if segments < 2 or segment_length < 4:
            raise ValueError("Temporary passwords need at least 2 segments of 4 characters.")
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31.")
        self.rounds = rounds
        self.segments = segments
        self.segment_length = segment_length

    @classmethod
    def from_config(cls, config):
        return cls(
            rounds=int(config.get("BCRYPT_ROUNDS", 13)),
            segments=int(config.get("TEMP_PASSWORD_SEGMENTS", 3)),
            segment_length=int(config.get("TEMP_PASSWORD_SEGMENT_LENGTH", 6)),
        )

    def generate(self):
        return "-".join(
            "".join(secrets.choice(_ALPHABET) for _ in range(self.segment_length)) for _ in range(self.segments)
        )

    def issue(self, user):
        """Set a fresh temporary password on *user* and return the plaintext.

        The caller owns delivery of the plaintext; it is never stored.
        """
        plaintext = self.generate()
        user.set_password(plaintext, rounds=self.rounds)
        return plaintext
