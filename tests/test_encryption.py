"""Tests for bank secret encryption."""

import pytest
from cryptography.fernet import Fernet

from app.core.exceptions import SecretDecryptionError
from app.modules.banking.encryption import SecretCipher, generate_key


class TestSecretCipher:
    """Tests for SecretCipher."""

    def test_decrypts_what_it_encrypted(self) -> None:
        """Test the secret survives storage and is not stored in clear."""
        cipher = SecretCipher(generate_key())

        token = cipher.encrypt("12345")

        assert "12345" not in token
        assert cipher.decrypt(token) == "12345"

    def test_uses_configured_key(self) -> None:
        """Test the key from BANKING_ENCRYPTION_KEY is used by default."""
        token = SecretCipher().encrypt("pin")

        assert SecretCipher().decrypt(token) == "pin"

    def test_wrong_key_fails(self) -> None:
        """Test a secret encrypted under another key cannot be read."""
        token = SecretCipher(generate_key()).encrypt("12345")

        with pytest.raises(SecretDecryptionError):
            SecretCipher(generate_key()).decrypt(token)

    def test_tampered_token_fails(self) -> None:
        """Test a modified token fails authentication."""
        cipher = SecretCipher(generate_key())
        token = cipher.encrypt("12345")
        tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")

        with pytest.raises(SecretDecryptionError):
            cipher.decrypt(tampered)

    def test_garbage_token_fails(self) -> None:
        """Test a value that is not a token at all fails the same way."""
        with pytest.raises(SecretDecryptionError):
            SecretCipher(generate_key()).decrypt("not-a-token")

    def test_missing_key(self) -> None:
        """Test an empty key is reported instead of crashing later."""
        with pytest.raises(SecretDecryptionError, match="not set"):
            SecretCipher("")

    def test_invalid_key(self) -> None:
        """Test a key that is not a Fernet key is rejected."""
        with pytest.raises(SecretDecryptionError, match="not a valid Fernet key"):
            SecretCipher("too-short")

    def test_generated_key_is_a_fernet_key(self) -> None:
        """Test generate_key output works with Fernet directly."""
        Fernet(generate_key().encode())
