# portal/adapters/outbound/security/password_hasher.py

from passlib.context import CryptContext


class PasswordHasher:
    crypt_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    @classmethod
    def hash_password(cls, password: str) -> str:
        """Return the bcrypt hash of a plain text password."""
        return cls.crypt_context.hash(password)

    @classmethod
    def verify_password(cls, plain_password: str, hashed_password: str) -> bool:
        """Verify a plain text password against a stored hash."""
        try:
            return cls.crypt_context.verify(plain_password, hashed_password)
        except (ValueError, TypeError):
            # unknown or corrupted hash format
            return False


if __name__ == "__main__":
    import getpass

    print("Password hash generator for seeding portal users")
    password = getpass.getpass("Password: ")
    print(PasswordHasher.hash_password(password))
