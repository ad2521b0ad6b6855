"""
Configuration for SecureVault, read from the environment.
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from errors import ConfigError

# Configure logging
logger = logging.getLogger(__name__)

KDF_ALGORITHMS = ('argon2id', 'pbkdf2_sha256')


@dataclass
class Settings:
    """Runtime settings for the vault core."""
    server_pepper: str
    db_path: str = './securevault.db'
    kdf_algorithm: str = 'argon2id'
    argon2_time_cost: int = 2
    argon2_memory_cost: int = 102400
    argon2_parallelism: int = 8
    pbkdf2_iterations: int = 200000
    provider_timeout: float = 10.0
    storage_timeout: float = 5.0
    log_level: str = 'INFO'
    log_file: Optional[str] = 'securevault.log'

    @classmethod
    def from_env(cls, dotenv: bool = True, env_file: Optional[str] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            dotenv: Whether to load a .env file first
            env_file: Explicit .env path; searched for when omitted

        Raises:
            ConfigError: If SERVER_PEPPER is missing or a value is malformed
        """
        if dotenv:
            load_dotenv(env_file)

        server_pepper = os.getenv('SERVER_PEPPER')
        if not server_pepper:
            raise ConfigError("SERVER_PEPPER environment variable is required")

        kdf_algorithm = os.getenv('KDF_ALGORITHM', 'argon2id')
        if kdf_algorithm not in KDF_ALGORITHMS:
            raise ConfigError(
                f"KDF_ALGORITHM must be one of {', '.join(KDF_ALGORITHMS)}, got {kdf_algorithm!r}"
            )

        try:
            settings = cls(
                server_pepper=server_pepper,
                db_path=os.getenv('DB_PATH', './securevault.db'),
                kdf_algorithm=kdf_algorithm,
                argon2_time_cost=int(os.getenv('ARGON2_TIME_COST', '2')),
                argon2_memory_cost=int(os.getenv('ARGON2_MEMORY_COST', '102400')),
                argon2_parallelism=int(os.getenv('ARGON2_PARALLELISM', '8')),
                pbkdf2_iterations=int(os.getenv('PBKDF2_ITERATIONS', '200000')),
                provider_timeout=float(os.getenv('PROVIDER_TIMEOUT', '10')),
                storage_timeout=float(os.getenv('STORAGE_TIMEOUT', '5')),
                log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
                log_file=os.getenv('LOG_FILE', 'securevault.log') or None
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e

        logger.debug("Loaded settings (db_path=%s, kdf=%s)", settings.db_path, settings.kdf_algorithm)
        return settings
