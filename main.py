#!/usr/bin/env python3
"""
SecureVault - encrypted credential vault core
Entry point: wires configuration, storage, crypto and the session gate.
"""
import sys
import asyncio
import logging
import argparse
from getpass import getpass

from config import Settings
from crypto_utils import CryptoUtils
from errors import VaultError, ConfigError
from identity import LocalIdentityProvider
from session_gate import SessionGate
from storage import Storage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    """Send log records to the configured file and to stderr."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=handlers
    )


def build_gate(settings: Settings) -> SessionGate:
    """Build a session gate backed by the local identity provider."""
    crypto = CryptoUtils.from_settings(settings)
    storage = Storage(settings.db_path, timeout=settings.storage_timeout)
    provider = LocalIdentityProvider(crypto, storage)
    return SessionGate(provider, storage, crypto, provider_timeout=settings.provider_timeout)


async def reset_vault(gate: SessionGate, email: str, password: str):
    """Sign in, discard the stored vault and sign out again."""
    vault = await gate.sign_in(email, password)
    try:
        vault.reset(confirm=True)
    finally:
        await gate.sign_out()


def main():
    """Main function for maintenance commands."""
    parser = argparse.ArgumentParser(description='SecureVault - encrypted credential vault')
    parser.add_argument('--init-db', action='store_true', help='Initialize the database')
    parser.add_argument('--reset-vault', metavar='EMAIL',
                        help='Delete the stored vault of an account (all saved passwords are lost)')
    parser.add_argument('--yes', action='store_true', help='Confirm --reset-vault without prompting')
    args = parser.parse_args()

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error("%s", e)
        return 1

    configure_logging(settings)
    gate = build_gate(settings)

    if args.init_db:
        gate.storage.init_db()
        logger.info("Database initialized successfully")
        return 0

    if args.reset_vault:
        if not args.yes:
            answer = input(f"Delete every saved password of {args.reset_vault}? Type RESET to confirm: ")
            if answer.strip() != 'RESET':
                logger.info("Reset aborted")
                return 1
        try:
            asyncio.run(reset_vault(gate, args.reset_vault, getpass('Account password: ')))
        except VaultError as e:
            logger.error("Reset failed: %s", e)
            return 1
        logger.info("Vault of %s reset", args.reset_vault)
        return 0

    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
