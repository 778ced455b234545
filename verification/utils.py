# SPDX-License-Identifier: GPL-3.0-only
"""Utilities module."""

import base64
import json
import os
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import mysql.connector
from peewee import DatabaseError

from base_logger import get_logger
from verification.crypto import decrypt_aes, encrypt_aes

logger = get_logger(__name__)


def load_and_decode_key(filepath: str, key_length: int) -> bytes:
    """Load and Base64-decode key from file."""

    try:
        with open(filepath, "rb") as f:
            encoded = f.readline().strip()

        try:
            key = base64.b64decode(encoded, validate=True)
        except Exception:
            logger.error("Invalid Base64 in key file: %s", filepath)
            raise

        if len(key) != key_length:
            logger.error(
                "Invalid key length in file %s: expected %d bytes, got %d bytes.",
                filepath,
                key_length,
                len(key),
            )
            raise ValueError("Invalid key length.")

        return key

    except FileNotFoundError:
        logger.error("Key file not found at %s.", filepath)
        raise


def create_tables(models: List[Any]) -> None:
    """Create tables for given Peewee models if they don't exist.

    Args:
        models: List of Peewee Model classes.
    """
    if not models:
        logger.warning("No models provided for table creation.")
        return

    try:
        databases = {}
        for model in models:
            database = model._meta.database
            if database not in databases:
                databases[database] = []
            databases[database].append(model)

        for database, db_models in databases.items():
            with database.atomic():
                existing_tables = set(database.get_tables())
                tables_to_create = [
                    model
                    for model in db_models
                    if model._meta.table_name not in existing_tables
                ]

                if tables_to_create:
                    database.create_tables(tables_to_create)
                    logger.info(
                        "Created tables: %s",
                        [model._meta.table_name for model in tables_to_create],
                    )
                else:
                    logger.debug("No new tables to create.")

    except DatabaseError as e:
        logger.error("An error occurred while creating tables: %s", e)


def ensure_database_exists(
    host: str, user: str, password: str, database_name: str
) -> Callable:
    """Decorator to ensure MySQL database exists before function execution.

    Args:
        host: MySQL server host address.
        user: MySQL username.
        password: MySQL password.
        database_name: Database name.

    Returns:
        Decorated function.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                with mysql.connector.connect(
                    host=host,
                    user=user,
                    password=password,
                    charset="utf8mb4",
                    collation="utf8mb4_unicode_ci",
                ) as connection:
                    with connection.cursor() as cursor:
                        sql = "CREATE DATABASE IF NOT EXISTS " + database_name
                        cursor.execute(sql)

            except mysql.connector.Error as error:
                logger.error("Failed to create database: %s", error)

            return func(*args, **kwargs)

        return wrapper

    return decorator


def get_configs(config_name: str, strict: bool = False, default_value: str = "") -> str:
    """Retrieve configuration from environment variables.

    Args:
        config_name: Configuration name.
        strict: If True, raises error if not found.
        default_value: Default value if not found and not strict.

    Returns:
        Configuration value.

    Raises:
        KeyError: If strict is True and config not found.
        ValueError: If strict is True and value is empty.
    """
    try:
        value = (
            os.environ[config_name]
            if strict
            else os.environ.get(config_name) or default_value
        )
        if strict and (value is None or value.strip() == ""):
            raise ValueError(f"Configuration '{config_name}' is missing or empty.")
        return value
    except KeyError as error:
        logger.error(
            "Configuration '%s' not found in environment variables: %s",
            config_name,
            error,
        )
        raise
    except ValueError as error:
        logger.error("Configuration '%s' is empty: %s", config_name, error)
        raise


def get_bool_config(key: str, default_value: bool = False) -> bool:
    """Retrieve config value as boolean.

    Args:
        key: Configuration key.
        default_value: Default if missing or invalid.

    Returns:
        Boolean value.
    """
    value = get_configs(key)
    if not value:
        return default_value

    value = value.strip().lower()
    if value in {"true", "1", "yes", "on"}:
        return True
    elif value in {"false", "0", "no", "off"}:
        return False
    return default_value


def get_int_config(key: str, default_value: int) -> int:
    """Retrieve config value as integer, falling back on bad input."""
    value = get_configs(key)
    if not value:
        return default_value

    try:
        return int(value.strip())
    except ValueError:
        logger.warning(
            "Configuration '%s' is not an integer, using %d", key, default_value
        )
        return default_value


def set_configs(config_name: str, config_value: Any) -> None:
    """Set environment variable configuration.

    Args:
        config_name: Configuration name.
        config_value: Configuration value.

    Raises:
        ValueError: If config_name is empty.
    """
    if not config_name:
        error_message = (
            f"Cannot set configuration. Invalid config_name '{config_name}'."
        )
        logger.error(error_message)
        raise ValueError(error_message)

    try:
        if isinstance(config_value, bool):
            config_value = str(config_value).lower()
        os.environ[config_name] = str(config_value)
    except Exception as error:
        logger.error("Failed to set configuration '%s': %s", config_name, error)
        raise


def encrypt_and_encode(plaintext: str, key_config: str = None) -> str:
    """Encrypt and Base64-encode plaintext.

    Args:
        plaintext: Plaintext to encrypt.
        key_config: Name of the config holding the key file path.

    Returns:
        Base64-encoded ciphertext.
    """
    encryption_key = load_and_decode_key(
        get_configs(key_config or "DATA_ENCRYPTION_KEY_PRIMARY_FILE", strict=True), 32
    )

    return base64.b64encode(encrypt_aes(encryption_key, plaintext)).decode("utf-8")


def decode_and_decrypt(encoded_ciphertext: str, key_config: str = None) -> str:
    """Decode and decrypt Base64-encoded ciphertext.

    Args:
        encoded_ciphertext: Base64-encoded ciphertext.
        key_config: Name of the config holding the key file path.

    Returns:
        Decrypted plaintext.
    """
    encryption_key = load_and_decode_key(
        get_configs(key_config or "DATA_ENCRYPTION_KEY_PRIMARY_FILE", strict=True), 32
    )

    ciphertext = base64.b64decode(encoded_ciphertext)
    return decrypt_aes(encryption_key, ciphertext)


def encrypt_credentials(credentials: Dict[str, Any]) -> str:
    """Serialize a credential bundle to JSON and encrypt it for storage."""
    return encrypt_and_encode(json.dumps(credentials, sort_keys=True))


def decrypt_credentials(encoded_ciphertext: Optional[str]) -> Dict[str, Any]:
    """Decrypt a stored credential bundle. Empty input yields an empty bundle."""
    if not encoded_ciphertext:
        return {}
    return json.loads(decode_and_decrypt(encoded_ciphertext))


def mask_destination(destination: Optional[str]) -> str:
    """Mask a phone number or email address for logging.

    >>> mask_destination("+94771234567")
    '+9477****567'
    >>> mask_destination("jane@example.com")
    'j***@example.com'
    """
    if not destination:
        return ""

    if "@" in destination:
        local, _, domain = destination.partition("@")
        return f"{local[:1]}***@{domain}"

    if len(destination) <= 7:
        return "*" * len(destination)
    return f"{destination[:5]}****{destination[-3:]}"
