# SPDX-License-Identifier: GPL-3.0-only
"""Re-encrypt stored provider credentials under the primary key.

Credentials are decrypted with DATA_ENCRYPTION_KEY_SECONDARY_FILE (the
retiring key) and written back with DATA_ENCRYPTION_KEY_PRIMARY_FILE.
"""

from peewee import chunked
from tqdm import tqdm

from base_logger import get_logger
from verification.db_models import CountryProviderConfig
from verification.utils import decode_and_decrypt, encrypt_and_encode

logger = get_logger("verification.rotate_encryption")

BATCH_SIZE = 500
CREDENTIAL_FIELDS = ("credentials", "fallback_credentials")
SECONDARY_KEY_CONFIG = "DATA_ENCRYPTION_KEY_SECONDARY_FILE"


def rotate_value(encoded_ciphertext: str) -> str:
    """Move one ciphertext from the secondary key to the primary key."""
    plaintext = decode_and_decrypt(encoded_ciphertext, key_config=SECONDARY_KEY_CONFIG)
    return encrypt_and_encode(plaintext)


def rotate_configuration_encryption() -> list:
    """Rotate every configuration's credential bundles.

    Returns:
        list: One dict per failure with ``id``, ``country_code``, ``field``
        and ``reason``.
    """
    errors = []

    with CountryProviderConfig._meta.database.connection_context():
        query = CountryProviderConfig.select(CountryProviderConfig.id).where(
            CountryProviderConfig.credentials.is_null(False)
            | CountryProviderConfig.fallback_credentials.is_null(False)
        )
        config_ids = [config.id for config in query]

        if not config_ids:
            logger.info("No provider configurations with credentials found.")
            return errors

        logger.info("Found %d configurations to process.", len(config_ids))
        logger.info("Processing in batches of %d...", BATCH_SIZE)

        with tqdm(
            total=len(config_ids), desc="Rotating credential encryption", unit="configs"
        ) as pbar:
            for batch_ids in chunked(config_ids, BATCH_SIZE):
                with CountryProviderConfig._meta.database.atomic():
                    batch = CountryProviderConfig.select().where(
                        CountryProviderConfig.id.in_(batch_ids)
                    )

                    for config in batch:
                        fields_to_save = []

                        for field in CREDENTIAL_FIELDS:
                            value = getattr(config, field)
                            if not value:
                                continue
                            try:
                                setattr(config, field, rotate_value(value))
                                fields_to_save.append(field)
                            except Exception as e:
                                logger.error(
                                    "Configuration %s - Error rotating %s: %s",
                                    config.id,
                                    field,
                                    e,
                                )
                                errors.append(
                                    {
                                        "id": config.id,
                                        "country_code": config.country_code,
                                        "field": field,
                                        "reason": str(e),
                                    }
                                )

                        if fields_to_save:
                            config.save(only=fields_to_save)

                        pbar.update(1)

    return errors


def print_rotation_report(errors: list) -> None:
    """Print the rotation error report."""
    print("\n" + "=" * 80)
    print("CREDENTIAL ROTATION REPORT")
    print("=" * 80)

    if not errors:
        print("\n✓ All configurations rotated successfully with no errors!\n")
        print("=" * 80)
        return

    print(f"\n⚠ Total Errors: {len(errors)}\n")
    print("-" * 80)
    for idx, error in enumerate(errors, 1):
        print(f"{idx}. Configuration ID: {error['id']} ({error['country_code']})")
        print(f"   Field: {error['field']}")
        print(f"   Reason: {error['reason']}\n")

    print("=" * 80 + "\n")


if __name__ == "__main__":
    rotation_errors = rotate_configuration_encryption()
    logger.info("Credential rotation completed.")
    print_rotation_report(rotation_errors)
