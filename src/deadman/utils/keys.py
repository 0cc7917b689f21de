"""Signing key loading for the relay client.

Records written to relays are signed with the service key. The key is read
from an environment variable (``PRIVATE_KEY`` by default), in nsec1 bech32
or 64-char hex form, and never from a configuration file.

Warning:
    Never log or serialize the returned ``Keys``: it holds the private key
    for the lifetime of the process.

Examples:
    ```python
    os.environ["PRIVATE_KEY"] = "nsec1..."  # pragma: allowlist secret
    keys = load_keys_from_env("PRIVATE_KEY")
    print(keys.public_key().to_hex())
    ```
"""

from __future__ import annotations

import os

from nostr_sdk import Keys


ENV_PRIVATE_KEY = "PRIVATE_KEY"  # pragma: allowlist secret  # Default env var name


def load_keys_from_env(env_var: str) -> Keys:
    """Load signing keys from an environment variable.

    Raises:
        ValueError: If the variable is not set or empty.
        nostr_sdk.NostrSdkError: If the value is not a valid private key.
    """
    value = os.getenv(env_var)

    if not value:
        raise ValueError(
            f"{env_var} environment variable is required. Generate one with: openssl rand -hex 32"
        )

    return Keys.parse(value)
