"""eth_vault package root.

Vault interaction engine for a BoringVault style yield vault:

- Exact fixed-point conversion between typed decimal strings and raw token amounts
- Approve-then-act transaction flows for deposits and withdrawal requests
- Withdrawal queue discovery and maturity tracking

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""

    # Use Python tuple comparison for version numbers
    # https://stackoverflow.com/a/1093331/315168
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"eth-vault-engine needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
