"""Identity and account id validation."""

import pytest

from hedvac.utils.helpers import is_valid_hedera_account, is_valid_identity


@pytest.mark.parametrize("identity", ["1", "111111111111111111"])
def test_numeric_identities_are_valid(identity):
    assert is_valid_identity(identity)


@pytest.mark.parametrize(
    "identity",
    [None, "", "12 34", "abc", "-1", "123\n", "١٢٣", "１２"],
)
def test_other_identities_are_rejected(identity):
    assert not is_valid_identity(identity)


@pytest.mark.parametrize("address", ["0.0.1", "0.0.4321"])
def test_hedera_accounts_are_valid(address):
    assert is_valid_hedera_account(address)


@pytest.mark.parametrize(
    "address", [None, "", "0.0.", "1.0.5", "0.0.5\n", "0.0.٥", "0x1234"]
)
def test_other_addresses_are_rejected(address):
    assert not is_valid_hedera_account(address)
