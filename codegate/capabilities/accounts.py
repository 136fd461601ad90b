"""
Account resolution for scripts that may address several mailboxes.
"""
from typing import List, Optional

from codegate.exceptions import AccountNotFoundError
from codegate.types import AccountToken


def resolve_account(accounts: List[AccountToken], account: Optional[str] = None) -> AccountToken:
    """Pick the credential a capability call should use.

    With a single connected account the argument is ignored. With several,
    an omitted account means the first one; otherwise the argument must
    match an account's email or label, case-insensitively.

    Raises:
        AccountNotFoundError: If no account matches or none are connected.
    """
    if not accounts:
        raise AccountNotFoundError(None, [])
    if len(accounts) == 1 or not account:
        return accounts[0]

    wanted = account.strip().lower()
    for candidate in accounts:
        if candidate.email.lower() == wanted:
            return candidate
        if candidate.label and candidate.label.lower() == wanted:
            return candidate

    available = [
        f"{a.email} ({a.label})" if a.label else a.email for a in accounts
    ]
    raise AccountNotFoundError(account, available)
