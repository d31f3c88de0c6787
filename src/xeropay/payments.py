"""
Payments lookup by external account number (student id).

Every student is a Xero contact whose Account Number is the student id. The
lookup resolves that contact, then lists the payments applied to its
invoices. Payment records are returned exactly as Xero sends them.
"""

from __future__ import annotations

import logging
from typing import Any

from xeropay.auth.lifecycle import TokenLifecycleManager
from xeropay.errors import AmbiguousOrMissingContact

logger = logging.getLogger("xeropay.payments")


def _quote(value: str) -> str:
    """Quote a literal for a Xero ``where`` clause."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class PaymentsLookup:
    """Resolves a student's contact and returns the payments against it."""

    def __init__(self, manager: TokenLifecycleManager) -> None:
        self.manager = manager

    async def payments_for_account_number(self, account_number: str) -> list[dict[str, Any]]:
        """Return the payments made against invoices of the matching contact.

        Raises:
            AmbiguousOrMissingContact: Unless exactly one contact carries
                ``account_number``.
        """
        credential = await self.manager.get_valid_credential()
        async with credential.client as xero:
            contacts = await xero.get_contacts(where=f"AccountNumber=={_quote(account_number)}")

            # Xero enforces unique account numbers in its UI but not via the API
            if len(contacts) != 1:
                logger.warning(
                    "Found %d contacts for account number %s", len(contacts), account_number,
                )
                raise AmbiguousOrMissingContact(account_number, len(contacts))

            contact_id = contacts[0]["ContactID"]
            payments = await xero.get_payments(
                where=f'Invoice.Contact.ContactID.Equals(GUID("{contact_id}"))'
            )

        logger.info("Fetched %d payments for account number %s", len(payments), account_number)
        return payments
