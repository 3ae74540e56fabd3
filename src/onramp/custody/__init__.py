"""Custodial signing -- wallet id lookup and transaction assembly."""

from onramp.custody.service import CustodyService, HttpCustodyService
from onramp.custody.signer import CustodialSigner

__all__ = ["CustodialSigner", "CustodyService", "HttpCustodyService"]
