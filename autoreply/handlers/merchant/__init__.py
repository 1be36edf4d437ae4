"""Merchant (payment-gateway mailbox) handler."""

from .handler import MerchantHandler

__all__ = ["MerchantHandler"]
