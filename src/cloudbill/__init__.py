"""CloudBill payment service: webhook delivery and provider-event reconciliation."""

__version__ = "0.1.0"
