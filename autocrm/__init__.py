"""AutoCRM assistant: natural-language order creation over a hosted CRM backend."""

__version__ = "0.1.0"
