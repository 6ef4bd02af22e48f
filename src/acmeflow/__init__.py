"""acmeflow -- ACME order, authorization and challenge client core."""

__version__ = "0.1.0"
