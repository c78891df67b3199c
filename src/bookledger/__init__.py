"""bookledger - track books lent to users and their checkout history."""

__version__ = "0.1.0"
