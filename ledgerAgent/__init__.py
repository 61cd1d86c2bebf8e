"""ledgerAgent - a coordinator delegating accounting work to specialist workers."""

__version__ = "0.1.0"
