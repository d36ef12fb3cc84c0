"""ralph - drive an autonomous coding agent through the features of a PRD."""

__version__ = "0.1.0"
