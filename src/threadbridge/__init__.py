"""threadbridge: drive an IRC identity from a platform direct conversation."""

__version__ = "0.1.0"
