"""amrelay: audio to AMR-NB conversion relay."""

__version__ = "0.1.0"
