"""relpipe: release pipeline controller for scratch-org based packages."""

__version__ = "0.3.0"
