"""SWU card recognition by perceptual hashing."""

__version__ = "0.1.0"
