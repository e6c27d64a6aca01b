"""Customer order reconciliation and RFM segmentation toolkit."""

__version__ = "0.1.0"
