"""ORE Martingale - martingale betting on ORE mining rounds."""

__version__ = "0.1.0"
