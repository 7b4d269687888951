"""MindLedger: weekly insight reports built from conversation bias detections."""

__version__ = "0.1.0"
