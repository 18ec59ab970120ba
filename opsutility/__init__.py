# opsutility - operator scripts for a single Windows workstation

__version__ = "0.1.0"
