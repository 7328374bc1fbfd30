"""LabFlow — sample workflow engine for an environmental testing laboratory."""

__version__ = "0.1.0"
