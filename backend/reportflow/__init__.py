"""ReportFlow: PDF reports to scripts, narrated audio and avatar video."""

__version__ = "0.1.0"
