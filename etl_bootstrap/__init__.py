"""Reporting workstation bootstrap: toolchain, ETL checkout, script extraction and runtimes."""

__version__ = "0.1.0"
