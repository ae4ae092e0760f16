"""Effective ownership statistics for top-ranked fantasy entries."""
