"""Flowsheets: visual ETL sheet designer core (graph rules, ordered run progress)."""

__version__ = "0.1.0"
