"""Ad-hoc SQL-subset queries over Health Export CSV files."""

__version__ = "0.1.0"
