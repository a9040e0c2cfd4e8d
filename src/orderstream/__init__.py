"""Order stream ingestion client - authenticated order feed to PostgreSQL"""

__version__ = "0.1.0"
