"""Configuration management for the XES importer."""

import os


class Config:
    """Configuration class for the XES importer."""
    
    def __init__(self):
        """Initialize configuration from environment variables."""
        # Database settings - local SQLite unless a PostgreSQL URL is given
        self.DATABASE_URI = os.environ.get("XES_DATABASE_URI", "sqlite:///xes_data.db")
        
        # Logging settings
        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
        
        # Batching settings (counted in traces)
        self.SQL_FLUSH_INTERVAL = int(os.environ.get("SQL_FLUSH_INTERVAL", "100"))
        self.PROGRESS_INTERVAL = int(os.environ.get("PROGRESS_INTERVAL", "1000"))
        
        # Connection-level retries only; row writes are never retried
        self.MAX_RETRIES = int(os.environ.get("MAX_RETRIES", "3"))
        
        # Files above this size get a "this may take a while" warning
        self.LARGE_FILE_WARNING_MB = int(os.environ.get("LARGE_FILE_WARNING_MB", "100"))
        
        self._validate_settings()
    
    def _validate_settings(self):
        """Validate configuration settings."""
        if self.SQL_FLUSH_INTERVAL <= 0:
            raise ValueError("SQL_FLUSH_INTERVAL must be positive")
        if self.PROGRESS_INTERVAL <= 0:
            raise ValueError("PROGRESS_INTERVAL must be positive")
        if self.MAX_RETRIES < 0:
            raise ValueError("MAX_RETRIES must be non-negative")
        if self.LARGE_FILE_WARNING_MB < 0:
            raise ValueError("LARGE_FILE_WARNING_MB must be non-negative")
        
        # Validate log level
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.LOG_LEVEL.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {', '.join(valid_levels)}")
        
        # Validate database URI format
        if not self.DATABASE_URI:
            raise ValueError("DATABASE_URI cannot be empty")
    
    def get_database_type(self, database_uri: str = None) -> str:
        """Get the database type from the URI."""
        uri = database_uri or self.DATABASE_URI
        if uri.startswith("sqlite"):
            return "sqlite"
        elif uri.startswith("postgresql"):
            return "postgresql"
        else:
            return "unknown"
    
    def is_postgresql(self, database_uri: str = None) -> bool:
        """Check if using PostgreSQL database."""
        return self.get_database_type(database_uri) == "postgresql"
    
    def is_sqlite(self, database_uri: str = None) -> bool:
        """Check if using SQLite database."""
        return self.get_database_type(database_uri) == "sqlite"


def load_config() -> Config:
    """Load and validate configuration."""
    try:
        return Config()
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nExample configuration:")
        print("export XES_DATABASE_URI='postgresql://postgres@localhost:5432/xes'")
        print("export LOG_LEVEL='INFO'")
        print("export SQL_FLUSH_INTERVAL='100'")
        raise


# Global configuration instance
config = load_config()
