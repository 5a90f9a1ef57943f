"""Utility functions and helpers for the XES importer."""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Set up logging configuration.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        
    Returns:
        Configured logger instance
    """
    # Create logs directory if it doesn't exist
    logs_dir = Path("logs")
    logs_dir.mkdir(exist_ok=True)
    
    # Configure logging format
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    
    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=log_format,
        datefmt=date_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(
                logs_dir / f"xes_importer_{datetime.now().strftime('%Y%m%d')}.log"
            )
        ]
    )
    
    return logging.getLogger("xes_importer")


def get_file_size(filepath: str) -> int:
    """Get file size in bytes.
    
    Args:
        filepath: Path to the file
        
    Returns:
        File size in bytes, or 0 if file doesn't exist
    """
    try:
        return os.path.getsize(filepath)
    except (OSError, FileNotFoundError):
        return 0


def format_bytes(bytes_count: int) -> str:
    """Format bytes into human-readable string (e.g., "1.5 GB")."""
    if bytes_count == 0:
        return "0 B"
    
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def get_memory_info() -> dict:
    """Get current memory usage information.
    
    Returns:
        Dictionary with memory statistics
    """
    import psutil
    
    # Virtual memory (system)
    vm = psutil.virtual_memory()
    
    # Current process memory
    process = psutil.Process()
    pm = process.memory_info()
    
    return {
        'system_total': vm.total,
        'system_used': vm.used,
        'system_percent': vm.percent,
        'process_rss': pm.rss,
    }


def log_memory_usage(logger: logging.Logger, context: str = "") -> None:
    """Log current memory usage.
    
    Args:
        logger: Logger instance to use
        context: Optional context string for the log message
    """
    try:
        mem_info = get_memory_info()
        context_str = f" ({context})" if context else ""
        
        logger.info(
            f"Memory usage{context_str}: "
            f"Process: {format_bytes(mem_info['process_rss'])}, "
            f"System: {mem_info['system_percent']:.1f}% "
            f"({format_bytes(mem_info['system_used'])}/{format_bytes(mem_info['system_total'])})"
        )
    except Exception as e:
        logger.debug(f"Failed to log memory usage: {e}")
