"""
mice-residuals Database Module

DuckDB storage of multiply imputed datasets.
"""

from .connection import DatabaseManager
from .store import MidsStore

__all__ = ['DatabaseManager', 'MidsStore']
