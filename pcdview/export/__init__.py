"""
Export utilities for decoded point clouds
"""

from .las_writer import LASWriter
from .report import LoadReporter

__all__ = ['LASWriter', 'LoadReporter']
