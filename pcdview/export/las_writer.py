"""
LAS/LAZ writer for decoded point clouds

Writes decoded points back out in LAS 1.2 so PCD scans can be opened in
standard LiDAR tooling:
- point format 0 (XYZ) or 2 (XYZ + RGB) depending on colors
- 1 mm coordinate scale, offset at the cloud minimum
- RGB scaled from [0, 1] to 16 bit
"""

import numpy as np
import laspy
from pathlib import Path
from typing import Dict, Union
import logging

from ..core.bounds import PointCloudDataset

logger = logging.getLogger(__name__)


class LASWriter:
    """
    Write a PointCloudDataset to LAS/LAZ

    LAZ output needs a laspy compression backend (lazrs or laszip).
    """

    def __init__(self, output_path: Union[str, Path], compress: bool = False):
        """
        Args:
            output_path: path to output file (.las or .laz)
            compress: write LAZ instead of LAS
        """
        self.output_path = Path(output_path)
        self.compress = compress

        suffix = '.laz' if compress else '.las'
        if self.output_path.suffix != suffix:
            self.output_path = self.output_path.with_suffix(suffix)

        logger.info(f"LAS writer initialized: {self.output_path} (compressed={compress})")

    def write(self, dataset: PointCloudDataset) -> Dict:
        """
        Write all points of the dataset

        Returns:
            Dictionary with export statistics
        """
        coords = dataset.points.astype(np.float64)
        logger.info(f"Writing {len(coords):,} points to {self.output_path}...")

        self.output_path.parent.mkdir(parents=True, exist_ok=True)

        has_color = dataset.has_colors
        point_format = 2 if has_color else 0

        header = laspy.LasHeader(version="1.2", point_format=point_format)
        header.offsets = coords.min(axis=0)
        header.scales = [0.001, 0.001, 0.001]  # 1mm precision

        las = laspy.LasData(header)
        las.x = coords[:, 0]
        las.y = coords[:, 1]
        las.z = coords[:, 2]

        if has_color:
            rgb = np.clip(dataset.colors[:, :3], 0.0, 1.0)
            las.red = (rgb[:, 0] * 65535).astype(np.uint16)
            las.green = (rgb[:, 1] * 65535).astype(np.uint16)
            las.blue = (rgb[:, 2] * 65535).astype(np.uint16)

        try:
            las.write(self.output_path)
        except Exception as e:
            logger.error(f"Failed to write LAS file: {e}", exc_info=True)
            raise

        file_size_mb = self.output_path.stat().st_size / 1e6
        logger.info(f"✅ Wrote {len(coords):,} points to {self.output_path} ({file_size_mb:.2f} MB)")

        return {
            'output_path': str(self.output_path),
            'point_count': len(coords),
            'file_size_mb': file_size_mb,
            'compressed': self.compress,
            'point_format': point_format,
            'has_color': has_color,
        }
