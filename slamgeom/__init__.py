"""Binary feature matching, projection-guided search and Sim3 alignment for visual SLAM."""

__version__ = "0.1.0"
__all__ = ["descriptors", "matching", "projection", "sim3"]