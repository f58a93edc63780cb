"""Pixel work (Pillow) and the grid-layout job."""
