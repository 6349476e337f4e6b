"""
Conversion Worker - queue-driven file conversion and compression

This package provides:
- Image conversion and compression (Pillow)
- PDF compression (PyMuPDF)
- Video and audio conversion (FFmpeg)
- E-book conversion (Calibre, with a text-extraction fallback)
- A polling queue worker with job status tracking
"""

__version__ = "1.0.0"
