"""
htmlcast - render HTML to images and video, and burn HTML overlays into video.
"""

__version__ = "1.0.0"
