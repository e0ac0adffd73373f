from .compositor import Compositor

__all__ = ["Compositor"]
