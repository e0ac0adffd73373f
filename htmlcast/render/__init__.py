from .browser import Renderer, RenderSurface

__all__ = ["Renderer", "RenderSurface"]
