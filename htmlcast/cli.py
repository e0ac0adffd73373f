"""
Command Line Interface

Runs the API server, or renders HTML files locally for development.
"""

import argparse
import asyncio
from pathlib import Path

from loguru import logger

from .config import get_settings, setup_logging
from .models import RenderSpec
from .pipeline import capture_still, stream_video
from .render.browser import Renderer


def _spec_from_args(args) -> RenderSpec:
    html = Path(args.input).read_text(encoding="utf-8")
    return RenderSpec(
        html=html,
        width=args.width,
        height=args.height,
        transparent_background=args.transparent,
    )


async def _with_renderer(work):
    settings = get_settings()
    renderer = Renderer(args=settings.chromium_args, timeout_ms=settings.render_timeout_ms)
    await renderer.start()
    try:
        return await work(renderer, settings)
    finally:
        await renderer.stop()


def cmd_screenshot(args):
    """Render an HTML file to PNG."""
    spec = _spec_from_args(args)

    async def work(renderer, settings):
        return await capture_still(renderer, spec)

    png = asyncio.run(_with_renderer(work))
    Path(args.output).write_bytes(png)
    print(f"Output: {args.output}")


def cmd_video(args):
    """Render an HTML file to MP4."""
    spec = _spec_from_args(args)
    output = Path(args.output)

    async def work(renderer, settings):
        written = 0
        with open(output, "wb") as f:
            async for chunk in stream_video(renderer, spec, args.fps, args.duration, settings):
                f.write(chunk)
                written += len(chunk)
        return written

    try:
        written = asyncio.run(_with_renderer(work))
    except Exception:
        # Never leave a truncated file that looks like a finished video
        output.unlink(missing_ok=True)
        raise
    print(f"Output: {output} ({written} bytes)")


def cmd_serve(args):
    """Start the API server."""
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "htmlcast.api:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )


def main():
    parser = argparse.ArgumentParser(
        description="HTML to image/video renderer"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    p = subparsers.add_parser("serve", help="Start API server")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)

    # screenshot command
    p = subparsers.add_parser("screenshot", help="Render HTML to PNG")
    p.add_argument("input", help="Path to HTML file")
    p.add_argument("-o", "--output", required=True, help="Output PNG path")
    p.add_argument("--width", type=int, default=1080)
    p.add_argument("--height", type=int, default=1080)
    p.add_argument("--transparent", action="store_true", help="Omit the page background")
    p.set_defaults(func=cmd_screenshot)

    # video command
    p = subparsers.add_parser("video", help="Render HTML to MP4")
    p.add_argument("input", help="Path to HTML file")
    p.add_argument("-o", "--output", required=True, help="Output MP4 path")
    p.add_argument("--width", type=int, default=1080)
    p.add_argument("--height", type=int, default=1920)
    p.add_argument("--fps", type=int, default=25)
    p.add_argument("--duration", type=float, default=5)
    p.add_argument("--transparent", action="store_true", help="Omit the page background")
    p.set_defaults(func=cmd_video)

    args = parser.parse_args()

    if args.command:
        setup_logging(get_settings().log_level)
        logger.debug(f"Running {args.command}")
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
