import argparse
import asyncio
import io
import logging
import sys
from pathlib import Path

from PIL import Image

from .canvas import FORMAT_MIME_TYPES, MIME_EXTENSIONS
from .capture import FileSource, UrlSource, capture_at_times, probe_video, sample_times
from .config import MIB, load_settings
from .errors import StoryframesError
from .handles import ObjectUrlRegistry
from .layout import compute_layout
from .sheet import compose_sheet, hhmmss_ms, thumbnails_vtt
from .slicer import slice_to_outputs


def parse_size(value):
    try:
        w, h = map(int, value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected WxH, got {value!r}")
    if w <= 0 or h <= 0:
        raise argparse.ArgumentTypeError(f"expected positive WxH, got {value!r}")
    return w, h


def parse_times(value):
    try:
        return [float(part) for part in value.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma-separated seconds, got {value!r}")


def video_source(value):
    if "://" in value:
        return UrlSource(value)
    return FileSource(Path(value).resolve())


def build_parser():
    ap = argparse.ArgumentParser(prog="storyframes", description="Slice storyboard grids and capture video frames.")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    sub = ap.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("slice", help="Cut a storyboard image into grid cells")
    sp.add_argument("source", help="Image url or path")
    sp.add_argument("outdir", help="Output directory")
    sp.add_argument("--count", type=int, default=4, help="Number of cells (default: 4)")
    sp.add_argument("--min-cols", type=int, default=2, help="Minimum grid columns (default: 2)")
    sp.add_argument("--max-cols", type=int, default=4, help="Maximum grid columns (default: 4)")
    sp.add_argument("--format", default="png", choices=["png", "jpg", "jpeg", "webp"], help="Cell image format (default: png)")
    sp.add_argument("--quality", type=float, default=None, help="Lossy quality 0-1")
    sp.add_argument("--max-source-mb", type=float, default=None, help="Reject sources above this size (default: 30)")

    fp = sub.add_parser("frames", help="Capture frames from a video")
    fp.add_argument("input", help="Video file or url")
    fp.add_argument("outdir", help="Output directory")
    group = fp.add_mutually_exclusive_group(required=True)
    group.add_argument("--times", type=parse_times, help="Comma-separated seconds, e.g. 0,1.5,3")
    group.add_argument("--count", type=int, help="Number of evenly spaced frames")
    fp.add_argument("--format", default="jpg", choices=["png", "jpg", "jpeg", "webp"], help="Frame image format (default: jpg)")
    fp.add_argument("--quality", type=float, default=0.9, help="Lossy quality 0-1 (default: 0.9)")
    fp.add_argument("--sheet", action="store_true", help="Also write a sprite sheet and thumbnails.vtt")
    fp.add_argument("--tile-size", type=parse_size, default=(160, 90), help="Sheet tile size WxH (default: 160x90)")
    return ap


def configure_logging(verbose):
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = getattr(logging, load_settings().log_level, logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


async def run_slice(args):
    outdir = Path(args.outdir).resolve()
    outdir.mkdir(parents=True, exist_ok=True)
    registry = ObjectUrlRegistry()
    layout = compute_layout(args.count, args.min_cols, args.max_cols)
    mime = FORMAT_MIME_TYPES[args.format]
    max_bytes = None if args.max_source_mb is None else int(args.max_source_mb * MIB)
    print(f"Slicing {args.source} | count={args.count} -> grid={layout.cols}x{layout.rows}")
    result = await slice_to_outputs(
        args.source, layout, args.count,
        mime_type=mime, quality=args.quality, max_source_bytes=max_bytes, registry=registry,
    )
    try:
        for frame in result.frames:
            name = f"cell_{frame.index:02d}.{MIME_EXTENSIONS[frame.blob.mime_type]}"
            (outdir / name).write_bytes(frame.blob.data)
            print(f"  wrote {name} ({frame.width}x{frame.height})")
    finally:
        result.revoke()
    return len(result.frames)


async def run_frames(args):
    outdir = Path(args.outdir).resolve()
    outdir.mkdir(parents=True, exist_ok=True)
    registry = ObjectUrlRegistry()
    source = video_source(args.input)
    times = args.times
    if times is None:
        duration, _, _ = await probe_video(source, registry=registry)
        times = sample_times(duration, args.count)
        print(f"Duration: {duration:.3f}s -> {len(times)} frames")
    result = await capture_at_times(
        source, times, mime_type=FORMAT_MIME_TYPES[args.format], quality=args.quality, registry=registry,
    )
    try:
        ext = MIME_EXTENSIONS[FORMAT_MIME_TYPES[args.format]]
        for idx, frame in enumerate(result.frames):
            name = f"frame_{idx:02d}.{ext}"
            (outdir / name).write_bytes(frame.blob.data)
            print(f"  wrote {name} @ {hhmmss_ms(frame.time)} ({frame.width}x{frame.height})")

        if args.sheet and result.frames:
            layout = compute_layout(len(result.frames), 2, 10)
            images = [Image.open(io.BytesIO(frame.blob.data)) for frame in result.frames]
            sheet = compose_sheet(images, layout, args.tile_size)
            sheet_name = f"sheet.{ext}"
            sheet.save(outdir / sheet_name)
            vtt = thumbnails_vtt([f.time for f in result.frames], result.duration, sheet_name, layout, args.tile_size)
            (outdir / "thumbnails.vtt").write_text(vtt, encoding="utf-8")
            print(f"  wrote {sheet_name} ({len(images)} tiles) and thumbnails.vtt")
    finally:
        result.revoke()
    return len(result.frames)


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    runner = run_slice if args.command == "slice" else run_frames
    try:
        count = asyncio.run(runner(args))
    except StoryframesError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"\nDone. Wrote {count} images to {Path(args.outdir).resolve()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
