"""Sprite sheets and WebVTT thumbnail tracks for captured frames."""
from PIL import Image

from .layout import GridLayout


def hhmmss_ms(t):
    # t in seconds -> "HH:MM:SS.mmm"
    t = max(0.0, float(t))
    hrs = int(t // 3600)
    t -= hrs * 3600
    mins = int(t // 60)
    secs = t - mins * 60
    return f"{hrs:02d}:{mins:02d}:{secs:06.3f}"


def fit_tile(img, tile_w, tile_h, background=(0, 0, 0)):
    """Scale ``img`` into the tile keeping aspect ratio, padding the rest."""
    img = img.convert("RGB")
    scale = min(tile_w / img.width, tile_h / img.height)
    w = max(1, round(img.width * scale))
    h = max(1, round(img.height * scale))
    tile = Image.new("RGB", (tile_w, tile_h), background)
    tile.paste(img.resize((w, h), Image.LANCZOS), ((tile_w - w) // 2, (tile_h - h) // 2))
    return tile


def compose_sheet(images, layout: GridLayout, tile_size, background=(0, 0, 0)):
    """Paste ``images`` row-major into a ``layout.cols x layout.rows`` sheet."""
    tile_w, tile_h = tile_size
    if len(images) > layout.capacity:
        raise ValueError(f"{len(images)} tiles do not fit a {layout.cols}x{layout.rows} sheet")
    sprite = Image.new("RGB", (layout.cols * tile_w, layout.rows * tile_h), background)
    for i, img in enumerate(images):
        r = i // layout.cols
        c = i % layout.cols
        sprite.paste(fit_tile(img, tile_w, tile_h, background), (c * tile_w, r * tile_h))
    return sprite


def thumbnails_vtt(times, duration, sheet_name, layout: GridLayout, tile_size):
    """WebVTT cues mapping each captured time to its ``sheet#xywh`` tile.

    A cue runs from its frame's time until the next frame's time (or the
    end of the video for the last one).
    """
    tile_w, tile_h = tile_size
    vtt = ["WEBVTT", ""]
    for idx, start in enumerate(times):
        end = times[idx + 1] if idx + 1 < len(times) else max(duration, start)
        r = idx // layout.cols
        c = idx % layout.cols
        x = c * tile_w
        y = r * tile_h
        vtt.append(f"{hhmmss_ms(start)} --> {hhmmss_ms(end)}")
        vtt.append(f"{sheet_name}#xywh={x},{y},{tile_w},{tile_h}")
        vtt.append("")  # blank line between cues
    return "\n".join(vtt)
