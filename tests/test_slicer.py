import io

import httpx
import pytest
from PIL import Image

from storyframes import canvas as canvas_module
from storyframes.decode import DecodedSource, DecodeStrategy, decode_with_pillow
from storyframes.errors import DecodeFailure, EncodeFailure, FetchFailure, InvalidInput, ResourceTooLarge
from storyframes.handles import Blob
from storyframes.layout import GridLayout, compute_layout
from storyframes.slicer import slice_to_outputs

from conftest import QUADRANT_COLORS

URL = "https://cdn.example.com/storyboard.png"


class TrackingDecoder:
    """Pillow decode that records calls and releases."""

    def __init__(self):
        self.calls = 0
        self.released = 0

    def strategies(self):
        return [DecodeStrategy("tracking", lambda: True, self.decode)]

    async def decode(self, blob):
        self.calls += 1
        decoded = await decode_with_pillow(blob)
        tracker = self

        class Tracked(DecodedSource):
            def release(self):
                tracker.released += 1
                super().release()

        return Tracked(decoded.image, decoded.width, decoded.height, "tracking")


def center_pixel(frame):
    img = Image.open(io.BytesIO(frame.blob.data)).convert("RGB")
    return img.getpixel((img.width // 2, img.height // 2))


@pytest.mark.asyncio
async def test_slices_quadrants(make_client, registry, quadrant_png):
    client, _ = make_client({URL: httpx.Response(200, content=quadrant_png)})
    decoder = TrackingDecoder()

    result = await slice_to_outputs(URL, GridLayout(2, 2), 4, registry=registry, client=client, decoders=decoder.strategies())

    assert [f.index for f in result.frames] == [0, 1, 2, 3]
    assert all((f.width, f.height) == (20, 20) for f in result.frames)
    assert [center_pixel(f) for f in result.frames] == QUADRANT_COLORS
    assert all(f.blob.mime_type == "image/png" for f in result.frames)
    assert all(registry.resolve(f.object_url) is f.blob for f in result.frames)
    assert decoder.released == 1


@pytest.mark.asyncio
async def test_indices_beyond_grid_are_skipped(make_client, registry, quadrant_png):
    client, _ = make_client({URL: httpx.Response(200, content=quadrant_png)})
    result = await slice_to_outputs(URL, GridLayout(2, 1), 5, registry=registry, client=client)
    assert [f.index for f in result.frames] == [0, 1]
    assert (result.frames[0].width, result.frames[0].height) == (20, 40)


@pytest.mark.asyncio
async def test_output_type_and_quality(make_client, registry, quadrant_png):
    client, _ = make_client({URL: httpx.Response(200, content=quadrant_png)})
    result = await slice_to_outputs(
        URL, compute_layout(4), 4, mime_type="image/jpeg", quality=0.8, registry=registry, client=client
    )
    assert {f.blob.mime_type for f in result.frames} == {"image/jpeg"}
    assert Image.open(io.BytesIO(result.frames[0].blob.data)).format == "JPEG"


@pytest.mark.asyncio
@pytest.mark.parametrize("source,layout", [
    ("", GridLayout(2, 2)),
    ("   ", GridLayout(2, 2)),
    (None, GridLayout(2, 2)),
    (URL, GridLayout(0, 2)),
    (URL, GridLayout(2, -1)),
])
async def test_invalid_input_before_any_io(make_client, registry, source, layout):
    client, seen = make_client({})
    with pytest.raises(InvalidInput):
        await slice_to_outputs(source, layout, 4, registry=registry, client=client)
    assert seen == []


@pytest.mark.asyncio
async def test_http_error_is_fetch_failure(make_client, registry):
    client, _ = make_client({URL: httpx.Response(404)})
    with pytest.raises(FetchFailure) as exc_info:
        await slice_to_outputs(URL, GridLayout(2, 2), 4, registry=registry, client=client)
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_oversize_source_never_decoded(make_client, registry):
    client, _ = make_client({URL: httpx.Response(200, content=b"\x89PNG" + b"0" * 4096)})
    decoder = TrackingDecoder()
    with pytest.raises(ResourceTooLarge):
        await slice_to_outputs(
            URL, GridLayout(2, 2), 4, max_source_bytes=1024, registry=registry, client=client,
            decoders=decoder.strategies(),
        )
    assert decoder.calls == 0
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_undecodable_source(make_client, registry):
    client, _ = make_client({URL: httpx.Response(200, content=b"<html>not an image</html>")})
    strategies = [DecodeStrategy("pillow", lambda: True, decode_with_pillow)]
    with pytest.raises(DecodeFailure):
        await slice_to_outputs(URL, GridLayout(2, 2), 4, registry=registry, client=client, decoders=strategies)


@pytest.mark.asyncio
async def test_encode_failure_mid_batch_leaks_nothing(monkeypatch, registry, quadrant_png):
    source_url = registry.create(Blob(quadrant_png, "image/png"))
    real_to_blob = canvas_module.Canvas.to_blob
    calls = []

    def flaky(self, mime_type="image/png", quality=None):
        calls.append(mime_type)
        if len(calls) == 3:
            raise EncodeFailure("Failed to encode image blob")
        return real_to_blob(self, mime_type, quality)

    monkeypatch.setattr(canvas_module.Canvas, "to_blob", flaky)
    decoder = TrackingDecoder()

    with pytest.raises(EncodeFailure):
        await slice_to_outputs(source_url, GridLayout(2, 2), 4, registry=registry, decoders=decoder.strategies())

    assert registry.live == [source_url]
    assert decoder.released == 1


@pytest.mark.asyncio
async def test_revoke_releases_every_frame_and_is_idempotent(registry, quadrant_png):
    source_url = registry.create(Blob(quadrant_png, "image/png"))
    result = await slice_to_outputs(source_url, GridLayout(2, 2), 4, registry=registry)
    assert len(registry) == 5

    result.revoke()
    result.revoke()
    assert registry.live == [source_url]


@pytest.mark.asyncio
async def test_revoke_swallows_release_errors(registry, quadrant_png, monkeypatch):
    source_url = registry.create(Blob(quadrant_png, "image/png"))
    result = await slice_to_outputs(source_url, GridLayout(2, 1), 2, registry=registry)

    def broken(url):
        raise RuntimeError("revoker unavailable")

    monkeypatch.setattr(registry, "revoke", broken)
    result.revoke()
