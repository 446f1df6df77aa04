import io
import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import requests
from PIL import Image

from imgcrunch.config import PipelineContext
from imgcrunch.optimizers import Optimizer, OptimizerResult, OptimizerSuite, PillowRasterizer

BOUNDARY = b"\x00\x21\xF9\x04\x00\x0A\x00\x00\x00\x2C"


def png_bytes(size: Optional[int] = None, dims: Tuple[int, int] = (8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", dims, (255, 0, 0, 128)).save(buf, format="PNG")
    data = buf.getvalue()
    if size is not None:
        assert size >= len(data)
        data += b"\x00" * (size - len(data))
    return data


def jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 128, 255)).save(buf, format="JPEG")
    return buf.getvalue()


def gif_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("P", (8, 8), 1).save(buf, format="GIF")
    return buf.getvalue()


def synthetic_gif(boundaries: int, padding: int = 32) -> bytes:
    """GIF header followed by ``boundaries`` frame markers; not decodable."""
    body = b"GIF89a" + b"\x08\x00\x08\x00\x00\x00\x00"
    for _ in range(boundaries):
        body += b"\x01" * padding + BOUNDARY
    return body + b"\x3B"


class FakeResponse:
    def __init__(self, url: str, status: int = 200, content: bytes = b"", headers=None):
        self.url = url
        self.status_code = status
        self.content = content
        self.headers = headers or {}

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}")


class FakeSession:
    """Serves canned responses; unknown URLs answer 404."""

    def __init__(self, routes: Dict[str, object]):
        self.routes = routes
        self.calls: List[str] = []
        self.headers: Dict[str, str] = {}
        self.closed = False

    def get(self, url, timeout=None, **kwargs):
        self.calls.append(url)
        route = self.routes.get(url)
        if isinstance(route, Exception):
            raise route
        if route is None:
            return FakeResponse(url, status=404)
        if isinstance(route, FakeResponse):
            return route
        if isinstance(route, str):
            route = route.encode("utf-8")
        return FakeResponse(url, content=route)

    def close(self):
        self.closed = True


class FakeOptimizer(Optimizer):
    """Writes a file of a chosen size instead of running a real tool."""

    def __init__(self, name: str, ratio: float = 0.5, fixed_size: Optional[int] = None, fail: bool = False):
        self.name = name
        self.ratio = ratio
        self.fixed_size = fixed_size
        self.fail = fail
        self.calls: List[Tuple[Path, Path, Optional[str]]] = []

    def run(self, input_path, output_path, options=None):
        self.calls.append((Path(input_path), Path(output_path), options))
        if self.fail:
            return OptimizerResult(0, False)
        if self.fixed_size is not None:
            size = self.fixed_size
        else:
            size = max(1, int(Path(input_path).stat().st_size * self.ratio))
        Path(output_path).write_bytes(b"\x01" * size)
        return OptimizerResult(size, True)


def make_suite(imgmin=None, quantizer=None, webp=None, rasterizer=None) -> OptimizerSuite:
    return OptimizerSuite(
        imgmin=imgmin or FakeOptimizer("imgmin"),
        quantizer=quantizer or FakeOptimizer("pngquant", ratio=0.75),
        webp=webp or FakeOptimizer("cwebp", ratio=0.5),
        rasterizer=rasterizer or PillowRasterizer(),
    )


@pytest.fixture
def context(tmp_path) -> PipelineContext:
    return PipelineContext(data_root=tmp_path / "data", fetch_workers=2, optimize_workers=2)


@pytest.fixture
def hosts_file(context):
    def _write(hosts):
        context.data_root.mkdir(parents=True, exist_ok=True)
        context.hosts_path.write_text(json.dumps(list(hosts)), encoding="utf-8")
        return context.hosts_path

    return _write
