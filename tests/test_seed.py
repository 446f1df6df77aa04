import dataclasses
import io
import json
import zipfile

import pytest
import requests

from imgcrunch import seed
from imgcrunch.models import PipelineError
from imgcrunch.seed import load_hosts, parse_hosts, run_hostlist, run_seed


class StreamingResponse:
    def __init__(self, status, payload=b""):
        self.status_code = status
        self.payload = payload

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.payload), chunk_size):
            yield self.payload[start : start + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _zipped_csv(text):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("top-1m.csv", text)
    return buf.getvalue()


def test_seed_downloads_and_extracts_archive(context, monkeypatch):
    payload = _zipped_csv("1,google.com\n2,facebook.com\n3,youtube.com\n")
    requested = []

    def fake_get(url, **kwargs):
        requested.append(url)
        return StreamingResponse(200, payload)

    monkeypatch.setattr(seed.requests, "get", fake_get)

    csv_path = run_seed(context)

    assert requested == [context.seed_url]
    assert context.archive_path.exists()
    assert csv_path.read_text().startswith("1,google.com")

    run_seed(context)
    assert len(requested) == 1


def test_non_ok_status_is_fatal(context, monkeypatch):
    monkeypatch.setattr(seed.requests, "get", lambda url, **kwargs: StreamingResponse(503))

    with pytest.raises(PipelineError):
        run_seed(context)
    assert not context.archive_path.exists()


def test_unreachable_seed_is_fatal(context, monkeypatch):
    def refuse(url, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(seed.requests, "get", refuse)

    with pytest.raises(PipelineError):
        run_seed(context)


def test_corrupt_archive_is_fatal(context):
    context.data_root.mkdir(parents=True)
    context.archive_path.write_bytes(b"not a zip")

    with pytest.raises(PipelineError):
        run_seed(context)


def test_hostlist_takes_first_n_hosts(context):
    context.data_root.mkdir(parents=True)
    context.csv_path.write_text("1,google.com\n2,facebook.com\n3,youtube.com\n")
    limited = dataclasses.replace(context, host_count=2)

    assert run_hostlist(limited) == ["google.com", "facebook.com"]
    assert json.loads(limited.hosts_path.read_text()) == ["google.com", "facebook.com"]
    assert load_hosts(limited) == ("google.com", "facebook.com")


def test_parse_hosts_skips_blank_rows(tmp_path):
    path = tmp_path / "list.csv"
    path.write_text("\n1,\n2, example.org \n")
    assert parse_hosts(path, 10) == ["example.org"]


def test_empty_csv_is_fatal(context):
    context.data_root.mkdir(parents=True)
    context.csv_path.write_text("")
    with pytest.raises(PipelineError):
        run_hostlist(context)


def test_missing_host_list_is_fatal(context):
    with pytest.raises(PipelineError):
        load_hosts(context)


def test_parse_hosts_handles_a_full_size_list(tmp_path):
    path = tmp_path / "top-1m.csv"
    rows = [f"{rank},host{rank % 150000}.example" for rank in range(1, 300001)]
    path.write_text("\n".join(rows) + "\n")

    hosts = parse_hosts(path, 1_000_000)

    assert len(hosts) == 150000
    assert hosts[:3] == ["host1.example", "host2.example", "host3.example"]
    assert hosts[-1] == "host0.example"


def test_unwritable_host_list_is_fatal(context, monkeypatch):
    context.data_root.mkdir(parents=True)
    context.csv_path.write_text("1,example.com\n")

    def full_disk(target, text):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(seed, "write_text_atomic", full_disk)

    with pytest.raises(PipelineError):
        run_hostlist(context)
