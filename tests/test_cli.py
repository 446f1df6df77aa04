import io
import json
import zipfile

import pytest
import requests

from imgcrunch import seed
from imgcrunch.cli import build_context, main, parse_args


def test_defaults():
    args = parse_args([])
    assert args.alexa == 10
    assert args.clean is None
    assert args.until == "report"
    assert build_context(args).follow_stylesheets


def test_bare_clean_means_everything():
    assert parse_args(["--clean"]).clean == 5
    assert parse_args(["--clean", "2"]).clean == 2


@pytest.mark.parametrize("value", ["0", "1000001", "many"])
def test_host_count_out_of_range_is_rejected(value):
    with pytest.raises(SystemExit):
        parse_args(["--alexa", value])


def test_unknown_stage_is_rejected():
    with pytest.raises(SystemExit):
        parse_args(["--until", "publish"])


def test_main_runs_until_hostlist(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "top-1m.csv").write_text("1,google.com\n2,facebook.com\n3,youtube.com\n")

    code = main(["--data-dir", str(data), "--until", "hostlist", "--alexa", "2"])

    assert code == 0
    assert json.loads((data / "hosts.json").read_text()) == ["google.com", "facebook.com"]


def test_main_reports_fatal_seed_failure(tmp_path, monkeypatch):
    def refuse(url, **kwargs):
        raise requests.ConnectionError("no route")

    monkeypatch.setattr(seed.requests, "get", refuse)

    assert main(["--data-dir", str(tmp_path / "data"), "--until", "seed"]) == 1


def test_clean_runs_before_stages(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    (data / "top-1m.csv").write_text("1,example.com\n")
    (data / "hosts.json").write_text(json.dumps(["stale.example"]))

    code = main(["--data-dir", str(data), "--clean", "4", "--until", "hostlist"])

    assert code == 0
    assert json.loads((data / "hosts.json").read_text()) == ["example.com"]


def test_main_reports_disk_failure_while_extracting(tmp_path, monkeypatch):
    data = tmp_path / "data"
    data.mkdir()
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr("top-1m.csv", "1,example.com\n")
    (data / "top-1m.csv.zip").write_bytes(buf.getvalue())

    def full_disk(target, text):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(seed, "write_text_atomic", full_disk)

    assert main(["--data-dir", str(data), "--until", "seed"]) == 1
    assert not (data / "top-1m.csv").exists()
