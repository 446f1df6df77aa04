import json

from imgcrunch.stats import aggregate_host, format_report, run_aggregate, stage_trees, tree_stats


def _write(path, size):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00" * size)


def test_tree_stats_sums_files_directly_under_directory(tmp_path):
    _write(tmp_path / "h" / "b.png", 300)
    _write(tmp_path / "h" / "a.jpg", 200)
    _write(tmp_path / "h" / "nested" / "c.png", 999)

    stats = tree_stats(tmp_path / "h")

    assert [item.name for item in stats.files] == ["a.jpg", "b.png"]
    assert [item.format for item in stats.files] == ["jpg", "png"]
    assert stats.total_bytes == sum(item.size for item in stats.files) == 500
    assert stats.image_count == len(stats.files) == 2


def test_missing_host_directory_gives_zero_record(tmp_path):
    record = aggregate_host("nothing.example", {"images": tmp_path / "images"})
    assert record.to_dict() == {"images": {"imageCount": 0, "sizeBytes": 0, "files": []}}


def test_run_aggregate_writes_records_in_host_order(context, hosts_file):
    hosts_file(["z.example", "a.example"])
    _write(context.images_root / "z.example" / "1.png", 1000)
    _write(context.imgmin_root / "z.example" / "1.png", 600)
    _write(context.webp_root / "z.example" / "1.webp", 400)

    records = run_aggregate(context)

    stats = json.loads(context.stats_path.read_text())
    assert list(stats) == ["z.example", "a.example"]
    assert stats["z.example"]["images"] == {
        "imageCount": 1,
        "sizeBytes": 1000,
        "files": [{"name": "1.png", "size": 1000, "format": "png"}],
    }
    assert stats["z.example"]["webp"]["sizeBytes"] == 400
    assert stats["a.example"]["imgmin"]["imageCount"] == 0
    for record in records:
        for tree in record.trees.values():
            assert tree.total_bytes == sum(item.size for item in tree.files)
            assert tree.image_count == len(tree.files)
    assert set(stage_trees(context)) == {"images", "imgmin", "webp"}


def test_format_report_totals_savings():
    stats = {
        "a.example": {
            "images": {"sizeBytes": 2048},
            "imgmin": {"sizeBytes": 1024},
            "webp": {"sizeBytes": 512},
        }
    }
    report = format_report(stats)
    assert "a.example" in report
    assert "Optimization saved 50.00 % (1.00 KB) in total." in report
    assert "WebP conversion saved 75.00 % (1.50 KB) in total." in report


def test_format_report_without_images():
    assert "n/a" in format_report({})
