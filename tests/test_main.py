from __future__ import annotations

import base64
import json
import sys

from loguru import logger
import pytest

from main import main

PNG_URL = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode("ascii")


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "storage": {"path": str(tmp_path / "storage.json")},
                "logging": {"directory": str(tmp_path / "logs"), "level": "DEBUG"},
                "downloads": {
                    "root": str(tmp_path / "out"),
                    "log_directory": str(tmp_path / "download_logs"),
                },
                "defaults": {"filenameTemplate": "{group}_{index}"},
            }
        ),
        encoding="utf-8",
    )
    yield path
    logger.remove()
    logger.add(sys.stderr)


def test_add_preview_download(config, tmp_path, capsys):
    assert main(["--settings", str(config), "add", PNG_URL, "--group", "Icons"]) == 0
    assert "Added 1 image(s)." in capsys.readouterr().out

    assert main(["--settings", str(config), "list"]) == 0
    assert "Icons (1)" in capsys.readouterr().out

    assert main(["--settings", str(config), "preview"]) == 0
    out = capsys.readouterr().out
    assert "Icons/" in out
    assert "Icons_1.png" in out

    assert main(["--settings", str(config), "download", "--sequential"]) == 0
    assert (tmp_path / "out" / "Icons" / "Icons_1.png").read_bytes() == b"png-bytes"
    assert list((tmp_path / "download_logs").glob("download_*.csv"))


def test_download_reports_failures(config, capsys):
    main(["--settings", str(config), "add", "https://example.com/remote.jpg"])
    assert main(["--settings", str(config), "download"]) == 1
    assert "https://example.com/remote.jpg" in capsys.readouterr().out


def test_corrupt_storage_exits_with_error(config, tmp_path):
    (tmp_path / "storage.json").write_text("{broken", encoding="utf-8")
    assert main(["--settings", str(config), "preview"]) == 2
