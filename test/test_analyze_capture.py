import json
import runpy
from pathlib import Path

import pytest

from heap_scope.downsample import Algorithm

ROOT = Path(__file__).resolve().parent.parent
SCRIPT = ROOT / "scripts" / "analyze_capture.py"
CAPTURE_PATH = Path(__file__).parent / "data" / "sample_capture.txt"


@pytest.fixture
def main():
    return runpy.run_path(str(SCRIPT))["main"]


def _write_capture(tmp_path, heap_lines, dump_lines=()):
    path = tmp_path / "capture.txt"
    text = "\n".join(["phase1: heap use", *heap_lines, "phase2: page dump", *dump_lines])
    path.write_text(text + "\n")
    return path


class TestAnalyzeCapture:
    def test_writes_json(self, main, tmp_path):
        out = tmp_path / "analysis.json"
        main(CAPTURE_PATH, algo=Algorithm.LTTB, target=100, json_out=out, groups=True)
        payload = json.loads(out.read_text())
        assert payload["markers"]["x"] == [3, 4, 6, 7]
        assert payload["meta"]["downsample"]["algo"] == "lttb"

    def test_low_target_exits_cleanly(self, main):
        with pytest.raises(SystemExit) as exc:
            main(CAPTURE_PATH, target=10)
        assert exc.value.code == 1

    def test_invalid_capture_exits_cleanly(self, main, tmp_path):
        path = tmp_path / "broken.txt"
        path.write_text("1, 2\n3, 4\n")
        with pytest.raises(SystemExit) as exc:
            main(path)
        assert exc.value.code == 1

    def test_json_written_without_gc_pairs(self, main, tmp_path):
        capture = _write_capture(tmp_path, ["1, 10", "2, 20", "3, 15"])
        out = tmp_path / "analysis.json"
        main(capture, json_out=out)
        payload = json.loads(out.read_text())
        assert payload["timeline"]["y"] == [10, 20, 15]
        assert payload["pairs"] == []
