import pytest

from etl_bootstrap import localizer
from etl_bootstrap.errors import LocalizationError
from etl_bootstrap.localizer import PathRule, apply_rules, localize


def test_rewrites_matching_scripts_only(tmp_path):
    (tmp_path / "jobs").mkdir()
    (tmp_path / "a.py").write_text("open('/key/creds.json')\nopen('/key/other')\n")
    (tmp_path / "jobs" / "b.sh").write_text("echo hello\n")
    (tmp_path / "notes.txt").write_text("/key stays here\n")

    report = localize(tmp_path, [PathRule("/key", "/local/key")])

    assert (tmp_path / "a.py").read_text() == "open('/local/key/creds.json')\nopen('/local/key/other')\n"
    assert (tmp_path / "jobs" / "b.sh").read_text() == "echo hello\n"
    assert (tmp_path / "notes.txt").read_text() == "/key stays here\n"
    assert report.scanned == 2
    assert report.changed == [tmp_path / "a.py"]
    assert report.ok


def test_unchanged_file_is_not_rewritten(tmp_path):
    script = tmp_path / "b.sh"
    script.write_text("echo hello\n")
    before = script.stat().st_mtime_ns

    localize(tmp_path, [PathRule("/key", "/local/key")])

    assert script.stat().st_mtime_ns == before


def test_rules_apply_in_order():
    rules = [PathRule("A", "B"), PathRule("B", "C")]

    assert apply_rules("xAx", rules) == "xCx"


def test_nested_files_are_rewritten(tmp_path):
    nested = tmp_path / "one" / "two"
    nested.mkdir(parents=True)
    (nested / "deep.sh").write_text("cp /tmp/report.csv .\n")

    localize(tmp_path, [PathRule("/tmp/", "/home/u/Downloads/")])

    assert (nested / "deep.sh").read_text() == "cp /home/u/Downloads/report.csv .\n"


def test_undecodable_bytes_are_preserved(tmp_path):
    script = tmp_path / "legacy.py"
    script.write_bytes(b"# \xff\xfe\npath = '/key'  # \x80\n")

    localize(tmp_path, [PathRule("/key", "/local/key")])

    assert script.read_bytes() == b"# \xff\xfe\npath = '/local/key'  # \x80\n"


def test_missing_root_is_fatal(tmp_path):
    with pytest.raises(LocalizationError):
        localize(tmp_path / "missing", [PathRule("/key", "/local/key")])


def test_per_file_failures_are_collected(tmp_path, monkeypatch):
    (tmp_path / "bad.py").write_text("/key\n")
    (tmp_path / "good.py").write_text("/key\n")
    real = localizer.localize_file

    def flaky(path, rules):
        if path.name == "bad.py":
            raise PermissionError(13, "Permission denied")
        return real(path, rules)

    monkeypatch.setattr(localizer, "localize_file", flaky)

    report = localize(tmp_path, [PathRule("/key", "/local/key")])

    assert not report.ok
    assert report.failures == [(tmp_path / "bad.py", "Permission denied")]
    assert (tmp_path / "good.py").read_text() == "/local/key\n"


def test_empty_search_fragment_is_rejected():
    with pytest.raises(ValueError):
        PathRule("", "/anything")
