import pytest

from etl_bootstrap.errors import FilesystemError, MissingArtifactError, RemoteSyncError
from etl_bootstrap.sync import GOOGLE_SECRET, KeyRetriever, remediation_text


def place_secret(config):
    config.key_dir.mkdir(parents=True, exist_ok=True)
    (config.key_dir / GOOGLE_SECRET).write_text('{"installed": {}}')


def test_keys_and_staging_are_mirrored(config, runner):
    place_secret(config)

    KeyRetriever(config, runner).retrieve_keys()

    assert runner.calls == [
        ("rsync", "-avzhe", "ssh", "tester@jump.ad.net:/home/tester/key/", f"{config.key_dir}/"),
        ("rsync", "-avzhe", "ssh", "tester@jump.ad.net:/home/tester/staging/", f"{config.staging_dir}/"),
    ]
    assert config.staging_dir.is_dir()
    assert (config.gspread_dir / GOOGLE_SECRET).read_text() == '{"installed": {}}'


def test_rsync_failure_stops_with_manual_procedure(config, runner):
    runner.on("rsync", returncode=255, stderr="Permission denied (publickey)")

    with pytest.raises(RemoteSyncError) as info:
        KeyRetriever(config, runner).retrieve_keys()

    remediation = info.value.remediation
    assert 'DESTINATION="/home/tester/key"' in remediation
    assert "scp -r $SOURCE_DIR $DESTINATION" in remediation
    assert "ssh-copy-id tester@jump.ad.net" in remediation
    assert len(runner.calls) == 1


def test_missing_secret_after_sync(config, runner):
    with pytest.raises(MissingArtifactError):
        KeyRetriever(config, runner).retrieve_keys()


def test_unwritable_gspread_dir_is_fatal_with_manual_copy(config, runner):
    place_secret(config)
    config.gspread_dir.parent.mkdir(parents=True, exist_ok=True)
    config.gspread_dir.write_text("not a directory")

    with pytest.raises(FilesystemError) as info:
        KeyRetriever(config, runner).retrieve_keys()

    assert f"mkdir -p {config.gspread_dir}" in info.value.remediation


def test_remediation_for_staging():
    text = remediation_text("ann@jump.ad.net:/home/ann/staging/", "DEST={remote_path}")

    assert "DEST=/home/ann/staging" in text
    assert "ssh-copy-id ann@jump.ad.net" in text
