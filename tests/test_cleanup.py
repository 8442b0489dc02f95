from pathlib import Path

from clipme.cleanup import artifact_paths, remove_artifacts, temp_path_for


def test_temp_path_for() -> None:
    assert temp_path_for(Path("out/clip.mp4")) == Path("out/clip.temp.mp4")
    assert temp_path_for(Path("out/clip.webm")) == Path("out/clip.temp.webm")


def test_artifact_paths_with_reencode() -> None:
    paths = artifact_paths(Path("clip.mp4"), reencode=True)
    assert paths == [
        Path("clip.mp4"),
        Path("clip.mp4.part"),
        Path("clip.temp.mp4"),
        Path("clip.temp.mp4.part"),
    ]


def test_artifact_paths_without_reencode() -> None:
    paths = artifact_paths(Path("clip.mkv"), reencode=False)
    assert paths == [Path("clip.mkv"), Path("clip.mkv.part")]


def test_remove_artifacts_tolerates_missing_files(tmp_path: Path) -> None:
    output = tmp_path / "clip.mp4"
    output.write_bytes(b"partial")
    (tmp_path / "clip.temp.mp4.part").write_bytes(b"partial")

    removed = remove_artifacts(output, reencode=True)

    assert removed == [output, tmp_path / "clip.temp.mp4.part"]
    assert list(tmp_path.iterdir()) == []


def test_remove_artifacts_continues_after_failure(tmp_path: Path) -> None:
    output = tmp_path / "clip.mp4"
    output.write_bytes(b"partial")
    blocker = tmp_path / "clip.mp4.part"
    blocker.mkdir()
    temp = tmp_path / "clip.temp.mp4"
    temp.write_bytes(b"partial")

    removed = remove_artifacts(output, reencode=True)

    assert not output.exists()
    assert not temp.exists()
    assert blocker.exists()
    assert blocker not in removed


def test_remove_artifacts_leaves_unrelated_files(tmp_path: Path) -> None:
    other = tmp_path / "other.mp4"
    other.write_bytes(b"keep")
    remove_artifacts(tmp_path / "clip.mp4", reencode=True)
    assert other.exists()
