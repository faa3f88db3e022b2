from pathlib import Path

import pytest

from facefinder.config import FinderConfig
from facefinder.errors import ConfigError
from scripts.find_faces import parse_args, resolve_criteria, resolve_options
from scripts.manage_person import expand_images


def test_cli_age_bounds_enable_age_filter():
    config = FinderConfig()
    args = parse_args(["photos", "--min-age", "18", "--max-age", "40", "--male"])

    criteria = resolve_criteria(args, config)

    assert criteria.age_range == (18.0, 40.0)
    assert criteria.male_only is True
    assert criteria.female_only is False


def test_cli_uses_config_search_when_no_flags():
    config = FinderConfig()
    config.search.age = True
    config.search.female = True
    args = parse_args(["photos"])

    criteria = resolve_criteria(args, config)

    assert criteria.age_range == (10.0, 80.0)
    assert criteria.female_only is True


def test_cli_no_age_overrides_config():
    config = FinderConfig()
    config.search.age = True
    args = parse_args(["photos", "--no-age"])

    assert resolve_criteria(args, config).age_range is None


def test_cli_rejects_inverted_range():
    args = parse_args(["photos", "--min-age", "50", "--max-age", "20"])

    with pytest.raises(ConfigError):
        resolve_criteria(args, FinderConfig())


def test_cli_options_override_config():
    config = FinderConfig()
    args = parse_args(["photos", "--no-thumbnails", "--caption", "--person", "Jane Doe"])

    options = resolve_options(args, config)

    assert options.thumbnail is False
    assert options.caption is True
    assert options.ocr is False
    assert options.match_person is True


def test_cli_options_default_to_config():
    config = FinderConfig()
    config.options.ocr = True

    options = resolve_options(parse_args(["photos"]), config)

    assert options.thumbnail is True
    assert options.ocr is True
    assert options.match_person is False


def test_manage_person_expands_folders(tmp_path):
    folder = tmp_path / "samples"
    folder.mkdir()
    (folder / "one.jpg").write_bytes(b"x")
    (folder / "notes.txt").write_bytes(b"x")
    single = tmp_path / "two.png"
    single.write_bytes(b"x")

    images = expand_images([folder, single], FinderConfig())

    assert [Path(p).name for p in images] == ["one.jpg", "two.png"]
