"""
Tests for the CLI runner.
"""

import json
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from database import SeenArticleStore
from main import HeadlineHarvester, load_descriptors


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "settings.yaml"
    with open(path, "w") as f:
        yaml.dump({"store": {"path": str(tmp_path / "articles.db")}}, f)
    return str(path)


class TestLoadDescriptors:
    """Tests for reading descriptor files."""

    def test_bare_array(self, tmp_path):
        path = tmp_path / "sites.json"
        path.write_text(json.dumps([{"headlineUrl": "https://a.example.com"}]))

        assert load_descriptors(str(path)) == [{"headlineUrl": "https://a.example.com"}]

    def test_websites_object(self, tmp_path):
        path = tmp_path / "sites.json"
        path.write_text(json.dumps({"websites": [{"headlineUrl": "https://a.example.com"}]}))

        assert len(load_descriptors(str(path))) == 1

    def test_rejects_other_shapes(self, tmp_path):
        path = tmp_path / "sites.json"
        path.write_text(json.dumps({"sites": []}))

        with pytest.raises(ValueError):
            load_descriptors(str(path))


class TestHeadlineHarvester:
    """Tests for the CLI facade."""

    def test_run_writes_output(self, tmp_path, config_file):
        descriptors = tmp_path / "sites.json"
        descriptors.write_text(json.dumps([{"headlineUrl": "https://a.example.com"}]))
        output = tmp_path / "out" / "results.json"
        results = [{"headlineUrl": "https://a.example.com", "contentData": [], "headlineCount": 0}]

        harvester = HeadlineHarvester(config_file)
        with patch("main.scrape_websites", return_value=results) as mock_scrape:
            harvester.run(str(descriptors), str(output))

        mock_scrape.assert_called_once()
        assert mock_scrape.call_args.kwargs["config"] is harvester.config
        assert json.loads(output.read_text()) == results

    def test_run_prints_to_stdout(self, tmp_path, config_file, capsys):
        descriptors = tmp_path / "sites.json"
        descriptors.write_text("[]")

        with patch("main.scrape_websites", return_value=[]):
            HeadlineHarvester(config_file).run(str(descriptors))

        assert json.loads(capsys.readouterr().out) == []

    def test_sweep(self, tmp_path, config_file, capsys):
        with SeenArticleStore(str(tmp_path / "articles.db")) as store:
            store.record("https://a.example.com/old", seen_at=datetime.now(UTC) - timedelta(days=10))
            store.record("https://a.example.com/new")

        assert HeadlineHarvester(config_file).sweep() == 1
        assert "Removed 1" in capsys.readouterr().out

    def test_status(self, tmp_path, config_file, capsys):
        with SeenArticleStore(str(tmp_path / "articles.db")) as store:
            store.record("https://a.example.com/1")

        HeadlineHarvester(config_file).show_status()

        out = capsys.readouterr().out
        assert "Seen articles: 1" in out
        assert "Retention: 7 days" in out
