import json

import pytest

import insta_harvester.cli as cli  # type: ignore[import]
import insta_harvester.core.config as config_module  # type: ignore[import]

from tests.helpers.harvest_imports import CredentialExhaustedError, HarvestReport


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr(config_module, "load_dotenv", lambda *_args, **_kwargs: False)
    for key in ["LOGIN_COOKIES", "LOGIN_USERNAME", "LOGIN_PASSWORD", "PROXY_URLS", "REQUIRE_PROXY"]:
        monkeypatch.delenv(key, raising=False)


class FakeDriver:
    instances = []

    def __init__(self, config, sink, store, **hooks):
        self.config = config
        self.hooks = hooks
        self.items = None
        FakeDriver.instances.append(self)

    async def run(self, items):
        self.items = list(items)
        return HarvestReport(succeeded=len(self.items), emitted=3)


def test_missing_results_type_exits_with_config_error(tmp_path, capsys):
    code = cli.run_cli(["--state-dir", str(tmp_path / "state"), "--direct-url", "https://www.instagram.com/x/"])

    assert code == cli.EXIT_CONFIG_ERROR
    assert "Results type is required" in capsys.readouterr().out


def test_nothing_to_process_exits_cleanly(tmp_path, capsys):
    code = cli.run_cli(["--results-type", "posts", "--state-dir", str(tmp_path / "state")])

    assert code == cli.EXIT_OK
    assert "No URLs to process" in capsys.readouterr().out


def test_run_passes_work_items_to_driver(monkeypatch, tmp_path):
    FakeDriver.instances = []
    monkeypatch.setattr(cli, "CrawlDriver", FakeDriver)
    input_path = tmp_path / "input.json"
    input_path.write_text(json.dumps({"resultsType": "posts", "resultsLimit": 5}), encoding="utf-8")
    report_path = tmp_path / "report.json"

    code = cli.run_cli(
        [
            "--input",
            str(input_path),
            "--direct-url",
            "https://www.instagram.com/p/abc/",
            "--direct-url",
            "https://www.instagram.com/someone/",
            "--output",
            str(tmp_path / "dataset.jsonl"),
            "--state-dir",
            str(tmp_path / "state"),
            "--report",
            str(report_path),
        ]
    )

    assert code == cli.EXIT_OK
    driver = FakeDriver.instances[0]
    assert driver.config.results_limit == 5
    assert [item.label for item in driver.items] == ["postDetail", None]
    assert json.loads(report_path.read_text(encoding="utf-8"))["succeeded"] == 2


def test_credential_exhaustion_exits_with_code_two(monkeypatch, tmp_path):
    class ExhaustedDriver(FakeDriver):
        async def run(self, items):
            raise CredentialExhaustedError()

    monkeypatch.setattr(cli, "CrawlDriver", ExhaustedDriver)

    code = cli.run_cli(
        [
            "--results-type",
            "comments",
            "--direct-url",
            "https://www.instagram.com/p/abc/",
            "--output",
            str(tmp_path / "dataset.jsonl"),
            "--state-dir",
            str(tmp_path / "state"),
        ]
    )

    assert code == cli.EXIT_CREDENTIALS_EXHAUSTED


def test_hooks_from_input_are_passed_to_driver(monkeypatch, tmp_path):
    FakeDriver.instances = []
    monkeypatch.setattr(cli, "CrawlDriver", FakeDriver)
    input_path = tmp_path / "input.json"
    input_path.write_text(
        json.dumps(
            {
                "resultsType": "posts",
                "directUrls": ["https://www.instagram.com/someone/"],
                "extendOutputFunction": "json:dumps",
            }
        ),
        encoding="utf-8",
    )

    code = cli.run_cli(["--input", str(input_path), "--output", str(tmp_path / "d.jsonl"), "--state-dir", str(tmp_path / "s")])

    assert code == cli.EXIT_OK
    assert FakeDriver.instances[0].hooks == {"output_hook": json.dumps, "page_hook": None}


def test_unknown_hook_exits_with_config_error(tmp_path, capsys):
    input_path = tmp_path / "input.json"
    input_path.write_text(
        json.dumps({"resultsType": "posts", "extendScraperFunction": "no_such_module_here:run"}),
        encoding="utf-8",
    )

    code = cli.run_cli(["--input", str(input_path), "--state-dir", str(tmp_path / "s")])

    assert code == cli.EXIT_CONFIG_ERROR
    assert "Could not load hook" in capsys.readouterr().out
