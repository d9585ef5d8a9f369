from __future__ import annotations

import httpx

from laradeploy.errors import RemoteCommandError
from laradeploy.events import DeployState, Stage
from laradeploy.pipeline import DeploymentReport, StageFailure
from laradeploy_cli import probe, reporting


def test_tail_keeps_last_lines() -> None:
    text = "\n".join(f"line {i}" for i in range(20))

    assert reporting._tail(text, limit=3) == "line 17\nline 18\nline 19"
    assert reporting._tail("") == ""


def test_report_failure_shows_command_details(make_plan, capsys) -> None:
    report = DeploymentReport(plan=make_plan())
    report.states.append(DeployState.FAILED)
    report.failure = StageFailure(
        stage=Stage.DEPENDENCIES,
        cause=RemoteCommandError("composer install", 2, stderr="Your lock file is out of date"),
    )

    reporting.report_failure(report)

    out = capsys.readouterr().out
    assert "dependencies" in out
    assert "Exit code: 2" in out
    assert "lock file" in out
    assert "composer diagnose" in out


def test_summary_lists_site_urls(make_plan, capsys) -> None:
    report = DeploymentReport(plan=make_plan(issue_certificate=True))
    report.results[Stage.CERTIFICATE] = object()
    report.states.append(DeployState.DONE)

    reporting.print_summary(report)

    out = capsys.readouterr().out
    assert "http://shop.example.com" in out
    assert "https://shop.example.com" in out


def test_probe_site_accepts_client_errors(monkeypatch) -> None:
    monkeypatch.setattr(probe.httpx, "get", lambda url, **_: httpx.Response(404, request=httpx.Request("GET", url)))

    assert probe.probe_site("http://shop.example.com") is True


def test_probe_site_warns_on_server_error(monkeypatch, capsys) -> None:
    monkeypatch.setattr(probe.httpx, "get", lambda url, **_: httpx.Response(502, request=httpx.Request("GET", url)))

    assert probe.probe_site("http://shop.example.com") is False
    assert "502" in capsys.readouterr().out


def test_probe_site_handles_connection_errors(monkeypatch) -> None:
    def _raise(url, **_):
        raise httpx.ConnectError("refused", request=httpx.Request("GET", url))

    monkeypatch.setattr(probe.httpx, "get", _raise)

    assert probe.probe_site("http://shop.example.com") is False
