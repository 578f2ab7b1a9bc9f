import argparse
import json

import pytest

from recon_phantom.cli import create_parser, main, validate_port_spec, validate_target


def test_list_scripts_json(capsys):
    assert main(["--no-color", "--json", "list-scripts"]) == 0
    scripts = json.loads(capsys.readouterr().out)
    assert len(scripts) == 12
    assert {"id", "name", "category", "description", "scope"} <= set(scripts[0])


def test_list_scripts_by_category(capsys):
    assert main(["--no-color", "--json", "list-scripts", "--category", "vuln"]) == 0
    ids = [s["id"] for s in json.loads(capsys.readouterr().out)]
    assert ids == ["http-vuln-cve2021-44228", "http-slowloris"]


def test_list_scripts_table(capsys):
    assert main(["--no-color", "list-scripts", "--category", "auth"]) == 0
    assert "http-default-accounts" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_invalid_target_exits():
    with pytest.raises(SystemExit) as info:
        main(["scan", "-t", "not a host"])
    assert info.value.code == 2


def test_invalid_port_spec_exits():
    with pytest.raises(SystemExit):
        create_parser().parse_args(["scan", "-t", "example.test", "-p", "70000"])


def test_validators():
    assert validate_target(" example.test ") == "example.test"
    assert validate_port_spec("22,80-82") == [22, 80, 81, 82]
    with pytest.raises(argparse.ArgumentTypeError):
        validate_target("999.1.1.1")


def test_parser_defaults():
    args = create_parser().parse_args(["scripts", "-t", "example.test", "--scripts", "http-title"])
    assert args.scan_type == "connect"
    assert args.timing is None
    assert args.scripts == ["http-title"]
