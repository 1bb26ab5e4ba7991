"""Integration tests for the command line entry point (local backend)."""
import re

import pytest

from agenda_cli import main


@pytest.fixture(autouse=True)
def local_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AGENDA_BACKEND", "local")
    monkeypatch.setenv("AGENDA_DATABASE_URL", f"sqlite:///{tmp_path / 'agenda.db'}")
    monkeypatch.setenv("AGENDA_SLOT_POLICY", "global")
    monkeypatch.setenv("AGENDA_LOG_LEVEL", "ERROR")


def booked_id(output):
    return int(re.search(r"#(\d+)", output).group(1))


def test_stores(capsys):
    assert main(["stores"]) == 0

    out = capsys.readouterr().out
    assert "Loja 1" in out
    assert "Loja 5" in out


def test_book_then_list(capsys):
    assert main(["book", "2026-02-21", "09:00", "Maria Silva", "--phone", "19 99999-0000", "--store", "2"]) == 0
    capsys.readouterr()

    assert main(["list", "--date", "2026-02-21"]) == 0

    out = capsys.readouterr().out
    assert "Maria Silva" in out
    assert "19999990000" in out
    assert "Loja 2" in out


def test_conflicting_booking_fails(capsys):
    main(["book", "2026-02-21", "09:00", "A", "--store", "1"])

    assert main(["book", "2026-02-21", "09:00", "B", "--store", "2"]) == 1

    assert "conflict" in capsys.readouterr().out


def test_slots_hide_booked_time(capsys):
    main(["book", "2026-02-20", "14:00", "A", "--store", "1"])
    capsys.readouterr()

    assert main(["slots", "2026-02-20"]) == 0

    out = capsys.readouterr().out
    assert "14:00" not in out
    assert "14:30" in out
    assert "17:30" in out


def test_sunday_has_no_slots(capsys):
    assert main(["slots", "2026-02-22"]) == 0
    assert "No free slots." in capsys.readouterr().out


def test_cancel(capsys):
    main(["book", "2026-02-21", "10:00", "A"])
    appointment_id = booked_id(capsys.readouterr().out)

    assert main(["cancel", str(appointment_id)]) == 0
    assert main(["cancel", str(appointment_id)]) == 1
    assert "not_found" in capsys.readouterr().out


def test_clear_requires_confirmation(capsys):
    main(["book", "2026-02-21", "09:00", "A"])

    assert main(["clear"]) == 2
    assert main(["list"]) == 0
    assert "2026-02-21 09:00" in capsys.readouterr().out

    assert main(["clear", "--yes"]) == 0
    assert "Deleted 1 appointment(s)." in capsys.readouterr().out


def test_malformed_time_is_invalid_input(capsys):
    assert main(["book", "2026-02-21", "9h", "A"]) == 2
    assert "Invalid input" in capsys.readouterr().out


def test_sync_on_local_backend(capsys):
    assert main(["sync"]) == 0
    assert "nothing to sync" in capsys.readouterr().out


def test_booking_fills_client_registry(capsys):
    main(["book", "2026-02-21", "09:00", "Maria Silva", "--phone", "19 99999-0000"])
    main(["book", "2026-02-21", "10:00", "Maria Silva", "--phone", "19999990000"])
    capsys.readouterr()

    assert main(["clients", "silva"]) == 0

    out = capsys.readouterr().out
    assert out.count("Maria Silva") == 1
    assert "19999990000" in out

    assert main(["clients", "nobody"]) == 0
    assert "No clients." in capsys.readouterr().out
