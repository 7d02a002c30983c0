"""Tests for clawbridge.core.pairing: code lifecycle and durable records."""

import json
import re

import pytest

from clawbridge.core.pairing import PairingGate, PairingRecord, PairingStore
from clawbridge.errors import ExpiredPairingCode, InvalidPairingCode, PairingError


class TestIssueCode:
    def test_code_is_six_uppercase_hex_chars(self, pairing_gate):
        code = pairing_gate.issue_code("telegram", "U1")
        assert re.fullmatch(r"[0-9A-F]{6}", code)

    def test_issuing_does_not_approve(self, pairing_gate):
        pairing_gate.issue_code("telegram", "U1")
        assert not pairing_gate.is_approved("telegram", "U1")
        assert not pairing_gate.is_paired("telegram", "U1")

    def test_earlier_codes_stay_valid(self, pairing_gate):
        first = pairing_gate.issue_code("telegram", "U1")
        pairing_gate.issue_code("telegram", "U1")
        assert pairing_gate.approve(first).user_id == "U1"

    def test_issue_sweeps_expired_codes(self, pairing_gate, clock):
        pairing_gate.issue_code("telegram", "U1")
        clock.advance(601)
        pairing_gate.issue_code("telegram", "U2")
        assert [p.user_id for p in pairing_gate.pending()] == ["U2"]


class TestApprove:
    def test_approve_persists_and_consumes_code(self, pairing_gate):
        code = pairing_gate.issue_code("telegram", "U1")

        record = pairing_gate.approve(code)

        assert record.platform == "telegram"
        assert record.user_id == "U1"
        assert record.approved
        assert pairing_gate.is_approved("telegram", "U1")
        with pytest.raises(InvalidPairingCode):
            pairing_gate.approve(code)

    def test_code_match_is_case_insensitive(self, pairing_gate):
        code = pairing_gate.issue_code("discord", "42")
        assert pairing_gate.approve(f"  {code.lower()} ").user_id == "42"

    def test_unknown_code_is_invalid(self, pairing_gate):
        with pytest.raises(InvalidPairingCode) as excinfo:
            pairing_gate.approve("ABCDEF")
        assert str(excinfo.value) == "Invalid or expired pairing code"

    def test_expired_code_is_rejected_and_evicted(self, pairing_gate, clock):
        code = pairing_gate.issue_code("telegram", "U1")
        clock.advance(601)

        with pytest.raises(ExpiredPairingCode):
            pairing_gate.approve(code)
        with pytest.raises(InvalidPairingCode):
            pairing_gate.approve(code)
        assert not pairing_gate.is_approved("telegram", "U1")

    def test_code_valid_right_up_to_ttl(self, pairing_gate, clock):
        code = pairing_gate.issue_code("telegram", "U1")
        clock.advance(600)
        assert pairing_gate.approve(code).approved

    def test_pairing_errors_share_base(self):
        assert issubclass(InvalidPairingCode, PairingError)
        assert issubclass(ExpiredPairingCode, PairingError)

    def test_platforms_are_separate_principals(self, pairing_gate):
        pairing_gate.approve(pairing_gate.issue_code("telegram", "7"))
        assert pairing_gate.is_approved("telegram", "7")
        assert not pairing_gate.is_approved("discord", "7")


class TestRevoke:
    def test_revoke_removes_record(self, pairing_gate):
        pairing_gate.approve_user("telegram", "U1")
        assert pairing_gate.revoke("telegram", "U1") is True
        assert not pairing_gate.is_approved("telegram", "U1")

    def test_revoke_is_idempotent(self, pairing_gate):
        assert pairing_gate.revoke("telegram", "nobody") is False
        assert pairing_gate.revoke("telegram", "nobody") is False

    def test_failed_write_keeps_record(self, pairing_gate, monkeypatch):
        pairing_gate.approve_user("telegram", "U1")

        def failing_save(records):
            raise OSError("disk full")

        monkeypatch.setattr(pairing_gate._store, "save", failing_save)

        with pytest.raises(OSError):
            pairing_gate.revoke("telegram", "U1")
        assert pairing_gate.is_approved("telegram", "U1")


class TestPersistence:
    def test_records_survive_restart(self, pairing_path, clock):
        gate = PairingGate(PairingStore(pairing_path), clock=clock)
        gate.approve(gate.issue_code("telegram", "U1"))

        restarted = PairingGate(PairingStore(pairing_path), clock=clock)
        assert restarted.is_approved("telegram", "U1")

    def test_codes_do_not_survive_restart(self, pairing_path, clock):
        gate = PairingGate(PairingStore(pairing_path), clock=clock)
        code = gate.issue_code("telegram", "U1")

        restarted = PairingGate(PairingStore(pairing_path), clock=clock)
        with pytest.raises(InvalidPairingCode):
            restarted.approve(code)

    def test_file_format(self, pairing_gate, pairing_path, clock):
        pairing_gate.approve_user("telegram", "U1")

        data = json.loads(pairing_path.read_text(encoding="utf-8"))
        assert data == {
            "telegram:U1": {
                "platform": "telegram",
                "userId": "U1",
                "approved": True,
                "pairedAt": int(clock.now * 1000),
            }
        }

    def test_save_leaves_no_temp_file(self, pairing_gate, pairing_path):
        pairing_gate.approve_user("telegram", "U1")
        assert [p.name for p in pairing_path.parent.iterdir()] == ["paired-users.json"]

    def test_corrupt_file_loads_empty(self, pairing_path):
        pairing_path.parent.mkdir(parents=True)
        pairing_path.write_text("{not json", encoding="utf-8")
        assert PairingStore(pairing_path).load() == {}

    def test_reload_picks_up_external_changes(self, pairing_gate, pairing_path):
        PairingStore(pairing_path).save(
            {"discord:9": PairingRecord(platform="discord", user_id="9", approved=True, paired_at=1)}
        )
        assert not pairing_gate.is_approved("discord", "9")
        pairing_gate.reload()
        assert pairing_gate.is_approved("discord", "9")

    def test_list_is_snapshot(self, pairing_gate):
        pairing_gate.approve_user("telegram", "U1")
        listed = pairing_gate.list()
        pairing_gate.approve_user("telegram", "U2")
        assert [r.user_id for r in listed] == ["U1"]
