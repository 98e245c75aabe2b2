"""Tests for signing and submitting the PLC handover."""

import pytest

from fakes import DID
from pdsmover.core import MigrationSession, Migrator, WorkflowState, sign_and_submit_handover
from pdsmover.exceptions import HandoverError, MigrationStateError


@pytest.fixture
def session(old_pds, new_pds) -> MigrationSession:
    return MigrationSession(
        did=DID,
        state=WorkflowState.HANDOVER_REQUESTED,
        source=old_pds,
        destination=new_pds,
    )


class TestHandover:
    def test_new_account_is_activated_before_old_is_deactivated(
        self, session, calls, old_pds, new_pds
    ) -> None:
        sign_and_submit_handover(session, "PLC-TOKEN")

        sequence = [(name, method) for name, method, _ in calls]
        assert sequence == [
            ("new", "get_recommended_did_credentials"),
            ("old", "sign_plc_operation"),
            ("new", "submit_plc_operation"),
            ("new", "activate_account"),
            ("old", "deactivate_account"),
        ]
        assert sequence.index(("new", "activate_account")) < sequence.index(("old", "deactivate_account"))
        assert new_pds.activated

    def test_credentials_and_token_are_signed(self, session, old_pds, new_pds) -> None:
        sign_and_submit_handover(session, "  PLC-TOKEN ")

        sign = old_pds.args_for("sign_plc_operation")[0]
        token, credentials = sign
        assert token == "PLC-TOKEN"
        assert credentials["rotationKeys"] == ["did:key:zNewPdsKey"]
        assert credentials["services"] == new_pds.credentials["services"]
        assert new_pds.submitted["sig"] == "signed"

    def test_state_becomes_complete(self, session, sink) -> None:
        sign_and_submit_handover(session, "PLC-TOKEN", sink)

        assert session.state == WorkflowState.COMPLETE
        assert sink.messages[-1] == "Migration complete"

    @pytest.mark.parametrize("rotation_keys", [None, []])
    def test_missing_rotation_keys_are_fatal(self, session, old_pds, new_pds, rotation_keys) -> None:
        new_pds.credentials["rotationKeys"] = rotation_keys

        with pytest.raises(HandoverError, match="No rotation key"):
            sign_and_submit_handover(session, "PLC-TOKEN")
        assert "sign_plc_operation" not in old_pds.methods_called()
        assert "activate_account" not in new_pds.methods_called()
        assert session.state == WorkflowState.HANDOVER_REQUESTED

    def test_failed_submit_leaves_both_accounts_alone(self, session, old_pds, new_pds) -> None:
        def rejected(operation):
            raise HandoverError("PLC directory rejected the operation")

        new_pds.submit_plc_operation = rejected

        with pytest.raises(HandoverError):
            sign_and_submit_handover(session, "PLC-TOKEN")
        assert "activate_account" not in new_pds.methods_called()
        assert "deactivate_account" not in old_pds.methods_called()

    def test_requires_a_requested_token(self, session) -> None:
        session.state = WorkflowState.PREFS_IMPORTED

        with pytest.raises(MigrationStateError):
            sign_and_submit_handover(session, "PLC-TOKEN")

    def test_refuses_to_run_twice(self, session) -> None:
        sign_and_submit_handover(session, "PLC-TOKEN")

        with pytest.raises(MigrationStateError, match="already been completed"):
            sign_and_submit_handover(session, "PLC-TOKEN")

    def test_requires_logged_in_agents(self) -> None:
        session = MigrationSession(did=DID, state=WorkflowState.HANDOVER_REQUESTED)

        with pytest.raises(MigrationStateError, match="Not logged in"):
            sign_and_submit_handover(session, "PLC-TOKEN")

    def test_empty_token(self, session) -> None:
        with pytest.raises(HandoverError):
            sign_and_submit_handover(session, " ")


class TestMigratorSignPlcOperation:
    def test_migrate_then_sign(self, config, resolver, factory, old_pds, new_pds) -> None:
        migrator = Migrator(config=config, resolver=resolver, agent_factory=factory)
        migrator.migrate("alice.example.com", "pw", "https://new.pds.example",
                         "alice@example.com", "alice.new.pds.example")

        migrator.sign_plc_operation("PLC-TOKEN")

        assert migrator.session.state == WorkflowState.COMPLETE
        assert old_pds.methods_called()[-1] == "deactivate_account"
