"""Tests for voter profiles and the approval policy."""

import pytest

from annulment_bot.identity import ApprovalPolicy, VoterProfile, mention


def test_profile_from_slack_user_prefers_username():
    profile = VoterProfile.from_slack_user({"id": "U1", "username": "alice", "name": "Alice A."})

    assert profile.user_id == "U1"
    assert profile.display_name == "alice"
    assert profile.mention == "<@U1>"


def test_profile_display_name_falls_back():
    assert VoterProfile.from_slack_user({"id": "U1", "name": "Bob"}).display_name == "Bob"
    assert VoterProfile(user_id="U2").display_name == "colleague"


def test_profile_requires_id():
    with pytest.raises(ValueError):
        VoterProfile.from_slack_user({"username": "ghost"})


def test_empty_allow_list_authorizes_everyone():
    policy = ApprovalPolicy()

    assert policy.is_authorized("UANY") is True
    assert policy.approvers_line() == ""
    assert policy.pending_approvers(["U1"]) == []


def test_allow_list_membership_and_order():
    policy = ApprovalPolicy(approver_ids=["U2", " U1 ", "U2", ""], required_approvals=2)

    assert policy.approver_ids == ("U2", "U1")
    assert policy.is_authorized("U1") is True
    assert policy.is_authorized("U3") is False
    assert policy.pending_approvers(["U1"]) == ["U2"]
    assert policy.approvers_line() == f"Approvers: {mention('U2')}, {mention('U1')}"


def test_quorum_labels_and_progress():
    assert ApprovalPolicy().quorum_label() == "Approval needed: 1"

    policy = ApprovalPolicy(required_approvals=3)
    assert policy.quorum_label() == "Approvals needed: 3"
    assert policy.progress(2) == "2/3"


@pytest.mark.parametrize("required", [0, -1])
def test_required_approvals_must_be_positive(required):
    with pytest.raises(ValueError):
        ApprovalPolicy(required_approvals=required)
