import pytest

from portal.pairing import PairingConflict
from portal.participants import (
    ParticipantNotFound,
    build_changes,
    format_participant,
    resolve_participant_updates,
    resolve_partner,
    to_team_slug,
    update_participant,
)

IDENTITY = "LEFT JOIN LATERAL"
SCORES = "SELECT event_type, lane, game1"


def _identity_row(**overrides):
    row = {
        "pid": "P1",
        "first_name": "Ann",
        "last_name": "Avery",
        "nickname": None,
        "email": "ann@example.com",
        "phone": None,
        "city": "Reno",
        "region": "NV",
        "country": "US",
        "division": "B",
        "tnmt_id": "T1",
        "did": "D1",
        "team_name": "Pin Pals",
        "slug": "pin-pals",
        "pairing_pid": None,
        "partner_pid": None,
        "partner_first_name": None,
        "partner_last_name": None,
        "linked_first_name": None,
        "linked_last_name": None,
        "fallback_pid": None,
        "fallback_first_name": None,
        "fallback_last_name": None,
    }
    row.update(overrides)
    return row


def test_format_participant_uses_two_round_trips(recording_query):
    recording_query.on(IDENTITY, [_identity_row(pairing_pid="P1", partner_pid="P2",
                                                linked_first_name="Bob", linked_last_name="Brown")])
    recording_query.on(SCORES, [
        {"event_type": "team", "lane": "12", "game1": 180, "game2": 190, "game3": None,
         "entering_avg": 185, "handicap": 36},
        {"event_type": "singles", "lane": None, "game1": None, "game2": None, "game3": None,
         "entering_avg": None, "handicap": None},
    ])

    view = format_participant("P1", recording_query)

    assert len(recording_query.calls) == 2
    assert view["team"] == {"tnmt_id": "T1", "name": "Pin Pals", "slug": "pin-pals"}
    assert view["doubles"] == {"did": "D1", "partner_pid": "P2", "partner_name": "Bob Brown"}
    assert view["lanes"] == {"team": "12", "doubles": "", "singles": ""}
    assert view["averages"] == {"entering": 185, "handicap": 36}
    assert view["scores"] == {"team": [180, 190, None], "doubles": [None, None, None], "singles": [None, None, None]}
    assert view["division"] == "B"


def test_format_participant_unknown_pid(recording_query):
    assert format_participant("P404", recording_query) is None
    assert len(recording_query.calls) == 1


def test_team_slug_derived_when_missing(recording_query):
    recording_query.on(IDENTITY, [_identity_row(slug=None, team_name="The Split Happens!")])
    view = format_participant("P1", recording_query)
    assert view["team"]["slug"] == "the-split-happens"
    assert to_team_slug(None) == ""


def test_partner_from_live_row_beats_fallback():
    row = _identity_row(pairing_pid="P1", partner_pid="P2", linked_first_name="Bob", linked_last_name="Brown",
                        fallback_pid="P7", fallback_first_name="Zed", fallback_last_name="Zulu")
    assert resolve_partner(row) == ("P2", "Bob Brown")


def test_cleared_live_row_ignores_stale_names_and_fallback():
    row = _identity_row(pairing_pid="P1", partner_pid=None, partner_first_name="Bob", partner_last_name="Brown",
                        fallback_pid="P2", fallback_first_name="Bob", fallback_last_name="Brown")
    assert resolve_partner(row) == ("", "")


def test_fallback_only_without_pairing_row():
    row = _identity_row(fallback_pid="P2", fallback_first_name="Bob", fallback_last_name="Brown")
    assert resolve_partner(row) == ("P2", "Bob Brown")
    assert resolve_partner(_identity_row()) == ("", "")


def test_partner_name_falls_back_to_snapshot():
    row = _identity_row(pairing_pid="P1", partner_pid="P2", partner_first_name="Bob", partner_last_name="Brown")
    assert resolve_partner(row) == ("P2", "Bob Brown")


def test_participant_scope_only_touches_contact_fields():
    current = {"first_name": "Ann", "email": "old@example.com", "doubles": {"did": "D1", "partner_pid": "P2"}}
    merged = resolve_participant_updates(
        current,
        {"email": "new@example.com", "first_name": "Mallory", "doubles": {"partner_pid": "P5"}},
        participant_only=True,
    )
    assert merged["email"] == "new@example.com"
    assert merged["first_name"] == "Ann"
    assert merged["doubles"] == {"did": "D1", "partner_pid": "P2"}


def test_admin_scope_merges_nested_sections():
    current = {"team": {"tnmt_id": "T1", "name": "Pin Pals"}, "doubles": {"did": "D1", "partner_pid": "P2"}}
    merged = resolve_participant_updates(
        current, {"doubles": {"partner_pid": "P5"}, "force_reciprocal": True}, participant_only=False
    )
    assert merged["doubles"] == {"did": "D1", "partner_pid": "P5"}
    assert merged["team"] == current["team"]
    assert "force_reciprocal" not in merged


def test_build_changes_flattens_nested_fields():
    current = {"email": "a@x", "team": {"tnmt_id": "T1", "name": "A"}, "lanes": {"team": "1"}, "scores": {"team": [1]}}
    updates = {"email": "b@x", "team": {"tnmt_id": "T1", "name": "B"}, "lanes": {"team": "2"}, "scores": {"team": [1, 2]}}
    fields = {c["field"]: (c["old_value"], c["new_value"]) for c in build_changes(current, updates)}
    assert fields == {
        "email": ("a@x", "b@x"),
        "team_name": ("A", "B"),
        "lane_team": ("1", "2"),
        "scores_team": ([1], [1, 2]),
    }


def test_update_conflict_writes_nothing(paired_store, fake_transaction):
    store = paired_store
    transaction = fake_transaction(store)

    with pytest.raises(PairingConflict) as exc:
        update_participant("P5", {"doubles": {"partner_pid": "P1"}}, "admin@x", transaction=transaction)

    assert exc.value.conflict["current_partner_pid"] == "P2"
    assert transaction.state == {"entered": 1, "committed": 0, "rolled_back": 1}
    assert store.audit == []
    writes = [sql for sql, _ in store.calls if not sql.startswith("SELECT")]
    assert writes == []


def test_forced_update_audits_every_affected_participant(paired_store, fake_transaction):
    store = paired_store
    transaction = fake_transaction(store)

    view = update_participant(
        "P5", {"doubles": {"partner_pid": "P1"}}, "admin@x", force_reciprocal=True, transaction=transaction
    )

    assert transaction.state["committed"] == 1
    assert view["doubles"]["partner_pid"] == "P1"
    assert view["doubles"]["partner_name"] == "Ann Avery"
    assert store.partner_of("P1") == "P5"
    assert store.partner_of("P2") is None
    audit = [(a["pid"], a["field"], a["old_value"], a["new_value"]) for a in store.audit]
    assert audit == [
        ("P5", "partner_pid", "", "P1"),
        ("P2", "partner_pid", "P1", ""),
        ("P1", "partner_pid", "P2", "P5"),
    ]
    assert {a["admin_email"] for a in store.audit} == {"admin@x"}


def test_contact_edit_leaves_pairings_alone(paired_store, fake_transaction):
    store = paired_store

    view = update_participant(
        "P1",
        {"email": "ann@example.com", "first_name": "Mallory", "doubles": {"partner_pid": "P5"}},
        "ann@example.com",
        participant_only=True,
        transaction=fake_transaction(store),
    )

    assert view["email"] == "ann@example.com"
    assert view["first_name"] == "Ann"
    assert store.statements("INSERT INTO doubles_pairs") == []
    assert store.statements("DELETE") == []
    assert store.statements("UPDATE") == []
    assert [(a["field"], a["new_value"]) for a in store.audit] == [("email", "ann@example.com")]


def test_removing_team_detaches_pairing(paired_store, fake_transaction):
    store = paired_store

    update_participant("P1", {"team": {"tnmt_id": ""}}, "admin@x", transaction=fake_transaction(store))

    assert store.rows_for("P1") == []
    assert store.partner_of("P2") is None
    assert store.partner_of("P3") == "P4"
    audit = [(a["pid"], a["field"], a["old_value"], a["new_value"]) for a in store.audit]
    assert audit == [("P1", "team_id", "T1", ""), ("P2", "partner_pid", "P1", "")]


def test_unchanged_pairing_is_not_rewritten(paired_store, fake_transaction):
    store = paired_store
    update_participant("P1", {"nickname": "Annie"}, "admin@x", transaction=fake_transaction(store))
    assert store.statements("INSERT INTO doubles_pairs") == []
    assert store.people["P1"]["nickname"] == "Annie"
    assert store.partner_of("P1") == "P2"


def test_unknown_participant_rolls_back(paired_store, fake_transaction):
    transaction = fake_transaction(paired_store)
    with pytest.raises(ParticipantNotFound):
        update_participant("P404", {"email": "x@y"}, "admin@x", transaction=transaction)
    assert transaction.state["rolled_back"] == 1


def _store_with_partial_team_row(make_store):
    people = [{"pid": "P1", "first_name": "Ann", "last_name": "Avery", "tnmt_id": "T1", "did": None}]
    scores = [{"pid": "P1", "event_type": "team", "lane": "4", "game1": None, "game2": 200, "game3": None,
               "entering_avg": 190, "handicap": 31}]
    teams = [{"tnmt_id": "T1", "team_name": "Pin Pals", "slug": "pin-pals"}]
    return make_store(people=people, teams=teams, scores=scores)


def test_contact_edit_by_admin_does_not_rewrite_scores(make_store, fake_transaction):
    store = _store_with_partial_team_row(make_store)

    view = update_participant("P1", {"email": "new@example.com"}, "admin@x", transaction=fake_transaction(store))

    assert store.statements("INSERT INTO scores") == []
    assert view["scores"]["team"] == [None, 200, None]
    assert [a["field"] for a in store.audit] == ["email"]


def test_score_write_keeps_game_positions(make_store, fake_transaction):
    store = _store_with_partial_team_row(make_store)

    update_participant("P1", {"lanes": {"team": "9"}}, "admin@x", transaction=fake_transaction(store))

    (_sql, params), = store.statements("INSERT INTO scores")
    assert params[2:7] == ("team", "9", None, 200, None)
    assert params[7:] == (190, 31)
